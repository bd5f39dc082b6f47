"""Run a single stage under its own time budget."""

import asyncio
import logging
import time

from boostsec.scan_pipeline.adapters.base import ExecutionContext, ToolAdapter
from boostsec.scan_pipeline.cancellation import CancellationToken
from boostsec.scan_pipeline.errors import ToolCancelledError, ToolError
from boostsec.scan_pipeline.models.stage import StageDescriptor
from boostsec.scan_pipeline.models.stage_result import StageResult, StageStatus

logger = logging.getLogger(__name__)


class StageExecutor:
    """Executes one stage at a time, racing its adapter against the timeout.

    Never raises for stage-level problems: tool errors, timeouts and
    cancellation are all reported through the returned StageResult.
    """

    def __init__(self, grace_period_seconds: float = 5.0) -> None:
        """Initialize executor with the teardown grace period."""
        self.grace_period = grace_period_seconds

    async def execute(
        self,
        descriptor: StageDescriptor,
        adapter: ToolAdapter,
        context: ExecutionContext,
    ) -> StageResult:
        """Run a stage and return exactly one result for it."""
        logger.info(
            f"Executing stage: {descriptor.name} "
            f"({adapter.tool_type}, timeout {descriptor.timeout_seconds}s)"
        )
        started = time.monotonic()
        stage_token = context.cancel_token.child(descriptor.name)
        stage_context = context.for_stage(stage_token)
        task = asyncio.create_task(adapter.run(descriptor, stage_context))

        try:
            done, _ = await asyncio.wait({task}, timeout=descriptor.timeout_seconds)
            if task not in done:
                logger.warning(
                    f"Stage {descriptor.name} exceeded {descriptor.timeout_seconds}s, "
                    "cancelling"
                )
                stage_token.cancel(
                    f"stage timeout after {descriptor.timeout_seconds}s",
                    timed_out=True,
                )
                await self._reclaim(task, descriptor)
        except asyncio.CancelledError:
            stage_token.cancel("executor cancelled")
            task.cancel()
            await asyncio.wait({task}, timeout=self.grace_period)
            raise
        finally:
            context.cancel_token.release(stage_token)

        result = self._collect(task, descriptor, adapter, stage_token)
        result = result.model_copy(update={"duration": time.monotonic() - started})
        logger.info(f"Stage {descriptor.name} finished: {result.status}")
        return result

    async def _reclaim(
        self, task: asyncio.Task[StageResult], descriptor: StageDescriptor
    ) -> None:
        """Wait for a cancelled adapter to tear down, forcing it if it won't."""
        # The adapter escalates SIGTERM to SIGKILL within one grace period and
        # then drains its pipes within another.
        done, _ = await asyncio.wait({task}, timeout=self.grace_period * 2)
        if task in done:
            return

        logger.error(
            f"Stage {descriptor.name} did not stop within the grace period, "
            "forcing teardown"
        )
        task.cancel()
        await asyncio.wait({task}, timeout=self.grace_period)

    def _collect(
        self,
        task: asyncio.Task[StageResult],
        descriptor: StageDescriptor,
        adapter: ToolAdapter,
        stage_token: CancellationToken,
    ) -> StageResult:
        """Turn the adapter task's outcome into a stage result."""
        interrupted_status: StageStatus = (
            "timeout" if stage_token.timed_out else "tool-error"
        )

        if not task.done() or task.cancelled():
            return StageResult(
                stage=descriptor.name,
                status=interrupted_status,
                required=descriptor.required,
                message=f"Stage forcibly stopped: {stage_token.reason}",
                interrupted=True,
            )

        error = task.exception()
        if error is None:
            result = task.result()
            if stage_token.cancelled:
                # Finished on its own right at the cutoff; still over budget.
                return result.model_copy(
                    update={
                        "status": interrupted_status,
                        "message": stage_token.reason,
                        "interrupted": True,
                    }
                )
            return result

        if isinstance(error, ToolCancelledError):
            return StageResult(
                stage=descriptor.name,
                status=interrupted_status,
                required=descriptor.required,
                findings=adapter.recover_partial(error),
                message=f"Stage cancelled: {stage_token.reason}",
                output_path=error.output_path,
                interrupted=True,
            )

        if isinstance(error, ToolError):
            logger.error(f"Stage {descriptor.name} tool error: {error}")
            return StageResult(
                stage=descriptor.name,
                status="tool-error",
                required=descriptor.required,
                message=str(error),
            )

        logger.error(
            f"Stage {descriptor.name} adapter crashed: {type(error).__name__}: {error}",
            exc_info=error,
        )
        return StageResult(
            stage=descriptor.name,
            status="tool-error",
            required=descriptor.required,
            message=f"{type(error).__name__}: {error}",
        )
