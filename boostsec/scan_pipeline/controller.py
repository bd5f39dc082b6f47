"""Run controller: load a definition, drive the scheduler, enforce the run budget."""

import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path

from boostsec.scan_pipeline.adapters.base import ExecutionContext
from boostsec.scan_pipeline.adapters.registry import AdapterRegistry, default_registry
from boostsec.scan_pipeline.aggregator import aggregate
from boostsec.scan_pipeline.cancellation import CancellationToken
from boostsec.scan_pipeline.definition_loader import load_definition
from boostsec.scan_pipeline.executor import StageExecutor
from boostsec.scan_pipeline.models.definition import PipelineDefinition, TriggerEvent
from boostsec.scan_pipeline.models.engine_config import EngineConfig
from boostsec.scan_pipeline.models.report import PipelineReport
from boostsec.scan_pipeline.models.stage_result import StageResult
from boostsec.scan_pipeline.scheduler import PipelineScheduler

logger = logging.getLogger(__name__)


class RunController:
    """Drives one pipeline run against a checkout."""

    def __init__(
        self,
        definition: PipelineDefinition,
        workdir: Path,
        config: EngineConfig | None = None,
        registry: AdapterRegistry | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize controller; every stage's adapter is resolved up front.

        Raises:
            ConfigError: If the definition is invalid or names an unknown tool

        """
        definition.validate_invariants()
        self.definition = definition
        self.workdir = workdir
        self.config = config or EngineConfig()
        self.registry = registry or default_registry()
        self.adapters = self.registry.resolve(definition.stages)
        self.env = dict(env or {})
        self.token = CancellationToken("run")
        self.timed_out = False

    @classmethod
    def from_file(
        cls,
        definition_file: Path,
        workdir: Path,
        config: EngineConfig | None = None,
        registry: AdapterRegistry | None = None,
    ) -> "RunController":
        """Load, validate, and wrap a definition file.

        Raises:
            ConfigError: If the file doesn't hold a valid definition

        """
        return cls(load_definition(definition_file), workdir, config, registry)

    def should_run(self, event: TriggerEvent, branch: str) -> bool:
        """Check the definition's trigger predicate."""
        return self.definition.trigger.matches(event, branch)

    def plan(self) -> list[str]:
        """Describe the stages that would run, in order, without running them."""
        lines = []
        for position, stage in enumerate(self.definition.stages, start=1):
            kind = "required" if stage.required else "advisory"
            command = " ".join([stage.command, *stage.args])
            targets = f" targets={','.join(stage.targets)}" if stage.targets else ""
            lines.append(
                f"{position}. {stage.name} [{stage.tool}, {kind}, "
                f"on_failure={stage.on_failure}, timeout={stage.timeout_seconds}s] "
                f"{command} (in {stage.working_dir}){targets}"
            )
        return lines

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """Cancel the run; the running stage is stopped, the rest skipped.

        Safe to call more than once.
        """
        return self.token.cancel(reason)

    async def run(self) -> PipelineReport:
        """Run the pipeline under its global timeout and report the outcome."""
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        grace = self.config.grace_period_seconds
        budget = self.definition.global_timeout_seconds

        logger.info(
            f"Running pipeline '{self.definition.name}' "
            f"({len(self.definition.stages)} stages, budget {budget}s) "
            f"in {self.workdir}"
        )

        context = ExecutionContext(
            checkout_path=self.workdir,
            cancel_token=self.token,
            env=self.env,
            log_dir=self._log_dir(),
            grace_period=grace,
        )
        scheduler = PipelineScheduler(
            self.definition, self.adapters, StageExecutor(grace)
        )
        task = asyncio.create_task(scheduler.run(context))

        done, _ = await asyncio.wait({task}, timeout=budget)
        if task not in done:
            logger.error(f"Pipeline exceeded global timeout of {budget}s, cancelling")
            self.timed_out = True
            self.token.cancel(f"global timeout after {budget}s", timed_out=True)
            # Stage teardown takes up to three grace periods in the executor.
            done, _ = await asyncio.wait({task}, timeout=grace * 4)

        if task in done:
            results = task.result()
        else:
            results = await self._force_stop(task, scheduler)

        report = aggregate(
            results,
            pipeline=self.definition.name,
            aborted=scheduler.aborted or task.cancelled(),
            timed_out=self.timed_out,
            duration=time.monotonic() - started,
            started_at=started_at,
        )
        logger.info(f"Pipeline '{self.definition.name}' finished: {report.status}")
        return report

    async def _force_stop(
        self,
        task: "asyncio.Task[tuple[StageResult, ...]]",
        scheduler: PipelineScheduler,
    ) -> tuple[StageResult, ...]:
        """Hard-cancel a scheduler that didn't wind down and salvage its results."""
        logger.error("Scheduler did not stop within the grace period, forcing it")
        task.cancel()
        await asyncio.wait({task}, timeout=self.config.grace_period_seconds)

        reason = self.token.reason or "run cancelled"
        scheduler.interrupt(
            "timeout" if self.token.timed_out else "tool-error", reason
        )
        return scheduler.take_results()

    def _log_dir(self) -> Path | None:
        if self.config.log_dir is None:
            return None
        return self.workdir / self.config.log_dir
