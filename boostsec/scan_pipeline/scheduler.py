"""Sequence stages and apply each stage's failure policy."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from boostsec.scan_pipeline.adapters.base import ExecutionContext, ToolAdapter
from boostsec.scan_pipeline.executor import StageExecutor
from boostsec.scan_pipeline.models.definition import PipelineDefinition
from boostsec.scan_pipeline.models.stage import StageDescriptor
from boostsec.scan_pipeline.models.stage_result import StageResult, StageStatus

logger = logging.getLogger(__name__)

SchedulerState = Literal[
    "pending", "running", "evaluating", "advancing", "aborted", "completed"
]
Decision = Literal["advance", "abort", "skip-remaining"]


@dataclass(frozen=True)
class Transition:
    """One state the scheduler entered, with the stage it concerned."""

    state: SchedulerState
    stage: str | None = None


class PipelineScheduler:
    """Runs stages strictly in declaration order, one at a time.

    State machine::

        pending(s) -> running(s) -> evaluating(s, r) -> advancing
        advancing -> pending(next) | completed
        evaluating -> aborted

    A run cancelled through the context token ends in ``aborted`` with every
    stage that hadn't finished recorded as skipped.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        adapters: Mapping[str, ToolAdapter],
        executor: StageExecutor,
    ) -> None:
        """Initialize scheduler for one run of a definition."""
        self.definition = definition
        self.adapters = adapters
        self.executor = executor
        self.state: SchedulerState = "pending"
        self.transitions: list[Transition] = []
        self._results: list[StageResult] = []

    @property
    def aborted(self) -> bool:
        """Whether the scheduler ended in the aborted state."""
        return self.state == "aborted"

    def executed_stages(self) -> list[str]:
        """Names of stages that reached the running state, in order."""
        return [t.stage for t in self.transitions if t.state == "running" and t.stage]

    async def run(self, context: ExecutionContext) -> tuple[StageResult, ...]:
        """Run every stage and hand over the collected results."""
        token = context.cancel_token
        stages = self.definition.stages

        for index, stage in enumerate(stages):
            if token.cancelled:
                self.skip_remaining(index, f"run cancelled: {token.reason}")
                self._enter("aborted")
                break

            self._enter("pending", stage.name)
            self._enter("running", stage.name)
            result = await self.executor.execute(
                stage, self.adapters[stage.name], context
            )
            self._results.append(result)
            self._enter("evaluating", stage.name)

            if token.cancelled:
                self.skip_remaining(index + 1, f"run cancelled: {token.reason}")
                self._enter("aborted")
                break

            decision = self._evaluate(stage, result)
            if decision == "abort":
                logger.error(
                    f"Stage {stage.name} {result.status}, aborting pipeline "
                    f"({len(stages) - index - 1} stages not run)"
                )
                self._enter("aborted")
                break

            if decision == "skip-remaining":
                logger.warning(
                    f"Stage {stage.name} {result.status}, skipping remaining stages"
                )
                self.skip_remaining(index + 1, f"skipped after {stage.name} failed")
                self._enter("advancing")
                self._enter("completed")
                break

            self._enter("advancing")
        else:
            self._enter("completed")

        return self.take_results()

    def skip_remaining(self, start: int, reason: str) -> None:
        """Record synthetic skipped results for stages from ``start`` on."""
        for stage in self.definition.stages[start:]:
            logger.info(f"Skipping stage {stage.name}: {reason}")
            self._results.append(
                StageResult.skipped(stage.name, stage.required, message=reason)
            )

    def take_results(self) -> tuple[StageResult, ...]:
        """Hand over the collected results; the scheduler keeps no reference."""
        results = tuple(self._results)
        self._results = []
        return results

    def interrupt(self, status: StageStatus, reason: str) -> None:
        """Close out a run whose scheduler task was torn down mid-stage.

        The stage that was running gets a result with the given status, every
        later stage is recorded as skipped.
        """
        index = len(self._results)
        stages = self.definition.stages
        if index >= len(stages):
            return

        stage = stages[index]
        self._results.append(
            StageResult(
                stage=stage.name,
                status=status,
                required=stage.required,
                message=f"Stage forcibly stopped: {reason}",
                interrupted=True,
            )
        )
        self.skip_remaining(index + 1, f"run cancelled: {reason}")
        self._enter("aborted")

    def _evaluate(self, stage: StageDescriptor, result: StageResult) -> Decision:
        """Apply the stage's failure policy to its result."""
        if result.status == "success" or stage.on_failure == "continue":
            return "advance"
        if stage.on_failure == "skip-remaining":
            return "skip-remaining"
        return "abort"

    def _enter(self, state: SchedulerState, stage: str | None = None) -> None:
        self.state = state
        self.transitions.append(Transition(state, stage))
        logger.debug(f"Scheduler -> {state}" + (f"({stage})" if stage else ""))
