"""Merge stage results into a pipeline report and decide pass/fail."""

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from boostsec.scan_pipeline.models.report import OverallStatus, PipelineReport
from boostsec.scan_pipeline.models.stage_result import StageResult

logger = logging.getLogger(__name__)


def overall_status(
    results: Sequence[StageResult], *, aborted: bool = False, timed_out: bool = False
) -> OverallStatus:
    """Decide the overall status of a run.

    Precedence: a required stage that failed or couldn't run its tool fails
    the run; a required stage (or the whole run) out of time makes it timed
    out; a scheduler abort makes it aborted. A stage stopped by cancellation
    counts toward the abort, not as a failure. Advisory stages never change
    the outcome.
    """
    gating = [result for result in results if result.gating]

    if any(
        result.status in {"failure", "tool-error"} and not result.interrupted
        for result in gating
    ):
        return "fail"
    if timed_out or any(result.status == "timeout" for result in gating):
        return "timed-out"
    if aborted:
        return "aborted"
    return "pass"


def aggregate(
    results: Sequence[StageResult],
    *,
    pipeline: str = "scan-pipeline",
    aborted: bool = False,
    timed_out: bool = False,
    duration: float | None = None,
    started_at: datetime | None = None,
) -> PipelineReport:
    """Build the final report from stage results in execution order.

    Args:
        results: Stage results in the order the stages were declared
        pipeline: Pipeline name
        aborted: Whether the scheduler ended in the aborted state
        timed_out: Whether the run exhausted its global budget
        duration: Total run time; defaults to the sum of stage durations
        started_at: Run start time

    Returns:
        Immutable pipeline report

    """
    status = overall_status(results, aborted=aborted, timed_out=timed_out)
    if duration is None:
        duration = sum(result.duration for result in results)

    for result in results:
        if not result.required and result.status not in {"success", "skipped"}:
            logger.warning(
                f"Advisory stage {result.stage} {result.status}: "
                f"{result.findings or result.message}"
            )

    return PipelineReport(
        pipeline=pipeline,
        status=status,
        stages=tuple(results),
        duration=duration,
        started_at=started_at,
    )


def write_report(report: PipelineReport, path: Path) -> Path:
    """Write a report as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2))
    logger.info(f"Report written to {path}")
    return path


def load_report(path: Path) -> PipelineReport:
    """Read a report written by write_report."""
    return PipelineReport.model_validate_json(path.read_text())
