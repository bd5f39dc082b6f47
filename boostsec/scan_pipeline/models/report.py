"""Models for the final pipeline report."""

from collections import Counter
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from boostsec.scan_pipeline.models.stage_result import StageResult

OverallStatus = Literal["pass", "fail", "aborted", "timed-out"]


class PipelineReport(BaseModel):
    """Aggregated outcome of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    pipeline: str = Field(..., description="Pipeline name")
    status: OverallStatus = Field(..., description="Overall run status")
    stages: tuple[StageResult, ...] = Field(
        default=(), description="Stage results in execution order"
    )
    duration: float = Field(default=0.0, description="Total run time in seconds")
    started_at: datetime | None = Field(default=None, description="Run start time")

    @property
    def passed(self) -> bool:
        """Whether the run passed."""
        return self.status == "pass"

    def result_for(self, stage: str) -> StageResult | None:
        """Return the result of a stage, if it appears in the report."""
        for result in self.stages:
            if result.stage == stage:
                return result
        return None

    def total_findings(self) -> dict[str, int]:
        """Sum findings per category across all stages."""
        totals: Counter[str] = Counter()
        for result in self.stages:
            totals.update(result.findings)
        return dict(totals)

    def count(self, status: str) -> int:
        """Count stages with the given status."""
        return sum(1 for result in self.stages if result.status == status)
