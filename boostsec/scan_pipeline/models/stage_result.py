"""Models for stage execution results."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

StageStatus = Literal["success", "failure", "timeout", "skipped", "tool-error"]


class StageResult(BaseModel):
    """Result of a single stage execution."""

    model_config = ConfigDict(frozen=True)

    stage: str = Field(..., description="Stage name")
    status: StageStatus = Field(..., description="Stage execution status")
    required: bool = Field(
        default=True, description="Whether the stage gates the overall status"
    )
    findings: dict[str, int] = Field(
        default_factory=dict, description="Finding category -> count"
    )
    duration: float = Field(default=0.0, description="Wall-clock time in seconds")
    exit_code: int | None = Field(default=None, description="Tool exit code")
    message: str | None = Field(
        default=None, description="Error message or status details"
    )
    output_path: str | None = Field(
        default=None, description="Path to the raw tool output"
    )
    interrupted: bool = Field(
        default=False,
        description="Whether cancellation or a timeout stopped the stage early",
    )

    @classmethod
    def skipped(
        cls, stage: str, required: bool, message: str | None = None
    ) -> "StageResult":
        """Build the synthetic result of a stage that never ran."""
        return cls(stage=stage, status="skipped", required=required, message=message)

    @property
    def gating(self) -> bool:
        """Whether this result can decide the overall status."""
        return self.required and self.status != "success"
