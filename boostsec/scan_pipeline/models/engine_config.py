"""Engine-wide settings."""

from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_REPORT_PATH = Path(".scan-pipeline") / "report.json"


class EngineConfig(BaseModel):
    """Settings that are not part of a pipeline definition."""

    grace_period_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Time a cancelled tool gets to exit before it is killed",
    )
    report_path: Path = Field(
        default=DEFAULT_REPORT_PATH,
        description="Report location, relative paths resolve against the workdir",
    )
    log_dir: Path | None = Field(
        default=None, description="Directory receiving raw per-stage tool output"
    )
