"""Models for pipeline stage descriptors."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from boostsec.scan_pipeline.errors import ConfigError

OnFailure = Literal["abort", "continue", "skip-remaining"]
ToolType = Literal["static-analysis", "test-runner", "fuzz-runner", "command"]


class StageDescriptor(BaseModel):
    """Immutable description of one pipeline step."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    name: str = Field(..., description="Stage name, unique within a definition")
    tool: ToolType = Field(
        default="command", description="Adapter type used to run the stage"
    )
    command: str = Field(..., description="Executable to invoke")
    args: tuple[str, ...] = Field(
        default=(), description="Arguments passed to the executable"
    )
    working_dir: str = Field(
        default=".", description="Working directory relative to the checkout"
    )
    timeout_seconds: float = Field(..., description="Per-stage time budget")
    on_failure: OnFailure = Field(
        default="abort", description="What the scheduler does when the stage fails"
    )
    required: bool = Field(
        default=True, description="Whether the stage gates the overall status"
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )
    targets: tuple[str, ...] = Field(
        default=(), description="Fuzz targets, one invocation per target"
    )
    jobs: int = Field(default=1, description="Max concurrently running targets")

    def validate_invariants(self) -> None:
        """Check the descriptor's invariants.

        Raises:
            ConfigError: If the timeout is not positive, the stage is required
                but may be ignored on failure, or the fuzz settings are invalid

        """
        if not self.name.strip():
            raise ConfigError("Stage name must not be empty")

        if not self.command.strip():
            raise ConfigError(f"Stage '{self.name}': command must not be empty")

        if self.timeout_seconds <= 0:
            raise ConfigError(
                f"Stage '{self.name}': timeout must be positive, "
                f"got {self.timeout_seconds}"
            )

        if self.required and self.on_failure == "continue":
            raise ConfigError(
                f"Stage '{self.name}': a required stage cannot use "
                "on_failure=continue (use abort or skip-remaining)"
            )

        if self.jobs < 1:
            raise ConfigError(f"Stage '{self.name}': jobs must be at least 1")

        if self.tool == "fuzz-runner" and not self.targets:
            raise ConfigError(
                f"Stage '{self.name}': fuzz-runner stages need at least one target"
            )
