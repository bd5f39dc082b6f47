"""Models for pipeline definitions loaded from pipeline YAML files."""

from collections.abc import Mapping
from fnmatch import fnmatchcase
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from boostsec.scan_pipeline.errors import ConfigError
from boostsec.scan_pipeline.models.stage import StageDescriptor

TriggerEvent = Literal["push", "pull_request"]


class BranchFilter(BaseModel):
    """Branch patterns an event must target."""

    model_config = ConfigDict(frozen=True)

    branches: tuple[str, ...] = Field(
        default=(), description="fnmatch patterns; empty matches any branch"
    )

    def matches(self, branch: str) -> bool:
        """Check whether a branch matches any of the patterns."""
        if not self.branches:
            return True
        return any(fnmatchcase(branch, pattern) for pattern in self.branches)


class TriggerPredicate(BaseModel):
    """Events and branches that start a run."""

    model_config = ConfigDict(frozen=True)

    push: BranchFilter | None = Field(default=None, description="Push filter")
    pull_request: BranchFilter | None = Field(
        default=None, description="Pull request filter (target branch)"
    )

    def matches(self, event: TriggerEvent, branch: str) -> bool:
        """Check whether an event on a branch triggers the pipeline.

        A predicate with no filters at all matches everything.
        """
        if self.push is None and self.pull_request is None:
            return True

        branch_filter = self.push if event == "push" else self.pull_request
        if branch_filter is None:
            return False
        return branch_filter.matches(branch)


class PipelineDefinition(BaseModel):
    """Ordered stage list plus run-wide settings."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    name: str = Field(default="scan-pipeline", description="Pipeline name")
    global_timeout_seconds: float = Field(..., description="Whole-run time budget")
    trigger: TriggerPredicate = Field(
        default_factory=TriggerPredicate, description="When the pipeline runs"
    )
    stages: tuple[StageDescriptor, ...] = Field(
        default=(), description="Stages in declaration order"
    )

    @model_validator(mode="before")
    @classmethod
    def _stages_from_mapping(cls, data: object) -> object:
        """Accept stages as a name -> settings mapping, preserving order."""
        if not isinstance(data, Mapping):
            return data

        stages = data.get("stages")
        if not isinstance(stages, Mapping):
            return data

        converted = []
        for stage_name, body in stages.items():
            if body is None:
                body = {}
            if not isinstance(body, Mapping):
                raise ValueError(f"Stage '{stage_name}' must be a mapping")
            converted.append({**body, "name": str(stage_name)})

        return {**data, "stages": converted}

    def validate_invariants(self) -> None:
        """Check definition-wide and per-stage invariants.

        Raises:
            ConfigError: On the first invariant violation found

        """
        if self.global_timeout_seconds <= 0:
            raise ConfigError(
                "Global timeout must be positive, "
                f"got {self.global_timeout_seconds}"
            )

        if not self.stages:
            raise ConfigError(f"Pipeline '{self.name}' declares no stages")

        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise ConfigError(f"Duplicate stage name: {stage.name}")
            seen.add(stage.name)
            stage.validate_invariants()

    def stage_names(self) -> list[str]:
        """Return stage names in declaration order."""
        return [stage.name for stage in self.stages]

    def to_document(self) -> dict[str, object]:
        """Serialize back to the document shape accepted on load."""
        stages = {
            stage.name: stage.model_dump(mode="json", by_alias=True, exclude={"name"})
            for stage in self.stages
        }
        return {
            "name": self.name,
            "globalTimeoutSeconds": self.global_timeout_seconds,
            "trigger": self.trigger.model_dump(mode="json", exclude_none=True),
            "stages": stages,
        }
