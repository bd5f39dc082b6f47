"""Data models for pipeline definitions, results, reports and settings."""

from boostsec.scan_pipeline.models.definition import (
    BranchFilter,
    PipelineDefinition,
    TriggerPredicate,
)
from boostsec.scan_pipeline.models.engine_config import EngineConfig
from boostsec.scan_pipeline.models.report import PipelineReport
from boostsec.scan_pipeline.models.stage import StageDescriptor
from boostsec.scan_pipeline.models.stage_result import StageResult
from boostsec.scan_pipeline.models.status_config import GitHubStatusConfig

__all__ = [
    "BranchFilter",
    "EngineConfig",
    "GitHubStatusConfig",
    "PipelineDefinition",
    "PipelineReport",
    "StageDescriptor",
    "StageResult",
    "TriggerPredicate",
]
