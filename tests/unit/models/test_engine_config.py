"""Tests for engine and status configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from boostsec.scan_pipeline.models.engine_config import (
    DEFAULT_REPORT_PATH,
    EngineConfig,
)
from boostsec.scan_pipeline.models.status_config import GitHubStatusConfig


def test_engine_config_defaults() -> None:
    """EngineConfig uses sensible defaults."""
    config = EngineConfig()

    assert config.grace_period_seconds == 5.0
    assert config.report_path == DEFAULT_REPORT_PATH
    assert config.log_dir is None


def test_engine_config_coerces_strings() -> None:
    """EngineConfig accepts values read from the environment."""
    config = EngineConfig.model_validate(
        {"grace_period_seconds": "1.5", "log_dir": "logs"}
    )

    assert config.grace_period_seconds == 1.5
    assert config.log_dir == Path("logs")


def test_engine_config_rejects_non_positive_grace_period() -> None:
    """The grace period must be positive."""
    with pytest.raises(ValidationError):
        EngineConfig(grace_period_seconds=0)


def test_github_status_config_defaults() -> None:
    """GitHubStatusConfig uses default values for optional fields."""
    config = GitHubStatusConfig(token="t", owner="o", repo="r", sha="abc")

    assert config.context == "security-scan"
    assert config.target_url is None
    assert config.base_url == "https://api.github.com"


def test_github_status_config_missing_fields() -> None:
    """GitHubStatusConfig requires token, owner, repo and sha."""
    with pytest.raises(ValidationError) as exc_info:
        GitHubStatusConfig(token="t", owner="o", repo="r")  # type: ignore[call-arg]
    assert "sha" in str(exc_info.value)
