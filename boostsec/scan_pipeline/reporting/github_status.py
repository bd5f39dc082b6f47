"""Publish the pipeline outcome as a GitHub commit status."""

import logging
from typing import Literal

import aiohttp

from boostsec.scan_pipeline.models.report import OverallStatus, PipelineReport
from boostsec.scan_pipeline.models.status_config import GitHubStatusConfig

logger = logging.getLogger(__name__)

CommitState = Literal["success", "failure", "error", "pending"]

# GitHub rejects descriptions longer than this.
_MAX_DESCRIPTION = 140


class GitHubStatusPublisher:
    """Posts a commit status summarizing a pipeline report."""

    def __init__(self, config: GitHubStatusConfig) -> None:
        """Initialize publisher with configuration."""
        self.config = config
        self.base_url = config.base_url

    async def publish(self, report: PipelineReport) -> str:
        """Create the commit status and return its API URL."""
        url = (
            f"{self.base_url}/repos/{self.config.owner}/{self.config.repo}/"
            f"statuses/{self.config.sha}"
        )
        headers = {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }
        payload: dict[str, str] = {
            "state": self._map_status(report.status),
            "context": self.config.context,
            "description": self._describe(report),
        }
        if self.config.target_url:
            payload["target_url"] = self.config.target_url

        async with aiohttp.ClientSession() as session:
            async with session.post(url, headers=headers, json=payload) as response:
                if response.status != 201:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to create commit status: {response.status} {text}"
                    )
                data = await response.json()

        status_url = str(data.get("url", ""))
        logger.info(f"Published commit status {payload['state']} to {status_url}")
        return status_url

    def _describe(self, report: PipelineReport) -> str:
        """Summarize a report in one line."""
        passed = report.count("success")
        description = (
            f"{report.status}: {passed}/{len(report.stages)} stages passed"
        )
        findings = report.total_findings()
        crashes = findings.get("crashes-found", 0)
        if crashes:
            description += f", {crashes} crash(es) found"
        return description[:_MAX_DESCRIPTION]

    def _map_status(self, status: OverallStatus) -> CommitState:
        """Map overall pipeline status to a commit state."""
        mapping: dict[OverallStatus, CommitState] = {
            "pass": "success",
            "fail": "failure",
            "aborted": "error",
            "timed-out": "error",
        }
        return mapping.get(status, "error")
