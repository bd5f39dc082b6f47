"""Static analysis adapter for clippy and cargo-audit style JSON output."""

import json
import re
from collections.abc import Mapping

from boostsec.scan_pipeline.adapters.base import ToolAdapter
from boostsec.scan_pipeline.models.stage_result import StageStatus

# Compiler summaries that are reported as diagnostics but aren't findings.
_SUMMARY_MESSAGE = re.compile(
    r"^(aborting due to|\d+ warnings? emitted|could not compile)"
)


class StaticAnalysisAdapter(ToolAdapter):
    """Adapter for linters and dependency auditors emitting JSON."""

    tool_type = "static-analysis"

    def parse_findings(self, stdout: str, stderr: str) -> dict[str, int]:
        """Count lint diagnostics and audit advisories.

        Understands ``cargo clippy --message-format=json`` (one JSON object per
        line) and ``cargo audit --json`` (a single JSON document). Lines that
        aren't JSON are ignored.
        """
        findings: dict[str, int] = {}

        document = _load_json(stdout.strip())
        if isinstance(document, dict) and "vulnerabilities" in document:
            findings.update(_audit_findings(document))
            return findings

        for line in stdout.splitlines():
            message = _load_json(line.strip())
            if not isinstance(message, dict):
                continue

            if message.get("reason") == "compiler-message":
                category = _lint_category(message.get("message"))
                if category:
                    findings[category] = findings.get(category, 0) + 1
            elif "vulnerabilities" in message:
                findings.update(_audit_findings(message))

        return findings

    def classify(self, exit_code: int, findings: Mapping[str, int]) -> StageStatus:
        """Fail on a non-zero exit, lint errors, or known vulnerabilities."""
        if exit_code != 0:
            return "failure"
        if findings.get("lint-errors", 0) or findings.get("audit-vulnerabilities", 0):
            return "failure"
        return "success"


def _load_json(text: str) -> object:
    if not text or text[0] not in "{[":
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _lint_category(message: object) -> str | None:
    """Map a compiler diagnostic to a finding category."""
    if not isinstance(message, dict):
        return None

    text = message.get("message")
    if isinstance(text, str) and _SUMMARY_MESSAGE.match(text):
        return None

    level = message.get("level")
    if level == "warning":
        return "lint-warnings"
    if level in {"error", "error: internal compiler error"}:
        return "lint-errors"
    return None


def _audit_findings(document: Mapping[str, object]) -> dict[str, int]:
    """Count advisories in a cargo-audit JSON report."""
    findings: dict[str, int] = {}

    vulnerabilities = document.get("vulnerabilities")
    if isinstance(vulnerabilities, dict):
        count = vulnerabilities.get("count")
        if not isinstance(count, int):
            listed = vulnerabilities.get("list")
            count = len(listed) if isinstance(listed, list) else 0
        findings["audit-vulnerabilities"] = count

    warnings = document.get("warnings")
    if isinstance(warnings, dict):
        total = sum(len(v) for v in warnings.values() if isinstance(v, list))
        if total:
            findings["audit-warnings"] = total

    return findings
