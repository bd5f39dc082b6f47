"""Generic adapter for tools without structured output."""

from boostsec.scan_pipeline.adapters.base import ToolAdapter


class CommandAdapter(ToolAdapter):
    """Runs any command; status follows the exit code, no findings."""

    tool_type = "command"

    def parse_findings(self, stdout: str, stderr: str) -> dict[str, int]:
        """Plain commands produce no findings."""
        return {}
