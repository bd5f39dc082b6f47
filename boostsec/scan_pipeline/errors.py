"""Error taxonomy for the scan pipeline engine."""


class ConfigError(Exception):
    """Pipeline definition is malformed or violates an invariant."""


class ToolError(Exception):
    """An adapter could not invoke its tool."""


class ToolCancelledError(ToolError):
    """Tool invocation was cancelled before it finished.

    Carries whatever output the tool produced before it was torn down so the
    caller can still recover partial findings.
    """

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        """Initialize with the partial output collected before cancellation."""
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.output_path: str | None = None
