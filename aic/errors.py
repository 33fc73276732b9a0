"""Custom exceptions for aic."""


class AICError(Exception):
    """Base exception for aic."""

    pass


class UnknownTool(AICError):
    """Tool name not present in the adapter registry."""

    def __init__(self, tool: str, choices: list[str] | None = None):
        hint = f" Expected one of: {', '.join(choices)}" if choices else ""
        super().__init__(f"Unknown tool '{tool}'.{hint}")
        self.tool = tool


class CommandError(AICError):
    """Meta-command used incorrectly."""

    pass


class SpawnFailure(AICError):
    """Executable could not be started."""

    def __init__(self, tool: str, reason: str):
        super().__init__(f"{tool}: failed to start ({reason})")
        self.tool = tool
        self.reason = reason


class NonZeroExit(AICError):
    """Tool ran and failed."""

    def __init__(self, tool: str, exit_code: int | None, detail: str = ""):
        detail = (detail or "").strip() or "Unknown error"
        if exit_code is None:
            message = f"{tool} exited: {detail}"
        else:
            message = f"{tool} exited with code {exit_code}: {detail}"
        super().__init__(message)
        self.tool = tool
        self.exit_code = exit_code
        self.detail = detail


class ProcessExited(NonZeroExit):
    """PTY child went away while a session depended on it."""

    pass


class BrokenPipe(NonZeroExit):
    """Write to a child whose input side is gone."""

    def __init__(self, tool: str, detail: str = ""):
        super().__init__(tool, None, f"input closed ({detail or 'broken pipe'})")


class ConcurrentRequestRejected(AICError):
    """A send was attempted while another one is still awaiting its answer."""

    retryable = True

    def __init__(self, tool: str):
        super().__init__(f"{tool} is still answering the previous request; try again when it finishes")
        self.tool = tool
