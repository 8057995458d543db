"""Custom exceptions for ShellPilot."""


class ShellPilotError(Exception):
    """Base exception for ShellPilot."""

    pass


class ConfigurationError(ShellPilotError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: str = ""):
        super().__init__(message)
        self.config_key = config_key


class LLMError(ShellPilotError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(ShellPilotError):
    """Tool execution errors."""

    pass


class ValidationError(ToolError):
    """Shell command blocked by the command gate."""

    def __init__(self, reason: str, severity: str = "error"):
        super().__init__(f"Command blocked for safety: {reason}")
        self.reason = reason
        self.severity = severity


class RateLimitError(ToolError):
    """Shell command rejected by the rate limiter."""

    def __init__(self, message: str, retry_after: int):
        super().__init__(f"{message}. Retry after {retry_after}s")
        self.retry_after = retry_after


class ArgumentParseError(ToolError):
    """Tool-call arguments could not be decoded."""

    def __init__(self, tool_name: str, raw_arguments: str, detail: str = ""):
        message = f"argument parse error for tool '{tool_name}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        original_error: BaseException | None = None,
    ):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.original_error = original_error


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str, available_tools: list[str] | None = None):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name
        self.available_tools = list(available_tools or [])


class UserCancellationError(ShellPilotError):
    """Operator rejected a confirmation request."""

    def __init__(self, operation: str, feedback: str | None = None):
        message = f"Operation '{operation}' cancelled by user"
        if feedback:
            message += f": {feedback}"
        super().__init__(message)
        self.operation = operation
        self.feedback = feedback


class TurnInProgressError(ShellPilotError):
    """A model turn was started before the previous one finished."""

    def __init__(self) -> None:
        super().__init__("A model turn is already in progress")


class MaxToolRoundsError(ShellPilotError):
    """Agent hit the configured tool-round ceiling."""

    def __init__(self, max_rounds: int):
        super().__init__(
            f"Maximum tool execution rounds reached ({max_rounds}). "
            "Stopping to prevent infinite loops."
        )
        self.max_rounds = max_rounds


def format_error_for_user(error: BaseException) -> str:
    """Return the message shown to the operator for an error."""
    message = str(error).strip()
    return message or error.__class__.__name__
