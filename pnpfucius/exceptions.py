"""Custom exceptions for Pnpfucius."""


class PnpfuciusError(Exception):
    """Base exception for Pnpfucius."""

    pass


class ConfigurationError(PnpfuciusError):
    """Configuration-related errors."""

    pass


class LLMError(PnpfuciusError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (auth, server, malformed stream)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMRateLimitError(LLMAPIError):
    """Provider asked the caller to slow down."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ToolError(PnpfuciusError):
    """Tool execution errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolInputError(ToolError):
    """Tool input does not match the declared input shape."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid input for '{tool_name}': {message}")
        self.tool_name = tool_name


class DuplicateToolError(ToolError):
    """Two tools were registered under the same name."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool already registered: {tool_name}")
        self.tool_name = tool_name


class MarketBackendError(PnpfuciusError):
    """Market gateway request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
