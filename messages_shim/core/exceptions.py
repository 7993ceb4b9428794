"""Core exceptions for the shim."""

from typing import Any, Optional


class ProxyError(Exception):
    """Base exception for shim errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(
        self,
        message: str,
        code: str = "invalid_request",
        param: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.param = param


class SchemaTooDeepError(InvalidRequestError):
    """Raised when a tool schema nests deeper than the sanitizer allows."""

    def __init__(self, depth: int) -> None:
        super().__init__(
            f"Tool schema exceeds maximum nesting depth of {depth}",
            code="schema_too_deep",
            param="tools",
        )
        self.depth = depth


class UpstreamError(ProxyError):
    """Raised when the completion provider answers with an error."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransportError(ProxyError):
    """Raised when the provider connection fails or yields an unusable body."""
    pass


class EmptyReplyError(ProxyError):
    """Raised when a provider reply carries no choices."""
    pass


class MalformedToolArgumentsError(ProxyError):
    """Raised when a tool call's arguments are not valid JSON."""

    def __init__(self, message: str, tool_name: str, arguments: Any) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.arguments = arguments
