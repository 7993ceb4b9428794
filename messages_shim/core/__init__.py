"""Core module initialization."""

from .exceptions import (
    ConfigurationError,
    EmptyReplyError,
    InvalidRequestError,
    MalformedToolArgumentsError,
    ProxyError,
    SchemaTooDeepError,
    TransportError,
    UpstreamError,
)
from .provider import ProviderClient
from .sse import detect_sse_stream_error, extract_sse_data, format_sse_event

__all__ = [
    "ConfigurationError",
    "EmptyReplyError",
    "InvalidRequestError",
    "MalformedToolArgumentsError",
    "ProviderClient",
    "ProxyError",
    "SchemaTooDeepError",
    "TransportError",
    "UpstreamError",
    "detect_sse_stream_error",
    "extract_sse_data",
    "format_sse_event",
]
