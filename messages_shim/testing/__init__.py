"""Testing utilities for in-process shim simulations."""

from .assertions import (
    assert_anthropic_message_valid,
    assert_anthropic_sse_valid,
    parse_sse_events,
)
from .fake_provider import FakeProvider, ProviderResponse
from .response_builders import (
    build_chat_response,
    build_chunk,
    build_messages_request,
    build_stream_chunks,
)

__all__ = [
    # Core simulation classes
    "FakeProvider",
    "ProviderResponse",
    # Response builders
    "build_chat_response",
    "build_chunk",
    "build_messages_request",
    "build_stream_chunks",
    # Assertions
    "assert_anthropic_message_valid",
    "assert_anthropic_sse_valid",
    "parse_sse_events",
]
