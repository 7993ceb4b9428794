"""Anthropic Messages API translation helpers.

Provides translation between Anthropic Messages API format and OpenAI Chat
Completions API format, so Anthropic-format requests can be served by an
OpenAI-compatible completion provider.
"""

from .schema import sanitize_schema, tool_parameters
from .translator import (
    chat_completion_to_messages,
    convert_stop_reason,
    messages_to_chat_completions,
)
from .stream_adapter import (
    ChatToMessagesStreamAdapter,
    StreamPhase,
    StreamState,
    create_stream_state,
    generate_message_id,
    initial_events,
    translate_chunk,
)

__all__ = [
    "messages_to_chat_completions",
    "chat_completion_to_messages",
    "convert_stop_reason",
    "sanitize_schema",
    "tool_parameters",
    "ChatToMessagesStreamAdapter",
    "StreamPhase",
    "StreamState",
    "create_stream_state",
    "generate_message_id",
    "initial_events",
    "translate_chunk",
]
