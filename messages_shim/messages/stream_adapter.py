"""Stream translation from OpenAI Chat Completions chunks to Anthropic Messages events.

The provider emits one opaque delta stream; Anthropic clients expect explicit
start/delta/stop framing per content block, each block numbered in emission
order. ``translate_chunk`` is the transition function that bridges the two:
it consumes one parsed provider chunk, updates a ``StreamState`` and returns
the Anthropic events that chunk produces.

OpenAI Chat Completion chunks:
    data: {"choices":[{"delta":{"role":"assistant"},"index":0}]}
    data: {"choices":[{"delta":{"content":"Hello"},"index":0}]}
    data: {"choices":[{"delta":{"tool_calls":[...]},"index":0}]}
    data: {"choices":[{"delta":{},"finish_reason":"stop","index":0}]}
    data: [DONE]

Anthropic Messages events:
    event: message_start
    data: {"type":"message_start","message":{...}}

    event: ping
    data: {"type":"ping"}

    event: content_block_start
    data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hello"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":10}}

    event: message_stop
    data: {"type":"message_stop"}
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Optional

from ..core.exceptions import TransportError, UpstreamError
from ..core.sse import format_sse_event
from .translator import convert_stop_reason

logger = logging.getLogger("messages-shim")


class StreamPhase(str, Enum):
    """Reply-level lifecycle of a translated stream."""

    CREATED = "created"
    STREAMING = "streaming"
    FINISHED = "finished"


@dataclass
class ToolCallState:
    """A provider tool call tracked by its position in the delta stream.

    ``block_index`` is assigned when the content_block_start event goes out,
    so a tool call that never receives a name never takes a block index.
    """

    id: str
    name: str = ""
    arguments: str = ""
    block_index: Optional[int] = None
    closed: bool = False

    @property
    def started(self) -> bool:
        return self.block_index is not None


@dataclass
class StreamState:
    """Mutable state for one streamed reply."""

    message_id: str
    model: str
    phase: StreamPhase = StreamPhase.CREATED
    current_index: int = -1
    text_open: bool = False
    text_buffer: str = ""
    tool_calls: dict[int, ToolCallState] = field(default_factory=dict)
    content_blocks: list[dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def create_stream_state(model: str, message_id: Optional[str] = None) -> StreamState:
    """Create the state for a new streamed reply echoing ``model``."""
    return StreamState(message_id=message_id or generate_message_id(), model=model)


# -----------------------------------------------------------------------------
# Event builders
# -----------------------------------------------------------------------------


def message_start_event(state: StreamState) -> dict[str, Any]:
    return {
        "type": "message_start",
        "message": {
            "id": state.message_id,
            "type": "message",
            "role": "assistant",
            "model": state.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": state.input_tokens, "output_tokens": 0},
        },
    }


def ping_event() -> dict[str, Any]:
    return {"type": "ping"}


def content_block_start_event(index: int, content_block: dict[str, Any]) -> dict[str, Any]:
    return {"type": "content_block_start", "index": index, "content_block": content_block}


def content_block_delta_event(index: int, delta: dict[str, Any]) -> dict[str, Any]:
    return {"type": "content_block_delta", "index": index, "delta": delta}


def content_block_stop_event(index: int) -> dict[str, Any]:
    return {"type": "content_block_stop", "index": index}


def message_delta_event(stop_reason: str, output_tokens: int) -> dict[str, Any]:
    return {
        "type": "message_delta",
        "delta": {"stop_reason": stop_reason, "stop_sequence": None},
        "usage": {"output_tokens": output_tokens},
    }


def message_stop_event() -> dict[str, Any]:
    return {"type": "message_stop"}


def error_event(message: str, error_type: str = "api_error") -> dict[str, Any]:
    return {"type": "error", "error": {"type": error_type, "message": message}}


# -----------------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------------


def initial_events(state: StreamState) -> list[dict[str, Any]]:
    """Return the events sent before any provider chunk: message_start, ping."""
    if state.phase is not StreamPhase.CREATED:
        raise RuntimeError(f"Stream {state.message_id} already started")
    state.phase = StreamPhase.STREAMING
    return [message_start_event(state), ping_event()]


def _open_text_block(state: StreamState) -> dict[str, Any]:
    state.current_index += 1
    state.text_open = True
    state.text_buffer = ""
    return content_block_start_event(state.current_index, {"type": "text", "text": ""})


def _close_text_block(state: StreamState) -> dict[str, Any]:
    index = state.current_index
    state.content_blocks.append({"type": "text", "text": state.text_buffer})
    state.text_open = False
    state.text_buffer = ""
    return content_block_stop_event(index)


def _parse_arguments(tool: ToolCallState) -> Any:
    if not tool.arguments:
        return {}
    try:
        return json.loads(tool.arguments)
    except json.JSONDecodeError as exc:
        # The client already saw the raw fragments; finalize with an empty input
        logger.warning(
            f"Tool call {tool.id}: unparsable arguments for '{tool.name}' "
            f"({exc.msg}), finalizing input as {{}}: {tool.arguments[:100]!r}"
        )
        return {}


def _token_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _process_tool_call_delta(state: StreamState, tc: Mapping[str, Any]) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    position = tc.get("index", 0)
    function = tc.get("function") or {}
    call_id = tc.get("id")

    if (
        isinstance(position, bool)
        or not isinstance(position, int)
        or not isinstance(function, Mapping)
        or (call_id is not None and not isinstance(call_id, str))
    ):
        logger.warning(f"Stream {state.message_id}: skipping malformed tool call delta: {tc!r:.200}")
        return events

    name = function.get("name")
    fragment = function.get("arguments") or ""
    if (name is not None and not isinstance(name, str)) or not isinstance(fragment, str):
        logger.warning(f"Stream {state.message_id}: skipping malformed tool call delta: {tc!r:.200}")
        return events

    tool = state.tool_calls.get(position)
    if tool is None:
        if not call_id:
            logger.debug(f"Ignoring delta for unregistered tool call at position {position}")
            return events
        tool = ToolCallState(id=call_id, name=name or "")
        state.tool_calls[position] = tool
    elif name:
        tool.name = name

    if not tool.started:
        tool.arguments += fragment
        if tool.id and tool.name:
            state.current_index += 1
            tool.block_index = state.current_index
            events.append(content_block_start_event(
                tool.block_index,
                {"type": "tool_use", "id": tool.id, "name": tool.name, "input": {}},
            ))
            # Fragments that arrived before the name are flushed in one delta
            if tool.arguments:
                events.append(content_block_delta_event(
                    tool.block_index,
                    {"type": "input_json_delta", "partial_json": tool.arguments},
                ))
        return events

    if fragment:
        tool.arguments += fragment
        events.append(content_block_delta_event(
            tool.block_index,
            {"type": "input_json_delta", "partial_json": fragment},
        ))
    return events


def _finish(state: StreamState, finish_reason: str) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []

    if state.text_open:
        events.append(_close_text_block(state))

    for tool in state.tool_calls.values():
        if not tool.started or tool.closed:
            continue
        events.append(content_block_stop_event(tool.block_index))
        tool.closed = True
        state.content_blocks.append({
            "type": "tool_use",
            "id": tool.id,
            "name": tool.name,
            "input": _parse_arguments(tool),
        })

    has_tool_calls = bool(state.tool_calls)
    state.stop_reason = convert_stop_reason(finish_reason, has_tool_calls) or "end_turn"
    state.phase = StreamPhase.FINISHED

    events.append(message_delta_event(state.stop_reason, state.output_tokens))
    events.append(message_stop_event())
    return events


def translate_chunk(state: StreamState, chunk: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Apply one provider chunk to ``state`` and return the events it produces.

    Chunks must be applied in arrival order. Text and tool-call deltas are
    handled before the finish signal of the same chunk, so a chunk carrying
    both still closes every block it opened. Parts of a chunk with an
    unexpected shape are skipped with a warning; the rest is still applied.
    """
    if state.phase is StreamPhase.FINISHED:
        logger.warning(f"Stream {state.message_id}: chunk received after finish signal")

    if not isinstance(chunk, Mapping):
        logger.warning(f"Stream {state.message_id}: skipping non-object chunk: {chunk!r:.200}")
        return []

    usage = chunk.get("usage")
    if isinstance(usage, Mapping):
        state.input_tokens = _token_count(usage.get("prompt_tokens")) or state.input_tokens
        state.output_tokens = _token_count(usage.get("completion_tokens")) or state.output_tokens

    events: list[dict[str, Any]] = []
    choices = chunk.get("choices") or []
    if not isinstance(choices, list) or not choices:
        return events

    choice = choices[0]
    if not isinstance(choice, Mapping):
        logger.warning(f"Stream {state.message_id}: skipping malformed choice: {choice!r:.200}")
        return events

    delta = choice.get("delta") or {}
    if not isinstance(delta, Mapping):
        logger.warning(f"Stream {state.message_id}: skipping malformed delta: {delta!r:.200}")
        delta = {}

    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        logger.warning(f"Stream {state.message_id}: skipping non-text content delta: {content!r:.200}")
        content = None
    if content:
        if not state.text_open:
            events.append(_open_text_block(state))
        state.text_buffer += content
        events.append(content_block_delta_event(
            state.current_index,
            {"type": "text_delta", "text": content},
        ))

    tool_calls = delta.get("tool_calls")
    if tool_calls and not isinstance(tool_calls, list):
        logger.warning(f"Stream {state.message_id}: skipping malformed tool_calls: {tool_calls!r:.200}")
        tool_calls = None
    if tool_calls:
        # An empty text block stays open here; only the finish signal closes it
        if state.text_open and state.text_buffer:
            events.append(_close_text_block(state))
        for tc in tool_calls:
            if not isinstance(tc, Mapping):
                logger.warning(f"Stream {state.message_id}: skipping malformed tool call delta: {tc!r:.200}")
                continue
            events.extend(_process_tool_call_delta(state, tc))

    finish_reason = choice.get("finish_reason")
    if finish_reason is not None and not isinstance(finish_reason, str):
        logger.warning(f"Stream {state.message_id}: unexpected finish_reason {finish_reason!r}, treating as stop")
        finish_reason = "stop"
    if finish_reason:
        events.extend(_finish(state, finish_reason))

    return events


def build_final_message(state: StreamState) -> dict[str, Any]:
    """Assemble the reply streamed so far as a non-streaming message object."""
    content = list(state.content_blocks)
    if state.text_open:
        content.append({"type": "text", "text": state.text_buffer})
    for tool in state.tool_calls.values():
        if tool.started and not tool.closed:
            content.append({
                "type": "tool_use",
                "id": tool.id,
                "name": tool.name,
                "input": _parse_arguments(tool),
            })

    return {
        "id": state.message_id,
        "type": "message",
        "role": "assistant",
        "model": state.model,
        "content": content or [{"type": "text", "text": ""}],
        "stop_reason": state.stop_reason,
        "stop_sequence": None,
        "usage": {
            "input_tokens": state.input_tokens,
            "output_tokens": state.output_tokens,
        },
    }


# -----------------------------------------------------------------------------
# SSE adapter
# -----------------------------------------------------------------------------


class ChatToMessagesStreamAdapter:
    """Converts a provider chunk stream to Anthropic Messages SSE bytes.

    The adapter owns one ``StreamState`` and is single use: it frames the
    initial events, the events of every chunk in order, and an ``error`` event
    if the provider stream fails or ends without a finish signal.
    """

    def __init__(self, message_id: str, model: str):
        """Initialize the stream adapter.

        Args:
            message_id: The message ID to use (e.g., "msg_xxx")
            model: Model name echoed to the client
        """
        self.state = create_stream_state(model, message_id)
        self.chunk_count = 0
        self.event_count = 0

    @property
    def finished(self) -> bool:
        return self.state.phase is StreamPhase.FINISHED

    def _format(self, event: dict[str, Any]) -> bytes:
        self.event_count += 1
        return format_sse_event(event["type"], event)

    async def adapt_stream(
        self,
        chunks: AsyncIterator[Mapping[str, Any]],
    ) -> AsyncIterator[bytes]:
        """Transform parsed provider chunks into Anthropic Messages SSE events.

        Args:
            chunks: Parsed OpenAI chat completion chunks, in arrival order

        Yields:
            Anthropic Messages API SSE events as bytes
        """
        for event in initial_events(self.state):
            yield self._format(event)

        try:
            async for chunk in chunks:
                self.chunk_count += 1
                for event in translate_chunk(self.state, chunk):
                    yield self._format(event)
        except (UpstreamError, TransportError) as exc:
            logger.error(
                f"Stream {self.state.message_id} failed after {self.chunk_count} chunks: {exc.message}"
            )
            yield self._format(error_event(exc.message))
            return

        if not self.finished:
            logger.warning(
                f"Stream {self.state.message_id} ended after {self.chunk_count} chunks "
                f"without a finish signal"
            )
            yield self._format(error_event("Provider stream ended before completion"))
            return

        logger.debug(
            f"Stream {self.state.message_id} completed: chunks={self.chunk_count}, "
            f"events={self.event_count}, content_blocks={len(self.state.content_blocks)}"
        )

    def build_final_message(self) -> dict[str, Any]:
        """Build the final message object (for logging and introspection)."""
        return build_final_message(self.state)
