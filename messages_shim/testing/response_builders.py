"""Builders for Anthropic requests and OpenAI-style provider replies."""

from __future__ import annotations

import json
import uuid
from typing import Any


def build_messages_request(
    messages: list[dict[str, Any]],
    *,
    model: str = "claude-test",
    max_tokens: int = 1024,
    system: str | list[dict[str, Any]] | None = None,
    tools: list[dict[str, Any]] | None = None,
    tool_choice: dict[str, Any] | None = None,
    stream: bool = False,
    temperature: float | None = None,
    top_p: float | None = None,
    stop_sequences: list[str] | None = None,
) -> dict[str, Any]:
    """Build a valid Anthropic messages request.

    Args:
        messages: List of message dicts
        model: Model name
        max_tokens: Maximum tokens to generate
        system: Optional system prompt
        tools: Optional tools list
        tool_choice: Optional tool choice
        stream: Whether to stream
        temperature: Optional temperature
        top_p: Optional top_p
        stop_sequences: Optional stop sequences

    Returns:
        Complete Anthropic messages request dict
    """
    request: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": messages,
    }

    if system is not None:
        request["system"] = system
    if tools:
        request["tools"] = tools
    if tool_choice is not None:
        request["tool_choice"] = tool_choice
    if stream:
        request["stream"] = True
    if temperature is not None:
        request["temperature"] = temperature
    if top_p is not None:
        request["top_p"] = top_p
    if stop_sequences:
        request["stop_sequences"] = stop_sequences

    return request


def _tool_call_arguments(tc: dict[str, Any]) -> str:
    args = tc.get("arguments", {})
    return json.dumps(args) if isinstance(args, dict) else str(args)


def build_chat_response(
    content: str | None,
    *,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = "stop",
    usage: dict[str, int] | None = None,
    model: str = "fake-model",
) -> dict[str, Any]:
    """Build a complete OpenAI chat completion response.

    ``tool_calls`` entries are ``{"id", "name", "arguments"}`` where
    arguments may be a dict (JSON encoded here) or a raw string.
    """
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {
                "id": tc.get("id", f"call_{uuid.uuid4().hex[:8]}"),
                "type": "function",
                "function": {
                    "name": tc.get("name", "unknown"),
                    "arguments": _tool_call_arguments(tc),
                },
            }
            for tc in tool_calls
        ]

    return {
        "id": f"chatcmpl-{uuid.uuid4().hex[:8]}",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": finish_reason,
            }
        ],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def build_chunk(
    delta: dict[str, Any] | None = None,
    *,
    finish_reason: str | None = None,
    usage: dict[str, int] | None = None,
    completion_id: str = "chatcmpl-test",
    model: str = "fake-model",
) -> dict[str, Any]:
    """Build a single OpenAI chat completion chunk."""
    chunk: dict[str, Any] = {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "model": model,
        "choices": [
            {"index": 0, "delta": delta or {}, "finish_reason": finish_reason}
        ],
    }
    if usage:
        chunk["usage"] = usage
    return chunk


def build_stream_chunks(
    content: str = "",
    *,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str = "stop",
    usage: dict[str, int] | None = None,
    piece_size: int = 4,
    model: str = "fake-model",
) -> list[dict[str, Any]]:
    """Build the chunk sequence a provider would stream for a reply.

    Text is split into ``piece_size`` character deltas. Each tool call opens
    with a chunk carrying its id and name, followed by its arguments split
    the same way. The last chunk carries the finish reason and usage.
    """
    completion_id = f"chatcmpl-{uuid.uuid4().hex[:8]}"
    chunks = [
        build_chunk({"role": "assistant", "content": ""}, completion_id=completion_id, model=model)
    ]

    for start in range(0, len(content), piece_size):
        chunks.append(build_chunk(
            {"content": content[start:start + piece_size]},
            completion_id=completion_id,
            model=model,
        ))

    for position, tc in enumerate(tool_calls or []):
        chunks.append(build_chunk(
            {"tool_calls": [{
                "index": position,
                "id": tc.get("id", f"call_{uuid.uuid4().hex[:8]}"),
                "type": "function",
                "function": {"name": tc.get("name", "unknown"), "arguments": ""},
            }]},
            completion_id=completion_id,
            model=model,
        ))
        args = _tool_call_arguments(tc)
        for start in range(0, len(args), piece_size):
            chunks.append(build_chunk(
                {"tool_calls": [{
                    "index": position,
                    "function": {"arguments": args[start:start + piece_size]},
                }]},
                completion_id=completion_id,
                model=model,
            ))

    chunks.append(build_chunk(
        {},
        finish_reason=finish_reason,
        usage=usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        completion_id=completion_id,
        model=model,
    ))
    return chunks
