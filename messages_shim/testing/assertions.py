"""Assertion and parsing helpers for translated Messages output."""

from __future__ import annotations

import json
from typing import Any


def parse_sse_events(raw: bytes | str | list[bytes]) -> list[dict[str, Any]]:
    """Parse named SSE events into ``{"event": name, "data": payload}`` dicts."""
    if isinstance(raw, list):
        raw = b"".join(raw)
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw

    events = []
    for frame in text.split("\n\n"):
        lines = [line for line in frame.split("\n") if line]
        event_line = next((line for line in lines if line.startswith("event: ")), None)
        data_line = next((line for line in lines if line.startswith("data: ")), None)
        if event_line and data_line:
            events.append({
                "event": event_line[len("event: "):],
                "data": json.loads(data_line[len("data: "):]),
            })
    return events


def assert_anthropic_message_valid(response: dict[str, Any]) -> None:
    """Validate a non-streaming Anthropic message response.

    Raises:
        AssertionError: If structure is invalid
    """
    assert response.get("type") == "message", f"Expected type 'message', got {response.get('type')}"
    assert response.get("role") == "assistant", "Message role should be assistant"
    assert str(response.get("id", "")).startswith("msg_"), "Message id should start with msg_"
    assert isinstance(response.get("content"), list), "content should be a list"
    assert len(response["content"]) > 0, "content must not be empty"
    for block in response["content"]:
        assert block.get("type") in ("text", "tool_use"), f"Unexpected block type {block.get('type')}"
    usage = response.get("usage")
    assert isinstance(usage, dict), "usage should be a dict"
    assert "input_tokens" in usage and "output_tokens" in usage, "usage missing token counts"


def assert_anthropic_sse_valid(events: list[dict[str, Any]]) -> None:
    """Validate a complete Anthropic SSE event sequence.

    Accepts either parsed event payloads or ``parse_sse_events`` output.
    Checks the envelope order, that every block index is started once,
    receives deltas only while open, is stopped once, and that indices are
    contiguous from 0.

    Raises:
        AssertionError: If structure is invalid
    """
    payloads = [e["data"] if "data" in e and "event" in e else e for e in events]
    assert len(payloads) > 0, "Events list is empty"

    types = [p["type"] for p in payloads]
    assert types[0] == "message_start", "First event should be message_start"
    assert types[1] == "ping", "Second event should be ping"
    assert types[-1] == "message_stop", "Last event should be message_stop"
    assert types[-2] == "message_delta", "message_delta should precede message_stop"
    assert types.count("message_delta") == 1, "Expected exactly one message_delta"

    open_blocks: set[int] = set()
    started: list[int] = []
    stopped: set[int] = set()
    for payload in payloads:
        event_type = payload.get("type")
        index = payload.get("index")

        if event_type == "content_block_start":
            assert index not in started, f"content_block {index} started twice"
            open_blocks.add(index)
            started.append(index)

        elif event_type == "content_block_delta":
            assert index in open_blocks, f"content_block_delta for closed block {index}"

        elif event_type == "content_block_stop":
            assert index in open_blocks, f"content_block_stop for never-opened block {index}"
            open_blocks.discard(index)
            stopped.add(index)

    assert not open_blocks, f"Blocks never stopped: {sorted(open_blocks)}"
    assert started == list(range(len(started))), f"Block indices not contiguous: {started}"
