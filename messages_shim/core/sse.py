"""SSE (Server-Sent Events) framing, parsing and error detection."""

import json
from typing import Any, Optional

DONE_SENTINEL = "[DONE]"


def format_sse_event(event_type: str, data: dict[str, Any]) -> bytes:
    """Frame a named SSE event as ``event: <type>\\ndata: <json>\\n\\n``."""
    json_str = json.dumps(data, ensure_ascii=False)
    return f"event: {event_type}\ndata: {json_str}\n\n".encode("utf-8")


def extract_sse_data(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


def detect_sse_stream_error(parsed: Any) -> Optional[str]:
    """
    Check whether a parsed stream payload is an error event.

    Returns an error message if an error is detected, None otherwise.

    Detects patterns like:
    - MiniMax: {"type":"error","error":{...}}
    - Generic: {"error":{...}}
    """
    if not isinstance(parsed, dict):
        return None

    # Pattern 1: MiniMax-style {"type":"error", "error":{...}}
    if parsed.get("type") == "error":
        error_obj = parsed.get("error") or {}
        if isinstance(error_obj, dict):
            error_msg = error_obj.get("message") or str(error_obj)
            http_code = error_obj.get("http_code", "unknown")
        else:
            error_msg = str(error_obj) or "unknown error"
            http_code = "unknown"
        return f"SSE stream error: {error_msg} (http_code={http_code})"

    # Pattern 2: Generic OpenAI-style {"error":{...}} in stream
    error_obj = parsed.get("error")
    if isinstance(error_obj, dict):
        error_msg = error_obj.get("message") or str(error_obj)
        error_type = error_obj.get("type", "unknown")
        return f"SSE stream error: {error_msg} (type={error_type})"

    return None
