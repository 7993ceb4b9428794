"""Agent loop that chats with the shim over its own Messages API."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

import httpx
from rich.console import Console

from ..core.exceptions import ProxyError
from ..core.sse import extract_sse_data
from .tools import ChatTool

logger = logging.getLogger("messages-shim")

TOOL_INPUT_PREVIEW_CHARS = 200
TOOL_RESULT_PREVIEW_CHARS = 300


class ChatError(ProxyError):
    """A chat turn failed: error reply, error event or truncated stream."""


def _error_message(body: bytes, status_code: int) -> str:
    try:
        error = json.loads(body).get("error") or {}
        return f"{error.get('type', 'error')}: {error.get('message', '')} (HTTP {status_code})"
    except (ValueError, AttributeError):
        return f"HTTP {status_code}: {body[:200].decode('utf-8', 'replace')}"


class ChatSession:
    """Conversation state plus the tool-use loop for one chat client.

    Each user message is sent as a streaming ``/v1/messages`` request. Text
    deltas are printed as they arrive. When the reply stops for tool use the
    requested tools run locally, their results are appended as a user turn,
    and the conversation continues until the model answers without tools or
    ``max_turns`` requests have been made.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        console: Console,
        *,
        model: str,
        max_tokens: int = 4096,
        tools: Iterable[ChatTool] = (),
        max_turns: int = 20,
    ):
        self.client = client
        self.console = console
        self.model = model
        self.max_tokens = max_tokens
        self.tools: dict[str, ChatTool] = {tool.name: tool for tool in tools}
        self.max_turns = max_turns
        self.history: list[dict[str, Any]] = []

    def clear(self) -> None:
        self.history.clear()

    def _payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self.history,
            "stream": True,
        }
        if self.tools:
            payload["tools"] = [tool.to_anthropic() for tool in self.tools.values()]
        return payload

    async def send(self, text: str) -> Optional[dict[str, Any]]:
        """Send one user message and run the tool loop to completion.

        Returns the last assistant reply. On failure the turns of this
        exchange are removed from the history and the error is raised.
        """
        checkpoint = len(self.history)
        self.history.append({"role": "user", "content": text})
        reply: Optional[dict[str, Any]] = None
        try:
            for _ in range(self.max_turns):
                reply = await self._request_turn()
                self.history.append({"role": "assistant", "content": reply["content"]})

                tool_uses = [block for block in reply["content"] if block.get("type") == "tool_use"]
                if reply["stop_reason"] != "tool_use" or not tool_uses:
                    return reply
                self.history.append({
                    "role": "user",
                    "content": [self._run_tool(block) for block in tool_uses],
                })
        except BaseException:
            del self.history[checkpoint:]
            raise

        self.console.print(f"Stopped after {self.max_turns} turns", style="red", markup=False)
        return reply

    async def _request_turn(self) -> dict[str, Any]:
        async with self.client.stream("POST", "/v1/messages", json=self._payload()) as response:
            if response.status_code != 200:
                body = await response.aread()
                raise ChatError(_error_message(body, response.status_code))
            reply = await self._read_stream(response.aiter_lines())
        self.console.print()
        return reply

    async def _read_stream(self, lines) -> dict[str, Any]:
        blocks: dict[int, dict[str, Any]] = {}
        partial_json: dict[int, str] = {}
        stop_reason: Optional[str] = None
        stopped = False

        async for line in lines:
            data = extract_sse_data(line)
            if not data:
                continue
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Chat: skipping unparsable event data: {data[:100]!r}")
                continue

            event_type = event.get("type")
            if event_type == "content_block_start":
                index = event["index"]
                blocks[index] = dict(event["content_block"])
                if blocks[index].get("type") == "tool_use":
                    partial_json[index] = ""
            elif event_type == "content_block_delta":
                index = event["index"]
                delta = event["delta"]
                if delta.get("type") == "text_delta":
                    blocks[index]["text"] = blocks[index].get("text", "") + delta["text"]
                    self.console.print(delta["text"], end="", markup=False, highlight=False)
                elif delta.get("type") == "input_json_delta":
                    partial_json[index] = partial_json.get(index, "") + delta["partial_json"]
            elif event_type == "content_block_stop":
                index = event["index"]
                if index in partial_json:
                    blocks[index]["input"] = _parse_input(partial_json.pop(index))
            elif event_type == "message_delta":
                stop_reason = event.get("delta", {}).get("stop_reason")
            elif event_type == "message_stop":
                stopped = True
            elif event_type == "error":
                error = event.get("error") or {}
                raise ChatError(f"{error.get('type', 'error')}: {error.get('message', '')}")

        if not stopped:
            raise ChatError("Stream ended before message_stop")
        content = [blocks[index] for index in sorted(blocks)]
        return {"content": content or [{"type": "text", "text": ""}], "stop_reason": stop_reason}

    def _run_tool(self, block: dict[str, Any]) -> dict[str, Any]:
        name = block.get("name", "")
        tool_input = block.get("input", {})

        self.console.print()
        self.console.print(f"  ▶ {name}", style="yellow", markup=False, highlight=False)
        if tool_input:
            shown = json.dumps(tool_input, indent=2, ensure_ascii=False)
            if len(shown) > TOOL_INPUT_PREVIEW_CHARS:
                shown = shown[:TOOL_INPUT_PREVIEW_CHARS] + "..."
            for line in shown.split("\n"):
                self.console.print(f"    {line}", style="dim", markup=False, highlight=False)

        tool = self.tools.get(name)
        if tool is None:
            text, is_error = f"Error: unknown tool {name!r}", True
        else:
            text, is_error = tool.run(tool_input)

        preview = text if len(text) <= TOOL_RESULT_PREVIEW_CHARS else text[:TOOL_RESULT_PREVIEW_CHARS] + "..."
        first_line = preview.split("\n")[0]
        self.console.print(
            f"    ← {first_line}",
            style="red" if is_error else "bright_black",
            markup=False,
            highlight=False,
        )

        result: dict[str, Any] = {"type": "tool_result", "tool_use_id": block.get("id"), "content": text}
        if is_error:
            result["is_error"] = True
        return result


def _parse_input(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Chat: unparsable tool input, using {{}}: {raw[:100]!r}")
        return {}
