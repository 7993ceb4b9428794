"""Anthropic <-> OpenAI Messages translation.

This module translates between Anthropic Messages API format and OpenAI Chat
Completions API format, so Anthropic-format requests can be served by an
OpenAI-compatible completion provider.

Key mappings:
- Anthropic system (top-level) -> OpenAI system message
- Anthropic content blocks -> OpenAI content parts / tool_calls / tool messages
- Anthropic tools -> OpenAI functions/tools (schemas sanitized)
- Anthropic tool_choice -> OpenAI tool_choice + parallel_tool_calls

Reference:
- Anthropic Messages API: https://docs.anthropic.com/en/api/messages
- OpenAI Chat Completions: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Mapping, Optional

from ..core.exceptions import EmptyReplyError, MalformedToolArgumentsError
from .schema import tool_parameters

logger = logging.getLogger("messages-shim")

MAX_TOKENS_FIELDS = ("max_completion_tokens", "max_tokens")

_STOP_REASONS = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "content_filter": "end_turn",
}


def _convert_anthropic_image_to_openai(block: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    """Convert Anthropic image block to OpenAI image_url content part.

    Anthropic format:
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "..."}}
        {"type": "image", "source": {"type": "url", "url": "https://..."}}

    OpenAI format:
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,..."}}
        {"type": "image_url", "image_url": {"url": "https://..."}}

    Returns None when the source carries neither inline data nor a URL.
    """
    source = block.get("source") or {}
    source_type = source.get("type", "")

    if source_type == "base64" and source.get("data") and source.get("media_type"):
        url = f"data:{source['media_type']};base64,{source['data']}"
    elif source_type == "url" and source.get("url"):
        url = source["url"]
    else:
        logger.debug(f"Dropping image block with unusable source type: {source_type!r}")
        return None

    return {"type": "image_url", "image_url": {"url": url}}


def _convert_anthropic_document_to_openai(block: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    """Convert Anthropic document block to OpenAI content part.

    OpenAI doesn't have native document support, so image documents become
    image parts and everything else becomes a text placeholder.
    """
    source = block.get("source") or {}
    media_type = source.get("media_type", "application/pdf")
    doc_name = block.get("name") or block.get("title") or "document"

    if media_type.startswith("image/"):
        return _convert_anthropic_image_to_openai({"type": "image", "source": source})

    return {"type": "text", "text": f"[Document: {doc_name} ({media_type})]"}


def _serialize_tool_input(input_data: Any) -> str:
    """Serialize tool input to a JSON string for OpenAI format."""
    return json.dumps(input_data, ensure_ascii=False)


def _tool_result_text(result_content: Any) -> str:
    """Flatten tool_result content (string or content blocks) to text."""
    if isinstance(result_content, str):
        return result_content
    if isinstance(result_content, list):
        return "\n".join(
            block.get("text", "")
            for block in result_content
            if isinstance(block, Mapping) and block.get("type") == "text"
        )
    return str(result_content) if result_content else ""


def _convert_tool_result(block: Mapping[str, Any]) -> dict[str, Any]:
    content_str = _tool_result_text(block.get("content"))
    if block.get("is_error"):
        content_str = f"Error: {content_str}"
    return {
        "role": "tool",
        "tool_call_id": block.get("tool_use_id", ""),
        "content": content_str,
    }


def _convert_user_blocks(blocks: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Convert a user turn's content blocks to OpenAI messages.

    Every tool_result becomes its own tool message; the remaining blocks are
    merged into a single user message placed after them.
    """
    messages = [
        _convert_tool_result(block)
        for block in blocks
        if block.get("type") == "tool_result"
    ]

    parts: list[dict[str, Any]] = []
    for block in blocks:
        block_type = block.get("type", "")
        part: Optional[dict[str, Any]] = None

        if block_type == "tool_result":
            continue
        elif block_type == "text":
            part = {"type": "text", "text": block.get("text", "")}
        elif block_type == "image":
            part = _convert_anthropic_image_to_openai(block)
        elif block_type == "document":
            part = _convert_anthropic_document_to_openai(block)
        elif "text" in block:
            # Unknown block type - pass through as text if possible
            part = {"type": "text", "text": block["text"]}
        else:
            logger.warning(f"Unknown content block type: {block_type}")

        if part is not None:
            parts.append(part)

    # Simplify content if it's just text
    if len(parts) == 1 and parts[0]["type"] == "text":
        messages.append({"role": "user", "content": parts[0]["text"]})
    elif parts:
        messages.append({"role": "user", "content": parts})

    return messages


def _convert_assistant_blocks(blocks: list[Mapping[str, Any]]) -> dict[str, Any]:
    """Convert an assistant turn's content blocks to one OpenAI message."""
    text_parts: list[str] = []
    tool_calls: list[dict[str, Any]] = []

    for block in blocks:
        block_type = block.get("type", "")

        if block_type == "text":
            text_parts.append(block.get("text", ""))
        elif block_type == "tool_use":
            tool_calls.append({
                "id": block.get("id") or f"call_{uuid.uuid4().hex[:8]}",
                "type": "function",
                "function": {
                    "name": block.get("name", ""),
                    "arguments": _serialize_tool_input(block.get("input", {})),
                },
            })
        elif block_type in ("thinking", "redacted_thinking"):
            # Internal reasoning is not replayed to the provider
            logger.debug(f"Dropping {block_type} block during translation")
        else:
            logger.warning(f"Unknown assistant content block type: {block_type}")

    message: dict[str, Any] = {
        "role": "assistant",
        "content": "\n".join(text_parts) if text_parts else None,
    }
    if tool_calls:
        message["tool_calls"] = tool_calls
    return message


def _convert_message(msg: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Convert one Anthropic message to zero or more OpenAI messages."""
    role = msg.get("role", "user")
    content = msg.get("content")

    if role not in ("user", "assistant"):
        logger.warning(f"Skipping message with unsupported role: {role}")
        return []

    # Content can be string or list of content blocks
    if isinstance(content, str):
        return [{"role": role, "content": content}]

    if not isinstance(content, list):
        # Fallback for unexpected content type
        return [{"role": role, "content": str(content) if content else ""}]

    blocks = [block for block in content if isinstance(block, Mapping)]
    if role == "assistant":
        return [_convert_assistant_blocks(blocks)]
    return _convert_user_blocks(blocks)


def _convert_system_to_openai(system: str | list[Mapping[str, Any]] | None) -> dict[str, Any] | None:
    """Convert Anthropic top-level system to OpenAI system message.

    Anthropic allows system as string or array of text blocks.
    OpenAI expects a single system message.
    """
    if not system:
        return None

    if isinstance(system, str):
        return {"role": "system", "content": system}

    text_parts: list[str] = []
    for block in system:
        if block.get("type", "text") == "text":
            text_parts.append(block.get("text", ""))
        else:
            # Non-text blocks in system are unusual - log and skip
            logger.warning(f"Non-text block in system parameter: {block.get('type')}")

    if text_parts:
        return {"role": "system", "content": "\n".join(text_parts)}

    return None


def _convert_tool_choice(tool_choice: str | Mapping[str, Any] | None) -> str | dict[str, Any]:
    """Convert Anthropic tool_choice to OpenAI format.

    Anthropic: {"type": "auto" | "any" | "none"} | {"type": "tool", "name": "..."}
    OpenAI: "auto" | "required" | "none" | {"type": "function", "function": {"name": "..."}}

    Absent or unrecognised choices fall back to "auto".
    """
    if tool_choice is None:
        return "auto"

    if isinstance(tool_choice, str):
        choice_type = tool_choice
    else:
        choice_type = tool_choice.get("type", "")

    if choice_type == "any":
        return "required"  # any = must use one of the tools
    if choice_type == "none":
        return "none"
    if choice_type == "tool" and isinstance(tool_choice, Mapping):
        return {
            "type": "function",
            "function": {"name": tool_choice.get("name", "")},
        }
    return "auto"


def _parallel_tool_calls(tool_choice: str | Mapping[str, Any] | None) -> bool:
    if isinstance(tool_choice, Mapping):
        return not bool(tool_choice.get("disable_parallel_tool_use", False))
    return True


def _convert_tools(tools: list[Mapping[str, Any]] | None) -> list[dict[str, Any]] | None:
    """Convert Anthropic tools to OpenAI format.

    Anthropic: {"name": "...", "description": "...", "input_schema": {...}}
    OpenAI: {"type": "function", "function": {"name": "...", "description": "...", "parameters": {...}}}
    """
    if not tools:
        return None

    openai_tools = []
    for tool in tools:
        function: dict[str, Any] = {"name": tool.get("name", "")}
        if tool.get("description") is not None:
            function["description"] = tool["description"]
        function["parameters"] = tool_parameters(tool.get("input_schema"))
        openai_tools.append({"type": "function", "function": function})

    return openai_tools


def messages_to_chat_completions(
    payload: Mapping[str, Any],
    model: str,
    *,
    max_tokens_field: str = "max_completion_tokens",
) -> dict[str, Any]:
    """Translate Anthropic Messages request to OpenAI Chat Completions.

    Args:
        payload: Anthropic Messages API request body (already validated)
        model: Provider model identifier; the client's model is not forwarded
        max_tokens_field: Provider field that receives ``max_tokens``

    Returns:
        OpenAI Chat Completions API request body

    Raises:
        SchemaTooDeepError: If a tool schema nests too deeply to sanitize.
    """
    if max_tokens_field not in MAX_TOKENS_FIELDS:
        raise ValueError(f"Unsupported max tokens field: {max_tokens_field}")

    openai_messages: list[dict[str, Any]] = []

    system_message = _convert_system_to_openai(payload.get("system"))
    if system_message:
        openai_messages.append(system_message)

    for msg in payload.get("messages") or []:
        openai_messages.extend(_convert_message(msg))

    result: dict[str, Any] = {
        "model": model,
        "messages": openai_messages,
    }

    if payload.get("max_tokens") is not None:
        result[max_tokens_field] = payload["max_tokens"]

    for param in ("temperature", "top_p"):
        if payload.get(param) is not None:
            result[param] = payload[param]

    if payload.get("stop_sequences") is not None:
        result["stop"] = payload["stop_sequences"]

    # top_k is Anthropic-specific, OpenAI doesn't support it directly
    if "top_k" in payload:
        logger.debug(f"top_k={payload['top_k']} is not supported by the provider, ignoring")

    result["stream"] = bool(payload.get("stream", False))

    tools = _convert_tools(payload.get("tools"))
    if tools:
        tool_choice = payload.get("tool_choice")
        result["tools"] = tools
        result["tool_choice"] = _convert_tool_choice(tool_choice)
        result["parallel_tool_calls"] = _parallel_tool_calls(tool_choice)

    # Metadata - OpenAI uses user field for tracking
    metadata = payload.get("metadata")
    if isinstance(metadata, Mapping) and metadata.get("user_id"):
        result["user"] = metadata["user_id"]

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"Translated request: input_messages={len(payload.get('messages') or [])}, "
            f"output_messages={len(openai_messages)}, tools={len(tools or [])}, "
            f"tool_choice={result.get('tool_choice')}, stream={result['stream']}"
        )

    return result


def convert_stop_reason(finish_reason: str | None, has_tool_calls: bool = False) -> str | None:
    """Convert OpenAI finish_reason to Anthropic stop_reason.

    OpenAI: stop, length, tool_calls, content_filter
    Anthropic: end_turn, max_tokens, tool_use

    Any tool call in the reply wins over the provider's finish reason.
    Unknown or missing reasons map to None.
    """
    if has_tool_calls:
        return "tool_use"
    if finish_reason is None:
        return None
    return _STOP_REASONS.get(finish_reason)


def _parse_tool_arguments(name: str, arguments: Any) -> Any:
    if not isinstance(arguments, str):
        return arguments if arguments is not None else {}
    if not arguments:
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise MalformedToolArgumentsError(
            f"Tool call '{name}' has malformed JSON arguments: {exc.msg}",
            tool_name=name,
            arguments=arguments,
        ) from exc


def _convert_openai_content_to_blocks(
    content: str | list[Mapping[str, Any]] | None,
    tool_calls: list[Mapping[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Convert OpenAI assistant content to Anthropic content blocks."""
    blocks: list[dict[str, Any]] = []

    if isinstance(content, list):
        content = "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, Mapping) and part.get("type") == "text"
        )
    if isinstance(content, str) and content:
        blocks.append({"type": "text", "text": content})

    for call in tool_calls or []:
        function = call.get("function") or {}
        name = function.get("name", "")
        blocks.append({
            "type": "tool_use",
            "id": call.get("id") or f"toolu_{uuid.uuid4().hex[:12]}",
            "name": name,
            "input": _parse_tool_arguments(name, function.get("arguments")),
        })

    return blocks


def chat_completion_to_messages(payload: Mapping[str, Any], model: str) -> dict[str, Any]:
    """Translate OpenAI Chat Completions response to Anthropic Messages.

    Args:
        payload: OpenAI Chat Completions API response body
        model: Model name the client asked for, echoed back

    Returns:
        Anthropic Messages API response body

    Raises:
        EmptyReplyError: If the reply has no choices.
        MalformedToolArgumentsError: If a tool call's arguments are not JSON.
    """
    choices = payload.get("choices") or []
    if not choices:
        logger.error("No choices in provider response")
        raise EmptyReplyError("No choices in provider response")

    # Get the first choice (Anthropic only supports n=1)
    choice = choices[0]
    message = choice.get("message") or {}
    tool_calls = message.get("tool_calls") or []

    content_blocks = _convert_openai_content_to_blocks(message.get("content"), tool_calls)

    # Clients must never receive zero content blocks
    if not content_blocks:
        content_blocks = [{"type": "text", "text": ""}]

    usage = payload.get("usage") or {}
    provider_id = payload.get("id") or uuid.uuid4().hex[:24]

    response: dict[str, Any] = {
        "id": f"msg_{provider_id}",
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": content_blocks,
        "stop_reason": convert_stop_reason(choice.get("finish_reason"), bool(tool_calls)),
        "stop_sequence": None,
        "usage": {
            "input_tokens": usage.get("prompt_tokens") or 0,
            "output_tokens": usage.get("completion_tokens") or 0,
        },
    }

    if tool_calls:
        logger.debug(
            f"Translated tool calls: count={len(tool_calls)}, "
            f"names={[b['name'] for b in content_blocks if b['type'] == 'tool_use']}"
        )

    return response
