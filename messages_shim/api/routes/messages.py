"""Anthropic-compatible Messages API endpoint."""

import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from ...config_loader import ShimSettings
from ...core import (
    EmptyReplyError,
    InvalidRequestError,
    MalformedToolArgumentsError,
    ProviderClient,
    TransportError,
    UpstreamError,
)
from ...messages import (
    ChatToMessagesStreamAdapter,
    chat_completion_to_messages,
    generate_message_id,
    messages_to_chat_completions,
)

logger = logging.getLogger("messages-shim")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _anthropic_error_response(
    message: str,
    *,
    error_type: str = "invalid_request_error",
    status_code: int = 400,
    error_code: Optional[str] = None,
    param: Optional[str] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"type": error_type, "message": message}
    if error_code:
        error["code"] = error_code
    if param:
        error["param"] = param
    payload = {"type": "error", "error": error}
    return JSONResponse(payload, status_code=status_code)


def validate_messages_request(payload: Mapping[str, Any]) -> None:
    """Check the fields every Messages request must carry.

    Raises:
        InvalidRequestError: Naming the first missing or invalid field.
    """
    model = payload.get("model")
    if not isinstance(model, str) or not model:
        raise InvalidRequestError("model is required", code="missing_parameter", param="model")

    max_tokens = payload.get("max_tokens")
    if max_tokens is None:
        raise InvalidRequestError(
            "max_tokens is required", code="missing_parameter", param="max_tokens"
        )
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
        raise InvalidRequestError(
            "max_tokens must be a positive integer", param="max_tokens"
        )

    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError(
            "messages is required and must not be empty",
            code="missing_parameter",
            param="messages",
        )
    for position, message in enumerate(messages):
        if not isinstance(message, Mapping):
            raise InvalidRequestError(
                f"messages.{position} must be an object", param="messages"
            )


def _system_prompt_length(system: Any) -> int:
    if isinstance(system, str):
        return len(system)
    if isinstance(system, list):
        return sum(len(block.get("text", "")) for block in system if isinstance(block, Mapping))
    return 0


async def _primed_stream(
    first: Optional[dict[str, Any]],
    chunks: AsyncIterator[dict[str, Any]],
) -> AsyncIterator[dict[str, Any]]:
    if first is not None:
        yield first
    async for chunk in chunks:
        yield chunk


async def _stream_messages(
    req_id: str,
    start_time: float,
    provider: ProviderClient,
    provider_payload: dict[str, Any],
    client_model: str,
) -> Response:
    chunks = provider.stream_completion(provider_payload)

    # Pull the first chunk before committing to a 200 so that provider errors
    # raised while opening the stream still get a proper error status
    first: Optional[dict[str, Any]] = None
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = None
    except (UpstreamError, TransportError) as exc:
        elapsed = time.perf_counter() - start_time
        logger.error(f"[{req_id}] Provider stream failed to open after {elapsed:.3f}s: {exc.message}")
        await chunks.aclose()
        return _anthropic_error_response(
            exc.message,
            error_type="api_error",
            status_code=502,
            error_code="provider_error",
        )

    adapter = ChatToMessagesStreamAdapter(generate_message_id(), client_model)
    logger.debug(f"[{req_id}] Setting up SSE stream, message_id={adapter.state.message_id}")

    async def event_stream() -> AsyncIterator[bytes]:
        try:
            async for event in adapter.adapt_stream(_primed_stream(first, chunks)):
                yield event
        finally:
            await chunks.aclose()
            elapsed = time.perf_counter() - start_time
            logger.info(
                f"[{req_id}] Streaming response completed in {elapsed:.3f}s: "
                f"chunks={adapter.chunk_count}, events={adapter.event_count}, "
                f"stop_reason={adapter.state.stop_reason}"
            )

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _complete_messages(
    req_id: str,
    start_time: float,
    provider: ProviderClient,
    provider_payload: dict[str, Any],
    client_model: str,
) -> Response:
    try:
        reply = await provider.create_completion(provider_payload)
    except (UpstreamError, TransportError) as exc:
        elapsed = time.perf_counter() - start_time
        logger.error(f"[{req_id}] Provider error after {elapsed:.3f}s: {exc.message}")
        return _anthropic_error_response(
            exc.message,
            error_type="api_error",
            status_code=502,
            error_code="provider_error",
        )

    try:
        message = chat_completion_to_messages(reply, client_model)
    except (EmptyReplyError, MalformedToolArgumentsError) as exc:
        logger.error(f"[{req_id}] Failed to translate response: {exc.message}")
        return _anthropic_error_response(
            f"Failed to translate response: {exc.message}",
            error_type="api_error",
            status_code=500,
            error_code="translation_error",
        )

    elapsed = time.perf_counter() - start_time
    logger.info(
        f"[{req_id}] Request completed in {elapsed:.3f}s: "
        f"input_tokens={message['usage']['input_tokens']}, "
        f"output_tokens={message['usage']['output_tokens']}, "
        f"stop_reason={message['stop_reason']}"
    )
    return JSONResponse(message)


async def messages_endpoint(request: Request) -> Response:
    """POST /v1/messages - Anthropic Messages API compatible endpoint."""
    # Generate request ID for log correlation
    req_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()

    settings: ShimSettings = request.app.state.settings
    provider: ProviderClient = request.app.state.provider

    try:
        body = await request.body()
        payload = json.loads(body or b"{}")
    except ClientDisconnect:
        logger.warning(f"[{req_id}] Client disconnected while sending the request body")
        return Response(status_code=499)  # Client Closed Request
    except json.JSONDecodeError as exc:
        logger.warning(f"[{req_id}] Invalid JSON payload: {exc}")
        return _anthropic_error_response("Invalid JSON payload", error_code="invalid_json")

    if not isinstance(payload, Mapping):
        return _anthropic_error_response(
            "Request body must be a JSON object",
            error_code="invalid_json_shape",
        )

    try:
        validate_messages_request(payload)
    except InvalidRequestError as exc:
        logger.warning(f"[{req_id}] Validation failed: {exc.message}")
        return _anthropic_error_response(exc.message, error_code=exc.code, param=exc.param)

    client_model = payload["model"]
    logger.info(
        f"[{req_id}] Incoming request: model={client_model}, "
        f"stream={bool(payload.get('stream'))}, messages={len(payload['messages'])}, "
        f"max_tokens={payload['max_tokens']}, tools={len(payload.get('tools') or [])}"
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"[{req_id}] Request details: temperature={payload.get('temperature')}, "
            f"top_p={payload.get('top_p')}, stop_sequences={payload.get('stop_sequences')}, "
            f"tool_choice={payload.get('tool_choice')}, "
            f"system_prompt_length={_system_prompt_length(payload.get('system'))}"
        )

    try:
        provider_payload = messages_to_chat_completions(
            payload,
            settings.model,
            max_tokens_field=settings.max_tokens_field,
        )
    except InvalidRequestError as exc:
        logger.warning(f"[{req_id}] Failed to translate request: {exc.message}")
        return _anthropic_error_response(exc.message, error_code=exc.code, param=exc.param)

    if provider_payload["stream"]:
        logger.info(f"[{req_id}] Starting streaming response")
        return await _stream_messages(req_id, start_time, provider, provider_payload, client_model)

    return await _complete_messages(req_id, start_time, provider, provider_payload, client_model)
