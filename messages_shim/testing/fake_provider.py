"""Fake completion provider ASGI app for simulating deterministic replies."""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Iterable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .response_builders import build_chat_response, build_stream_chunks


@dataclass
class ProviderResponse:
    """A queued response to return from the fake provider.

    Standard fields:
        status_code: HTTP status code (default 200)
        json_body: JSON response body (for non-streaming)
        body: Raw bytes/string body
        stream_chunks: Chunks for streaming (dicts are JSON encoded, str/bytes
            are sent as the data payload / raw bytes)
        add_done: Add [DONE] sentinel at end of stream

    Malformed data injection:
        inject_malformed_at: Chunk index to inject bad data before
        malformed_data: The malformed data to inject
    """

    status_code: int = 200
    json_body: dict[str, Any] | None = None
    body: bytes | str | None = None
    stream_chunks: list[Any] | None = None
    add_done: bool = True
    inject_malformed_at: int | None = None
    malformed_data: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)


def _encode_sse_data(chunk: Any) -> bytes:
    if isinstance(chunk, bytes):
        return chunk
    data = chunk if isinstance(chunk, str) else json.dumps(chunk, ensure_ascii=False)
    return f"data: {data}\n\n".encode("utf-8")


class FakeProvider:
    """ASGI app that replies with queued responses for /v1/chat/completions.

    Supports:
    - Deterministic response queueing
    - Request tracking/inspection
    - Streaming chunk sequences, with or without the [DONE] sentinel
    - Error statuses and malformed chunk injection

    Usage:
        provider = FakeProvider()
        provider.enqueue_chat_response("Hello")
        client = ProviderClient("http://provider.local/v1", "key",
                                transport=provider.transport())
    """

    def __init__(
        self,
        responses: Optional[Iterable[ProviderResponse]] = None,
        *,
        route: str = "/v1/chat/completions",
    ) -> None:
        self.app = FastAPI(title="FakeProvider")
        self._queue: Deque[ProviderResponse] = deque(responses or [])
        self.received: list[dict[str, Any]] = []
        self.route = route
        self.app.post(route)(self._handle_chat)

    def transport(self) -> httpx.AsyncBaseTransport:
        """Return an httpx transport that routes requests to this app."""
        return httpx.ASGITransport(app=self.app)

    def enqueue(self, response: ProviderResponse) -> None:
        """Add a response to the queue."""
        self._queue.append(response)

    def clear(self) -> None:
        """Clear all queued responses and received requests."""
        self._queue.clear()
        self.received.clear()

    # -------------------------------------------------------------------------
    # Convenience methods for common response types
    # -------------------------------------------------------------------------

    def enqueue_chat_response(
        self,
        content: str | None,
        *,
        tool_calls: list[dict[str, Any]] | None = None,
        finish_reason: str = "stop",
        usage: dict[str, int] | None = None,
        stream: bool = False,
    ) -> None:
        """Enqueue a properly-formatted OpenAI chat completion reply."""
        if stream:
            chunks = build_stream_chunks(
                content or "",
                tool_calls=tool_calls,
                finish_reason=finish_reason,
                usage=usage,
            )
            self.enqueue(ProviderResponse(stream_chunks=chunks))
        else:
            self.enqueue(ProviderResponse(json_body=build_chat_response(
                content,
                tool_calls=tool_calls,
                finish_reason=finish_reason,
                usage=usage,
            )))

    def enqueue_stream(self, chunks: list[Any], *, add_done: bool = True) -> None:
        """Enqueue an explicit chunk sequence."""
        self.enqueue(ProviderResponse(stream_chunks=list(chunks), add_done=add_done))

    def enqueue_error_response(self, status_code: int, message: str) -> None:
        """Enqueue an OpenAI-style error response."""
        self.enqueue(ProviderResponse(
            status_code=status_code,
            json_body={"error": {"message": message, "type": "server_error"}},
        ))

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    async def _handle_chat(self, request: Request) -> Response:
        payload: Any = None
        try:
            payload = await request.json()
        except ValueError:
            payload = None

        self.received.append(
            {
                "path": request.url.path,
                "headers": dict(request.headers),
                "json": payload,
            }
        )

        if not self._queue:
            return JSONResponse(
                {"error": {"message": "No provider responses queued"}},
                status_code=500,
            )

        response = self._queue.popleft()

        if response.stream_chunks is not None and response.status_code < 400:
            return StreamingResponse(
                self._stream(response),
                status_code=response.status_code,
                headers=response.headers,
                media_type="text/event-stream",
            )

        return Response(
            content=self._build_body(response),
            status_code=response.status_code,
            headers=response.headers,
            media_type="application/json",
        )

    async def _stream(self, response: ProviderResponse):
        for i, chunk in enumerate(response.stream_chunks or []):
            if response.inject_malformed_at is not None and i == response.inject_malformed_at:
                yield response.malformed_data or b"data: {invalid json\n\n"
            yield _encode_sse_data(chunk)

        if response.add_done:
            yield b"data: [DONE]\n\n"

    @staticmethod
    def _build_body(response: ProviderResponse) -> bytes:
        if response.json_body is not None:
            return json.dumps(response.json_body, ensure_ascii=False).encode("utf-8")
        if isinstance(response.body, str):
            return response.body.encode("utf-8")
        if isinstance(response.body, bytes):
            return response.body
        return b""
