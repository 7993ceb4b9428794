"""Tests for the completion provider HTTP client."""

import httpx
import pytest

from messages_shim.core.exceptions import TransportError, UpstreamError
from messages_shim.core.provider import ProviderClient
from messages_shim.testing import FakeProvider, ProviderResponse, build_chunk, build_stream_chunks

BASE_URL = "http://provider.local/v1"
PAYLOAD = {"model": "provider-model", "messages": [{"role": "user", "content": "Hi"}]}


class _BrokenStream(httpx.AsyncByteStream):
    """Response body that drops the connection after one chunk."""

    async def __aiter__(self):
        yield b'data: {"choices":[{"delta":{"content":"Hel"},"index":0}]}\n\n'
        raise httpx.ReadError("connection reset by peer")


async def _collect(client: ProviderClient, payload: dict = PAYLOAD) -> list[dict]:
    return [chunk async for chunk in client.stream_completion(payload)]


def _client(provider: FakeProvider) -> ProviderClient:
    return ProviderClient(BASE_URL, "test-key", timeout=5.0, transport=provider.transport())


class TestCreateCompletion:
    """Tests for non-streaming completions."""

    @pytest.mark.asyncio
    async def test_returns_parsed_reply(self, provider):
        """A 200 reply is returned as a dict and the request is well formed."""
        provider.enqueue_chat_response("Hello")

        reply = await _client(provider).create_completion(dict(PAYLOAD, stream=True))

        assert reply["choices"][0]["message"]["content"] == "Hello"
        sent = provider.received[0]
        assert sent["path"] == "/v1/chat/completions"
        assert sent["headers"]["authorization"] == "Bearer test-key"
        assert sent["json"]["stream"] is False
        assert sent["json"]["model"] == "provider-model"

    @pytest.mark.asyncio
    async def test_error_status_raises_upstream_error(self, provider):
        """A non-2xx status raises UpstreamError carrying status and body."""
        provider.enqueue_error_response(500, "internal failure")

        with pytest.raises(UpstreamError) as exc_info:
            await _client(provider).create_completion(PAYLOAD)

        assert exc_info.value.status_code == 500
        assert "internal failure" in exc_info.value.body
        assert exc_info.value.message.startswith("Provider API error: 500 - ")

    @pytest.mark.asyncio
    async def test_non_json_body_raises_transport_error(self, provider):
        """A 200 reply that is not JSON is a transport failure."""
        provider.enqueue(ProviderResponse(body="<html>gateway</html>"))

        with pytest.raises(TransportError):
            await _client(provider).create_completion(PAYLOAD)

    @pytest.mark.asyncio
    async def test_connection_failure_raises_transport_error(self):
        """Connection errors are wrapped in TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ProviderClient(BASE_URL, "k", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as exc_info:
            await client.create_completion(PAYLOAD)
        assert "ConnectError" in exc_info.value.message

    def test_url_strips_trailing_slash(self):
        assert ProviderClient("https://api.example.com/v1/", "k").url == "https://api.example.com/v1/chat/completions"


class TestStreamCompletion:
    """Tests for streaming completions."""

    @pytest.mark.asyncio
    async def test_yields_chunks_until_done(self, provider):
        """Chunks are parsed and yielded; the request asks for a stream."""
        chunks = build_stream_chunks("Hello world")
        provider.enqueue_stream(chunks)

        received = await _collect(_client(provider))

        assert received == chunks
        assert provider.received[0]["json"]["stream"] is True

    @pytest.mark.asyncio
    async def test_stops_at_done_sentinel(self, provider):
        """Nothing after [DONE] is yielded."""
        provider.enqueue_stream([build_chunk({"content": "a"}), "[DONE]", build_chunk({"content": "b"})], add_done=False)

        received = await _collect(_client(provider))

        assert [c["choices"][0]["delta"]["content"] for c in received] == ["a"]

    @pytest.mark.asyncio
    async def test_stream_without_done_just_ends(self, provider):
        """A stream closed without [DONE] ends the iterator normally."""
        provider.enqueue_stream([build_chunk({"content": "a"})], add_done=False)
        assert len(await _collect(_client(provider))) == 1

    @pytest.mark.asyncio
    async def test_malformed_chunk_is_skipped(self, provider):
        """Unparsable data lines are skipped."""
        chunks = build_stream_chunks("Hi")
        provider.enqueue(ProviderResponse(stream_chunks=chunks, inject_malformed_at=1))

        received = await _collect(_client(provider))

        assert received == chunks

    @pytest.mark.asyncio
    async def test_non_object_chunk_is_skipped(self, provider):
        """JSON payloads that are not objects are skipped."""
        provider.enqueue_stream(["[1, 2]", build_chunk({"content": "a"})])
        assert len(await _collect(_client(provider))) == 1

    @pytest.mark.asyncio
    async def test_error_status_raises_before_any_chunk(self, provider):
        """A non-2xx status raises UpstreamError."""
        provider.enqueue_error_response(429, "rate limited")

        with pytest.raises(UpstreamError) as exc_info:
            await _collect(_client(provider))

        assert exc_info.value.status_code == 429
        assert "rate limited" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_in_stream_error_payload(self, provider):
        """An error object inside the stream raises UpstreamError."""
        provider.enqueue_stream([
            build_chunk({"content": "a"}),
            {"error": {"message": "overloaded", "type": "server_error"}},
        ])

        stream = _client(provider).stream_completion(PAYLOAD)
        first = await stream.__anext__()
        assert first["choices"][0]["delta"]["content"] == "a"
        with pytest.raises(UpstreamError) as exc_info:
            await stream.__anext__()
        assert exc_info.value.message == "SSE stream error: overloaded (type=server_error)"

    @pytest.mark.asyncio
    async def test_connection_drop_mid_stream(self):
        """A read error mid-stream raises TransportError after the chunks seen so far."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=_BrokenStream(),
            )

        client = ProviderClient(BASE_URL, "k", transport=httpx.MockTransport(handler))
        received = []
        with pytest.raises(TransportError) as exc_info:
            async for chunk in client.stream_completion(PAYLOAD):
                received.append(chunk)

        assert len(received) == 1
        assert "ReadError" in exc_info.value.message
