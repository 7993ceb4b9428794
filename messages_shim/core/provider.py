"""HTTP client for the OpenAI-compatible completion provider."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from .exceptions import TransportError, UpstreamError
from .sse import DONE_SENTINEL, detect_sse_stream_error, extract_sse_data

logger = logging.getLogger("messages-shim")

DEFAULT_TIMEOUT = 600.0


class ProviderClient:
    """Sends chat completion requests to the configured provider.

    Each call opens its own ``httpx.AsyncClient`` so no connection state is
    shared between requests. ``transport`` lets tests route calls to an
    in-process ASGI app.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout, transport=self._transport, follow_redirects=True
        )

    async def create_completion(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Send a non-streaming completion request and return the parsed reply.

        Raises:
            UpstreamError: If the provider answers with a non-2xx status.
            TransportError: If the request fails or the body is not JSON.
        """
        body = dict(payload, stream=False)
        start_time = time.perf_counter()

        logger.debug(
            f"Sending completion request: model={body.get('model')}, "
            f"messages={len(body.get('messages', []))}, tools={len(body.get('tools') or [])}"
        )

        try:
            async with self._client(self.timeout) as client:
                resp = await client.post(self.url, headers=self._headers(), json=body)
        except httpx.HTTPError as exc:
            logger.error(f"Completion request to {self.url} failed: {exc.__class__.__name__}: {exc}")
            raise TransportError(f"Provider request failed: {exc.__class__.__name__}: {exc}") from exc

        elapsed = time.perf_counter() - start_time

        if not resp.is_success:
            text = resp.text
            logger.error(
                f"Provider returned status {resp.status_code} after {elapsed:.3f}s: {text[:500]}"
            )
            raise UpstreamError(
                f"Provider API error: {resp.status_code} - {text}",
                status_code=resp.status_code,
                body=text,
            )

        try:
            result = resp.json()
        except ValueError as exc:
            raise TransportError(f"Provider returned a non-JSON body: {exc}") from exc

        if not isinstance(result, dict):
            raise TransportError("Provider returned a JSON body that is not an object")

        usage = result.get("usage") or {}
        choices = result.get("choices") or [{}]
        logger.info(
            f"Completion received in {elapsed:.3f}s: prompt_tokens={usage.get('prompt_tokens')}, "
            f"completion_tokens={usage.get('completion_tokens')}, "
            f"finish_reason={choices[0].get('finish_reason')}"
        )
        return result

    async def stream_completion(self, payload: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """Send a streaming completion request and yield parsed chunks.

        The iterator is lazy and single use. It stops at ``data: [DONE]``.
        Unparsable chunk payloads are skipped with a warning.

        Raises:
            UpstreamError: On a non-2xx status or an in-stream error payload.
            TransportError: If the connection fails before or during the stream.
        """
        body = dict(payload, stream=True)
        start_time = time.perf_counter()
        chunk_count = 0

        logger.debug(
            f"Starting stream request: model={body.get('model')}, "
            f"messages={len(body.get('messages', []))}, tools={len(body.get('tools') or [])}"
        )

        # No read timeout: streams may idle between chunks
        stream_timeout = httpx.Timeout(
            connect=self.timeout, read=None, write=self.timeout, pool=self.timeout
        )

        try:
            async with self._client(stream_timeout) as client:
                async with client.stream(
                    "POST", self.url, headers=self._headers(), json=body
                ) as resp:
                    if not resp.is_success:
                        text = (await resp.aread()).decode("utf-8", errors="replace")
                        logger.error(
                            f"Stream request returned status {resp.status_code}: {text[:500]}"
                        )
                        raise UpstreamError(
                            f"Provider API error: {resp.status_code} - {text}",
                            status_code=resp.status_code,
                            body=text,
                        )

                    logger.debug(
                        f"Stream connected: ttfb={time.perf_counter() - start_time:.3f}s"
                    )

                    async for line in resp.aiter_lines():
                        data_str = extract_sse_data(line)
                        if not data_str:
                            continue

                        if data_str == DONE_SENTINEL:
                            logger.info(
                                f"Stream completed in {time.perf_counter() - start_time:.3f}s, "
                                f"chunks={chunk_count}"
                            )
                            return

                        try:
                            chunk = json.loads(data_str)
                        except json.JSONDecodeError as exc:
                            logger.warning(
                                f"Failed to parse stream chunk ({exc.msg}): {data_str[:100]}"
                            )
                            continue

                        sse_error = detect_sse_stream_error(chunk)
                        if sse_error:
                            logger.error(f"Provider reported an error mid-stream: {sse_error}")
                            raise UpstreamError(
                                sse_error, status_code=resp.status_code, body=data_str
                            )

                        if not isinstance(chunk, dict):
                            logger.warning(f"Skipping non-object stream chunk: {data_str[:100]}")
                            continue

                        chunk_count += 1
                        yield chunk
        except httpx.HTTPError as exc:
            logger.error(
                f"Stream from {self.url} failed after {chunk_count} chunks: "
                f"{exc.__class__.__name__}: {exc}"
            )
            raise TransportError(
                f"Provider stream failed: {exc.__class__.__name__}: {exc}"
            ) from exc

        logger.debug(f"Stream ended without {DONE_SENTINEL} after {chunk_count} chunks")
