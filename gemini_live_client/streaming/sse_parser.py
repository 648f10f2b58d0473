"""Server-Sent Events (SSE) parsing for ``streamGenerateContent?alt=sse``.

- Opens the POST request with Tenacity retries (network errors, 429/5xx)
- Reads the body in 4KB chunks and splits it into ``data:`` events
- Decodes each event as JSON, skipping malformed payloads
- Surfaces in-stream error objects through an ``extract_error`` callback

Retries only cover opening the request: once the first byte has been read the
stream is consumed exactly once.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Callable, Mapping, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import _build_api_error, _RetryableHTTPStatusError, _RetryWait
from ..core.timing_logger import timed, timing_mark

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 4096


class SSEParser:
    """Sequential SSE reader for the REST streaming endpoint.

    Args:
        max_attempts: Attempts made to open the request (default: 3).
        logger: Logger instance for diagnostic output (default: module logger).
    """

    def __init__(self, *, max_attempts: int = 3, logger: Optional[logging.Logger] = None):
        self.max_attempts = max(1, int(max_attempts))
        self.logger = logger or LOGGER

    def _retryer(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=_RetryWait(wait_exponential(multiplier=0.5, min=0.5, max=4)),
            retry=retry_if_exception_type(
                (aiohttp.ClientConnectionError, asyncio.TimeoutError, _RetryableHTTPStatusError)
            ),
            reraise=True,
        )

    @timed
    async def _open(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        request_body: dict[str, Any],
        headers: Mapping[str, str],
        model: Optional[str],
    ) -> aiohttp.ClientResponse:
        resp = await session.post(url, json=request_body, headers=dict(headers))
        if resp.status < 400:
            return resp
        try:
            body_text = await resp.text()
        finally:
            resp.release()
        error = _build_api_error(
            status=resp.status,
            reason=resp.reason or "",
            body_text=body_text,
            headers=resp.headers,
            model=model,
        )
        if error.is_retryable:
            self.logger.warning("SSE request failed with %s; retrying if attempts remain", resp.status)
            raise _RetryableHTTPStatusError(error)
        raise error

    async def parse_sse_stream(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        request_body: dict[str, Any],
        headers: Mapping[str, str],
        model: Optional[str] = None,
        extract_error: Optional[Callable[[dict[str, Any]], Optional[Exception]]] = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """POST ``request_body`` and yield each decoded SSE event in order.

        Raises:
            GeminiAPIError: the API rejected the request (after retries for 429/5xx).
            aiohttp.ClientError / asyncio.TimeoutError: network failure after retries.
            Exception: whatever ``extract_error`` returns for an in-stream error event.
        """
        try:
            resp = await self._retryer()(
                self._open, session, url, request_body=request_body, headers=headers, model=model
            )
        except _RetryableHTTPStatusError as exc:
            raise exc.original from None

        timing_mark("sse.response_open")
        async with resp:
            async for data_blob in self._iter_event_data(resp):
                try:
                    event = json.loads(data_blob.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                    self.logger.warning("SSE chunk parse failed: %s", exc)
                    continue
                if not isinstance(event, dict):
                    self.logger.debug("SSE event is not an object; skipping")
                    continue
                if extract_error:
                    streaming_error = extract_error(event)
                    if streaming_error is not None:
                        raise streaming_error
                yield event

    async def _iter_event_data(self, resp: aiohttp.ClientResponse) -> AsyncGenerator[bytes, None]:
        """Split the response body into complete ``data:`` payloads."""
        buf = bytearray()
        event_data_parts: list[bytes] = []

        async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
            buf.extend(chunk)
            start_idx = 0

            while True:
                newline_idx = buf.find(b"\n", start_idx)
                if newline_idx == -1:
                    break

                line = buf[start_idx:newline_idx]
                start_idx = newline_idx + 1
                stripped = line.strip()

                # Empty line = event boundary
                if not stripped:
                    if event_data_parts:
                        data_blob = b"\n".join(event_data_parts).strip()
                        event_data_parts.clear()
                        if data_blob and data_blob != b"[DONE]":
                            yield data_blob
                    continue

                # Skip comment lines
                if stripped.startswith(b":"):
                    continue

                if stripped.startswith(b"data:"):
                    event_data_parts.append(bytes(stripped[5:].lstrip()))

            if start_idx > 0:
                del buf[:start_idx]

        # Unterminated trailing event
        trailing = bytes(buf).strip()
        if trailing.startswith(b"data:"):
            event_data_parts.append(trailing[5:].lstrip())
        if event_data_parts:
            data_blob = b"\n".join(event_data_parts).strip()
            if data_blob and data_blob != b"[DONE]":
                yield data_blob
