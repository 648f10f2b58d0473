"""Error handling and user-facing error formatting.

This module handles all error-related functionality:
- Error taxonomy for the live session (configuration, transport, decode, remote closure)
- GeminiAPIError: REST error with markdown rendering
- Retry classification for streamed REST requests (Tenacity helpers)

Configuration errors propagate to callers; everything else on a live session is
reported through the status channel and only logged here.
"""

from __future__ import annotations

import datetime
import logging
import secrets
from typing import Any, Optional

from .config import (
    DEFAULT_API_ERROR_TEMPLATE,
    DEFAULT_AUTHENTICATION_ERROR_TEMPLATE,
    DEFAULT_CONNECTION_ERROR_TEMPLATE,
    DEFAULT_RATE_LIMIT_TEMPLATE,
)
from .timing_logger import timed
from .utils import (
    _normalize_optional_str,
    _pretty_json,
    _render_error_template,
    _retry_after_seconds,
    _safe_json_loads,
)

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})
_RAW_BODY_MAX_CHARS = 2000


def _new_error_id() -> str:
    return secrets.token_hex(8)


def _utc_timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


# -----------------------------------------------------------------------------
# Live session taxonomy
# -----------------------------------------------------------------------------

class GeminiClientError(RuntimeError):
    """Base class for every error raised by this package."""


class ConfigurationError(GeminiClientError):
    """Required configuration (the access credential) is missing or empty."""


class TransportError(GeminiClientError):
    """The WebSocket could not be opened, or failed mid-session."""

    def __init__(self, message: str, *, url: Optional[str] = None, timeout_seconds: Optional[float] = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.error_id = _new_error_id()
        super().__init__(message)

    def to_markdown(self, *, template: Optional[str] = None) -> str:
        return _render_error_template(
            template or DEFAULT_CONNECTION_ERROR_TEMPLATE,
            {
                "error_id": self.error_id,
                "detail": str(self),
                "timeout_seconds": self.timeout_seconds,
            },
        )


class ProtocolDecodeError(GeminiClientError):
    """An inbound frame was not valid JSON or had unexpected nested types.

    Never fatal: the listener logs it and keeps reading.
    """

    def __init__(self, message: str, *, raw: Any = None) -> None:
        self.raw = raw
        super().__init__(message)

    @property
    def excerpt(self) -> str:
        raw = self.raw
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        text = str(raw) if raw is not None else ""
        return text if len(text) <= 200 else f"{text[:200]}…"


class RemoteClosure(GeminiClientError):
    """The remote peer closed the WebSocket. Reported as ``closed``, not as a failure."""

    def __init__(self, code: Optional[int] = None, reason: Optional[str] = None) -> None:
        self.code = code
        self.reason = _normalize_optional_str(reason)
        if code is None:
            message = "Connection closed by remote"
        else:
            message = f"Connection closed by remote (code={code})"
        if self.reason:
            message = f"{message}: {self.reason}"
        super().__init__(message)


# -----------------------------------------------------------------------------
# REST errors
# -----------------------------------------------------------------------------

class GeminiAPIError(GeminiClientError):
    """User-facing error raised when the REST API rejects a streamed request."""

    def __init__(
        self,
        *,
        status: int,
        reason: str,
        api_message: Optional[str] = None,
        api_status: Optional[str] = None,
        raw_body: Optional[str] = None,
        retry_after: Optional[float] = None,
        model: Optional[str] = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self.api_message = _normalize_optional_str(api_message)
        self.api_status = _normalize_optional_str(api_status)
        self.raw_body = raw_body or ""
        self.retry_after = retry_after
        self.model = _normalize_optional_str(model)
        self.error_id = _new_error_id()
        summary = self.api_message or f"Gemini request failed ({self.status} {self.reason})"
        super().__init__(summary)

    @property
    def is_auth_error(self) -> bool:
        return self.status in {401, 403}

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_retryable(self) -> bool:
        return self.status in _RETRYABLE_STATUSES

    @timed
    def to_markdown(self, *, template: Optional[str] = None) -> str:
        """Return a markdown block describing the failure."""
        if template is None:
            if self.is_auth_error:
                template = DEFAULT_AUTHENTICATION_ERROR_TEMPLATE
            elif self.is_rate_limited:
                template = DEFAULT_RATE_LIMIT_TEMPLATE
            else:
                template = DEFAULT_API_ERROR_TEMPLATE
        raw_body = self.raw_body
        if len(raw_body) > _RAW_BODY_MAX_CHARS:
            raw_body = f"{raw_body[:_RAW_BODY_MAX_CHARS]}…"
        values: dict[str, Any] = {
            "heading": self.model or "Gemini",
            "error_id": self.error_id,
            "timestamp": _utc_timestamp(),
            "status": self.status,
            "reason": self.reason,
            "api_status": self.api_status,
            "api_message": self.api_message,
            "raw_body": raw_body if not self.api_message else "",
            "retry_after_seconds": round(self.retry_after) if self.retry_after else None,
        }
        return _render_error_template(template, values)


@timed
def _build_api_error(
    *,
    status: int,
    reason: str,
    body_text: str,
    headers: Optional[dict[str, str]] = None,
    model: Optional[str] = None,
) -> GeminiAPIError:
    """Build a GeminiAPIError from a REST error response.

    Google APIs wrap failures as ``{"error": {"code", "message", "status"}}``;
    some proxies return a bare list of such objects.
    """
    payload = _safe_json_loads(body_text)
    if isinstance(payload, list) and payload:
        payload = payload[0]
    error_obj = payload.get("error") if isinstance(payload, dict) else None
    api_message = None
    api_status = None
    if isinstance(error_obj, dict):
        api_message = error_obj.get("message")
        api_status = error_obj.get("status")
    retry_after = _retry_after_seconds((headers or {}).get("Retry-After"))
    return GeminiAPIError(
        status=status,
        reason=reason,
        api_message=api_message if isinstance(api_message, str) else None,
        api_status=api_status if isinstance(api_status, str) else None,
        raw_body=_pretty_json(payload) if payload is not None else (body_text or ""),
        retry_after=retry_after,
        model=model,
    )


# -----------------------------------------------------------------------------
# Tenacity helpers
# -----------------------------------------------------------------------------

class _RetryableHTTPStatusError(Exception):
    """Wrapper that marks a GeminiAPIError as retryable."""

    def __init__(self, original: GeminiAPIError):
        self.original = original
        self.retry_after = original.retry_after
        super().__init__(f"Retryable HTTP error ({original.status})")


class _RetryWait:
    """Custom Tenacity wait strategy honoring Retry-After headers."""

    def __init__(self, base_wait):
        self._base_wait = base_wait

    def __call__(self, retry_state):
        """Return the greater of base delay or Retry-After header guidance."""
        base_delay = self._base_wait(retry_state) if self._base_wait else 0
        exc = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            exc = retry_state.outcome.exception()
        if isinstance(exc, _RetryableHTTPStatusError):
            retry_after = exc.retry_after
            if isinstance(retry_after, (int, float)) and retry_after > 0:
                return max(base_delay, retry_after)
        return base_delay
