"""Tests for the error taxonomy, REST error parsing and the retry helpers."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from gemini_live_client.core.errors import (
    ConfigurationError,
    GeminiAPIError,
    GeminiClientError,
    ProtocolDecodeError,
    RemoteClosure,
    TransportError,
    _build_api_error,
    _RetryableHTTPStatusError,
    _RetryWait,
)


def _outcome(exc: BaseException | None):
    if exc is None:
        return None
    return SimpleNamespace(failed=True, exception=lambda: exc)


class TestTaxonomy:
    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("missing"),
            TransportError("down"),
            ProtocolDecodeError("bad"),
            RemoteClosure(1000),
            GeminiAPIError(status=500, reason="Internal"),
        ],
    )
    def test_all_errors_share_a_base(self, error) -> None:
        assert isinstance(error, GeminiClientError)
        assert isinstance(error, RuntimeError)

    def test_remote_closure_message(self) -> None:
        assert str(RemoteClosure()) == "Connection closed by remote"
        assert str(RemoteClosure(1011, " overloaded ")) == "Connection closed by remote (code=1011): overloaded"

    def test_transport_error_ids_are_unique(self) -> None:
        assert TransportError("a").error_id != TransportError("a").error_id


class TestBuildApiError:
    def test_parses_google_error_envelope(self) -> None:
        body = json.dumps({"error": {"code": 400, "message": "API key not valid.", "status": "INVALID_ARGUMENT"}})
        error = _build_api_error(status=400, reason="Bad Request", body_text=body, model="gemini-flash-latest")

        assert error.api_message == "API key not valid."
        assert error.api_status == "INVALID_ARGUMENT"
        assert str(error) == "API key not valid."
        assert not error.is_retryable

    def test_accepts_list_wrapped_envelope(self) -> None:
        body = json.dumps([{"error": {"message": "quota", "status": "RESOURCE_EXHAUSTED"}}])
        error = _build_api_error(status=429, reason="Too Many Requests", body_text=body, headers={"Retry-After": "7"})

        assert error.api_message == "quota"
        assert error.is_rate_limited
        assert error.is_retryable
        assert error.retry_after == 7

    def test_non_json_body_kept_raw(self) -> None:
        error = _build_api_error(status=502, reason="Bad Gateway", body_text="<html>upstream</html>")
        assert error.api_message is None
        assert error.raw_body == "<html>upstream</html>"
        assert str(error) == "Gemini request failed (502 Bad Gateway)"


class TestMarkdown:
    def test_auth_template_for_403(self) -> None:
        error = GeminiAPIError(status=403, reason="Forbidden", api_message="Permission denied")
        rendered = error.to_markdown()
        assert "Authentication Failed" in rendered
        assert "Permission denied" in rendered

    def test_rate_limit_template(self) -> None:
        rendered = GeminiAPIError(status=429, reason="Too Many Requests", retry_after=3.2).to_markdown()
        assert "Rate Limit" in rendered
        assert "**Retry after:** 3s" in rendered

    def test_generic_template_omits_absent_fields(self) -> None:
        rendered = GeminiAPIError(status=500, reason="Internal", model="gemini-x").to_markdown()
        assert "### 🚫 gemini-x could not process your request." in rendered
        assert "`500 Internal`" in rendered
        assert "API status" not in rendered
        assert "Raw response" not in rendered

    def test_raw_body_shown_without_api_message(self) -> None:
        rendered = GeminiAPIError(status=500, reason="Internal", raw_body="oops").to_markdown()
        assert "oops" in rendered

    def test_custom_template(self) -> None:
        error = GeminiAPIError(status=418, reason="Teapot")
        assert error.to_markdown(template="status={status}") == "status=418"


class TestRetryWait:
    def test_uses_base_wait_without_retry_after(self) -> None:
        wait = _RetryWait(lambda _state: 0.5)
        state = SimpleNamespace(outcome=_outcome(RuntimeError("x")))
        assert wait(state) == 0.5

    def test_honours_longer_retry_after(self) -> None:
        original = GeminiAPIError(status=429, reason="Too Many Requests", retry_after=4)
        wait = _RetryWait(lambda _state: 0.5)
        state = SimpleNamespace(outcome=_outcome(_RetryableHTTPStatusError(original)))
        assert wait(state) == 4

    def test_keeps_longer_base_delay(self) -> None:
        original = GeminiAPIError(status=503, reason="Unavailable", retry_after=1)
        wait = _RetryWait(lambda _state: 2.0)
        state = SimpleNamespace(outcome=_outcome(_RetryableHTTPStatusError(original)))
        assert wait(state) == 2.0
