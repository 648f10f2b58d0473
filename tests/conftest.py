"""Test configuration helpers for unit tests."""

from __future__ import annotations

import asyncio
import json
import types
from typing import Any, Callable

import aiohttp
import pytest

from gemini_live_client.core.config import SessionConfig
from gemini_live_client.core.logging_system import SessionLogger
from gemini_live_client.core.timing_logger import clear_timing_context

_END = object()

_ENV_VARS = (
    "GEMINI_API_KEY",
    "GEMINI_API_BASE_URL",
    "GEMINI_LIVE_WS_URL",
    "GEMINI_LIVE_MODEL_ID",
    "GEMINI_MODEL_ID",
    "GEMINI_CLIENT_SECRET_KEY",
    "GEMINI_ENABLE_TIMING_LOG",
    "GEMINI_TIMING_LOG_FILE",
    "GLOBAL_LOG_LEVEL",
)


class FakeWebSocket:
    """Scriptable stand-in for ``aiohttp.ClientWebSocketResponse``.

    Inbound frames are fed by the test; outbound frames are recorded in ``sent``.
    Iteration stops on ``feed_close()`` or ``close()``, like aiohttp does on a
    CLOSE frame.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_calls = 0
        self.send_error: BaseException | None = None
        self.close_error: BaseException | None = None
        self._exception: BaseException | None = None
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    # -- outbound ---------------------------------------------------------

    async def send_str(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    def sent_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent]

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        if self.closed:
            return False
        self.closed = True
        if self.close_code is None:
            self.close_code = code
        self._incoming.put_nowait(_END)
        return True

    # -- inbound ----------------------------------------------------------

    def feed(self, frame: Any) -> None:
        if isinstance(frame, (bytes, bytearray)):
            msg = types.SimpleNamespace(type=aiohttp.WSMsgType.BINARY, data=bytes(frame), extra=None)
        elif isinstance(frame, str):
            msg = types.SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=frame, extra=None)
        else:
            msg = types.SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(frame), extra=None)
        self._incoming.put_nowait(msg)

    def feed_close(self, code: int = 1000) -> None:
        self.close_code = code
        self._incoming.put_nowait(_END)

    def feed_error(self, exc: BaseException) -> None:
        self._exception = exc
        self._incoming.put_nowait(types.SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=exc, extra=None))

    def exception(self) -> BaseException | None:
        return self._exception

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        msg = await self._incoming.get()
        if msg is _END:
            raise StopAsyncIteration
        return msg


class FakeClientSession:
    """Fake ``aiohttp.ClientSession`` exposing only ``ws_connect``."""

    def __init__(
        self,
        ws: FakeWebSocket | None = None,
        *,
        error: BaseException | None = None,
        delay: float = 0.0,
    ) -> None:
        self.ws = ws or FakeWebSocket()
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.ws

    async def close(self) -> None:
        self.closed = True


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    clear_timing_context()


@pytest.fixture(autouse=True)
def _reset_session_logger():
    SessionLogger.logs.clear()
    SessionLogger._session_last_seen.clear()
    yield
    SessionLogger.logs.clear()
    SessionLogger._session_last_seen.clear()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(credential="test-key", model_id="gemini-test-live")


@pytest.fixture
def fake_session() -> FakeClientSession:
    return FakeClientSession()
