"""Live bidirectional streaming session.

``LiveSessionHandler`` owns one WebSocket to the bidirectional generate-content
service. It runs the setup handshake, accepts user turns, decodes inbound
frames in a single listener task and republishes two topics:

- status: one ``StatusEvent`` per state transition
- text:   non-empty text fragments, then ``END_OF_TURN`` when a model turn completes

User turns issued before ``setupComplete`` are queued and flushed in order on
entering ``ready``; they are never sent ahead of the handshake.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections import deque
from typing import Any, Iterable, Optional, Union
from urllib.parse import quote

import aiohttp

from ..core.config import _API_KEY_HEADER, SessionConfig
from ..core.errors import ConfigurationError, ProtocolDecodeError, RemoteClosure, TransportError
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed, timing_mark, timing_scope
from ..core.utils import _redact_payload_blobs, _redact_url_key
from .constants import END_OF_TURN, STATUS_TOPIC, TEXT_TOPIC, SessionStatus
from .event_bus import EventBus, Subscription
from .frames import (
    ContentDelta,
    ContentFrame,
    ImageInput,
    Part,
    SetupAck,
    SetupFrame,
    StatusEvent,
    decode_server_frame,
    to_image_part,
)

LOGGER = logging.getLogger(__name__)


class LiveSessionHandler:
    """Single-session client for the live generate-content WebSocket.

    Args:
        config: Immutable session configuration (credential, model, generation params).
        http_session: Optional aiohttp session to open the socket with. When omitted
            the handler creates one and closes it in :meth:`close`.
        logger: Logger for diagnostics (default: module logger).
        session_id: Identifier attached to log records; random when omitted.
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        http_session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.config = config
        self.logger = logger or LOGGER
        self.session_id = session_id or secrets.token_hex(6)
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._bus = EventBus((STATUS_TOPIC, TEXT_TOPIC))
        self._status = SessionStatus.IDLE
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listener: Optional[asyncio.Task[None]] = None
        self._setup_complete = False
        self._pending: deque[ContentFrame] = deque()
        self._connect_lock = asyncio.Lock()
        self._generation = 0
        self._generation_ended = False

    def __repr__(self) -> str:
        return (
            f"<LiveSessionHandler session_id={self.session_id} "
            f"model={self.config.model_id} status={self._status.value}>"
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_ready(self) -> bool:
        return self._ws is not None and self._setup_complete

    @property
    def pending_count(self) -> int:
        """Number of user turns waiting for the handshake to complete."""
        return len(self._pending)

    def status_events(self) -> Subscription[StatusEvent]:
        """Subscribe to status transitions published from now on."""
        return self._bus.subscribe(STATUS_TOPIC)

    def text_chunks(self) -> Subscription[Any]:
        """Subscribe to text fragments (``str``) and ``END_OF_TURN`` markers published from now on."""
        return self._bus.subscribe(TEXT_TOPIC)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @timed
    async def connect(self) -> None:
        """Open the socket and send the setup frame.

        A no-op while a connection attempt is running or a socket is open.

        Raises:
            ConfigurationError: the credential is missing or empty. Nothing is
                emitted and no connection is attempted.
            TransportError: the socket could not be opened. ``error`` is emitted
                first and the handle is cleared, so ``connect()`` may be retried.
        """
        credential = (self.config.credential or "").strip()
        if not credential:
            raise ConfigurationError("Gemini API key is missing. Set GEMINI_API_KEY or pass a credential.")
        if self._ws is not None or self._connect_lock.locked():
            return

        async with self._connect_lock:
            token = SessionLogger.session_id.set(self.session_id)
            try:
                await self._open(credential)
            finally:
                SessionLogger.session_id.reset(token)

    async def _open(self, credential: str) -> None:
        generation = self._generation
        timeout = self.config.connect_timeout_seconds
        url = self._build_url(credential)
        safe_url = _redact_url_key(url)
        self._set_status(SessionStatus.CONNECTING)

        session = self._ensure_http_session()
        try:
            with timing_scope("live.ws_connect"):
                ws = await asyncio.wait_for(
                    session.ws_connect(url, headers={_API_KEY_HEADER: credential}),
                    timeout=timeout,
                )
        except asyncio.TimeoutError as exc:
            error = TransportError(
                f"Timed out after {timeout:g}s opening the live session",
                url=safe_url,
                timeout_seconds=timeout,
            )
            self._fail_connect(generation, error)
            raise error from exc
        except (aiohttp.ClientError, OSError) as exc:
            error = TransportError(f"Could not open the live session: {exc}", url=safe_url)
            self._fail_connect(generation, error)
            raise error from exc

        if generation != self._generation:
            # disconnect() ran while the handshake was in flight.
            self.logger.debug("Discarding socket opened after disconnect (%s)", safe_url)
            await self._close_quietly(ws)
            return

        self._ws = ws
        self._setup_complete = False
        self._set_status(SessionStatus.CONNECTED)
        timing_mark("live.socket_open")

        setup = SetupFrame(
            model=self.config.model_id,
            generation_config=self.config.generation,
            system_instruction=self.config.system_instruction,
        )
        try:
            await self._send_payload(ws, setup.to_payload())
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            if generation != self._generation:
                self.logger.debug("Setup frame interrupted by disconnect: %s", exc)
                return
            error = TransportError(f"Could not send the setup frame: {exc}", url=safe_url)
            self._clear_transport()
            self._set_status(SessionStatus.ERROR, str(error))
            await self._close_quietly(ws)
            raise error from exc
        timing_mark("live.setup_sent")
        if self._ws is not ws:
            return

        self._listener = asyncio.create_task(self._listen(ws), name=f"gemini-live-listener-{self.session_id}")

    def _fail_connect(self, generation: int, error: TransportError) -> None:
        self.logger.warning("Live connect failed: %s", error)
        if generation != self._generation:
            return
        self._clear_transport()
        self._set_status(SessionStatus.ERROR, str(error))

    @timed
    async def disconnect(self) -> None:
        """Tear the session down; safe to call repeatedly or before ``connect()``.

        Events already published stay readable by subscribers. Turns still
        queued for the handshake are discarded.
        """
        self._generation += 1
        ws, listener = self._ws, self._listener
        self._clear_transport()

        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
            await asyncio.wait({listener})
        if ws is not None:
            await self._close_quietly(ws)

        if self._pending:
            self.logger.warning("Discarding %d queued turn(s) on disconnect", len(self._pending))
            self._pending.clear()

        if self._status is not SessionStatus.DISCONNECTED:
            self._set_status(SessionStatus.DISCONNECTED)

    @timed
    async def close(self) -> None:
        """Disconnect, end both topics and release the owned HTTP session."""
        await self.disconnect()
        self._bus.close()
        session = self._http_session
        if self._owns_http_session and session is not None and not session.closed:
            await session.close()
        self._http_session = None

    async def __aenter__(self) -> "LiveSessionHandler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Outbound turns
    # ------------------------------------------------------------------

    async def send_text(self, text: str) -> None:
        """Send one complete user turn made of a single text part."""
        await self.send_frame(ContentFrame.from_text(text))

    async def send_turn(self, text: Optional[str] = None, images: Iterable[ImageInput] = ()) -> None:
        """Send one user turn with optional text and inline images.

        ``images`` entries may be raw JPEG bytes, ``(bytes, mime_type)`` pairs or
        prebuilt :class:`Part` objects.
        """
        parts: list[Part] = []
        if text:
            parts.append(Part(text=text))
        parts.extend(to_image_part(image) for image in images)
        await self.send_frame(ContentFrame.from_parts(parts))

    @timed
    async def send_frame(self, frame: ContentFrame) -> None:
        """Transmit ``frame`` now if the session is ready, otherwise queue it.

        Connects first when no socket is open. Queued frames go out in FIFO
        order once ``setupComplete`` arrives.

        Raises:
            ConfigurationError, TransportError: from the implicit ``connect()``.
        """
        if self._ws is None and not self._connect_lock.locked():
            await self.connect()

        ws = self._ws
        if ws is None or not self._setup_complete or self._pending:
            self._pending.append(frame)
            self.logger.debug("Queued user turn until the session is ready (%d pending)", len(self._pending))
            return

        if not await self._transmit(ws, frame):
            self._pending.append(frame)

    async def _flush_pending(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Send queued turns in order; stop at the first failed write."""
        while self._pending and self._ws is ws and self._setup_complete:
            frame = self._pending[0]
            if not await self._transmit(ws, frame):
                return
            # The head may only leave the queue once it is on the wire.
            self._pending.popleft()

    async def _transmit(self, ws: aiohttp.ClientWebSocketResponse, frame: ContentFrame) -> bool:
        try:
            await self._send_payload(ws, frame.to_payload())
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            self.logger.warning("Could not send user turn, keeping it queued: %s", exc)
            return False
        return True

    async def _send_payload(self, ws: aiohttp.ClientWebSocketResponse, payload: dict[str, Any]) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Live frame sent: %s", json.dumps(_redact_payload_blobs(payload), ensure_ascii=False))
        await ws.send_str(json.dumps(payload, ensure_ascii=False))

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def _listen(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Read frames until the socket ends; sole writer of session state after the handshake."""
        SessionLogger.session_id.set(self.session_id)
        failure: Optional[BaseException] = None
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._dispatch(ws, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    failure = ws.exception() or msg.data or RuntimeError("WebSocket error frame")
                    break
                else:
                    break
        except (aiohttp.ClientError, OSError) as exc:
            failure = exc
        except Exception as exc:
            self.logger.error("Live listener failed unexpectedly: %s", exc, exc_info=True)
            failure = exc

        if self._ws is not ws:
            return
        self._clear_transport()
        if failure is not None:
            error = TransportError(f"Live session transport failed: {failure}")
            self.logger.warning("%s", error)
            self._set_status(SessionStatus.ERROR, str(error))
        else:
            closure = RemoteClosure(ws.close_code)
            self.logger.info("%s", closure)
            self._set_status(SessionStatus.CLOSED, str(closure))

    async def _dispatch(self, ws: aiohttp.ClientWebSocketResponse, raw: Union[str, bytes]) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Live frame received: %s", raw if isinstance(raw, str) else f"<{len(raw)} bytes>")
        try:
            event = decode_server_frame(raw)
        except ProtocolDecodeError as exc:
            self.logger.warning("Ignoring malformed live frame: %s (frame: %s)", exc, exc.excerpt)
            return

        if isinstance(event, SetupAck):
            if self._setup_complete:
                self.logger.debug("Ignoring repeated setupComplete")
                return
            self._setup_complete = True
            timing_mark("live.setup_ack")
            self._set_status(SessionStatus.READY)
            await self._flush_pending(ws)
        elif isinstance(event, ContentDelta):
            self._publish_delta(event)
        else:
            self.logger.debug("Ignoring live frame with keys %s", ", ".join(event.keys) or "<none>")

    def _publish_delta(self, delta: ContentDelta) -> None:
        if delta.texts:
            self._generation_ended = False
        for text in delta.texts:
            self._bus.publish(TEXT_TOPIC, text)
        if delta.interrupted:
            self.logger.debug("Model turn interrupted")
        if not delta.ends_turn:
            return
        # A bare turnComplete right after generationComplete closes the same turn.
        if self._generation_ended and delta.turn_complete and not delta.texts:
            self._generation_ended = False
            return
        self._generation_ended = delta.generation_complete and not delta.turn_complete
        self._bus.publish(TEXT_TOPIC, END_OF_TURN)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_status(self, status: SessionStatus, detail: Optional[str] = None) -> None:
        self._status = status
        if detail:
            self.logger.info("Live status -> %s (%s)", status.value, detail)
        else:
            self.logger.info("Live status -> %s", status.value)
        self._bus.publish(STATUS_TOPIC, StatusEvent(status, detail))

    def _clear_transport(self) -> None:
        self._ws = None
        self._listener = None
        self._setup_complete = False
        self._generation_ended = False

    def _build_url(self, credential: str) -> str:
        base = self.config.ws_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}key={quote(credential, safe='')}"

    def _ensure_http_session(self) -> aiohttp.ClientSession:
        session = self._http_session
        if session is None or session.closed:
            session = aiohttp.ClientSession()
            self._http_session = session
            self._owns_http_session = True
        return session

    async def _close_quietly(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            await ws.close()
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            self.logger.debug("Ignoring error while closing live socket: %s", exc)


async def collect_turn(subscription: Subscription[Any], *, timeout: Optional[float] = None) -> str:
    """Join text fragments from ``subscription`` up to the next ``END_OF_TURN``.

    Returns whatever arrived if the topic closes first.

    Raises:
        asyncio.TimeoutError: the turn did not complete within ``timeout`` seconds.
    """

    async def _collect() -> str:
        fragments: list[str] = []
        async for item in subscription:
            if item is END_OF_TURN:
                break
            fragments.append(item)
        return "".join(fragments)

    if timeout is None:
        return await _collect()
    return await asyncio.wait_for(_collect(), timeout=timeout)
