"""Logging system with session-based log capture.

This module handles all logging-related functionality:
- SessionLogger: Per-session logger with context-aware buffering
- Log event classification and formatting
- Explicit cleanup of stale session buffers

The SessionLogger uses contextvars to track the live session id, so every record
emitted from a session's listener task is tagged with the session it belongs to.
"""

from __future__ import annotations

import datetime
import logging
import sys
import threading
import time
import traceback
from collections import deque
from contextvars import ContextVar
from typing import Any, Dict, Optional

from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)


class SessionLogger:
    """Logger factory that writes console lines and keeps an in-memory buffer per session.

    Attributes:
        session_id: ContextVar storing the live session id.
        log_level:  ContextVar storing the minimum console level for the session.
        logs:       Map of session_id -> fixed-size deque of structured log events (dicts).
    """

    session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
    log_level: ContextVar[int] = ContextVar("log_level", default=logging.INFO)
    max_lines: int = 2000
    logs: Dict[str, deque[dict[str, Any]]] = {}
    _session_last_seen: Dict[str, float] = {}
    _state_lock = threading.Lock()
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @staticmethod
    def _classify_event_type(message: str) -> str:
        msg = (message or "").lstrip()
        if msg.startswith("Live frame sent:"):
            return "live.frame.outbound"
        if msg.startswith("Live frame received:"):
            return "live.frame.inbound"
        if msg.startswith("Live status"):
            return "live.status"
        if msg.startswith("SSE "):
            return "rest.sse"
        return "client"

    @classmethod
    @timed
    def _build_event(cls, record: logging.LogRecord) -> dict[str, Any]:
        """Return a structured session log event extracted from a LogRecord."""
        message = record.getMessage()
        event: dict[str, Any] = {
            "created": float(getattr(record, "created", time.time())),
            "level": str(getattr(record, "levelname", "INFO") or "INFO"),
            "logger": str(getattr(record, "name", "") or ""),
            "session_id": getattr(record, "session_id", None),
            "event_type": cls._classify_event_type(message),
            "func": str(getattr(record, "funcName", "") or ""),
            "lineno": int(getattr(record, "lineno", 0) or 0),
            "message": message,
        }
        if record.exc_text:
            event["exception"] = {"text": str(record.exc_text)}
        elif record.exc_info:
            event["exception"] = {"text": "".join(traceback.format_exception(*record.exc_info))}
        return event

    @classmethod
    def format_event_as_text(cls, event: dict[str, Any]) -> str:
        """Render a buffered event as a single log line."""
        created = event.get("created")
        if not isinstance(created, (int, float)):
            created = time.time()
        asctime = datetime.datetime.fromtimestamp(created).strftime("%Y-%m-%d %H:%M:%S,%f")[:-3]
        level = str(event.get("level") or "INFO")
        sid = str(event.get("session_id") or "-")
        return f"{asctime} [{level}] [session={sid}] {event.get('message') or ''}"

    @classmethod
    @timed
    def get_logger(cls, name=__name__):
        """Create a logger wired to the current SessionLogger context.

        Args:
            name: Logger name; defaults to the current module name.

        Returns:
            logging.Logger: A logger that writes to stdout and to the in-memory
            `SessionLogger.logs` buffer keyed by the current session id.
        """
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.filters.clear()
        logger.setLevel(logging.DEBUG)
        root_logger = logging.getLogger()
        if not any(isinstance(h, logging.NullHandler) for h in root_logger.handlers):
            root_logger.addHandler(logging.NullHandler())
        logger.propagate = True

        def _attach_session(record: logging.LogRecord) -> bool:
            record.session_id = cls.session_id.get()
            record.session_log_level = cls.log_level.get()
            return True

        # On the handler so records propagated from child loggers are tagged too.
        handler = logging.Handler()
        handler.addFilter(_attach_session)
        handler.emit = cls.process_record  # type: ignore[assignment]
        logger.addHandler(handler)
        return logger

    @classmethod
    def set_max_lines(cls, value: int) -> None:
        """Set the maximum in-memory lines retained per session (clamped)."""
        cls.max_lines = max(100, min(200000, int(value)))

    @classmethod
    def process_record(cls, record: logging.LogRecord) -> None:
        session_log_level = getattr(record, "session_log_level", logging.INFO)
        if record.levelno >= int(session_log_level):
            try:
                sys.stdout.write(cls._console_formatter.format(record) + "\n")
                sys.stdout.flush()
            except (OSError, ValueError):
                pass  # closed stdout during interpreter shutdown
        session_id = getattr(record, "session_id", None)
        if not session_id:
            return
        event = cls._build_event(record)
        with cls._state_lock:
            buffer = cls.logs.get(session_id)
            if buffer is None or buffer.maxlen != cls.max_lines:
                buffer = deque(buffer or (), maxlen=cls.max_lines)
                cls.logs[session_id] = buffer
            buffer.append(event)
            cls._session_last_seen[session_id] = time.time()

    @classmethod
    def session_events(cls, session_id: str) -> list[dict[str, Any]]:
        with cls._state_lock:
            return list(cls.logs.get(session_id) or ())

    @classmethod
    @timed
    def cleanup(cls, max_age_seconds: float = 3600) -> None:
        """Remove session buffers idle for longer than ``max_age_seconds``."""
        cutoff = time.time() - max_age_seconds
        with cls._state_lock:
            stale = [sid for sid, ts in cls._session_last_seen.items() if ts < cutoff]
            for sid in stale:
                cls.logs.pop(sid, None)
                cls._session_last_seen.pop(sid, None)
