"""Function timing instrumentation with direct JSONL file output.

Provides:
- @timed decorator for function entrance/exit events
- timing_scope() context manager for code block timing
- timing_mark() for point-in-time events (socket open, first chunk, ...)

Usage:
    from .core.timing_logger import timed, timing_scope, timing_mark

    @timed
    async def connect():
        with timing_scope("ws_connect"):
            ws = await session.ws_connect(url)
        timing_mark("setup_sent")

Enable via valve: ENABLE_TIMING_LOG=True
Output file: TIMING_LOG_FILE (default: logs/timing.jsonl)
"""

from __future__ import annotations

import datetime
import functools
import inspect
import json
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar

# -----------------------------------------------------------------------------
# Global file output state
# -----------------------------------------------------------------------------

_timing_file_lock = threading.Lock()
_timing_file_path: Optional[Path] = None
_timing_file_handle: Optional[Any] = None

_timing_events: Dict[str, Deque[Dict[str, Any]]] = {}
_timing_lock = threading.Lock()

_timing_enabled: ContextVar[bool] = ContextVar("timing_enabled", default=False)
_timing_session_id: ContextVar[Optional[str]] = ContextVar("timing_session_id", default=None)

MAX_TIMING_EVENTS = 10000


@dataclass(slots=True)
class TimingEvent:
    """Single timing event for entrance, exit or mark."""

    ts: float  # perf_counter, relative
    wall_ts: float
    event: str
    label: str
    elapsed_ms: Optional[float] = None


def _format_iso_utc(wall_ts: float) -> str:
    dt = datetime.datetime.fromtimestamp(wall_ts, tz=datetime.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _record_event(event: TimingEvent) -> None:
    """Append the event to the per-session buffer and the JSONL file (if open)."""
    if not _timing_enabled.get():
        return
    session_id = _timing_session_id.get()
    if not session_id:
        return

    record: Dict[str, Any] = {
        "ts": _format_iso_utc(event.wall_ts),
        "perf_ts": round(event.ts, 6),
        "event": event.event,
        "label": event.label,
        "session_id": session_id,
    }
    if event.elapsed_ms is not None:
        record["elapsed_ms"] = round(event.elapsed_ms, 3)

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
                _timing_file_handle.flush()
            except OSError:
                pass  # timing output must never break a live session

    with _timing_lock:
        buffer = _timing_events.get(session_id)
        if buffer is None:
            buffer = deque(maxlen=MAX_TIMING_EVENTS)
            _timing_events[session_id] = buffer
        buffer.append(record)


# -----------------------------------------------------------------------------
# Public API: file configuration
# -----------------------------------------------------------------------------


def configure_timing_file(file_path: str) -> bool:
    """Open ``file_path`` for appending timing records, creating parent dirs.

    Returns:
        True if the file is open for writing, False otherwise.
    """
    global _timing_file_path, _timing_file_handle

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
            _timing_file_handle = None
        try:
            path = Path(file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            _timing_file_handle = open(path, "a", encoding="utf-8")
            _timing_file_path = path
            return True
        except OSError:
            _timing_file_path = None
            _timing_file_handle = None
            return False


def close_timing_file() -> None:
    """Close the timing log file. Safe to call multiple times."""
    global _timing_file_handle, _timing_file_path

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
        _timing_file_handle = None
        _timing_file_path = None


# -----------------------------------------------------------------------------
# Public API: context management
# -----------------------------------------------------------------------------


def set_timing_context(session_id: str, enabled: bool) -> None:
    """Bind timing output to ``session_id`` for the current context."""
    _timing_session_id.set(session_id)
    _timing_enabled.set(enabled)


def clear_timing_context() -> None:
    _timing_session_id.set(None)
    _timing_enabled.set(False)


def get_timing_events(session_id: str) -> List[Dict[str, Any]]:
    with _timing_lock:
        buffer = _timing_events.get(session_id)
        return list(buffer) if buffer else []


def clear_timing_events(session_id: str) -> None:
    with _timing_lock:
        _timing_events.pop(session_id, None)


# -----------------------------------------------------------------------------
# Public API: marks, scopes and @timed
# -----------------------------------------------------------------------------


def timing_mark(label: str) -> None:
    """Record a single point-in-time event (e.g. ``setup_ack_received``)."""
    if not _timing_enabled.get():
        return
    _record_event(TimingEvent(ts=time.perf_counter(), wall_ts=time.time(), event="mark", label=label))


@contextmanager
def timing_scope(label: str):
    """Context manager recording enter/exit events with elapsed time."""
    if not _timing_enabled.get():
        yield
        return
    start_perf = time.perf_counter()
    _record_event(TimingEvent(ts=start_perf, wall_ts=time.time(), event="enter", label=label))
    try:
        yield
    finally:
        end_perf = time.perf_counter()
        _record_event(
            TimingEvent(
                ts=end_perf,
                wall_ts=time.time(),
                event="exit",
                label=label,
                elapsed_ms=(end_perf - start_perf) * 1000,
            )
        )


F = TypeVar("F", bound=Callable[..., Any])


def timed(func: F) -> F:
    """Decorator recording entrance/exit of sync and async functions.

    The label is the function's module-relative qualified name, e.g.
    ``live.session.LiveSessionHandler.connect``.
    """
    module = getattr(func, "__module__", "") or ""
    qualname = getattr(func, "__qualname__", "") or getattr(func, "__name__", "unknown")
    if module.startswith("gemini_live_client."):
        module = module[len("gemini_live_client.") :]
    label = f"{module}.{qualname}" if module else qualname

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _timing_enabled.get():
                return await func(*args, **kwargs)
            with timing_scope(label):
                return await func(*args, **kwargs)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _timing_enabled.get():
            return func(*args, **kwargs)
        with timing_scope(label):
            return func(*args, **kwargs)

    return sync_wrapper  # type: ignore[return-value]
