"""Shared live-session constants."""

from __future__ import annotations

from enum import Enum


class SessionStatus(str, Enum):
    """Observable connection states, published on the status topic."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"
    DISCONNECTED = "disconnected"


class _EndOfTurn:
    """Singleton marker published on the text topic after a model turn completes.

    It is not a ``str``, so it can never be confused with a real text fragment.
    """

    _instance: "_EndOfTurn | None" = None

    def __new__(cls) -> "_EndOfTurn":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_TURN"

    def __reduce__(self) -> str:
        return "END_OF_TURN"


END_OF_TURN = _EndOfTurn()

# Topics of the session event bus.
STATUS_TOPIC = "status"
TEXT_TOPIC = "text"

# Inbound frame markers.
SETUP_COMPLETE_KEY = "setupComplete"
SERVER_CONTENT_KEY = "serverContent"
