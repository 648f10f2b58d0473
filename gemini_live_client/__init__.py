"""Gemini Live streaming client.

This package provides a client for Gemini's bidirectional Live API, including:
- Live subsystem: LiveSessionHandler, wire frames, event bus
- Streaming subsystem: SSE parser and multi-turn REST chat stream
- Infrastructure modules: config, errors, logging, timing, helpers
- CLI: ``gemini-live`` terminal chat

IMPORTANT: This module uses LAZY LOADING. Imports are deferred until accessed
via __getattr__, so ``import gemini_live_client`` does not pull in aiohttp,
pydantic or cryptography.
"""

from typing import TYPE_CHECKING

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("gemini-live-client")
except Exception:
    __version__ = "0.1.0"  # Fallback if not installed as package

# -----------------------------------------------------------------------------
# Type hints only (no runtime import)
# -----------------------------------------------------------------------------

if TYPE_CHECKING:
    from .core.config import Valves, EncryptedStr, GenerationConfig, SessionConfig
    from .core.errors import (
        GeminiClientError,
        ConfigurationError,
        TransportError,
        ProtocolDecodeError,
        RemoteClosure,
        GeminiAPIError,
    )
    from .core.logging_system import SessionLogger
    from .live.constants import END_OF_TURN, SessionStatus
    from .live.event_bus import EventBus, Subscription
    from .live.frames import StatusEvent, ContentFrame, SetupFrame, Part
    from .live.session import LiveSessionHandler, collect_turn
    from .streaming.chat_stream import GeminiChatStream
    from .streaming.sse_parser import SSEParser


# -----------------------------------------------------------------------------
# Public API - All lazy loaded
# -----------------------------------------------------------------------------

__all__ = [
    # Version
    "__version__",

    # Live session
    "LiveSessionHandler",
    "collect_turn",
    "SessionStatus",
    "StatusEvent",
    "END_OF_TURN",
    "EventBus",
    "Subscription",
    "ContentFrame",
    "SetupFrame",
    "Part",

    # Configuration
    "Valves",
    "EncryptedStr",
    "GenerationConfig",
    "SessionConfig",

    # Error handling
    "GeminiClientError",
    "ConfigurationError",
    "TransportError",
    "ProtocolDecodeError",
    "RemoteClosure",
    "GeminiAPIError",

    # REST streaming
    "GeminiChatStream",
    "SSEParser",

    # Logging
    "SessionLogger",
]

_cache: dict = {}

_LAZY_IMPORTS = {
    # Live
    "LiveSessionHandler": (".live.session", "LiveSessionHandler"),
    "collect_turn": (".live.session", "collect_turn"),
    "SessionStatus": (".live.constants", "SessionStatus"),
    "END_OF_TURN": (".live.constants", "END_OF_TURN"),
    "StatusEvent": (".live.frames", "StatusEvent"),
    "ContentFrame": (".live.frames", "ContentFrame"),
    "SetupFrame": (".live.frames", "SetupFrame"),
    "Part": (".live.frames", "Part"),
    "EventBus": (".live.event_bus", "EventBus"),
    "Subscription": (".live.event_bus", "Subscription"),

    # Config
    "Valves": (".core.config", "Valves"),
    "EncryptedStr": (".core.config", "EncryptedStr"),
    "GenerationConfig": (".core.config", "GenerationConfig"),
    "SessionConfig": (".core.config", "SessionConfig"),

    # Errors
    "GeminiClientError": (".core.errors", "GeminiClientError"),
    "ConfigurationError": (".core.errors", "ConfigurationError"),
    "TransportError": (".core.errors", "TransportError"),
    "ProtocolDecodeError": (".core.errors", "ProtocolDecodeError"),
    "RemoteClosure": (".core.errors", "RemoteClosure"),
    "GeminiAPIError": (".core.errors", "GeminiAPIError"),

    # Streaming
    "GeminiChatStream": (".streaming.chat_stream", "GeminiChatStream"),
    "SSEParser": (".streaming.sse_parser", "SSEParser"),

    # Logging
    "SessionLogger": (".core.logging_system", "SessionLogger"),
}


def __getattr__(name: str):
    """Lazy-load module attributes on first access."""
    if name in _cache:
        return _cache[name]

    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib
        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        _cache[name] = value
        globals()[name] = value
        return value

    # Submodule shortcuts (e.g., gemini_live_client.errors)
    submodules = {
        "errors": ".core.errors",
        "config": ".core.config",
        "utils": ".core.utils",
        "logging_system": ".core.logging_system",
        "timing_logger": ".core.timing_logger",
        "session": ".live.session",
        "frames": ".live.frames",
    }
    if name in submodules:
        import importlib
        module = importlib.import_module(submodules[name], __name__)
        _cache[name] = module
        globals()[name] = module
        return module

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
