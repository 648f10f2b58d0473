"""Core infrastructure module.

Foundation services required by the live and streaming subsystems:
- Configuration schemas (Valves, EncryptedStr, GenerationConfig, SessionConfig)
- Error taxonomy and error message formatting
- Session logging
- Timing instrumentation
- Pure utility functions
"""

from .config import Valves, EncryptedStr, GenerationConfig, SessionConfig, LOGGER
from .errors import (
    GeminiClientError,
    ConfigurationError,
    TransportError,
    ProtocolDecodeError,
    RemoteClosure,
    GeminiAPIError,
)
from .logging_system import SessionLogger
from .utils import (
    _coerce_bool,
    _safe_json_loads,
    _render_error_template,
    _pretty_json,
)

__all__ = [
    "Valves",
    "EncryptedStr",
    "GenerationConfig",
    "SessionConfig",
    "LOGGER",
    "GeminiClientError",
    "ConfigurationError",
    "TransportError",
    "ProtocolDecodeError",
    "RemoteClosure",
    "GeminiAPIError",
    "SessionLogger",
    "_coerce_bool",
    "_safe_json_loads",
    "_render_error_template",
    "_pretty_json",
]
