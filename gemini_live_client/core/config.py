"""Configuration management for the Gemini Live client.

This module contains configuration schemas, constants, and valve definitions:
- Valves: Global configuration (API key, model ids, generation parameters, timeouts)
- EncryptedStr: Secret value encryption wrapper
- GenerationConfig: Decoding parameters shared by the live and REST transports
- SessionConfig: Immutable per-session struct handed to the live session handler
- Error template constants
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Any, Literal, Optional, cast

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_DEFAULT_LIVE_WS_URL = (
    "wss://generativelanguage.googleapis.com/"
    "ws/google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
_DEFAULT_LIVE_MODEL_ID = "gemini-2.0-flash-live-001"
_DEFAULT_MODEL_ID = "gemini-flash-latest"
_DEFAULT_SYSTEM_INSTRUCTION = "You are a helpful, concise assistant. Keep responses tight unless asked."
_API_KEY_HEADER = "x-goog-api-key"
_SECRET_KEY_ENV = "GEMINI_CLIENT_SECRET_KEY"

DEFAULT_API_ERROR_TEMPLATE = (
    "{{#if heading}}\n"
    "### 🚫 {heading} could not process your request.\n\n"
    "{{/if}}\n"
    "{{#if error_id}}\n"
    "- **Error ID**: `{error_id}`\n"
    "{{/if}}\n"
    "{{#if timestamp}}\n"
    "- **Time**: {timestamp}\n"
    "{{/if}}\n"
    "{{#if status}}\n"
    "- **Status**: `{status} {reason}`\n"
    "{{/if}}\n"
    "{{#if api_status}}\n"
    "- **API status**: `{api_status}`\n"
    "{{/if}}\n"
    "{{#if api_message}}\n"
    "### Error: `{api_message}`\n"
    "{{/if}}\n"
    "{{#if raw_body}}\n"
    "\n**Raw response:**\n"
    "```\n{raw_body}\n```\n"
    "{{/if}}\n"
)

DEFAULT_CONNECTION_ERROR_TEMPLATE = (
    "### 🔌 Connection Failed\n\n"
    "Could not reach the Gemini Live endpoint.\n\n"
    "{{#if error_id}}\n"
    "**Error ID:** `{error_id}`\n"
    "{{/if}}\n"
    "{{#if detail}}\n"
    "**Detail:** `{detail}`\n"
    "{{/if}}\n"
    "{{#if timeout_seconds}}\n"
    "**Timeout:** {timeout_seconds}s\n"
    "{{/if}}\n\n"
    "**What to do:**\n"
    "- Check your network connection\n"
    "- Try connecting again in a few moments\n"
)

DEFAULT_AUTHENTICATION_ERROR_TEMPLATE = (
    "### 🔐 Authentication Failed\n\n"
    "The Gemini API rejected the configured API key.\n\n"
    "{{#if error_id}}\n"
    "**Error ID:** `{error_id}`\n"
    "{{/if}}\n"
    "{{#if api_message}}\n"
    "**Message:** `{api_message}`\n"
    "{{/if}}\n\n"
    "Set `GEMINI_API_KEY` to a valid key and try again.\n"
)

DEFAULT_RATE_LIMIT_TEMPLATE = (
    "### ⏸️ Rate Limit Exceeded\n\n"
    "Too many requests were sent to the Gemini API.\n\n"
    "{{#if error_id}}\n"
    "**Error ID:** `{error_id}`\n"
    "{{/if}}\n"
    "{{#if retry_after_seconds}}\n"
    "**Retry after:** {retry_after_seconds}s\n"
    "{{/if}}\n\n"
    "Wait a moment before sending another message.\n"
)

_ALLOWED_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# -----------------------------------------------------------------------------
# EncryptedStr
# -----------------------------------------------------------------------------

class EncryptedStr(str):
    """String wrapper that automatically encrypts/decrypts valve values."""

    _ENCRYPTION_PREFIX = "encrypted:"

    @classmethod
    @timed
    def _get_encryption_key(cls) -> Optional[bytes]:
        """Return the Fernet key derived from ``GEMINI_CLIENT_SECRET_KEY`` or ``None``."""
        secret = os.getenv(_SECRET_KEY_ENV)
        if not secret:
            return None
        hashed_key = hashlib.sha256(secret.encode()).digest()
        return base64.urlsafe_b64encode(hashed_key)

    @classmethod
    @timed
    def encrypt(cls, value: str) -> str:
        """Encrypt ``value`` when an application secret is configured.

        Returns:
            str: Ciphertext prefixed with ``encrypted:`` or the original value.
        """
        if not value or value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value
        encrypted = Fernet(key).encrypt(value.encode())
        return f"{cls._ENCRYPTION_PREFIX}{encrypted.decode()}"

    @classmethod
    @timed
    def decrypt(cls, value: str) -> str:
        """Decrypt values produced by :meth:`encrypt`.

        Returns:
            str: Decrypted plain text, or the original value when it cannot be decrypted.
        """
        if not value or not value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value[len(cls._ENCRYPTION_PREFIX) :]
        try:
            encrypted_part = value[len(cls._ENCRYPTION_PREFIX) :]
            return Fernet(key).decrypt(encrypted_part.encode()).decode()
        except InvalidToken:
            LOGGER.warning("Failed to decrypt value: invalid token or key mismatch")
            return value
        except (ValueError, UnicodeDecodeError) as e:
            LOGGER.warning(f"Failed to decrypt value: {type(e).__name__}: {e}")
            return value

    @classmethod
    def __get_pydantic_core_schema__(
        cls, _source_type: Any, _handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        """Expose a union schema so plain strings auto-wrap as EncryptedStr."""
        return core_schema.union_schema(
            [
                core_schema.is_instance_schema(cls),
                core_schema.chain_schema(
                    [
                        core_schema.str_schema(),
                        core_schema.no_info_plain_validator_function(
                            lambda value: cls(cls.encrypt(value) if value else value)
                        ),
                    ]
                ),
            ],
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda instance: str(instance)
            ),
        )


@timed
def _default_api_key() -> EncryptedStr:
    """Return the API key env default as EncryptedStr."""
    return EncryptedStr((os.getenv("GEMINI_API_KEY") or "").strip())


def _env_or_default(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


@timed
def _resolve_log_level_default() -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    """Normalize env-provided log level to the allowed literal set."""
    value = (os.getenv("GLOBAL_LOG_LEVEL") or "INFO").strip().upper()
    if value not in _ALLOWED_LOG_LEVELS:
        value = "INFO"
    return cast(Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], value)


# -----------------------------------------------------------------------------
# Valves
# -----------------------------------------------------------------------------

class Valves(BaseModel):
    """Global valve configuration, defaulted from the process environment."""

    # Connection & Auth
    API_KEY: EncryptedStr = Field(
        default_factory=_default_api_key,
        description="Your Gemini API key. Defaults to the GEMINI_API_KEY environment variable.",
    )
    BASE_URL: str = Field(
        default_factory=lambda: _env_or_default("GEMINI_API_BASE_URL", _DEFAULT_BASE_URL),
        description="REST base URL used by the streamed chat helper.",
    )
    LIVE_WS_URL: str = Field(
        default_factory=lambda: _env_or_default("GEMINI_LIVE_WS_URL", _DEFAULT_LIVE_WS_URL),
        description="WebSocket endpoint of the bidirectional generate-content service.",
    )
    CONNECT_TIMEOUT_SECONDS: float = Field(
        default=20,
        gt=0,
        description="Seconds to wait for the live WebSocket handshake before reporting a transport error.",
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=20,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection of REST requests.",
    )
    HTTP_SOCK_READ_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Idle read timeout (seconds) applied to streamed REST responses.",
    )
    HTTP_MAX_RETRIES: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made to open a streamed REST request on 429/5xx or network errors.",
    )

    # Models
    LIVE_MODEL_ID: str = Field(
        default_factory=lambda: _env_or_default("GEMINI_LIVE_MODEL_ID", _DEFAULT_LIVE_MODEL_ID),
        description="Model used by the live streaming session.",
    )
    MODEL_ID: str = Field(
        default_factory=lambda: _env_or_default("GEMINI_MODEL_ID", _DEFAULT_MODEL_ID),
        description="Model used by the streamed REST chat.",
    )

    # Generation
    TEMPERATURE: float = Field(default=0.7, ge=0, le=2)
    TOP_K: int = Field(default=40, ge=1)
    TOP_P: float = Field(default=0.95, ge=0, le=1)
    MAX_OUTPUT_TOKENS: int = Field(default=1024, ge=1)
    SYSTEM_INSTRUCTION: str = Field(
        default=_DEFAULT_SYSTEM_INSTRUCTION,
        description="System instruction sent in the setup handshake.",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default_factory=_resolve_log_level_default,
        description="Minimum level written by SessionLogger. Defaults to GLOBAL_LOG_LEVEL.",
    )
    SESSION_LOG_MAX_LINES: int = Field(default=2000, ge=100, le=200000)
    ENABLE_TIMING_LOG: bool = Field(default=False)
    TIMING_LOG_FILE: str = Field(default="logs/timing.jsonl")

    def generation_config(self) -> "GenerationConfig":
        return GenerationConfig(
            temperature=self.TEMPERATURE,
            top_k=self.TOP_K,
            top_p=self.TOP_P,
            max_output_tokens=self.MAX_OUTPUT_TOKENS,
        )


# -----------------------------------------------------------------------------
# Generation & session configuration
# -----------------------------------------------------------------------------

class GenerationConfig(BaseModel):
    """Decoding parameters; dumps with the wire's camelCase names when ``by_alias=True``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    temperature: float = 0.7
    top_k: int = Field(default=40, alias="topK")
    top_p: float = Field(default=0.95, alias="topP")
    max_output_tokens: int = Field(default=1024, alias="maxOutputTokens")
    response_modalities: tuple[str, ...] = Field(default=("TEXT",), alias="responseModalities")

    def to_wire(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        payload["responseModalities"] = list(self.response_modalities)
        return payload


class SessionConfig(BaseModel):
    """Immutable configuration consumed by :class:`LiveSessionHandler`.

    The credential is validated lazily: an empty value is accepted here and
    rejected by ``connect()`` with ``ConfigurationError``.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    credential: str = Field(default="", repr=False)
    model_id: str = _DEFAULT_LIVE_MODEL_ID
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    system_instruction: str = _DEFAULT_SYSTEM_INSTRUCTION
    ws_url: str = _DEFAULT_LIVE_WS_URL
    connect_timeout_seconds: float = Field(default=20, gt=0)

    @classmethod
    @timed
    def from_valves(cls, valves: Valves) -> "SessionConfig":
        return cls(
            credential=EncryptedStr.decrypt(str(valves.API_KEY or "")).strip(),
            model_id=valves.LIVE_MODEL_ID,
            generation=valves.generation_config(),
            system_instruction=valves.SYSTEM_INSTRUCTION,
            ws_url=valves.LIVE_WS_URL,
            connect_timeout_seconds=valves.CONNECT_TIMEOUT_SECONDS,
        )
