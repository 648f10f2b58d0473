"""Wire frames of the bidirectional generate-content protocol.

Outbound frames are pydantic models serialised with the wire's camelCase
field names; inbound frames are decoded into one of three event variants:
``SetupAck``, ``ContentDelta`` or ``UnknownEvent``.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import GenerationConfig
from ..core.errors import ProtocolDecodeError
from ..core.timing_logger import timed
from .constants import SERVER_CONTENT_KEY, SETUP_COMPLETE_KEY, SessionStatus

# -----------------------------------------------------------------------------
# Outbound frames
# -----------------------------------------------------------------------------


class InlineData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    mime_type: str = Field(alias="mimeType")
    data: str  # base64


class Part(BaseModel):
    """One part of a turn: either text or inline media."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    text: Optional[str] = None
    inline_data: Optional[InlineData] = Field(default=None, alias="inlineData")

    @classmethod
    def from_image(cls, image: bytes, mime_type: str = "image/jpeg") -> "Part":
        encoded = base64.b64encode(image).decode("ascii")
        return cls(inline_data=InlineData(mime_type=mime_type, data=encoded))


ImageInput = Union[Part, bytes, bytearray, tuple[bytes, str]]


def to_image_part(image: ImageInput) -> Part:
    """Accept raw JPEG bytes, a ``(bytes, mime_type)`` pair or a ready ``Part``."""
    if isinstance(image, Part):
        return image
    if isinstance(image, (bytes, bytearray)):
        return Part.from_image(bytes(image))
    data, mime_type = image
    return Part.from_image(data, mime_type)


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    parts: tuple[Part, ...]


class SetupFrame(BaseModel):
    """Handshake payload; built once per session and never retransmitted."""

    model_config = ConfigDict(frozen=True)

    model: str
    generation_config: GenerationConfig = Field(default_factory=GenerationConfig)
    system_instruction: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "setup": {
                "model": self.model,
                "generationConfig": self.generation_config.to_wire(),
                "systemInstruction": self.system_instruction,
            }
        }


class ContentFrame(BaseModel):
    """A single user turn sent as ``clientContent``."""

    model_config = ConfigDict(frozen=True)

    turns: tuple[Turn, ...]
    turn_complete: bool = True

    @classmethod
    def from_text(cls, text: str) -> "ContentFrame":
        return cls(turns=(Turn(parts=(Part(text=text),)),))

    @classmethod
    def from_parts(cls, parts: list[Part]) -> "ContentFrame":
        if not parts:
            raise ValueError("A content frame needs at least one part")
        return cls(turns=(Turn(parts=tuple(parts)),))

    def to_payload(self) -> dict[str, Any]:
        turns = [
            {
                "role": turn.role,
                "parts": [part.model_dump(by_alias=True, exclude_none=True) for part in turn.parts],
            }
            for turn in self.turns
        ]
        return {"clientContent": {"turns": turns, "turnComplete": self.turn_complete}}


# -----------------------------------------------------------------------------
# Inbound events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SetupAck:
    """``setupComplete`` received; the session may now accept user turns."""


@dataclass(frozen=True, slots=True)
class ContentDelta:
    """Incremental model output carried by a ``serverContent`` frame."""

    texts: tuple[str, ...] = ()
    turn_complete: bool = False
    generation_complete: bool = False
    interrupted: bool = False

    @property
    def ends_turn(self) -> bool:
        return self.turn_complete or self.generation_complete


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    """Any other well-formed frame (transcriptions, tool calls, goAway, ...)."""

    keys: tuple[str, ...] = ()


ServerEvent = Union[SetupAck, ContentDelta, UnknownEvent]


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """One state transition published on the status topic."""

    status: SessionStatus
    detail: Optional[str] = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status.value}: {self.detail}"
        return self.status.value


def _require_dict(value: Any, where: str, raw: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ProtocolDecodeError(f"Expected an object for {where}, got {type(value).__name__}", raw=raw)
    return value


@timed
def decode_server_frame(raw: str | bytes | bytearray) -> ServerEvent:
    """Classify one inbound frame.

    Raises:
        ProtocolDecodeError: invalid UTF-8/JSON, a non-object frame, or nested
            fields of the wrong type. Callers treat this as non-fatal.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolDecodeError(f"Frame is not valid UTF-8: {exc}", raw=raw) from exc
    else:
        text = raw
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ProtocolDecodeError(f"Frame is not valid JSON: {exc}", raw=raw) from exc
    message = _require_dict(message, "frame", raw)

    if SETUP_COMPLETE_KEY in message:
        return SetupAck()

    if SERVER_CONTENT_KEY in message:
        content = _require_dict(message[SERVER_CONTENT_KEY], SERVER_CONTENT_KEY, raw)
        texts: list[str] = []
        if "modelTurn" in content:
            model_turn = _require_dict(content["modelTurn"], "serverContent.modelTurn", raw)
            parts = model_turn.get("parts")
            if parts is not None and not isinstance(parts, list):
                raise ProtocolDecodeError("serverContent.modelTurn.parts must be a list", raw=raw)
            for part in parts or ():
                part = _require_dict(part, "serverContent.modelTurn.parts[]", raw)
                part_text = part.get("text")
                if isinstance(part_text, str) and part_text:
                    texts.append(part_text)
        return ContentDelta(
            texts=tuple(texts),
            turn_complete=content.get("turnComplete") is True,
            generation_complete=content.get("generationComplete") is True,
            interrupted=content.get("interrupted") is True,
        )

    return UnknownEvent(keys=tuple(message.keys()))
