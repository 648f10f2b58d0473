"""Tests for wire frame construction and inbound frame decoding."""

from __future__ import annotations

import base64

import pytest

from gemini_live_client.core.config import GenerationConfig
from gemini_live_client.core.errors import ProtocolDecodeError
from gemini_live_client.live.constants import END_OF_TURN, SessionStatus
from gemini_live_client.live.frames import (
    ContentDelta,
    ContentFrame,
    Part,
    SetupAck,
    SetupFrame,
    StatusEvent,
    UnknownEvent,
    decode_server_frame,
    to_image_part,
)


# -----------------------------------------------------------------------------
# Outbound
# -----------------------------------------------------------------------------

class TestOutboundFrames:
    def test_setup_payload_layout(self) -> None:
        frame = SetupFrame(
            model="gemini-2.0-flash-live-001",
            generation_config=GenerationConfig(temperature=0.2, top_k=8, top_p=0.5, max_output_tokens=64),
            system_instruction="Be brief.",
        )
        assert frame.to_payload() == {
            "setup": {
                "model": "gemini-2.0-flash-live-001",
                "generationConfig": {
                    "temperature": 0.2,
                    "topK": 8,
                    "topP": 0.5,
                    "maxOutputTokens": 64,
                    "responseModalities": ["TEXT"],
                },
                "systemInstruction": "Be brief.",
            }
        }

    def test_content_from_text(self) -> None:
        assert ContentFrame.from_text("hello").to_payload() == {
            "clientContent": {
                "turns": [{"role": "user", "parts": [{"text": "hello"}]}],
                "turnComplete": True,
            }
        }

    def test_content_from_parts_requires_a_part(self) -> None:
        with pytest.raises(ValueError):
            ContentFrame.from_parts([])

    def test_image_part_uses_wire_aliases(self) -> None:
        part = Part.from_image(b"\x00\x01", "image/png")
        assert part.model_dump(by_alias=True, exclude_none=True) == {
            "inlineData": {"mimeType": "image/png", "data": base64.b64encode(b"\x00\x01").decode()}
        }

    def test_to_image_part_accepts_bytes_pairs_and_parts(self) -> None:
        existing = Part(text="caption")
        assert to_image_part(existing) is existing
        assert to_image_part(b"jpg").inline_data.mime_type == "image/jpeg"
        assert to_image_part((b"webp", "image/webp")).inline_data.mime_type == "image/webp"

    def test_frames_are_immutable(self) -> None:
        frame = ContentFrame.from_text("x")
        with pytest.raises(Exception):
            frame.turn_complete = False  # type: ignore[misc]


# -----------------------------------------------------------------------------
# Inbound
# -----------------------------------------------------------------------------

class TestDecodeServerFrame:
    def test_setup_complete(self) -> None:
        assert decode_server_frame('{"setupComplete": {}}') == SetupAck()

    def test_content_delta_texts_in_order(self) -> None:
        event = decode_server_frame(
            '{"serverContent": {"modelTurn": {"parts": [{"text": "a"}, {"text": ""}, {"text": "b"}]}}}'
        )
        assert event == ContentDelta(texts=("a", "b"))
        assert not event.ends_turn

    @pytest.mark.parametrize("flag", ["generationComplete", "turnComplete"])
    def test_completion_flags_end_turn(self, flag: str) -> None:
        event = decode_server_frame(f'{{"serverContent": {{"{flag}": true}}}}')
        assert isinstance(event, ContentDelta)
        assert event.texts == ()
        assert event.ends_turn

    def test_truthy_non_bool_flag_is_not_completion(self) -> None:
        event = decode_server_frame('{"serverContent": {"turnComplete": "yes"}}')
        assert isinstance(event, ContentDelta)
        assert not event.ends_turn

    def test_interrupted_flag(self) -> None:
        event = decode_server_frame('{"serverContent": {"interrupted": true}}')
        assert isinstance(event, ContentDelta) and event.interrupted

    def test_bytes_are_decoded_as_utf8(self) -> None:
        event = decode_server_frame('{"serverContent": {"modelTurn": {"parts": [{"text": "é"}]}}}'.encode())
        assert event == ContentDelta(texts=("é",))

    def test_unknown_frame(self) -> None:
        event = decode_server_frame('{"unknownField": 123, "toolCall": {}}')
        assert event == UnknownEvent(keys=("unknownField", "toolCall"))

    @pytest.mark.parametrize(
        "raw",
        [
            b"\xff\xfe",
            "{not json",
            "[]",
            '"just a string"',
            '{"serverContent": []}',
            '{"serverContent": {"modelTurn": "x"}}',
            '{"serverContent": {"modelTurn": {"parts": {}}}}',
            '{"serverContent": {"modelTurn": {"parts": [42]}}}',
        ],
    )
    def test_malformed_frames_raise_decode_error(self, raw) -> None:
        with pytest.raises(ProtocolDecodeError) as excinfo:
            decode_server_frame(raw)
        assert excinfo.value.raw == raw

    def test_decode_error_excerpt_is_bounded(self) -> None:
        raw = "x" * 1000
        with pytest.raises(ProtocolDecodeError) as excinfo:
            decode_server_frame(raw)
        assert len(excinfo.value.excerpt) <= 201


class TestSentinelAndStatus:
    def test_end_of_turn_is_a_singleton_not_text(self) -> None:
        assert not isinstance(END_OF_TURN, str)
        assert type(END_OF_TURN)() is END_OF_TURN
        assert repr(END_OF_TURN) == "END_OF_TURN"

    def test_status_event_str(self) -> None:
        assert str(StatusEvent(SessionStatus.READY)) == "ready"
        assert str(StatusEvent(SessionStatus.ERROR, "boom")) == "error: boom"
        assert SessionStatus.CLOSED == "closed"
