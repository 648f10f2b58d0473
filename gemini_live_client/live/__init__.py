"""Live bidirectional streaming subsystem.

- LiveSessionHandler: WebSocket session with setup handshake and queue-until-ready sends
- Wire frames (SetupFrame, ContentFrame) and inbound event decoding
- EventBus: status and text topics with replay-free subscribers
"""

from .constants import END_OF_TURN, SessionStatus
from .event_bus import EventBus, Subscription
from .frames import (
    ContentDelta,
    ContentFrame,
    ImageInput,
    InlineData,
    Part,
    SetupAck,
    SetupFrame,
    StatusEvent,
    Turn,
    UnknownEvent,
    decode_server_frame,
    to_image_part,
)
from .session import LiveSessionHandler, collect_turn

__all__ = [
    "END_OF_TURN",
    "SessionStatus",
    "EventBus",
    "Subscription",
    "ContentDelta",
    "ContentFrame",
    "ImageInput",
    "InlineData",
    "Part",
    "SetupAck",
    "SetupFrame",
    "StatusEvent",
    "Turn",
    "UnknownEvent",
    "decode_server_frame",
    "to_image_part",
    "LiveSessionHandler",
    "collect_turn",
]
