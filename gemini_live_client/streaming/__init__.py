"""REST streaming subsystem.

- SSEParser: SSE reader with Tenacity-retried request open
- GeminiChatStream: multi-turn streamed chat with client-side history
"""

from .chat_stream import GeminiChatStream
from .sse_parser import SSEParser

__all__ = [
    "GeminiChatStream",
    "SSEParser",
]
