"""Multi-turn streamed chat over the REST ``streamGenerateContent`` endpoint.

``GeminiChatStream`` keeps the conversation history client-side and replays it
with every request. Text fragments are yielded as they arrive; the model's
reply is appended to the history only after the stream finished cleanly.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Iterable, Mapping, Optional, Sequence

import aiohttp

from ..core.config import _API_KEY_HEADER, EncryptedStr, Valves
from ..core.errors import ConfigurationError, GeminiAPIError
from ..core.timing_logger import timed
from ..live.frames import ImageInput, to_image_part
from .sse_parser import SSEParser

LOGGER = logging.getLogger(__name__)

_SAFETY_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
)
_SAFETY_THRESHOLD = "BLOCK_LOW_AND_ABOVE"


def _default_safety_settings() -> list[dict[str, str]]:
    return [{"category": category, "threshold": _SAFETY_THRESHOLD} for category in _SAFETY_CATEGORIES]


def _candidate_texts(event: dict[str, Any]) -> list[str]:
    """Return the non-empty text parts of the first candidate in ``event``."""
    candidates = event.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    if not isinstance(first, dict):
        return []
    content = first.get("content")
    if not isinstance(content, dict):
        return []
    texts: list[str] = []
    for part in content.get("parts") or ():
        if isinstance(part, dict):
            text = part.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
    return texts


def _extract_stream_error(event: dict[str, Any]) -> Optional[Exception]:
    error = event.get("error")
    if not isinstance(error, dict):
        return None
    code = error.get("code")
    return GeminiAPIError(
        status=code if isinstance(code, int) else 500,
        reason="Stream error",
        api_message=error.get("message") if isinstance(error.get("message"), str) else None,
        api_status=error.get("status") if isinstance(error.get("status"), str) else None,
        raw_body=json.dumps(event, ensure_ascii=False),
    )


class GeminiChatStream:
    """Streamed chat session keeping its own history.

    Args:
        valves: Settings (API key, model, generation params, timeouts). Defaults
            to ``Valves()`` read from the environment.
        http_session: Optional aiohttp session; one is created (and closed by
            :meth:`close`) when omitted.
        parser: SSE reader; a default ``SSEParser`` honouring ``HTTP_MAX_RETRIES``.

    Raises:
        ConfigurationError: no API key is configured.
    """

    def __init__(
        self,
        valves: Optional[Valves] = None,
        *,
        http_session: Optional[aiohttp.ClientSession] = None,
        parser: Optional[SSEParser] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.valves = valves or Valves()
        self.logger = logger or LOGGER
        self._api_key = EncryptedStr.decrypt(str(self.valves.API_KEY or "")).strip()
        if not self._api_key:
            raise ConfigurationError("Gemini API key is missing. Set GEMINI_API_KEY.")
        self._model_id = self.valves.MODEL_ID
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._parser = parser or SSEParser(max_attempts=self.valves.HTTP_MAX_RETRIES, logger=self.logger)
        self._history: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def history(self) -> list[dict[str, Any]]:
        return [dict(turn) for turn in self._history]

    def reset_chat(self, preamble: Optional[Sequence[Mapping[str, Any]]] = None) -> None:
        """Start a new conversation, optionally seeded with ``preamble`` turns."""
        self._history = [dict(turn) for turn in preamble or ()]

    def switch_model(self, model_id: str) -> None:
        """Use ``model_id`` from now on; the conversation restarts."""
        model_id = (model_id or "").strip()
        if not model_id:
            raise ValueError("model_id must be a non-empty string")
        self.logger.info("Switching chat model %s -> %s", self._model_id, model_id)
        self._model_id = model_id
        self.reset_chat()

    def _endpoint(self) -> str:
        base = self.valves.BASE_URL.rstrip("/")
        model = self._model_id if self._model_id.startswith("models/") else f"models/{self._model_id}"
        return f"{base}/{model}:streamGenerateContent?alt=sse"

    @timed
    def _build_body(self, contents: list[dict[str, Any]]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": self.valves.generation_config().model_dump(
                by_alias=True, exclude={"response_modalities"}
            ),
            "safetySettings": _default_safety_settings(),
        }
        if self.valves.SYSTEM_INSTRUCTION:
            body["systemInstruction"] = {"parts": [{"text": self.valves.SYSTEM_INSTRUCTION}]}
        return body

    def _ensure_http_session(self) -> aiohttp.ClientSession:
        session = self._http_session
        if session is None or session.closed:
            timeout = aiohttp.ClientTimeout(
                total=None,
                connect=float(self.valves.HTTP_CONNECT_TIMEOUT_SECONDS),
                sock_read=float(self.valves.HTTP_SOCK_READ_SECONDS),
            )
            session = aiohttp.ClientSession(timeout=timeout, json_serialize=json.dumps)
            self._http_session = session
            self._owns_http_session = True
        return session

    async def send_message_stream(
        self,
        message: str,
        images: Iterable[ImageInput] = (),
    ) -> AsyncGenerator[str, None]:
        """Send one user turn and yield the reply's text fragments as they stream in.

        Raises:
            GeminiAPIError: the API rejected the request or reported an in-stream error.
        """
        parts: list[dict[str, Any]] = []
        if message:
            parts.append({"text": message})
        for image in images:
            parts.append(to_image_part(image).model_dump(by_alias=True, exclude_none=True))
        if not parts:
            raise ValueError("A chat message needs text or at least one image")

        user_turn = {"role": "user", "parts": parts}
        body = self._build_body([*self._history, user_turn])
        fragments: list[str] = []
        async for event in self._parser.parse_sse_stream(
            self._ensure_http_session(),
            self._endpoint(),
            request_body=body,
            headers={_API_KEY_HEADER: self._api_key},
            model=self._model_id,
            extract_error=_extract_stream_error,
        ):
            for text in _candidate_texts(event):
                fragments.append(text)
                yield text

        self._history.append(user_turn)
        self._history.append({"role": "model", "parts": [{"text": "".join(fragments)}]})

    async def close(self) -> None:
        session = self._http_session
        if self._owns_http_session and session is not None and not session.closed:
            await session.close()
        self._http_session = None

    async def __aenter__(self) -> "GeminiChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
