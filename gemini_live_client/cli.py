"""``gemini-live``: terminal chat over the Live API (or the REST stream with ``--rest``).

Usage:
    gemini-live
    gemini-live --rest --model gemini-flash-latest
    gemini-live --env-file ~/.config/gemini.env --log-level DEBUG

Settings come from the environment (optionally a ``.env`` file); see ``Valves``.
Commands inside the chat: ``/quit``, ``/status`` and ``/log`` (live), ``/reset``
and ``/model <id>`` (REST).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Awaitable, Callable, Optional, Sequence

from dotenv import load_dotenv

from .core.config import SessionConfig, Valves
from .core.errors import ConfigurationError, GeminiAPIError, TransportError
from .core.logging_system import SessionLogger
from .core.timing_logger import close_timing_file, configure_timing_file, set_timing_context
from .core.utils import _coerce_bool
from .live.constants import END_OF_TURN, SessionStatus
from .live.frames import StatusEvent
from .live.session import LiveSessionHandler
from .streaming.chat_stream import GeminiChatStream

LOGGER = logging.getLogger(__name__)

ReadLine = Callable[[str], Awaitable[str]]
Write = Callable[[str], None]

_QUIT_COMMANDS = frozenset({"/quit", "/exit"})
_TURN_TIMEOUT_SECONDS = 120.0


async def _read_stdin(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gemini-live", description="Chat with Gemini from the terminal.")
    parser.add_argument("--rest", action="store_true", help="Use the REST streaming endpoint instead of the Live WebSocket.")
    parser.add_argument("--model", help="Model id (overrides GEMINI_LIVE_MODEL_ID / GEMINI_MODEL_ID).")
    parser.add_argument("--env-file", help="Path of a .env file to load (default: ./.env if present).")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        help="Console log level (overrides GLOBAL_LOG_LEVEL).",
    )
    parser.add_argument("--timing", action="store_true", help="Write timing events to TIMING_LOG_FILE.")
    return parser


def load_valves(args: argparse.Namespace) -> Valves:
    """Load ``.env`` and build valves with the command-line overrides applied."""
    load_dotenv(args.env_file, override=False)
    overrides: dict[str, object] = {}
    if args.model:
        overrides["MODEL_ID" if args.rest else "LIVE_MODEL_ID"] = args.model
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    if args.timing or _coerce_bool(os.getenv("GEMINI_ENABLE_TIMING_LOG")):
        overrides["ENABLE_TIMING_LOG"] = True
    timing_file = os.getenv("GEMINI_TIMING_LOG_FILE")
    if timing_file:
        overrides["TIMING_LOG_FILE"] = timing_file
    return Valves(**overrides)


def _configure_logging(valves: Valves, session_id: str) -> None:
    SessionLogger.get_logger("gemini_live_client")
    SessionLogger.set_max_lines(valves.SESSION_LOG_MAX_LINES)
    SessionLogger.log_level.set(logging.getLevelName(valves.LOG_LEVEL))
    SessionLogger.session_id.set(session_id)
    if valves.ENABLE_TIMING_LOG and configure_timing_file(valves.TIMING_LOG_FILE):
        set_timing_context(session_id, True)


async def _print_status(events) -> None:
    async for event in events:
        if isinstance(event, StatusEvent) and event.status in (SessionStatus.ERROR, SessionStatus.CLOSED):
            LOGGER.warning("Live session %s", event)


async def _stream_reply(text_events, write: Write) -> None:
    while True:
        item = await text_events.get(timeout=_TURN_TIMEOUT_SECONDS)
        if item is END_OF_TURN:
            write("\n")
            return
        write(item)


async def run_live(
    handler: LiveSessionHandler,
    *,
    read_line: ReadLine = _read_stdin,
    write: Write = _write_stdout,
) -> int:
    """Interactive loop over one live session; returns the process exit code."""
    status_events = handler.status_events()
    text_events = handler.text_chunks()
    status_task = asyncio.create_task(_print_status(status_events), name="gemini-live-status")
    try:
        try:
            await handler.connect()
        except TransportError as exc:
            write(exc.to_markdown() + "\n")
        while True:
            try:
                line = (await read_line("you> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line in _QUIT_COMMANDS:
                break
            if line == "/status":
                write(f"{handler.status.value} (queued turns: {handler.pending_count})\n")
                continue
            if line == "/log":
                for event in SessionLogger.session_events(handler.session_id):
                    write(SessionLogger.format_event_as_text(event) + "\n")
                continue
            try:
                await handler.send_text(line)
            except TransportError as exc:
                write(exc.to_markdown() + "\n")
                continue
            write("gemini> ")
            try:
                await _stream_reply(text_events, write)
            except asyncio.TimeoutError:
                write(f"\n(no complete reply within {_TURN_TIMEOUT_SECONDS:g}s; status: {handler.status.value})\n")
            except StopAsyncIteration:
                break
    finally:
        await handler.close()
        await asyncio.wait({status_task})
    return 0


async def run_rest(
    chat: GeminiChatStream,
    *,
    read_line: ReadLine = _read_stdin,
    write: Write = _write_stdout,
) -> int:
    """Interactive loop over the REST stream; returns the process exit code."""
    try:
        while True:
            try:
                line = (await read_line("you> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line in _QUIT_COMMANDS:
                break
            if line == "/reset":
                chat.reset_chat()
                write("(conversation cleared)\n")
                continue
            if line.startswith("/model"):
                model_id = line[len("/model"):].strip()
                if not model_id:
                    write(f"{chat.model_id}\n")
                else:
                    chat.switch_model(model_id)
                    write(f"(now using {chat.model_id})\n")
                continue
            write("gemini> ")
            try:
                async for fragment in chat.send_message_stream(line):
                    write(fragment)
            except GeminiAPIError as exc:
                write("\n" + exc.to_markdown() + "\n")
                continue
            write("\n")
    finally:
        await chat.close()
    return 0


async def _run(args: argparse.Namespace) -> int:
    valves = load_valves(args)
    if args.rest:
        chat = GeminiChatStream(valves)
        _configure_logging(valves, f"rest-{id(chat):x}")
        return await run_rest(chat)
    handler = LiveSessionHandler(SessionConfig.from_valves(valves))
    _configure_logging(valves, handler.session_id)
    return await run_live(handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as exc:
        sys.stderr.write(f"gemini-live: {exc}\n")
        return 2
    except KeyboardInterrupt:
        return 130
    finally:
        close_timing_file()


if __name__ == "__main__":
    raise SystemExit(main())
