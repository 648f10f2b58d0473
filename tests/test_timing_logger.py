"""Tests for the timing instrumentation (@timed, timing_scope, timing_mark, JSONL output)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from gemini_live_client.core import timing_logger as tl


@pytest.fixture(autouse=True)
def _reset_timing_state():
    """Reset all timing logger global state before and after each test."""
    tl.close_timing_file()
    tl.clear_timing_context()
    with tl._timing_lock:
        tl._timing_events.clear()
    yield
    tl.close_timing_file()
    tl.clear_timing_context()
    with tl._timing_lock:
        tl._timing_events.clear()


class TestDisabled:
    def test_nothing_recorded_when_disabled(self) -> None:
        tl.set_timing_context("s1", False)
        tl.timing_mark("ignored")
        with tl.timing_scope("ignored"):
            pass
        assert tl.get_timing_events("s1") == []

    def test_nothing_recorded_without_session(self) -> None:
        tl.set_timing_context("", True)
        tl.timing_mark("ignored")
        assert tl._timing_events == {}


class TestEnabled:
    def test_mark_and_scope(self) -> None:
        tl.set_timing_context("s1", True)
        tl.timing_mark("setup_sent")
        with tl.timing_scope("block"):
            pass

        events = tl.get_timing_events("s1")
        assert [(e["event"], e["label"]) for e in events] == [
            ("mark", "setup_sent"),
            ("enter", "block"),
            ("exit", "block"),
        ]
        assert events[-1]["elapsed_ms"] >= 0
        assert events[0]["ts"].endswith("Z")

    def test_timed_sync_function(self) -> None:
        @tl.timed
        def add(a: int, b: int) -> int:
            return a + b

        tl.set_timing_context("s1", True)
        assert add(1, 2) == 3
        labels = {e["label"] for e in tl.get_timing_events("s1")}
        assert len(labels) == 1
        assert labels.pop().endswith("add")

    @pytest.mark.asyncio
    async def test_timed_async_function(self) -> None:
        @tl.timed
        async def pause() -> str:
            await asyncio.sleep(0)
            return "done"

        tl.set_timing_context("s1", True)
        assert await pause() == "done"
        assert [e["event"] for e in tl.get_timing_events("s1")] == ["enter", "exit"]

    def test_timed_records_exit_on_exception(self) -> None:
        @tl.timed
        def explode() -> None:
            raise RuntimeError("x")

        tl.set_timing_context("s1", True)
        with pytest.raises(RuntimeError):
            explode()
        assert [e["event"] for e in tl.get_timing_events("s1")] == ["enter", "exit"]

    def test_package_prefix_stripped_from_label(self) -> None:
        from gemini_live_client.live.frames import decode_server_frame

        tl.set_timing_context("s1", True)
        decode_server_frame('{"setupComplete": {}}')
        assert any(e["label"] == "live.frames.decode_server_frame" for e in tl.get_timing_events("s1"))

    def test_clear_timing_events(self) -> None:
        tl.set_timing_context("s1", True)
        tl.timing_mark("x")
        tl.clear_timing_events("s1")
        assert tl.get_timing_events("s1") == []


class TestFileOutput:
    def test_records_written_as_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "timing.jsonl"
        assert tl.configure_timing_file(str(path)) is True

        tl.set_timing_context("s1", True)
        tl.timing_mark("first")
        tl.timing_mark("second")
        tl.close_timing_file()

        lines = path.read_text(encoding="utf-8").splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["label"] for r in records] == ["first", "second"]
        assert all(r["session_id"] == "s1" for r in records)

    def test_configure_fails_for_directory(self, tmp_path: Path) -> None:
        assert tl.configure_timing_file(str(tmp_path)) is False

    def test_close_is_idempotent(self) -> None:
        tl.close_timing_file()
        tl.close_timing_file()
