"""Tests for the event history log."""

import asyncio
import json

import pytest

from devoverlay.history import HistoryLog


def text_event(chunk):
    return json.dumps({"type": "text", "text": chunk, "model": "sonnet"})


class TestHistoryLog:
    """Recording, merging and capacity."""

    def test_transient_events_are_not_recorded(self):
        history = HistoryLog()
        history.add("status", json.dumps({"type": "status", "message": "Connecting..."}))
        history.add("done", json.dumps({"type": "done"}))
        assert len(history) == 0

    def test_consecutive_text_is_merged(self):
        history = HistoryLog()
        history.add("text", text_event("Hel"))
        history.add("text", text_event("lo"))
        history.add("tool_use", json.dumps({"type": "tool_use", "tool": "Read"}))
        history.add("text", text_event("!"))

        entries = history.entries()
        assert [e["eventType"] for e in entries] == ["text", "tool_use", "text"]
        assert json.loads(entries[0]["data"])["text"] == "Hello"

    def test_text_with_different_payload_type_is_not_merged(self):
        history = HistoryLog()
        history.add("text", text_event("a"))
        history.add("text", json.dumps({"type": "user", "text": "b"}))
        assert len(history) == 2

    def test_capacity_drops_oldest(self):
        history = HistoryLog(capacity=3)
        for i in range(5):
            history.add("tool_use", json.dumps({"type": "tool_use", "n": i}))

        entries = history.entries()
        assert len(entries) == 3
        assert [json.loads(e["data"])["n"] for e in entries] == [2, 3, 4]

    def test_entry_shape(self):
        history = HistoryLog()
        history.add("error", json.dumps({"type": "error", "message": "boom"}))
        entry = history.entries()[0]
        assert set(entry) == {"id", "eventType", "data", "timestamp"}
        assert isinstance(entry["timestamp"], int)


class TestHistoryPersistence:
    """history.json handling."""

    def test_terminal_events_flush_immediately(self, tmp_path):
        path = tmp_path / "history.json"
        history = HistoryLog(path)
        history.add("result", json.dumps({"type": "result", "subtype": "success"}))

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved[0]["eventType"] == "result"

    @pytest.mark.asyncio
    async def test_other_events_flush_after_delay(self, tmp_path, monkeypatch):
        monkeypatch.setattr("devoverlay.history.FLUSH_DELAY", 0.01)
        path = tmp_path / "history.json"
        history = HistoryLog(path)

        history.add("tool_use", json.dumps({"type": "tool_use"}))
        assert not path.exists()

        await asyncio.sleep(0.05)
        assert len(json.loads(path.read_text(encoding="utf-8"))) == 1

    def test_load_restores_entries(self, tmp_path):
        path = tmp_path / "history.json"
        HistoryLog(path).add("error", json.dumps({"type": "error", "message": "x"}))

        restored = HistoryLog(path)
        restored.load()
        assert [e["eventType"] for e in restored.entries()] == ["error"]

    def test_load_corrupt_file(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("[{broken", encoding="utf-8")
        history = HistoryLog(path)
        history.load()
        assert len(history) == 0

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "history.json"
        history = HistoryLog(path)
        history.add("error", json.dumps({"type": "error", "message": "x"}))

        history.clear()

        assert len(history) == 0
        assert not path.exists()
