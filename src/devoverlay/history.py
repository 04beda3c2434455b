"""Bounded log of emitted events, replayed to clients after a reconnect."""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MAX_HISTORY = 500
FLUSH_DELAY = 0.5

# Event types that are never recorded.
TRANSIENT_EVENTS = {"status", "done"}

# Event types that end a stream and are flushed to disk right away.
TERMINAL_EVENTS = {"result", "error"}


@dataclass
class HistoryEntry:
    """One recorded event; ``data`` is the JSON payload sent to the client."""

    id: str
    eventType: str
    data: str
    timestamp: int


class HistoryLog:
    """In-memory event history, optionally mirrored to a JSON file."""

    def __init__(self, path: Path | None = None, capacity: int = MAX_HISTORY) -> None:
        self.path = path
        self.capacity = capacity
        self._entries: list[HistoryEntry] = []
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    def load(self) -> None:
        """Read history back from disk. A corrupt file starts an empty history."""
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable history file %s: %s", self.path, e)
            return
        if not isinstance(raw, list):
            return

        for item in raw[-self.capacity:]:
            try:
                self._entries.append(HistoryEntry(**item))
            except TypeError:
                logger.debug("Skipping malformed history entry: %r", item)

    def add(self, event_type: str, data: str) -> None:
        """Record an event, merging consecutive text chunks into one entry."""
        if event_type in TRANSIENT_EVENTS:
            return

        if event_type == "text" and self._merge_text(data):
            self._schedule_flush()
            return

        self._entries.append(HistoryEntry(
            id=str(uuid.uuid4()),
            eventType=event_type,
            data=data,
            timestamp=int(time.time() * 1000),
        ))
        if len(self._entries) > self.capacity:
            del self._entries[: len(self._entries) - self.capacity]

        if event_type in TERMINAL_EVENTS:
            self.flush()
        else:
            self._schedule_flush()

    def entries(self) -> list[dict]:
        return [asdict(entry) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Drop all entries and remove the history file."""
        self._entries.clear()
        self._cancel_flush()
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove history file %s: %s", self.path, e)

    def flush(self) -> None:
        """Write the history to disk now."""
        self._cancel_flush()
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.entries()) + "\n", encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write history to %s: %s", self.path, e)

    # ── Private helpers ──────────────────────────────────────────

    def _merge_text(self, data: str) -> bool:
        if not self._entries or self._entries[-1].eventType != "text":
            return False
        last = self._entries[-1]
        try:
            last_payload = json.loads(last.data)
            new_payload = json.loads(data)
        except json.JSONDecodeError:
            return False
        if last_payload.get("type") != "text" or new_payload.get("type") != "text":
            return False
        last_payload["text"] = (last_payload.get("text") or "") + (new_payload.get("text") or "")
        last.data = json.dumps(last_payload)
        return True

    def _schedule_flush(self) -> None:
        if self.path is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._cancel_flush()
        self._flush_handle = loop.call_later(FLUSH_DELAY, self.flush)

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
