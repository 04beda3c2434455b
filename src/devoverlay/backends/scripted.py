"""Transcript-replay adapter.

Replays raw stream events from a JSONL transcript instead of calling a
language model. Useful for demos and for exercising the orchestrator without
network access.

Transcript line format (one JSON object per line):
- ``{"type": "text-delta", "text": "..."}``
- ``{"type": "tool-call", "toolName": "Write", "toolCallId": "c1", "input": {...}}``
- ``{"type": "tool-result", "toolName": "Write", "toolCallId": "c1", "output": "..."}``
- ``{"type": "finish-step"}``, ``{"type": "reasoning-start"}``, ``{"type": "error", "error": "..."}``
- ``{"type": "response", "messages": [...], "usage": {...}}``: final outcome, not replayed.
- ``{"type": "raise", "error": "..."}``: makes the stream itself fail at that point.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

from ..config import get_script_path
from ..core import RawEvent, Usage
from ..provider import AdapterResponse, AdapterStream, StreamAdapter, StreamRequest

logger = logging.getLogger(__name__)


class ScriptedStreamError(Exception):
    """Raised mid-stream by a ``raise`` transcript entry."""


def raw_event_from_dict(entry: dict) -> RawEvent:
    """Build a ``RawEvent`` from a transcript entry (camelCase keys)."""
    return RawEvent(
        type=entry.get("type", ""),
        text=entry.get("text", ""),
        tool_name=entry.get("toolName", ""),
        tool_call_id=entry.get("toolCallId", ""),
        input=entry.get("input"),
        output=entry.get("output"),
        error=entry.get("error"),
    )


def load_transcript(path: Path) -> list[dict]:
    """Read a JSONL transcript, skipping blank and malformed lines."""
    entries = []
    try:
        with path.open(encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.debug("Bad JSON at %s:%d: %s", path, line_num, e)
                    continue
                if isinstance(entry, dict):
                    entries.append(entry)
    except OSError as e:
        logger.warning("Failed to read transcript %s: %s", path, e)
    return entries


class ScriptedStream(AdapterStream):
    """Replays transcript entries one at a time."""

    def __init__(self, entries: list[dict], delay: float = 0.0) -> None:
        self.entries = entries
        self.delay = delay
        self.cancelled = False
        self.emitted: list[RawEvent] = []
        self._response = AdapterResponse()
        for entry in entries:
            if entry.get("type") == "response":
                usage = entry.get("usage")
                self._response = AdapterResponse(
                    messages=list(entry.get("messages", [])),
                    usage=Usage(**usage) if isinstance(usage, dict) else None,
                )

    async def _iterate(self) -> AsyncIterator[RawEvent]:
        for entry in self.entries:
            if self.cancelled:
                return
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if self.cancelled:
                return
            entry_type = entry.get("type")
            if entry_type == "response":
                continue
            if entry_type == "raise":
                raise ScriptedStreamError(entry.get("error", "stream failed"))
            event = raw_event_from_dict(entry)
            self.emitted.append(event)
            yield event

    def __aiter__(self) -> AsyncIterator[RawEvent]:
        return self._iterate()

    def cancel(self) -> None:
        self.cancelled = True

    async def response(self) -> AdapterResponse:
        return self._response


class ScriptedAdapter(StreamAdapter):
    """Adapter whose "model" is a transcript of raw events."""

    name = "scripted"
    label = "Scripted transcript"

    def __init__(
        self,
        model_id: str = "scripted",
        entries: Optional[Iterable[dict]] = None,
        self_contained: bool = False,
        delay: float = 0.0,
    ) -> None:
        super().__init__(model_id)
        self.entries = list(entries) if entries is not None else None
        self.self_contained = self_contained
        self.delay = delay
        self.requests: list[StreamRequest] = []
        self.streams: list[ScriptedStream] = []

    def open_stream(self, request: StreamRequest) -> ScriptedStream:
        self.requests.append(request)
        entries = self.entries
        if entries is None:
            path = get_script_path()
            entries = load_transcript(path) if path else []
        stream = ScriptedStream(entries, delay=self.delay)
        self.streams.append(stream)
        return stream
