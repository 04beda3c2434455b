"""Core data models for devoverlay."""

import time
import uuid
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Optional


@dataclass
class RawEvent:
    """A single event yielded by a provider adapter stream."""

    type: str  # "text-delta" | "tool-call" | "tool-result" | "tool-error" | "finish-step" | ...
    text: str = ""
    tool_name: str = ""
    tool_call_id: str = ""
    input: Any = None
    output: Any = None
    error: Any = None


@dataclass
class Usage:
    """Token usage reported by an adapter for a whole run."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_tokens: Optional[int] = None
    cache_write_tokens: Optional[int] = None


@dataclass
class FileStat:
    """Line statistics for one file changed during a run."""

    relative_path: str
    additions: int
    deletions: int
    is_new: bool

    def to_dict(self) -> dict:
        return {
            "relativePath": self.relative_path,
            "additions": self.additions,
            "deletions": self.deletions,
            "isNew": self.is_new,
        }


@dataclass
class AgentRun:
    """Mutable state of one agent invocation."""

    model_id: str
    provider_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)
    original_prompt: str = ""
    in_plan_mode: bool = False
    waiting_for_input: bool = False
    reasoning_active: bool = False
    plan_emitted: bool = False
    errored: bool = False
    accumulated_text: str = ""
    pending_plan_content: Optional[str] = None
    suppressed_tool_call_ids: set[str] = field(default_factory=set)
    num_turns: int = 0

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


# ── Normalized events ────────────────────────────────────────────
#
# One dataclass per wire event. Field names are the wire names; fields left
# at None are optional and omitted from the payload.


@dataclass
class Event:
    """Base class for events delivered to the client transport."""

    event: ClassVar[str] = ""

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"type": self.event}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            payload[f.name] = value
        return payload


@dataclass
class StatusEvent(Event):
    event: ClassVar[str] = "status"
    message: str


@dataclass
class TextEvent(Event):
    event: ClassVar[str] = "text"
    text: str
    model: str


@dataclass
class ToolUseEvent(Event):
    event: ClassVar[str] = "tool_use"
    tool: str
    input: Any
    id: str


@dataclass
class ToolResultEvent(Event):
    event: ClassVar[str] = "tool_result"
    tool_use_id: str
    tool: str
    content: Any
    is_error: bool = False


@dataclass
class PlanEvent(Event):
    event: ClassVar[str] = "plan"
    planId: str
    planTitle: str
    planContent: str


@dataclass
class QuestionEvent(Event):
    event: ClassVar[str] = "question"
    questionId: str
    questions: list


@dataclass
class ConfirmEvent(Event):
    event: ClassVar[str] = "confirm"
    confirmId: str
    toolName: str
    summary: str
    details: Optional[str] = None


@dataclass
class ConfirmResolvedEvent(Event):
    event: ClassVar[str] = "confirm_resolved"
    confirmId: str
    toolName: str
    summary: str
    resolved: bool = True
    approved: bool = False


@dataclass
class ResultEvent(Event):
    event: ClassVar[str] = "result"
    subtype: str  # "success" | "waiting_for_input" | "error_during_execution"
    duration_ms: int
    num_turns: int
    is_error: bool = False
    file_stats: Optional[list] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_tokens: Optional[int] = None
    cache_write_tokens: Optional[int] = None


@dataclass
class ErrorEvent(Event):
    event: ClassVar[str] = "error"
    message: str


@dataclass
class DoneEvent(Event):
    event: ClassVar[str] = "done"
    message: str = "Agent completed"
