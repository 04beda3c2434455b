"""Registries for interactions awaiting a user decision.

Plans and clarifying questions pause an agent run; confirmations block a
tool call until the user approves or rejects it. Each entry owns an
``asyncio.Future`` so callers can await its resolution, and every registry can
reject all outstanding entries so nothing waits forever when a run is torn
down.
"""

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class InteractionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class PendingInteraction:
    """One plan, question or confirmation."""

    id: str
    kind: str  # "plan" | "question" | "confirm"
    payload: dict
    sequence: int
    status: InteractionStatus = InteractionStatus.PENDING
    created_at: float = field(default_factory=time.time)
    answer: Any = None
    _future: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def pending(self) -> bool:
        return self.status is InteractionStatus.PENDING


class InteractionRegistry:
    """Maps interaction ids to their state, in arrival order."""

    kind = "interaction"

    def __init__(self) -> None:
        self._entries: dict[str, PendingInteraction] = {}
        self._sequence = itertools.count()

    def create(self, payload: dict, interaction_id: str | None = None) -> PendingInteraction:
        entry = PendingInteraction(
            id=interaction_id or str(uuid.uuid4()),
            kind=self.kind,
            payload=payload,
            sequence=next(self._sequence),
        )
        self._entries[entry.id] = entry
        return entry

    def get(self, interaction_id: str) -> Optional[PendingInteraction]:
        return self._entries.get(interaction_id)

    def pending(self) -> list[PendingInteraction]:
        """Unresolved entries, oldest first."""
        entries = [e for e in self._entries.values() if e.pending]
        return sorted(entries, key=lambda e: e.sequence)

    def resolve(self, interaction_id: str, approved: bool, answer: Any = None) -> bool:
        """Resolve a pending entry. Returns False if unknown or already resolved."""
        entry = self._entries.get(interaction_id)
        if entry is None or not entry.pending:
            return False
        entry.status = InteractionStatus.APPROVED if approved else InteractionStatus.REJECTED
        entry.answer = answer
        if entry._future is not None and not entry._future.done():
            entry._future.set_result(approved)
        self._on_resolved(entry)
        return True

    async def wait(self, entry: PendingInteraction, timeout: float | None = None) -> bool:
        """Wait for a decision on ``entry``; a timeout counts as a rejection."""
        if not entry.pending:
            return entry.status is InteractionStatus.APPROVED

        if entry._future is None:
            entry._future = asyncio.get_running_loop().create_future()
        try:
            return await asyncio.wait_for(asyncio.shield(entry._future), timeout)
        except asyncio.TimeoutError:
            logger.info("%s %s timed out after %ss", self.kind, entry.id, timeout)
            self.resolve(entry.id, False)
            return False

    def reject_all_pending(self) -> list[str]:
        """Reject every outstanding entry; returns the ids rejected."""
        rejected = [entry.id for entry in self.pending()]
        for interaction_id in rejected:
            self.resolve(interaction_id, False)
        if rejected:
            logger.debug("Rejected %d pending %s(s)", len(rejected), self.kind)
        return rejected

    def clear(self) -> None:
        self.reject_all_pending()
        self._entries.clear()

    def _on_resolved(self, entry: PendingInteraction) -> None:
        pass


class PlanRegistry(InteractionRegistry):
    """Plans proposed by the agent; the newest one is the active plan."""

    kind = "plan"

    def __init__(self) -> None:
        super().__init__()
        self._active_id: Optional[str] = None

    def store(self, title: str, content: str, original_prompt: str, model_id: str) -> PendingInteraction:
        previous = self._entries.get(self._active_id) if self._active_id else None
        entry = self.create({
            "title": title,
            "content": content,
            "originalPrompt": original_prompt,
            "modelId": model_id,
        })
        self._active_id = entry.id
        if previous is not None and not previous.pending:
            self._entries.pop(previous.id, None)
        return entry

    def active(self) -> Optional[dict]:
        entry = self._entries.get(self._active_id) if self._active_id else None
        if entry is None:
            return None
        return {
            "planId": entry.id,
            "plan": {"title": entry.payload["title"], "content": entry.payload["content"]},
            "originalPrompt": entry.payload["originalPrompt"],
            "modelId": entry.payload["modelId"],
            "approved": entry.status is InteractionStatus.APPROVED,
            "status": entry.status.value,
        }

    def approve_active(self) -> bool:
        if self._active_id is None:
            return False
        entry = self._entries.get(self._active_id)
        if entry is None:
            return False
        if entry.status is InteractionStatus.APPROVED:
            return True
        return self.resolve(entry.id, True)

    def clear(self) -> None:
        super().clear()
        self._active_id = None

    def _on_resolved(self, entry: PendingInteraction) -> None:
        # Only the active plan is still reported once it is resolved.
        if entry.id != self._active_id:
            self._entries.pop(entry.id, None)


class QuestionRegistry(InteractionRegistry):
    """Clarifying questions; resolving one records the user's answers."""

    kind = "question"

    def store(self, questions: list) -> PendingInteraction:
        return self.create({"questions": questions})

    def answer(self, question_id: str, answers: Any) -> bool:
        return self.resolve(question_id, True, answer=answers)

    def _on_resolved(self, entry: PendingInteraction) -> None:
        self._entries.pop(entry.id, None)


class ConfirmRegistry(InteractionRegistry):
    """Tool calls waiting for the user to allow or deny them."""

    kind = "confirm"

    def __init__(self) -> None:
        super().__init__()
        self._auto_approve = {"bash": False, "file_writes": False}

    def request(self, tool_name: str, summary: str, details: str | None = None) -> PendingInteraction:
        return self.create({"toolName": tool_name, "summary": summary, "details": details})

    def approve_all_pending(self) -> list[str]:
        approved = [entry.id for entry in self.pending()]
        for confirm_id in approved:
            self.resolve(confirm_id, True)
        return approved

    def set_auto_approve(self, category: str, value: bool) -> None:
        if category not in self._auto_approve:
            raise ValueError(f"Unknown auto-approve category: {category}")
        self._auto_approve[category] = value

    def is_auto_approved(self, category: str) -> bool:
        return self._auto_approve.get(category, False)

    def reset_auto_approve(self) -> None:
        for category in self._auto_approve:
            self._auto_approve[category] = False

    def _on_resolved(self, entry: PendingInteraction) -> None:
        # Resolved confirmations are not kept around.
        self._entries.pop(entry.id, None)


@dataclass
class Interactions:
    """The three registries, shared for the lifetime of the process."""

    plans: PlanRegistry = field(default_factory=PlanRegistry)
    questions: QuestionRegistry = field(default_factory=QuestionRegistry)
    confirms: ConfirmRegistry = field(default_factory=ConfirmRegistry)

    def reject_all_pending(self) -> list[str]:
        return [
            *self.confirms.reject_all_pending(),
            *self.questions.reject_all_pending(),
            *self.plans.reject_all_pending(),
        ]
