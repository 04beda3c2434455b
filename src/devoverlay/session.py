"""Multi-turn chat session persisted under the project's state directory.

The session holds the message history sent to the provider. It survives a
model switch unless either the old or the new provider is self-contained:
those providers run their own tool vocabulary, and history produced by one
family is not valid input for the other.
"""

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .backends import is_self_contained

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """Persisted conversation state for the active model."""

    model_id: str
    model_provider: str
    messages: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "modelId": self.model_id,
            "modelProvider": self.model_provider,
            "messages": self.messages,
        }


class SessionStore:
    """Holds the current ``ChatSession`` and writes it to ``path`` on every change."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.session: Optional[ChatSession] = None

    @property
    def messages(self) -> list[dict]:
        return list(self.session.messages) if self.session else []

    def load(self) -> Optional[ChatSession]:
        """Restore the session from disk. Missing or corrupt files mean no session."""
        self.session = None
        if self.path is None or not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return None

        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            logger.warning("Ignoring malformed session file %s", self.path)
            return None

        self.session = ChatSession(
            model_id=str(data.get("modelId", "")),
            model_provider=str(data.get("modelProvider", "")),
            messages=data["messages"],
        )
        return self.session

    def select_model(self, model_id: str, model_provider: str) -> bool:
        """Make ``model_id`` the active model.

        Returns True when the existing history was discarded.
        """
        current = self.session
        if current and current.model_id == model_id and current.model_provider == model_provider:
            return False

        preserve = (
            current is not None
            and not is_self_contained(current.model_provider)
            and not is_self_contained(model_provider)
        )
        discarded = current is not None and bool(current.messages) and not preserve
        self.session = ChatSession(
            model_id=model_id,
            model_provider=model_provider,
            messages=current.messages if preserve else [],
        )
        self._save()
        return discarded

    def repair(self) -> list[dict]:
        """Drop trailing user messages left behind by an interrupted run."""
        if self.session is None:
            return []
        messages = self.session.messages
        trimmed = list(messages)
        while trimmed and trimmed[-1].get("role") == "user":
            trimmed.pop()
        if len(trimmed) != len(messages):
            logger.info("Dropped %d orphaned user message(s) from session", len(messages) - len(trimmed))
            self.session.messages = trimmed
            self._save()
        return list(trimmed)

    def build_messages(self, content: Any) -> list[dict]:
        """Repaired history plus a new user turn. The turn is not appended."""
        return [*self.repair(), {"role": "user", "content": content}]

    def append_user_message(self, content: Any) -> None:
        if self.session is None:
            return
        self.session.messages.append({"role": "user", "content": content})
        self._save()

    def append_response_messages(self, messages: list[dict]) -> None:
        if self.session is None or not messages:
            return
        self.session.messages.extend(messages)
        self._save()

    def reset(self) -> None:
        """Forget the session and remove its file."""
        self.session = None
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove session file %s: %s", self.path, e)

    def _save(self) -> None:
        if self.path is None or self.session is None:
            return
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.session.to_dict(), f, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save session to %s: %s", self.path, e)
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
