"""Abstract base classes for language-model stream adapters."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

from .core import Event, RawEvent, Usage

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal shared by a run and its adapter.

    Callbacks registered with ``add_callback`` fire once, in registration
    order, the first time ``cancel()`` is called. A callback added after
    cancellation fires immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")


@dataclass
class ProviderConfig:
    """Per-run settings handed to an adapter."""

    project_dir: Path
    target_port: int
    cancel_token: Optional[CancellationToken] = None
    creation_mode: bool = False  # alternate system prompt for new projects
    language: Optional[str] = None  # locale hint, e.g. "zh-CN"
    max_output_tokens: Optional[int] = None


@dataclass
class ToolSpec:
    """Declaration of a tool offered to a tool-augmented adapter."""

    name: str
    description: str
    input_schema: dict


@dataclass
class ToolContext:
    """Hooks tool implementations use to talk back to the run."""

    project_dir: Path
    emit: Callable[[Event], Awaitable[None]]
    request_confirmation: Callable[..., Awaitable[bool]]
    confirm_bash: bool = True
    confirm_file_writes: bool = True


@dataclass
class StreamRequest:
    """Everything an adapter needs to start one streamed response."""

    model_id: str
    messages: list[dict]
    config: ProviderConfig
    system_prompt: Optional[str] = None  # None for self-contained adapters
    tools: Optional[list[ToolSpec]] = None
    tool_context: Optional[ToolContext] = None


@dataclass
class AdapterResponse:
    """Final outcome of a stream: the messages to keep plus usage."""

    messages: list[dict] = field(default_factory=list)
    usage: Optional[Usage] = None


class AdapterStream(ABC):
    """One in-flight streamed response.

    Iterating yields ``RawEvent`` objects in arrival order and ends after the
    terminal outcome. ``cancel()`` asks the backend to stop producing events;
    iteration should end shortly afterwards.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[RawEvent]:
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Request that the backend stop generating."""
        ...

    @abstractmethod
    async def response(self) -> AdapterResponse:
        """Return the assistant/tool messages produced so far, plus usage."""
        ...


class StreamAdapter(ABC):
    """Base class for language-model backends.

    Tool-augmented adapters receive the system prompt and tool catalog in the
    request. Self-contained adapters (``self_contained = True``) own their
    tools and execution loop and only use ``config.project_dir``.
    """

    name: str  # provider id, e.g. "anthropic", "claude-code"
    label: str = ""
    self_contained: bool = False

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id

    @abstractmethod
    def open_stream(self, request: StreamRequest) -> AdapterStream:
        """Start a streamed response for ``request``."""
        ...

