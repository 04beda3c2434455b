"""Agent run orchestration.

``AgentOrchestrator.stream_response`` drives one agent invocation: it pauses
the hot-reload gate, opens an undo session, consumes the adapter's raw event
stream, turns it into client events and intercepts the tools that need the
user (plans, clarifying questions). However the run ends (completion, pause
for input, error, or being superseded by a newer run) the undo session is
closed, the gate is resumed and waiting confirmations are released.
"""

import json
import logging
from typing import Any, Optional, Protocol

from .backends import PROVIDER_LABELS
from .core import (
    AgentRun,
    ConfirmEvent,
    ConfirmResolvedEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    PlanEvent,
    QuestionEvent,
    RawEvent,
    ResultEvent,
    StatusEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from .gate import DevServerGate
from .history import HistoryLog
from .interactions import Interactions
from .plans import (
    ASK_USER_TOOLS,
    ENTER_PLAN_MODE_TOOL,
    EXIT_PLAN_MODE_TOOL,
    INTERACTIVE_TOOLS,
    PROPOSE_PLAN_TOOL,
    parse_plan_content,
    plan_file_write,
)
from .prompts import build_system_prompt, tool_catalog
from .provider import (
    AdapterStream,
    CancellationToken,
    ProviderConfig,
    StreamAdapter,
    StreamRequest,
    ToolContext,
)
from .undo import UndoCoordinator
from .verbose import log_event

logger = logging.getLogger(__name__)

# Stream lifecycle events that carry nothing the client needs.
IGNORED_EVENTS = {
    "start", "start-step", "text-start", "text-end",
    "tool-input-start", "tool-input-delta", "tool-input-end",
    "source", "file", "finish", "raw",
}


class EventSink(Protocol):
    """Where a run's client events go (normally the SSE bus)."""

    async def send(self, event: str, data: str) -> None: ...


def error_message(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return json.dumps(error, default=str)


def last_user_prompt(messages: list[dict]) -> str:
    """Text of the most recent user message (text parts only)."""
    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = [
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            ]
            return "\n".join(parts)
        return ""
    return ""


class _RunTeardown:
    """Cleanup for one run. Every step runs at most once."""

    def __init__(self, orchestrator: "AgentOrchestrator") -> None:
        self.orchestrator = orchestrator
        self.stream: Optional[AdapterStream] = None
        self.finished = False
        self._released = False
        self._stopped = False

    def on_cancel(self) -> None:
        """External cancellation: release every waiter, then stop the adapter."""
        if self.finished:
            return
        self.release_pending(everything=True)
        self.stop_adapter()

    def release_pending(self, everything: bool = False) -> None:
        if self._released:
            return
        self._released = True
        interactions = self.orchestrator.interactions
        if everything:
            interactions.reject_all_pending()
        else:
            interactions.confirms.reject_all_pending()

    def stop_adapter(self) -> None:
        if self._stopped or self.stream is None:
            return
        self._stopped = True
        self.stream.cancel()

    async def finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self.release_pending()
        try:
            await self.orchestrator.undo.end()
        finally:
            self.orchestrator.gate.resume()


class AgentOrchestrator:
    """Runs one adapter stream at a time against the shared overlay services."""

    def __init__(
        self,
        adapter: StreamAdapter,
        *,
        undo: UndoCoordinator,
        gate: DevServerGate,
        history: HistoryLog,
        interactions: Interactions,
        confirm_timeout: float | None = None,
    ) -> None:
        self.adapter = adapter
        self.undo = undo
        self.gate = gate
        self.history = history
        self.interactions = interactions
        self.confirm_timeout = confirm_timeout

    async def stream_response(self, sink: EventSink, messages: list[dict], config: ProviderConfig) -> list[dict]:
        """Run the agent on ``messages``; return the messages to add to the session."""
        token = config.cancel_token or CancellationToken()
        run = AgentRun(
            model_id=self.adapter.model_id,
            provider_id=self.adapter.name,
            original_prompt=last_user_prompt(messages),
        )
        teardown = _RunTeardown(self)
        token.add_callback(teardown.on_cancel)

        label = PROVIDER_LABELS.get(self.adapter.name, self.adapter.label or self.adapter.name)
        await self._emit(sink, StatusEvent(message=f"Connecting to {label}..."))

        final_messages: list[dict] = []
        self.gate.pause()
        try:
            await self.undo.start(config.project_dir)
            final_messages = await self._consume(run, sink, messages, config, token, teardown)
        finally:
            await teardown.finish()

        if not token.cancelled:
            await self._emit(sink, DoneEvent())
        return final_messages

    # ── Stream consumption ───────────────────────────────────────

    async def _consume(
        self,
        run: AgentRun,
        sink: EventSink,
        messages: list[dict],
        config: ProviderConfig,
        token: CancellationToken,
        teardown: _RunTeardown,
    ) -> list[dict]:
        request = self._build_request(sink, messages, config)
        stream: Optional[AdapterStream] = None
        iterator = None
        try:
            stream = self.adapter.open_stream(request)
            teardown.stream = stream
            if token.cancelled:
                teardown.stop_adapter()
            log_event("stream:start", f"model={run.model_id} provider={run.provider_id} messages={len(messages)}")

            iterator = stream.__aiter__()
            while not token.cancelled:
                try:
                    raw = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                if token.cancelled:
                    break
                await self._handle(run, raw, sink)
                if run.waiting_for_input:
                    log_event("abort", "waiting for user input")
                    teardown.stop_adapter()
                    break
        except Exception as e:
            # Errors caused by our own pause or by cancellation are expected.
            if not run.waiting_for_input and not token.cancelled:
                run.errored = True
                logger.error("Stream from %s failed: %s", run.provider_id, e)
                log_event("error", f"stream error: {e}")
                await self._emit(sink, ErrorEvent(message=error_message(e)))
        finally:
            await _close_iterator(iterator)

        if token.cancelled:
            log_event("abort", "externally cancelled")
            return []

        final_messages: list[dict] = []
        usage = None
        if stream is not None:
            try:
                response = await stream.response()
                final_messages = response.messages
                usage = response.usage
            except Exception as e:
                logger.warning("Could not resolve response messages from %s: %s", run.provider_id, e)

        await self._emit_result(run, sink, config, usage)
        return final_messages

    async def _handle(self, run: AgentRun, raw: RawEvent, sink: EventSink) -> None:
        kind = raw.type

        if kind == "text-delta":
            log_event(kind, raw.text)
            run.accumulated_text += raw.text
            if not run.in_plan_mode:
                await self._emit(sink, TextEvent(text=raw.text, model=run.model_id))

        elif kind == "tool-call":
            log_event(kind, f"{raw.tool_name} {json.dumps(raw.input, default=str)[:200]}")
            await self._handle_tool_call(run, raw, sink)

        elif kind == "tool-result":
            log_event(kind, f"{raw.tool_name} {str(raw.output)[:120]}")
            if raw.tool_name in INTERACTIVE_TOOLS:
                return
            if raw.tool_call_id in run.suppressed_tool_call_ids:
                run.suppressed_tool_call_ids.discard(raw.tool_call_id)
                return
            await self._emit(sink, ToolResultEvent(
                tool_use_id=raw.tool_call_id,
                tool=raw.tool_name,
                content=raw.output,
                is_error=False,
            ))

        elif kind == "tool-error":
            message = error_message(raw.error)
            log_event(kind, f"{raw.tool_name or 'unknown'} {message}")
            # Self-contained adapters run tools internally; these are plumbing noise.
            if self.adapter.self_contained:
                return
            await self._emit(sink, ToolResultEvent(
                tool_use_id=raw.tool_call_id,
                tool=raw.tool_name,
                content=message,
                is_error=True,
            ))

        elif kind == "finish-step":
            run.num_turns += 1
            log_event(kind, f"turn={run.num_turns}")
            if run.in_plan_mode:
                run.accumulated_text = ""

        elif kind == "reasoning-start":
            log_event("reasoning", "start")
            run.reasoning_active = True
            await self._emit(sink, StatusEvent(message="Reasoning..."))

        elif kind == "reasoning-delta":
            if raw.text:
                log_event(kind, raw.text)

        elif kind == "reasoning-end":
            log_event("reasoning", "end")
            run.reasoning_active = False

        elif kind == "error":
            message = error_message(raw.error)
            log_event(kind, message)
            run.errored = True
            await self._emit(sink, ErrorEvent(message=message))

        elif kind not in IGNORED_EVENTS:
            log_event("stream:unknown", f"type={kind}")

    async def _handle_tool_call(self, run: AgentRun, raw: RawEvent, sink: EventSink) -> None:
        name = raw.tool_name
        tool_input = raw.input if isinstance(raw.input, dict) else {}

        if name == PROPOSE_PLAN_TOOL:
            title = tool_input.get("title") or "Plan"
            content = tool_input.get("content") or ""
            await self._emit_plan(run, sink, title, content)
            return

        if name in ASK_USER_TOOLS:
            questions = tool_input.get("questions") or []
            entry = self.interactions.questions.store(questions)
            await self._emit(sink, QuestionEvent(questionId=entry.id, questions=questions))
            run.waiting_for_input = True
            return

        if name == ENTER_PLAN_MODE_TOOL:
            run.in_plan_mode = True
            run.accumulated_text = ""
            return

        if name == EXIT_PLAN_MODE_TOOL:
            run.in_plan_mode = False
            # The exit marker can arrive more than once per turn.
            if run.plan_emitted:
                return
            content = run.pending_plan_content or run.accumulated_text
            if content:
                title, body = parse_plan_content(content)
                await self._emit_plan(run, sink, title, body or content)
            run.pending_plan_content = None
            return

        plan_content = plan_file_write(name, raw.input)
        if plan_content is not None:
            run.pending_plan_content = plan_content
            run.suppressed_tool_call_ids.add(raw.tool_call_id)
            return

        await self._emit(sink, ToolUseEvent(tool=name, input=raw.input, id=raw.tool_call_id))

    async def _emit_plan(self, run: AgentRun, sink: EventSink, title: str, content: str) -> None:
        entry = self.interactions.plans.store(title, content, run.original_prompt, run.model_id)
        log_event("plan", title)
        await self._emit(sink, PlanEvent(planId=entry.id, planTitle=title, planContent=content))
        run.plan_emitted = True
        run.waiting_for_input = True

    async def _emit_result(self, run: AgentRun, sink: EventSink, config: ProviderConfig, usage) -> None:
        if run.waiting_for_input:
            subtype = "waiting_for_input"
        elif run.errored:
            subtype = "error_during_execution"
        else:
            subtype = "success"

        stats = await self.undo.get_current_session_stats(config.project_dir)
        event = ResultEvent(
            subtype=subtype,
            duration_ms=run.duration_ms,
            num_turns=run.num_turns,
            is_error=subtype == "error_during_execution",
            file_stats=[s.to_dict() for s in stats] if stats else None,
        )
        if usage is not None:
            event.input_tokens = usage.input_tokens
            event.output_tokens = usage.output_tokens
            event.cache_read_tokens = usage.cache_read_tokens
            event.cache_write_tokens = usage.cache_write_tokens

        log_event("stream:end", f"duration={event.duration_ms}ms turns={run.num_turns} result={subtype}")
        await self._emit(sink, event)

    # ── Request building ─────────────────────────────────────────

    def _build_request(self, sink: EventSink, messages: list[dict], config: ProviderConfig) -> StreamRequest:
        if self.adapter.self_contained:
            return StreamRequest(model_id=self.adapter.model_id, messages=messages, config=config)

        confirm = not config.creation_mode

        async def emit(event: Event) -> None:
            await self._emit(sink, event)

        async def request_confirmation(tool_name: str, summary: str, details: str | None = None,
                                       category: str = "bash") -> bool:
            return await self._request_confirmation(sink, tool_name, summary, details, category)

        return StreamRequest(
            model_id=self.adapter.model_id,
            messages=messages,
            config=config,
            system_prompt=build_system_prompt(config.project_dir, config.creation_mode, config.language),
            tools=tool_catalog(config.creation_mode),
            tool_context=ToolContext(
                project_dir=config.project_dir,
                emit=emit,
                request_confirmation=request_confirmation,
                confirm_bash=confirm,
                confirm_file_writes=confirm,
            ),
        )

    async def _request_confirmation(
        self,
        sink: EventSink,
        tool_name: str,
        summary: str,
        details: str | None,
        category: str,
    ) -> bool:
        """Ask the user to allow a tool call; a timeout or teardown counts as denial."""
        confirms = self.interactions.confirms
        if confirms.is_auto_approved(category):
            return True

        entry = confirms.request(tool_name, summary, details)
        await self._emit(sink, ConfirmEvent(confirmId=entry.id, toolName=tool_name, summary=summary, details=details))
        approved = await confirms.wait(entry, timeout=self.confirm_timeout)
        await self._emit(sink, ConfirmResolvedEvent(
            confirmId=entry.id,
            toolName=tool_name,
            summary=summary,
            approved=approved,
        ))
        return approved

    # ── Emission ─────────────────────────────────────────────────

    async def _emit(self, sink: EventSink, event: Event) -> None:
        data = json.dumps(event.to_dict(), default=str)
        self.history.add(event.event, data)
        await sink.send(event.event, data)


async def _close_iterator(iterator) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Closing adapter stream iterator failed: %s", e)
