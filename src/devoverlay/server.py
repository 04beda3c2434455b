"""FastAPI web server for devoverlay."""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from .backends import UnknownModelError, get_model_catalog, resolve_adapter
from .bus import StreamBus, format_sse
from .config import (
    get_confirm_timeout,
    get_default_model,
    get_history_path,
    get_max_output_tokens,
    get_session_path,
    get_target_port,
)
from .gate import DevServerGate
from .history import HistoryLog
from .interactions import Interactions
from .orchestrator import AgentOrchestrator
from .prompts import build_user_content
from .provider import CancellationToken, ProviderConfig
from .session import SessionStore
from .undo import UndoCoordinator

logger = logging.getLogger(__name__)

app = FastAPI(title="devoverlay", version="0.1.0")

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}

# Seconds a superseded run gets to wind down before its task is cancelled.
SUPERSEDE_TIMEOUT = 5.0


# ── Request models ───────────────────────────────────────────────


class TraceFrame(BaseModel):
    source: str
    line: Optional[int] = None


class ConsoleEntry(BaseModel):
    level: str
    message: str
    source: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    sourceTrace: Optional[list[TraceFrame]] = None
    stack: Optional[str] = None
    count: int = 1


class PageContext(BaseModel):
    url: str
    title: str = ""
    routeComponent: Optional[str] = None


class ChatRequest(BaseModel):
    prompt: str = Field(min_length=1)
    model: Optional[str] = None
    modelProvider: Optional[str] = None
    consoleEntries: Optional[list[ConsoleEntry]] = None
    images: Optional[list[str]] = None
    pageContext: Optional[PageContext] = None
    language: Optional[str] = None


class AnswerRequest(BaseModel):
    answers: Any


class ConfirmRequest(BaseModel):
    approved: bool
    autoApprove: Optional[str] = None  # "bash" | "file_writes"


# ── Process state ────────────────────────────────────────────────


@dataclass
class OverlayState:
    """Services shared by every request for one project."""

    project_dir: Path
    target_port: int
    sessions: SessionStore
    history: HistoryLog
    creation_mode: bool = False
    gate: DevServerGate = field(default_factory=DevServerGate)
    undo: UndoCoordinator = field(default_factory=UndoCoordinator)
    interactions: Interactions = field(default_factory=Interactions)
    bus: StreamBus = field(default_factory=StreamBus)
    active_token: Optional[CancellationToken] = None
    active_task: Optional[asyncio.Task] = None
    # Held while one run is superseded and the next one is started.
    run_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def run_active(self) -> bool:
        return self.active_token is not None and not self.active_token.cancelled


# State cache (populated by configure() or on first request)
_state: OverlayState | None = None


def configure(project_dir: Path, target_port: int | None = None, creation_mode: bool = False) -> OverlayState:
    """Bind the server to ``project_dir`` and restore its persisted state."""
    global _state
    project_dir = Path(project_dir).resolve()
    sessions = SessionStore(get_session_path(project_dir))
    sessions.load()
    history = HistoryLog(get_history_path(project_dir))
    history.load()
    _state = OverlayState(
        project_dir=project_dir,
        target_port=target_port if target_port is not None else get_target_port(),
        sessions=sessions,
        history=history,
        creation_mode=creation_mode,
    )
    logger.info("Serving project %s (dev server on port %s)", project_dir, _state.target_port)
    return _state


def _get_state() -> OverlayState:
    """Lazily configure for the working directory."""
    if _state is None:
        return configure(Path.cwd())
    return _state


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in issue['loc'])}: {issue['msg']}" for issue in error.errors()
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


async def _parse_body(request: Request, model: type[BaseModel]) -> tuple[Any, Optional[JSONResponse]]:
    """Validate a JSON body against ``model``; returns the parsed body or a 400 response."""
    body = await _read_json(request)
    if body is None:
        return None, _error("Invalid request body", 400)
    try:
        return model.model_validate(body), None
    except ValidationError as e:
        return None, _error(_validation_message(e), 400)


class _BusSink:
    """Publishes a run's events to the stream bus until the run is cancelled."""

    def __init__(self, bus: StreamBus, token: CancellationToken) -> None:
        self.bus = bus
        self.token = token

    async def send(self, event: str, data: str) -> None:
        if not self.token.cancelled:
            self.bus.publish(event, data)


async def _supersede_active_run(state: OverlayState) -> None:
    """Cancel the in-flight run and wait for its cleanup to finish."""
    token, task = state.active_token, state.active_task
    if token is not None:
        token.cancel()
    if task is None or task.done():
        return
    done, _ = await asyncio.wait({task}, timeout=SUPERSEDE_TIMEOUT)
    if not done:
        logger.warning("Previous run did not stop within %ss; cancelling it", SUPERSEDE_TIMEOUT)
        task.cancel()
        await asyncio.wait({task})


async def _run_agent(
    state: OverlayState,
    orchestrator: AgentOrchestrator,
    token: CancellationToken,
    user_content: Any,
    messages: list[dict],
    config: ProviderConfig,
) -> None:
    sink = _BusSink(state.bus, token)
    try:
        response_messages = await orchestrator.stream_response(sink, messages, config)
        # The prompt is kept only with its answer, so an aborted or paused run
        # never leaves consecutive user messages behind.
        if response_messages:
            state.sessions.append_user_message(user_content)
            state.sessions.append_response_messages(response_messages)
    except Exception as e:
        logger.error("Agent run failed: %s", e)
    finally:
        if state.active_token is token:
            state.active_token = None
            state.active_task = None
        if not token.cancelled:
            state.bus.end()


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/models")
async def get_models():
    """Return the model catalog."""
    return {"models": get_model_catalog(), "default": get_default_model()}


@app.get("/api/project-info")
async def get_project_info():
    return {"projectCwd": str(_get_state().project_dir)}


@app.post("/api/chat")
async def chat(request: Request):
    """Start an agent run; its events are delivered on ``/api/stream``."""
    state = _get_state()

    chat_request, error = await _parse_body(request, ChatRequest)
    if error is not None:
        return error

    model_id = chat_request.model or get_default_model()
    try:
        adapter, provider = resolve_adapter(model_id, chat_request.modelProvider)
    except UnknownModelError as e:
        return _error(str(e), 500)

    user_content = build_user_content(
        chat_request.prompt,
        console_entries=[entry.model_dump(exclude_none=True) for entry in chat_request.consoleEntries or []],
        page_context=chat_request.pageContext.model_dump(exclude_none=True) if chat_request.pageContext else None,
        images=chat_request.images,
    )

    async with state.run_lock:
        await _supersede_active_run(state)
        token = CancellationToken()
        state.active_token = token

        if state.sessions.select_model(model_id, provider):
            logger.info("Switched to %s (%s); previous conversation cleared", model_id, provider)
        messages = state.sessions.build_messages(user_content)

        orchestrator = AgentOrchestrator(
            adapter,
            undo=state.undo,
            gate=state.gate,
            history=state.history,
            interactions=state.interactions,
            confirm_timeout=get_confirm_timeout(),
        )
        config = ProviderConfig(
            project_dir=state.project_dir,
            target_port=state.target_port,
            cancel_token=token,
            creation_mode=state.creation_mode,
            language=chat_request.language,
            max_output_tokens=get_max_output_tokens(),
        )
        state.active_task = asyncio.create_task(
            _run_agent(state, orchestrator, token, user_content, messages, config)
        )
    return {"success": True}


@app.get("/api/stream")
async def stream(reconnect: str | None = Query(None, description="Set to 1 when resuming after a reload")):
    """Server-sent events for the active run."""
    state = _get_state()
    headers = dict(SSE_HEADERS)

    # Reconnecting after the run already finished: tell the client right away.
    if reconnect == "1" and not state.run_active:
        async def _done():
            yield format_sse("done", "{}")

        return StreamingResponse(_done(), media_type="text/event-stream", headers=headers)

    subscription = state.bus.subscribe()

    async def _drain():
        try:
            async for event, data in subscription:
                yield format_sse(event, data)
        finally:
            state.bus.unsubscribe(subscription)

    return StreamingResponse(_drain(), media_type="text/event-stream", headers=headers)


@app.post("/api/stream/abort")
async def abort_stream():
    state = _get_state()
    if state.active_token is not None:
        state.active_token.cancel()
    return {"ok": True}


@app.get("/api/stream/status")
async def stream_status():
    return {"active": _get_state().run_active}


@app.get("/api/chat/history")
async def get_chat_history():
    return {"history": _get_state().history.entries()}


@app.post("/api/chat/history")
async def add_chat_history(request: Request):
    """Record a client-side event (e.g. the user's own prompt)."""
    body = await _read_json(request)
    if body is None:
        return _error("Invalid JSON", 400)
    if not isinstance(body, dict) or not body.get("eventType") or not body.get("data"):
        return _error("Missing eventType or data", 400)

    data = body["data"]
    if not isinstance(data, str):
        data = json.dumps(data)
    _get_state().history.add(str(body["eventType"]), data)
    return {"success": True}


@app.delete("/api/chat/history")
async def clear_chat_history():
    state = _get_state()
    state.history.clear()
    state.sessions.reset()
    state.interactions.plans.clear()
    state.interactions.questions.clear()
    state.interactions.confirms.reset_auto_approve()
    return {"success": True}


@app.get("/api/plan/active")
async def get_active_plan():
    return {"plan": _get_state().interactions.plans.active()}


@app.post("/api/plan/approve")
async def approve_plan():
    return {"success": _get_state().interactions.plans.approve_active()}


@app.post("/api/question/{question_id}/answer")
async def answer_question(question_id: str, request: Request):
    body, error = await _parse_body(request, AnswerRequest)
    if error is not None:
        return error
    if not _get_state().interactions.questions.answer(question_id, body.answers):
        return _error("Question not found", 404)
    return {"success": True}


@app.post("/api/confirm/approve-all")
async def approve_all_confirms():
    approved = _get_state().interactions.confirms.approve_all_pending()
    return {"success": True, "approved": approved}


@app.post("/api/confirm/{confirm_id}")
async def resolve_confirm(confirm_id: str, request: Request):
    body, error = await _parse_body(request, ConfirmRequest)
    if error is not None:
        return error
    confirms = _get_state().interactions.confirms
    if body.autoApprove:
        try:
            confirms.set_auto_approve(body.autoApprove, body.approved)
        except ValueError as e:
            return _error(str(e), 400)
    if not confirms.resolve(confirm_id, body.approved):
        return _error("Confirmation not found", 404)
    return {"success": True}


@app.post("/api/undo")
async def undo():
    """Revert the most recent agent run."""
    state = _get_state()
    restored = await state.undo.pop_and_restore_session()
    if restored:
        return {
            "success": True,
            "restored": [os.path.relpath(path, state.project_dir) for path in restored],
        }
    return _error("Nothing to undo", 400)


@app.get("/api/undo/diff")
async def undo_diff():
    state = _get_state()
    diffs = await state.undo.get_latest_session_diffs(state.project_dir)
    if not diffs:
        return _error("No session to diff", 400)
    return {"success": True, "diffs": [d.to_dict() for d in diffs]}


@app.get("/api/undo/stack")
async def undo_stack():
    return [
        {"sessionId": session.session_id, "files": [{"file": f} for f in session.changed_files or []]}
        for session in _get_state().undo.stack()
    ]
