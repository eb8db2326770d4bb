"""Typed events emitted by a connection, and the emitter that fans them out."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict

from .schema import (
    CallToolResult,
    CodexEventMessage,
    ElicitationDecision,
    PlanEntry,
    ReadTextFileRequest,
    RequestPermissionRequest,
    Tool,
    WriteTextFileRequest,
)
from .state import ConnectionState

logger = logging.getLogger(__name__)


class Event(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    type: str


# --- Connection lifecycle ---------------------------------------------------------

class StateChangeEvent(Event):
    type: Literal["state_change"] = "state_change"
    state: ConnectionState


class LogEvent(Event):
    """A stderr line or a non-protocol stdout line from the agent process."""

    type: Literal["log"] = "log"
    message: str


class ErrorEvent(Event):
    type: Literal["error"] = "error"
    error: Exception


class ExitEvent(Event):
    type: Literal["exit"] = "exit"
    code: Optional[int] = None
    signal: Optional[str] = None


class NotificationEvent(Event):
    """A notification no adapter handler recognised."""

    type: Literal["notification"] = "notification"
    method: str
    params: Any = None


# --- Session dialect --------------------------------------------------------------

class SessionUpdateEvent(Event):
    type: Literal["session_update"] = "session_update"
    session_id: str
    update: Dict[str, Any]


class MessageChunkEvent(Event):
    type: Literal["message_chunk"] = "message_chunk"
    text: str
    session_id: str


class ThoughtChunkEvent(Event):
    type: Literal["thought_chunk"] = "thought_chunk"
    text: str
    session_id: str


class ToolCallEvent(Event):
    type: Literal["tool_call"] = "tool_call"
    tool_call_id: Optional[str] = None
    title: str = ""
    status: str = ""
    session_id: str


class ToolCallUpdateEvent(Event):
    type: Literal["tool_call_update"] = "tool_call_update"
    tool_call_id: Optional[str] = None
    title: str = ""
    status: str = ""
    session_id: str


class PlanEvent(Event):
    type: Literal["plan"] = "plan"
    entries: List[PlanEntry]
    session_id: str


class PromptCompleteEvent(Event):
    type: Literal["prompt_complete"] = "prompt_complete"
    session_id: str
    stop_reason: str


class PermissionRequestEvent(Event):
    """
    The agent asks the host to pick one of ``request.options``.

    ``respond(option_id)`` answers with that option; ``respond(None)`` answers
    "cancelled". ``reject(message)`` answers with an error.
    """

    type: Literal["permission_request"] = "permission_request"
    request: RequestPermissionRequest
    respond: Callable[[Optional[str]], bool]
    reject: Callable[[str], bool]


class FileReadEvent(Event):
    type: Literal["file_read"] = "file_read"
    request: ReadTextFileRequest
    respond: Callable[[str], bool]
    reject: Callable[[str], bool]


class FileWriteEvent(Event):
    type: Literal["file_write"] = "file_write"
    request: WriteTextFileRequest
    respond: Callable[[], bool]
    reject: Callable[[str], bool]


# --- Tool dialect -----------------------------------------------------------------

class ToolsChangedEvent(Event):
    type: Literal["tools_changed"] = "tools_changed"
    tools: List[Tool]


class ToolResultEvent(Event):
    type: Literal["tool_result"] = "tool_result"
    name: str
    result: CallToolResult


class CodexEvent(Event):
    """A raw ``codex/event`` notification; ``msg`` is its decoded message, if any."""

    type: Literal["codex_event"] = "codex_event"
    params: Any = None
    msg: Optional[CodexEventMessage] = None


class ApprovalRequestEvent(Event):
    """The server asks the host to approve a side-effecting action."""

    type: Literal["approval_request"] = "approval_request"
    request_id: Any = None
    call_id: Optional[str] = None
    message: str
    respond: Callable[[ElicitationDecision], bool]


# --- Emitter ----------------------------------------------------------------------

EventHandler = Callable[[Event], Any]


class EventEmitter:
    """
    Fan-out of events to handlers registered per event type, plus catch-all
    handlers. Emitting with no handlers is a no-op. Coroutine handlers are
    scheduled as tasks; a failing handler is logged and does not stop the
    others.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._catch_all: List[EventHandler] = []
        self._tasks: Set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        self._catch_all.append(handler)
        return lambda: self.unsubscribe(None, handler)

    def unsubscribe(self, event_type: Optional[str], handler: EventHandler) -> None:
        handlers = self._catch_all if event_type is None else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()
        self._catch_all.clear()

    def emit(self, event: Event) -> None:
        for handler in [*self._handlers.get(event.type, ()), *self._catch_all]:
            try:
                result = handler(event)
            except Exception:  # noqa: BLE001
                logger.error("Handler error for %s", event.type, exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Handler error", exc_info=task.exception())
