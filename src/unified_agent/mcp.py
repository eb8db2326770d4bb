from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from pydantic import ValidationError

from .connection import BaseConnection
from .core import AgentConnectionError, IncomingRequest, RequestError
from .events import ApprovalRequestEvent, CodexEvent, ErrorEvent, ToolResultEvent, ToolsChangedEvent
from .meta import MCP_CLIENT_METHODS, MCP_METHODS
from .options import McpOptions, SpawnConfig
from .router import NotificationHandler, RequestHandler
from .schema import (
    CallToolRequest,
    CallToolResult,
    CodexEventParams,
    ElicitationCreateParams,
    ElicitationDecision,
    ElicitationResponse,
    ListToolsResult,
    McpInitializeRequest,
    McpInitializeResult,
    Tool,
)
from .state import ConnectionState

logger = logging.getLogger(__name__)

EXEC_APPROVAL_REQUEST = "exec_approval_request"

_CLIENT_CAPABILITIES: Dict[str, Any] = {
    "roots": {"listChanged": True},
    "sampling": {},
    "elicitation": {},
}


class ApprovalLedger:
    """
    Approval decisions that arrived ahead of their elicitation request, keyed
    by call id, plus the call ids already answered.

    A decision is claimed at most once. Call ids that were answered are
    "settled" so a late event for them records nothing. Both tables drop
    entries older than ``horizon`` seconds and hold at most ``capacity``
    entries each, oldest first out.
    """

    def __init__(
        self, horizon: float, capacity: int = 1024, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.horizon = horizon
        self.capacity = capacity
        self._clock = clock
        self._pending: "OrderedDict[str, Tuple[float, ElicitationDecision]]" = OrderedDict()
        self._settled: "OrderedDict[str, float]" = OrderedDict()

    def __len__(self) -> int:
        self._evict()
        return len(self._pending)

    def record(self, call_id: str, decision: ElicitationDecision) -> bool:
        self._evict()
        if call_id in self._settled:
            return False
        self._pending[call_id] = (self._clock(), decision)
        self._pending.move_to_end(call_id)
        while len(self._pending) > self.capacity:
            dropped, _ = self._pending.popitem(last=False)
            logger.debug("Approval ledger full, dropping %s", dropped)
        return True

    def claim(self, call_id: str) -> Optional[ElicitationDecision]:
        self._evict()
        entry = self._pending.pop(call_id, None)
        return entry[1] if entry is not None else None

    def settle(self, call_id: str) -> None:
        self._pending.pop(call_id, None)
        self._settled[call_id] = self._clock()
        self._settled.move_to_end(call_id)
        while len(self._settled) > self.capacity:
            self._settled.popitem(last=False)

    def is_settled(self, call_id: str) -> bool:
        self._evict()
        return call_id in self._settled

    def clear(self) -> None:
        self._pending.clear()
        self._settled.clear()

    def _evict(self) -> None:
        cutoff = self._clock() - self.horizon
        while self._pending and next(iter(self._pending.values()))[0] < cutoff:
            call_id, _ = self._pending.popitem(last=False)
            logger.debug("Evicting unclaimed approval for %s", call_id)
        while self._settled and next(iter(self._settled.values())) < cutoff:
            self._settled.popitem(last=False)


class McpConnection(BaseConnection):
    """
    Tool-dialect (MCP) connection.

    ``connect`` performs ``initialize``, acknowledges with
    ``notifications/initialized`` and fetches the tool catalog before the
    connection becomes ready. Elicitation requests are answered from an early
    ``codex/event`` approval, by auto-approval, or by the host.
    """

    options: McpOptions

    def __init__(self, spawn: SpawnConfig, options: Optional[McpOptions] = None) -> None:
        super().__init__(spawn, options or McpOptions())
        self.server_info: Optional[McpInitializeResult] = None
        self.approvals = ApprovalLedger(
            self.options.approval_horizon or self.options.request_timeout,
            self.options.approval_capacity,
        )
        self._tools: List[Tool] = []
        self._awaiting: Dict[Any, Tuple[IncomingRequest, Optional[str]]] = {}
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def tools(self) -> List[Tool]:
        return list(self._tools)

    @property
    def auto_approve(self) -> bool:
        return self.options.auto_approve or self.options.yolo_mode

    def _request_handlers(self) -> Mapping[str, RequestHandler]:
        return {
            MCP_CLIENT_METHODS["elicitation_create"]: self._on_elicitation,
            MCP_CLIENT_METHODS["sampling_create_message"]: self._on_sampling,
        }

    def _notification_handlers(self) -> Mapping[str, NotificationHandler]:
        return {
            MCP_CLIENT_METHODS["codex_event"]: self._on_codex_event,
            MCP_CLIENT_METHODS["tools_list_changed"]: self._on_tools_list_changed,
        }

    def _on_teardown(self) -> None:
        self.approvals.clear()
        self._awaiting.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # --- Lifecycle ---------------------------------------------------------------

    async def connect(self) -> McpInitializeResult:
        conn = await self._spawn()
        self._set_state(ConnectionState.INITIALIZING)
        try:
            result = McpInitializeResult.model_validate(
                await self._handshake(
                    MCP_METHODS["initialize"],
                    McpInitializeRequest(
                        protocolVersion=self.options.protocol_version,
                        capabilities=_CLIENT_CAPABILITIES,
                        clientInfo=self.options.client_info,
                    ).to_params(),
                )
            )
            await conn.send_notification(MCP_METHODS["initialized"])
            self._tools = await self._fetch_tools(self.options.init_timeout)
        except (AgentConnectionError, ValidationError) as err:
            if not self._torn_down:
                self._fail(err)
            raise
        self._check_torn_down()
        self.server_info = result
        self._set_state(ConnectionState.READY)
        return result

    # --- Server-bound methods (host -> server) -----------------------------------

    def list_tools(self) -> List[Tool]:
        """The last-known tool catalog."""
        return self.tools

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> CallToolResult:
        raw = await self._request(
            MCP_METHODS["tools_call"],
            CallToolRequest(name=name, arguments=arguments or {}).to_params(),
            timeout,
        )
        result = CallToolResult.model_validate(raw or {})
        self.events.emit(ToolResultEvent(name=name, result=result))
        return result

    def respond_to_elicitation(self, request_id: Any, decision: ElicitationDecision) -> bool:
        """Answer an elicitation the host was asked about. False if it is no longer waiting."""
        entry = self._awaiting.pop(request_id, None)
        if entry is None:
            return False
        request, call_id = entry
        return self._answer_elicitation(request, call_id, decision)

    async def _fetch_tools(self, timeout: Optional[float] = None) -> List[Tool]:
        raw = await self._require_conn().send_request(MCP_METHODS["tools_list"], None, timeout)
        return ListToolsResult.model_validate(raw or {}).tools

    async def _refresh_tools(self) -> None:
        try:
            tools = await self._fetch_tools()
        except (AgentConnectionError, ValidationError) as err:
            logger.warning("Tool catalog refresh failed: %s", err)
            self.events.emit(ErrorEvent(error=err))
            return
        self._tools = tools
        self.events.emit(ToolsChangedEvent(tools=list(tools)))

    # --- Client-bound methods (server -> host) -----------------------------------

    def _on_elicitation(self, request: IncomingRequest) -> None:
        params = ElicitationCreateParams.model_validate(request.params or {})
        call_id = params.codex_call_id

        early = self.approvals.claim(call_id) if call_id is not None else None
        if early is not None:
            logger.debug("Applying early approval for %s", call_id)
            self._answer_elicitation(request, call_id, early)
            return
        if self.auto_approve:
            self._answer_elicitation(request, call_id, ElicitationDecision.APPROVED)
            return

        self._awaiting[request.id] = (request, call_id)

        def respond(decision: ElicitationDecision) -> bool:
            return self.respond_to_elicitation(request.id, ElicitationDecision(decision))

        self.events.emit(
            ApprovalRequestEvent(
                request_id=request.id, call_id=call_id, message=params.message or "", respond=respond
            )
        )

    def _answer_elicitation(
        self, request: IncomingRequest, call_id: Optional[str], decision: ElicitationDecision
    ) -> bool:
        if call_id is not None:
            self.approvals.settle(call_id)
        return request.respond(ElicitationResponse(decision=decision).to_params())

    def _on_sampling(self, request: IncomingRequest) -> None:
        raise RequestError(-32601, "sampling is not supported")

    def _on_codex_event(self, params: Optional[Any]) -> None:
        try:
            msg = CodexEventParams.model_validate(params or {}).msg
        except ValidationError:
            logger.debug("Undecodable codex/event payload: %r", params)
            msg = None
        self.events.emit(CodexEvent(params=params, msg=msg))

        if msg is not None and msg.type == EXEC_APPROVAL_REQUEST and msg.call_id and self.auto_approve:
            if self.approvals.record(msg.call_id, ElicitationDecision.APPROVED):
                logger.debug("Recorded early approval for %s", msg.call_id)

    def _on_tools_list_changed(self, params: Optional[Any]) -> None:
        task = asyncio.create_task(self._refresh_tools())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
