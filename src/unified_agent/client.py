from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .acp import AcpConnection
from .connection import BaseConnection
from .core import NotReadyError, RequestError
from .events import EventEmitter
from .mcp import McpConnection
from .options import ClientOptions, ProtocolType, SpawnConfig
from .schema import CallToolResult, PromptResponse, Tool
from .state import ConnectionState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConnectionInfo:
    protocol: Optional[ProtocolType]
    session_id: Optional[str]
    state: ConnectionState


class UnifiedAgentClient:
    """
    One live agent behind a dialect-neutral surface.

    ``connect`` replaces any previous agent. Every event of the current
    adapter is re-emitted on ``events``, so host subscriptions survive
    reconnects.
    """

    def __init__(self) -> None:
        self.events = EventEmitter()
        self._adapter: Optional[BaseConnection] = None
        self._protocol: Optional[ProtocolType] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def adapter(self) -> Optional[BaseConnection]:
        return self._adapter

    async def connect(
        self,
        spawn: SpawnConfig,
        protocol: Union[ProtocolType, str, None] = None,
        options: Optional[ClientOptions] = None,
    ) -> None:
        options = options or ClientOptions()
        protocol = ProtocolType(protocol) if protocol is not None else options.protocol
        await self.disconnect()

        adapter: BaseConnection
        if protocol == ProtocolType.ACP:
            adapter = AcpConnection(spawn, options.acp)
        else:
            yolo = options.yolo_mode or options.mcp.yolo_mode
            adapter = McpConnection(spawn, options.mcp.model_copy(update={"yolo_mode": yolo}))
        self._adapter = adapter
        self._protocol = protocol
        self._unsubscribe = adapter.events.subscribe_all(self.events.emit)

        try:
            await adapter.connect()  # type: ignore[attr-defined]
        except BaseException:
            await self.disconnect()
            raise

        if isinstance(adapter, AcpConnection):
            if options.yolo_mode:
                await self._best_effort("set_mode", adapter.set_mode())
            if options.model:
                await self._best_effort("set_model", adapter.set_model(options.model))

    async def disconnect(self) -> None:
        adapter, self._adapter = self._adapter, None
        if adapter is None:
            return
        try:
            await adapter.disconnect()
        finally:
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None

    def connection_info(self) -> ConnectionInfo:
        adapter = self._adapter
        session_id = None
        if isinstance(adapter, AcpConnection) and adapter.session is not None:
            session_id = adapter.session.session_id
        return ConnectionInfo(
            protocol=self._protocol if adapter is not None else None,
            session_id=session_id,
            state=adapter.state if adapter is not None else ConnectionState.DISCONNECTED,
        )

    # --- Session dialect ---------------------------------------------------------

    async def send_message(self, text: str) -> PromptResponse:
        return await self._acp().send_prompt(text)

    async def set_mode(self, mode_id: str) -> None:
        await self._acp().set_mode(mode_id)

    async def set_yolo_mode(self, enabled: bool = True) -> None:
        adapter = self._require_adapter()
        if isinstance(adapter, McpConnection):
            adapter.options.yolo_mode = enabled
        elif enabled:
            await adapter.set_mode()  # type: ignore[attr-defined]
        else:
            await adapter.set_mode("default")  # type: ignore[attr-defined]

    async def set_model(self, model_id: str) -> None:
        await self._acp().set_model(model_id)

    async def set_config_option(self, config_id: str, value: Any) -> None:
        await self._acp().set_config_option(config_id, value)

    async def cancel(self) -> None:
        await self._acp().cancel()

    # --- Tool dialect ------------------------------------------------------------

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        return await self._mcp().call_tool(name, arguments)

    def list_tools(self) -> List[Tool]:
        return self._mcp().list_tools()

    # --- Helpers -----------------------------------------------------------------

    def _require_adapter(self) -> BaseConnection:
        if self._adapter is None:
            raise NotReadyError("not connected")
        return self._adapter

    def _acp(self) -> AcpConnection:
        adapter = self._require_adapter()
        if not isinstance(adapter, AcpConnection):
            raise NotReadyError("operation requires the acp protocol")
        return adapter

    def _mcp(self) -> McpConnection:
        adapter = self._require_adapter()
        if not isinstance(adapter, McpConnection):
            raise NotReadyError("operation requires the mcp protocol")
        return adapter

    @staticmethod
    async def _best_effort(what: str, call: Any) -> None:
        try:
            await call
        except RequestError as err:
            logger.warning("%s failed after connect: %s", what, err)
