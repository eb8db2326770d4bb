from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Mapping, Optional

from .core import (
    Connection,
    ConnectionClosedError,
    JsonValue,
    NotReadyError,
    ProcessExitedError,
    SpawnError,
)
from .events import ErrorEvent, EventEmitter, ExitEvent, LogEvent, NotificationEvent, StateChangeEvent
from .options import ConnectionOptions, SpawnConfig
from .process import AgentProcess, describe_exit
from .router import NotificationHandler, RequestHandler, Router
from .state import ConnectionState, can_transition

logger = logging.getLogger(__name__)

# How long an exiting process gets to have its buffered stdout consumed
_DRAIN_TIMEOUT = 1.0
_EXIT_WAIT_SLACK = 2.0


class BaseConnection:
    """
    One agent subprocess plus one JSON-RPC channel to it.

    Subclasses provide the method tables for peer-initiated traffic and the
    dialect's handshake; this class owns spawning, the connection state,
    process exit and teardown. Everything observable goes out through
    ``events``.
    """

    def __init__(self, spawn: SpawnConfig, options: ConnectionOptions) -> None:
        self.spawn = spawn
        self.options = options
        self.events = EventEmitter()
        self._state = ConnectionState.DISCONNECTED
        self._process: Optional[AgentProcess] = None
        self._conn: Optional[Connection] = None
        self._exit_task: Optional[asyncio.Task[None]] = None
        self._torn_down = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    # --- Dialect hooks -----------------------------------------------------------

    def _request_handlers(self) -> Mapping[str, RequestHandler]:
        return {}

    def _notification_handlers(self) -> Mapping[str, NotificationHandler]:
        return {}

    def _on_teardown(self) -> None:
        """Drop dialect state that must not outlive the connection."""

    # --- Lifecycle ---------------------------------------------------------------

    async def _spawn(self) -> Connection:
        if self._state != ConnectionState.DISCONNECTED:
            raise RuntimeError(f"connection is {self._state.value}; disconnect first")
        self._torn_down = False
        self._set_state(ConnectionState.CONNECTING)
        env: Dict[str, str] = dict(os.environ) if self.spawn.env is None else dict(self.spawn.env)
        try:
            process = await AgentProcess.start(
                self.spawn.command, self.spawn.args, self.spawn.cwd, env, on_log=self._emit_log
            )
        except SpawnError as err:
            if not self._torn_down:
                self._fail(err)
            raise
        if self._torn_down:
            # disconnect() ran while the process was being created
            await self._discard(process)
            raise ConnectionClosedError("disconnected while starting")
        router = Router(self._request_handlers(), self._notification_handlers(), self._emit_notification)
        conn = Connection(
            router,
            process.stdin,
            process.stdout,
            request_timeout=self.options.request_timeout,
            on_log=self._emit_log,
        )
        self._process = process
        self._conn = conn
        self._exit_task = asyncio.create_task(self._watch_exit(process, conn))
        self._set_state(ConnectionState.CONNECTED)
        return conn

    async def _watch_exit(self, process: AgentProcess, conn: Connection) -> None:
        returncode = await process.wait()
        await conn.wait_drained(_DRAIN_TIMEOUT)
        code, sig = describe_exit(returncode)
        conn.close(ProcessExitedError(code, sig))
        if not self._torn_down:
            self._set_state(ConnectionState.CLOSED)
        self.events.emit(ExitEvent(code=code, signal=sig))

    async def disconnect(self) -> None:
        """
        Terminate the agent and fail all outstanding calls with a "closed"
        error. Peer requests still waiting for a host decision are abandoned
        unanswered.
        """
        self._torn_down = True
        process, self._process = self._process, None
        exit_task, self._exit_task = self._exit_task, None
        if process is not None:
            process.terminate(self.options.kill_grace)
        if self._conn is not None:
            self._conn.close(ConnectionClosedError("connection closed"))
        self._on_teardown()
        self._set_state(ConnectionState.DISCONNECTED)

        if process is not None:
            await self._await_exit(process)
        if exit_task is not None:
            await asyncio.wait({exit_task}, timeout=_DRAIN_TIMEOUT)

    async def _discard(self, process: AgentProcess) -> None:
        process.terminate(self.options.kill_grace)
        await self._await_exit(process)

    async def _await_exit(self, process: AgentProcess) -> None:
        try:
            await asyncio.wait_for(process.wait(), self.options.kill_grace + _EXIT_WAIT_SLACK)
        except asyncio.TimeoutError:
            logger.warning("pid %s did not exit after disconnect", process.pid)

    def _check_torn_down(self) -> None:
        if self._torn_down:
            raise ConnectionClosedError("connection closed")

    # --- Requests ----------------------------------------------------------------

    def _require_conn(self) -> Connection:
        if self._conn is None or self._conn.closed:
            raise ConnectionClosedError("not connected")
        return self._conn

    def _require_ready(self) -> Connection:
        if self._state != ConnectionState.READY:
            raise NotReadyError(f"connection is {self._state.value}, not ready")
        return self._require_conn()

    async def _request(self, method: str, params: Optional[JsonValue] = None, timeout: Optional[float] = None) -> Any:
        return await self._require_ready().send_request(method, params, timeout)

    async def _handshake(self, method: str, params: Optional[JsonValue] = None) -> Any:
        return await self._require_conn().send_request(method, params, self.options.init_timeout)

    # --- State & events ----------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if not can_transition(self._state, state):
            logger.debug("Ignoring state change %s -> %s", self._state.value, state.value)
            return
        logger.info("%s: %s -> %s", type(self).__name__, self._state.value, state.value)
        self._state = state
        self.events.emit(StateChangeEvent(state=state))

    def _fail(self, error: Exception) -> None:
        self._set_state(ConnectionState.ERROR)
        self.events.emit(ErrorEvent(error=error))

    def _emit_log(self, line: str) -> None:
        self.events.emit(LogEvent(message=line))

    def _emit_notification(self, method: str, params: Optional[JsonValue]) -> None:
        self.events.emit(NotificationEvent(method=method, params=params))
