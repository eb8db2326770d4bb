from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from pydantic import BaseModel

from .framing import LineBuffer
from .meta import DEFAULT_REQUEST_TIMEOUT

if TYPE_CHECKING:
    from .router import Router

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


# --- Errors ----------------------------------------------------------------------

class AgentConnectionError(Exception):
    """Base class for every failure surfaced by a connection."""


class RequestError(AgentConnectionError):
    """A structured JSON-RPC error, either received from the peer or sent to it."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @staticmethod
    def parse_error(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32700, "Parse error", data)

    @staticmethod
    def invalid_request(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32600, "Invalid request", data)

    @staticmethod
    def method_not_found(method: str) -> "RequestError":
        return RequestError(-32601, "Method not found", {"method": method})

    @staticmethod
    def invalid_params(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32602, "Invalid params", data)

    @staticmethod
    def internal_error(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32603, "Internal error", data)

    @classmethod
    def from_error_obj(cls, error: Any) -> "RequestError":
        if not isinstance(error, dict):
            return cls(-32603, str(error))
        return cls(error.get("code", -32603), error.get("message", "Error"), error.get("data"))

    def to_error_obj(self) -> dict:
        obj: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            obj["data"] = self.data
        return obj

    def __str__(self) -> str:
        return f"JSON-RPC error [{self.code}]: {self.message}"


class RequestTimeoutError(AgentConnectionError, TimeoutError):
    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"request timed out after {timeout:g}s: {method}")
        self.method = method
        self.timeout = timeout


class ConnectionClosedError(AgentConnectionError):
    pass


class ProcessExitedError(ConnectionClosedError):
    def __init__(self, code: Optional[int], signal: Optional[str]) -> None:
        super().__init__(f"process terminated: code={code}, signal={signal}")
        self.code = code
        self.signal = signal


class SpawnError(AgentConnectionError):
    def __init__(self, command: str, cause: OSError) -> None:
        super().__init__(f"failed to start {command!r}: {cause}")
        self.command = command
        self.cause = cause


class NotReadyError(AgentConnectionError):
    pass


# --- Transport & Connection ------------------------------------------------------

JsonValue = Any
LogHandler = Callable[[str], None]


@dataclass(slots=True)
class _Pending:
    future: asyncio.Future[Any]
    method: str
    timer: Optional[asyncio.TimerHandle] = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class IncomingRequest:
    """
    A request initiated by the peer. It is answered exactly once, either right
    away by the handler or later by the host through a resolver. Answers given
    after the connection closed are dropped.
    """

    __slots__ = ("id", "method", "params", "_connection", "_answered")

    def __init__(self, connection: "Connection", request_id: Any, method: str, params: Optional[JsonValue]) -> None:
        self.id = request_id
        self.method = method
        self.params = params
        self._connection = connection
        self._answered = False

    @property
    def answered(self) -> bool:
        return self._answered

    def respond(self, result: Any = None) -> bool:
        if isinstance(result, BaseModel):
            result = result.model_dump(exclude_none=True)
        return self._answer({"result": result})

    def fail(self, error: RequestError) -> bool:
        return self._answer({"error": error.to_error_obj()})

    def _answer(self, payload: Dict[str, Any]) -> bool:
        if self._answered:
            logger.warning("Ignoring second answer to %s (id=%s)", self.method, self.id)
            return False
        self._answered = True
        if self._connection.closed:
            logger.debug("Dropping answer to %s (id=%s): connection closed", self.method, self.id)
            return False
        self._connection.send_response(self.id, payload)
        return True


class Connection:
    """
    JSON-RPC 2.0 connection over newline-delimited JSON frames.

    - Outgoing messages always include {"jsonrpc": "2.0"}
    - Responses resolve pending futures by numeric id; every request has a deadline
    - Peer requests and notifications go to the router, in arrival order
    - Lines that are not JSON objects are reported through ``on_log``
    """

    def __init__(
        self,
        router: "Router",
        writer: Any,
        reader: asyncio.StreamReader,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        on_log: Optional[LogHandler] = None,
    ) -> None:
        self._router = router
        self._writer = writer
        self._reader = reader
        self._request_timeout = request_timeout
        self._on_log = on_log
        self._next_request_id = 0
        self._pending: Dict[int, _Pending] = {}
        self._lines = LineBuffer()
        self._closed = False
        self._recv_task = asyncio.create_task(self._receive_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def close(self, error: Optional[Exception] = None) -> None:
        """Stop reading and fail every pending request with ``error``."""
        if self._closed:
            return
        self._closed = True
        if not self._recv_task.done():
            self._recv_task.cancel()
        self._fail_all(error or ConnectionClosedError("connection closed"))
        # Do not close writer here; lifecycle owned by caller

    async def wait_drained(self, timeout: float) -> None:
        """Give the receive loop up to ``timeout`` seconds to consume buffered input."""
        if not self._recv_task.done():
            await asyncio.wait({self._recv_task}, timeout=timeout)

    # --- IO loops ----------------------------------------------------------------

    async def _receive_loop(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(_READ_CHUNK)
                if not chunk:
                    break
                for line in self._lines.feed(chunk):
                    if self._closed:
                        return
                    self._process_line(line)
            for line in self._lines.flush():
                self._process_line(line)
        except asyncio.CancelledError:
            return

    def _process_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except ValueError:
            # Agents print banners on stdout before protocol traffic starts
            self._log(f"[stdout non-json] {line}")
            return
        if not isinstance(message, dict):
            self._log(f"[stdout non-json] {line}")
            return
        logger.debug("<-- %s", line)
        try:
            self._process_message(message)
        except Exception:  # noqa: BLE001
            logger.error("Error processing message: %s", line, exc_info=True)

    def _process_message(self, message: dict) -> None:
        method = message.get("method")
        msg_id = message.get("id")
        if msg_id is not None and method is None:
            self._handle_response(msg_id, message)
            return
        if method is not None and not isinstance(method, str):
            logger.debug("Dropping message with non-string method: %r", method)
            return
        if msg_id is not None:
            self._router.dispatch_request(IncomingRequest(self, msg_id, method, message.get("params")))
            return
        if method is not None:
            self._router.dispatch_notification(method, message.get("params"))
            return
        logger.debug("Dropping message without id or method: %s", message)

    def _handle_response(self, msg_id: Any, message: dict) -> None:
        pending = self._pending.pop(msg_id, None) if isinstance(msg_id, int) else None
        if pending is None:
            # Deadline already fired or the caller went away
            logger.debug("Dropping response for unknown id %r", msg_id)
            return
        pending.cancel_timer()
        if pending.future.done():
            return
        if message.get("error") is not None:
            pending.future.set_exception(RequestError.from_error_obj(message["error"]))
        else:
            pending.future.set_result(message.get("result"))

    def _expire(self, req_id: int, timeout: float) -> None:
        pending = self._pending.pop(req_id, None)
        if pending is None or pending.future.done():
            return
        logger.debug("Request %s (id=%s) timed out after %ss", pending.method, req_id, timeout)
        pending.future.set_exception(RequestTimeoutError(pending.method, timeout))

    def _fail_all(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.cancel_timer()
            if not entry.future.done():
                entry.future.set_exception(error)

    def _log(self, line: str) -> None:
        logger.debug("%s", line)
        if self._on_log is not None:
            self._on_log(line)

    def _send_obj(self, obj: dict) -> None:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        data = json.dumps(obj, separators=(",", ":"))
        logger.debug("--> %s", data)
        self._writer.write((data + "\n").encode("utf-8"))

    async def _drain(self) -> None:
        try:
            await self._writer.drain()
        except (ConnectionError, RuntimeError):
            # Peer closed; the exit watcher fails pending work
            pass

    # --- Public API --------------------------------------------------------------

    async def send_request(
        self, method: str, params: Optional[JsonValue] = None, timeout: Optional[float] = None
    ) -> Any:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        timeout = self._request_timeout if timeout is None else timeout
        req_id = self._next_request_id
        self._next_request_id += 1
        loop = asyncio.get_running_loop()
        pending = _Pending(loop.create_future(), method)
        pending.timer = loop.call_later(timeout, self._expire, req_id, timeout)
        self._pending[req_id] = pending

        obj: Dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
        if params is not None:
            obj["params"] = params
        try:
            self._send_obj(obj)
            await self._drain()
            return await pending.future
        finally:
            # The caller was cancelled (or the write failed) before resolution
            if self._pending.get(req_id) is pending:
                del self._pending[req_id]
                pending.cancel_timer()

    async def send_notification(self, method: str, params: Optional[JsonValue] = None) -> None:
        obj: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            obj["params"] = params
        self._send_obj(obj)
        await self._drain()

    def send_response(self, request_id: Any, payload: Dict[str, Any]) -> None:
        self._send_obj({"jsonrpc": "2.0", "id": request_id, **payload})
