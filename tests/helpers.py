import asyncio
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from unified_agent import Connection, Router
from unified_agent.events import Event, EventEmitter
from unified_agent.router import RequestHandler


async def wait_until(predicate: Callable[[], Any], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeWriter:
    """Captures what a Connection writes."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        return None

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.buffer.decode("utf-8").splitlines() if line]


class Channel:
    """A Connection wired to a hand-fed reader and a capturing writer."""

    def __init__(self, requests: Optional[Mapping[str, RequestHandler]] = None, request_timeout: float = 5.0) -> None:
        self.reader = asyncio.StreamReader()
        self.writer = FakeWriter()
        self.notifications: List[Tuple[str, Any]] = []
        self.logs: List[str] = []
        router = Router(requests or {}, {}, lambda method, params: self.notifications.append((method, params)))
        self.conn = Connection(
            router, self.writer, self.reader, request_timeout=request_timeout, on_log=self.logs.append
        )

    async def feed(self, *messages: Any) -> None:
        for message in messages:
            data = message if isinstance(message, bytes) else (json.dumps(message) + "\n").encode("utf-8")
            self.reader.feed_data(data)
        await asyncio.sleep(0.02)

    async def sent(self, count: int) -> List[Dict[str, Any]]:
        await wait_until(lambda: len(self.writer.messages()) >= count)
        return self.writer.messages()


class EventLog:
    """Records every event an emitter fans out."""

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: List[Event] = []
        emitter.subscribe_all(self.events.append)

    def of(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.type == event_type]

    def types(self) -> List[str]:
        return [e.type for e in self.events]
