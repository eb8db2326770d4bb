import asyncio
import itertools

import pytest
from pydantic import BaseModel

from unified_agent import (
    ConnectionClosedError,
    IncomingRequest,
    ProcessExitedError,
    RequestError,
    RequestTimeoutError,
)


# ------------------------ Tests --------------------------

@pytest.mark.asyncio
async def test_ping_pong(make_channel):
    ch = make_channel()
    task = asyncio.create_task(ch.conn.send_request("ping"))
    sent = await ch.sent(1)
    assert sent[0] == {"jsonrpc": "2.0", "id": 0, "method": "ping"}

    await ch.feed({"jsonrpc": "2.0", "id": 0, "result": {"pong": True}})
    assert await task == {"pong": True}
    assert ch.conn.pending_count == 0


@pytest.mark.asyncio
async def test_responses_in_any_order_reach_their_callers(make_channel):
    ch = make_channel()
    n = 3
    seen_ids = []
    for order in itertools.permutations(range(n)):
        before = len(ch.writer.messages())
        tasks = [asyncio.create_task(ch.conn.send_request("work", {"n": i})) for i in range(n)]
        sent = (await ch.sent(before + n))[before:]
        ids = [m["id"] for m in sent]
        seen_ids.extend(ids)

        await ch.feed(*({"jsonrpc": "2.0", "id": ids[i], "result": {"n": i}} for i in order))
        results = await asyncio.gather(*tasks)
        assert results == [{"n": i} for i in range(n)]

    # Strictly increasing, never reused
    assert seen_ids == sorted(seen_ids)
    assert len(set(seen_ids)) == len(seen_ids)


@pytest.mark.asyncio
async def test_request_times_out_and_late_response_is_dropped(make_channel):
    ch = make_channel()
    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(RequestTimeoutError) as info:
        await ch.conn.send_request("slow", timeout=0.1)
    elapsed = loop.time() - started
    assert 0.09 <= elapsed < 0.5
    assert isinstance(info.value, TimeoutError)
    assert info.value.method == "slow"
    assert ch.conn.pending_count == 0

    await ch.feed({"jsonrpc": "2.0", "id": 0, "result": "late"})
    assert ch.logs == []

    # The connection is still usable
    task = asyncio.create_task(ch.conn.send_request("ping"))
    sent = await ch.sent(2)
    await ch.feed({"jsonrpc": "2.0", "id": sent[1]["id"], "result": "ok"})
    assert await task == "ok"


@pytest.mark.asyncio
async def test_malformed_line_is_logged_not_raised(make_channel):
    ch = make_channel()
    await ch.feed(b"not-json\n", {"jsonrpc": "2.0", "method": "note", "params": {"a": 1}})
    assert ch.notifications == [("note", {"a": 1})]
    assert ch.logs == ["[stdout non-json] not-json"]


@pytest.mark.asyncio
async def test_non_object_json_is_treated_as_output(make_channel):
    ch = make_channel()
    await ch.feed(b"[1, 2]\n", b"42\n")
    assert ch.notifications == []
    assert ch.logs == ["[stdout non-json] [1, 2]", "[stdout non-json] 42"]


@pytest.mark.asyncio
async def test_frames_split_across_chunks(make_channel):
    ch = make_channel()
    data = '{"jsonrpc":"2.0","method":"note","params":{"text":"héllo"}}\n'.encode("utf-8")
    for i in range(len(data)):
        ch.reader.feed_data(data[i : i + 1])
        await asyncio.sleep(0)
    await ch.feed(b"\n\n")
    assert ch.notifications == [("note", {"text": "héllo"})]


@pytest.mark.asyncio
async def test_error_response_raises_request_error(make_channel):
    ch = make_channel()
    task = asyncio.create_task(ch.conn.send_request("boom"))
    await ch.sent(1)
    await ch.feed({"jsonrpc": "2.0", "id": 0, "error": {"code": -32000, "message": "nope", "data": {"x": 1}}})
    with pytest.raises(RequestError) as info:
        await task
    assert info.value.code == -32000
    assert info.value.message == "nope"
    assert info.value.data == {"x": 1}


@pytest.mark.asyncio
async def test_unknown_peer_request_gets_method_not_found(make_channel):
    ch = make_channel()
    await ch.feed({"jsonrpc": "2.0", "id": 7, "method": "nope"})
    sent = await ch.sent(1)
    assert sent[0] == {
        "jsonrpc": "2.0",
        "id": 7,
        "error": {"code": -32601, "message": "Method not found", "data": {"method": "nope"}},
    }


class _Params(BaseModel):
    path: str


@pytest.mark.asyncio
async def test_handler_failures_become_error_responses(make_channel):
    def raises_request_error(request: IncomingRequest) -> None:
        raise RequestError(-32001, "denied")

    def raises_value_error(request: IncomingRequest) -> None:
        raise ValueError("bad")

    def validates(request: IncomingRequest) -> None:
        _Params.model_validate(request.params or {})

    ch = make_channel(
        requests={"a": raises_request_error, "b": raises_value_error, "c": validates}
    )
    await ch.feed(
        {"jsonrpc": "2.0", "id": 1, "method": "a"},
        {"jsonrpc": "2.0", "id": 2, "method": "b"},
        {"jsonrpc": "2.0", "id": 3, "method": "c", "params": {}},
    )
    sent = {m["id"]: m for m in await ch.sent(3)}
    assert sent[1]["error"] == {"code": -32001, "message": "denied"}
    assert sent[2]["error"]["code"] == -32603
    assert sent[3]["error"]["code"] == -32602


@pytest.mark.asyncio
async def test_deferred_answer_is_sent_exactly_once(make_channel):
    held = []
    ch = make_channel(requests={"ask": held.append})
    await ch.feed({"jsonrpc": "2.0", "id": "r1", "method": "ask", "params": {"q": 1}})
    assert len(held) == 1 and ch.writer.messages() == []

    request = held[0]
    assert request.params == {"q": 1}
    assert request.respond({"answer": 42}) is True
    assert request.respond({"answer": 43}) is False
    assert request.fail(RequestError.internal_error()) is False
    assert ch.writer.messages() == [{"jsonrpc": "2.0", "id": "r1", "result": {"answer": 42}}]


@pytest.mark.asyncio
async def test_answer_after_close_is_dropped(make_channel):
    held = []
    ch = make_channel(requests={"ask": held.append})
    await ch.feed({"jsonrpc": "2.0", "id": 1, "method": "ask"})
    ch.conn.close()
    assert held[0].respond("late") is False
    assert ch.writer.messages() == []


@pytest.mark.asyncio
async def test_peer_request_id_does_not_resolve_our_request(make_channel):
    held = []
    ch = make_channel(requests={"ask": held.append})
    task = asyncio.create_task(ch.conn.send_request("ping"))
    await ch.sent(1)
    # Same id as our pending request, but it carries a method
    await ch.feed({"jsonrpc": "2.0", "id": 0, "method": "ask"})
    assert len(held) == 1
    assert not task.done()

    await ch.feed({"jsonrpc": "2.0", "id": 0, "result": "pong"})
    assert await task == "pong"


@pytest.mark.asyncio
async def test_close_fails_every_pending_request(make_channel):
    ch = make_channel()
    first = asyncio.create_task(ch.conn.send_request("a"))
    second = asyncio.create_task(ch.conn.send_request("b"))
    await ch.sent(2)

    ch.conn.close(ProcessExitedError(1, None))
    for task in (first, second):
        with pytest.raises(ProcessExitedError):
            await task
    assert ch.conn.pending_count == 0

    with pytest.raises(ConnectionClosedError):
        await ch.conn.send_request("c")
    with pytest.raises(ConnectionClosedError):
        await ch.conn.send_notification("d")


@pytest.mark.asyncio
async def test_notification_omits_id_and_empty_params(make_channel):
    ch = make_channel()
    await ch.conn.send_notification("notifications/initialized")
    await ch.conn.send_notification("session/cancel", {"sessionId": "s"})
    assert ch.writer.messages() == [
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "method": "session/cancel", "params": {"sessionId": "s"}},
    ]


@pytest.mark.asyncio
async def test_cancelled_caller_leaves_no_pending_entry(make_channel):
    ch = make_channel()
    task = asyncio.create_task(ch.conn.send_request("slow"))
    await ch.sent(1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert ch.conn.pending_count == 0
