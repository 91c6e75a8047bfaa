import asyncio

import pytest

from conftest import handshake, settle
from grafana_api import GrafanaAPIClient, GrafanaConnectionError, GrafanaEvalTimeoutError, GrafanaNotConnectedError, OpCode


@pytest.mark.asyncio
async def test_remote_eval_round_trip(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(data))
    transport = await handshake(client, recorder)

    call = asyncio.create_task(client.remote_eval(7, "1+1"))
    await settle()
    request = transport.frames()[-1]
    assert request.opcode is OpCode.REMOTE_EVAL
    assert request.d["id"] == 7
    assert request.d["data"] == "1+1"
    uid = request.d["uid"]
    assert client.connection.tracker.is_pending(uid)

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 7, "uid": uid, "data": 2})
    assert await asyncio.wait_for(call, timeout=1) == 2
    assert len(client.connection.tracker) == 0

    # A duplicate reply resolves nothing and is not mistaken for a request
    transport.server_send(OpCode.REMOTE_EVAL, {"id": 7, "uid": uid, "data": 2})
    assert requests == []
    assert client.is_ready


@pytest.mark.asyncio
async def test_concurrent_evals_get_distinct_uids(client, recorder):
    transport = await handshake(client, recorder)
    calls = [asyncio.create_task(client.remote_eval(cluster, f"cluster {cluster}")) for cluster in range(3)]
    await settle()

    frames = [f for f in transport.frames() if f.opcode is OpCode.REMOTE_EVAL]
    uids = [f.d["uid"] for f in frames]
    assert len(set(uids)) == 3
    assert uids == sorted(uids)

    # Replies out of order still reach the right caller
    for frame in reversed(frames):
        transport.server_send(OpCode.REMOTE_EVAL, {"id": frame.d["id"], "uid": frame.d["uid"], "data": frame.d["data"].upper()})
    results = await asyncio.gather(*calls)
    assert results == ["CLUSTER 0", "CLUSTER 1", "CLUSTER 2"]


@pytest.mark.asyncio
async def test_inbound_request_is_answered_through_reply(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append((data, reply)))
    transport = await handshake(client, recorder)

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 2, "data": "process.uptime()", "uid": 123})
    [(data, reply)] = requests
    assert data == "process.uptime()"

    await reply(None, 42)
    answer = transport.frames()[-1]
    assert answer.opcode is OpCode.REMOTE_EVAL
    assert answer.d == {"id": 2, "uid": 123, "data": 42}


@pytest.mark.asyncio
async def test_reply_with_error(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(reply))
    transport = await handshake(client, recorder)

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 2, "data": "boom()", "uid": 5})
    await requests[0](NameError("boom is not defined"), "ignored")
    assert transport.frames()[-1].d == {"id": 2, "uid": 5, "data": "NameError: boom is not defined"}


@pytest.mark.asyncio
async def test_reply_twice_sends_twice(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(reply))
    transport = await handshake(client, recorder)

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 2, "data": "x", "uid": 9})
    await requests[0](None, 1)
    await requests[0](None, 1)
    assert [f.d["uid"] for f in transport.frames() if f.opcode is OpCode.REMOTE_EVAL] == [9, 9]


@pytest.mark.asyncio
async def test_async_remote_eval_listener(client, recorder):
    async def evaluate(code, reply):
        await asyncio.sleep(0)
        await reply(None, len(code))

    client.on("remoteEval", evaluate)
    transport = await handshake(client, recorder)
    transport.server_send(OpCode.REMOTE_EVAL, {"id": 2, "data": "abcd", "uid": 77})
    await settle(10)
    assert transport.frames()[-1].d == {"id": 2, "uid": 77, "data": 4}


@pytest.mark.asyncio
async def test_remote_eval_requires_ready(client, recorder):
    with pytest.raises(GrafanaNotConnectedError):
        await client.remote_eval(1, "1+1")

    await client.connect()
    recorder.last.server_open()
    with pytest.raises(GrafanaNotConnectedError):
        await client.remote_eval(1, "1+1")


@pytest.mark.asyncio
async def test_remote_eval_timeout(recorder):
    client = GrafanaAPIClient("t", 0, 2, transport_factory=recorder, eval_timeout=0.01)
    await handshake(client, recorder)
    with pytest.raises(GrafanaEvalTimeoutError):
        await client.remote_eval(1, "never answered")
    assert len(client.connection.tracker) == 0


@pytest.mark.asyncio
async def test_late_reply_after_timeout_is_dropped(recorder):
    client = GrafanaAPIClient("t", 0, 2, transport_factory=recorder, eval_timeout=0.01)
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(data))
    transport = await handshake(client, recorder)

    with pytest.raises(GrafanaEvalTimeoutError):
        await client.remote_eval(1, "slow()")
    uid = transport.frames()[-1].d["uid"]

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 1, "uid": uid, "data": "late result"})
    await settle()
    assert requests == []
    assert [f.opcode for f in transport.frames()].count(OpCode.REMOTE_EVAL) == 1


@pytest.mark.asyncio
async def test_late_reply_after_caller_cancel_is_dropped(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(data))
    transport = await handshake(client, recorder)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(client.remote_eval(1, "slow()"), timeout=0.01)
    assert len(client.connection.tracker) == 0
    uid = transport.frames()[-1].d["uid"]

    transport.server_send(OpCode.REMOTE_EVAL, {"id": 1, "uid": uid, "data": "late result"})
    await settle()
    assert requests == []
    assert [f.opcode for f in transport.frames()].count(OpCode.REMOTE_EVAL) == 1


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_eval(client, recorder):
    transport = await handshake(client, recorder)
    call = asyncio.create_task(client.remote_eval(1, "slow()"))
    await settle()
    assert len(client.connection.tracker) == 1

    await client.disconnect(False)
    with pytest.raises(asyncio.CancelledError):
        await call
    assert len(client.connection.tracker) == 0

    # The late reply finds nothing to resolve
    uid = transport.frames()[-1].d["uid"]
    transport.server_send(OpCode.REMOTE_EVAL, {"id": 1, "uid": uid, "data": "late"})


@pytest.mark.asyncio
async def test_rejected_send_removes_pending(client, recorder):
    transport = await handshake(client, recorder)
    transport.accept_sends = False
    with pytest.raises(GrafanaConnectionError):
        await client.remote_eval(1, "1+1")
    assert len(client.connection.tracker) == 0


@pytest.mark.asyncio
async def test_remote_eval_without_uid_is_ignored(client, recorder):
    requests = []
    client.on("remoteEval", lambda data, reply: requests.append(data))
    transport = await handshake(client, recorder)
    transport.server_send(OpCode.REMOTE_EVAL, {"id": 2, "data": "x"})
    transport.server_send(OpCode.REMOTE_EVAL, "not an object")
    assert requests == []
    assert client.is_ready
