import asyncio
import logging

import pytest

from grafana_api import EVENT_NAMES, EventRegistry


def test_subscribers_called_in_order():
    events = EventRegistry()
    calls = []
    events.on("send", lambda: calls.append("first"))
    events.on("send", lambda: calls.append("second"))
    assert events.emit("send") is True
    assert calls == ["first", "second"]


def test_emit_passes_arguments():
    events = EventRegistry()
    received = []
    events.on("clustersDataUpdate", received.append)
    events.emit("clustersDataUpdate", {"guilds": 10})
    assert received == [{"guilds": 10}]


def test_emit_without_subscribers():
    assert EventRegistry().emit("ready") is False


def test_once():
    events = EventRegistry()
    calls = []
    events.once("ready", lambda: calls.append(1))
    events.emit("ready")
    events.emit("ready")
    assert calls == [1]
    assert events.listener_count("ready") == 0


def test_off():
    events = EventRegistry()
    calls = []
    def listener():
        calls.append(1)
    events.on("ready", listener)
    events.on("ready", lambda: calls.append(2))
    events.off("ready", listener)
    events.emit("ready")
    assert calls == [2]
    events.off("ready")
    assert events.listener_count("ready") == 0


def test_decorator():
    events = EventRegistry()
    calls = []

    @events.on("disconnect")
    def disconnected():
        calls.append("disconnect")

    events.emit("disconnect")
    assert calls == ["disconnect"]
    assert disconnected is not None


def test_unknown_event_name():
    events = EventRegistry()
    with pytest.raises(ValueError):
        events.on("allReady", lambda: None)
    with pytest.raises(ValueError):
        events.emit("clustersUpdate")


def test_event_names():
    assert set(EVENT_NAMES) == {
        "connect", "ready", "disconnect", "send",
        "clustersDataUpdate", "clusterStatusUpdate", "remoteEval", "error",
    }


def test_listener_exception_is_logged(caplog):
    events = EventRegistry(logger=logging.getLogger("test_events"))
    calls = []
    def broken():
        raise RuntimeError("listener failed")
    events.on("send", broken)
    events.on("send", lambda: calls.append("after"))
    with caplog.at_level(logging.ERROR, logger="test_events"):
        events.emit("send")
    assert calls == ["after"]
    assert "Listener for 'send' raised" in caplog.text


@pytest.mark.asyncio
async def test_coroutine_listener_is_scheduled():
    events = EventRegistry()
    done = asyncio.Event()

    async def listener(value):
        await asyncio.sleep(0)
        if value:
            done.set()

    events.on("clusterStatusUpdate", listener)
    events.emit("clusterStatusUpdate", True)
    await asyncio.wait_for(done.wait(), timeout=1)
