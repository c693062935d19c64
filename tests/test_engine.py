"""Tests for the engine facade: init, polling and status text."""

import asyncio
from dataclasses import replace

import pytest

from fakes import FakeChannel, FakeTransport, elm_replies, until

from elm327_obd_mcp.config import EngineConfig
from elm327_obd_mcp.engine import ObdEngine
from elm327_obd_mcp.models.outcome import NotConnected, Success
from elm327_obd_mcp.models.state import Connected, Disconnected, Error
from elm327_obd_mcp.protocol.commands import RPM, raw_command

FAST = EngineConfig(
    command_timeout=0.05,
    at_timeout=0.05,
    init_delay=0,
    request_delay=0,
    poll_interval=0.01,
)

INIT_SENT = ["ATZ", "ATE0", "ATL0", "ATH0", "ATS0", "ATSP0"]


async def _ready_engine(transport: FakeTransport) -> ObdEngine:
    engine = ObdEngine(transport, FAST)
    engine.connect("fake")
    await engine.wait_for_state(Connected, timeout=1.0)
    assert await engine.wait_until_ready(timeout=1.0)
    return engine


@pytest.mark.asyncio
async def test_connect_initializes_then_polls():
    transport = FakeTransport(FakeChannel(elm_replies()))
    engine = await _ready_engine(transport)

    await until(lambda: engine.poller.cycles >= 1)

    assert transport.channel.sent[:6] == INIT_SENT
    assert transport.channel.sent[6:9] == ["010C", "010D", "0105"]
    assert engine.status_text.value == "Status: Connected to fake"
    assert engine.live_data() == {
        "rpm": {"value": 1724, "unit": "rpm"},
        "speed": {"value": 50, "unit": "km/h"},
        "coolant_temp": {"value": 50, "unit": "°C"},
    }
    await engine.aclose()


@pytest.mark.asyncio
async def test_status_text_tracks_connection():
    transport = FakeTransport(FakeChannel(elm_replies()))
    engine = ObdEngine(transport, FAST)
    engine.start()
    with engine.status_text.subscribe() as texts:
        engine.connect("fake")
        await engine.wait_for_state(Connected, timeout=1.0)
        engine.disconnect()
        await until(lambda: texts.pending() >= 3)

        assert [texts.get_nowait() for _ in range(3)] == [
            "Status: Connecting to fake...",
            "Status: Connected to fake",
            "Status: Disconnected",
        ]
    await engine.aclose()


@pytest.mark.asyncio
async def test_connect_failure_shows_error():
    engine = ObdEngine(FakeTransport(error=OSError("Host is down")), FAST)
    engine.connect("/dev/rfcomm0")

    state = await engine.wait_for_state(Error, timeout=1.0)
    await until(lambda: engine.status_text.value == state.describe())

    assert engine.status_text.value.startswith("Status: Error (/dev/rfcomm0)")
    assert "Host is down" in engine.status_text.value
    assert not engine.poller.running
    await engine.aclose()


@pytest.mark.asyncio
async def test_adapter_drop_stops_polling():
    transport = FakeTransport(FakeChannel(elm_replies()))
    engine = await _ready_engine(transport)

    transport.channel.feed(b"")
    await engine.wait_for_state(Error, timeout=1.0)
    await until(lambda: not engine.poller.running)
    await until(lambda: engine.status_text.value == "Status: Error - Device disconnected")
    await engine.aclose()


@pytest.mark.asyncio
async def test_silent_adapter_aborts_init():
    transport = FakeTransport(FakeChannel({}))
    engine = ObdEngine(transport, FAST)
    engine.connect("fake")

    await engine.wait_for_state(Connected, timeout=1.0)
    await engine.wait_for_state(Disconnected, timeout=1.0)

    assert transport.channel.sent == INIT_SENT[:3]
    assert await engine.wait_until_ready(timeout=0.1) is False
    assert not engine.poller.running
    await until(lambda: engine.status_text.value == "Status: Disconnected")
    await engine.aclose()


@pytest.mark.asyncio
async def test_request_pauses_and_resumes_polling():
    transport = FakeTransport(FakeChannel(elm_replies()))
    engine = await _ready_engine(transport)

    outcome = await engine.request(raw_command("0105"))

    assert isinstance(outcome, Success)
    assert outcome.value == "41 05 5A"
    assert engine.poller.running
    await engine.aclose()


@pytest.mark.asyncio
async def test_request_without_connection():
    engine = ObdEngine(FakeTransport(), FAST)
    engine.start()

    assert await engine.request(RPM) == NotConnected(RPM)
    assert not engine.poller.running
    await engine.aclose()


@pytest.mark.asyncio
async def test_reconnect_runs_init_again():
    transport = FakeTransport(FakeChannel(elm_replies()))
    engine = await _ready_engine(transport)

    engine.disconnect()
    await until(lambda: not engine.poller.running)
    transport.channel.written.clear()
    transport.channel.closed = False

    engine.connect("fake")
    await engine.wait_for_state(Connected, timeout=1.0)
    assert await engine.wait_until_ready(timeout=1.0)
    assert transport.channel.sent[:6] == INIT_SENT
    await engine.aclose()


@pytest.mark.asyncio
async def test_request_does_not_resume_polling_over_a_new_init():
    """A reconnect during a request leaves polling to the new init sequence."""
    replies = elm_replies({"0902": None})
    transport = FakeTransport(FakeChannel(replies))
    engine = ObdEngine(transport, replace(FAST, at_timeout=1.0))
    engine.connect("fake")
    await engine.wait_for_state(Connected, timeout=1.0)
    assert await engine.wait_until_ready(timeout=1.0)

    pending = asyncio.ensure_future(engine.request(raw_command("0902", timeout=0.3)))
    await until(lambda: transport.channel.sent[-1:] == ["0902"])

    engine.disconnect()
    replies["ATZ"] = None
    transport.channel.written.clear()
    transport.channel.closed = False
    engine.connect("fake")
    await engine.wait_for_state(Connected, timeout=1.0)

    await pending
    await asyncio.sleep(0.05)

    assert transport.channel.sent == ["ATZ"]
    assert engine.initializing
    assert not engine.poller.running
    await engine.aclose()
