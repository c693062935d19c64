"""Tests for the adapter initialization sequence."""

import pytest

from fakes import FakeChannel, FakeTransport, connected_session, elm_replies

from elm327_obd_mcp.correlator import CommandCorrelator
from elm327_obd_mcp.initializer import InitializationSequencer
from elm327_obd_mcp.models.outcome import ParseError, Success, Timeout
from elm327_obd_mcp.models.state import Disconnected
from elm327_obd_mcp.protocol.commands import INIT_COMMANDS, with_timeout

FAST_INIT = [with_timeout(c, 0.05) for c in INIT_COMMANDS]


def _sequencer(session, **kwargs) -> InitializationSequencer:
    kwargs.setdefault("delay", 0)
    return InitializationSequencer(CommandCorrelator(session), FAST_INIT, **kwargs)


@pytest.mark.asyncio
async def test_sends_commands_in_order():
    transport = FakeTransport(FakeChannel(elm_replies()))
    session = await connected_session(transport)
    sequencer = _sequencer(session)

    assert await sequencer.run() is True

    assert transport.channel.sent == ["ATZ", "ATE0", "ATL0", "ATH0", "ATS0", "ATSP0"]
    assert all(isinstance(o, Success) for o in sequencer.outcomes)
    assert session.is_connected
    await session.aclose()


@pytest.mark.asyncio
async def test_single_failures_do_not_stop_the_sequence():
    replies = elm_replies({"ATL0": None, "ATS0": b"?\r>"})
    transport = FakeTransport(FakeChannel(replies))
    session = await connected_session(transport)
    sequencer = _sequencer(session)

    assert await sequencer.run() is True

    kinds = [type(o) for o in sequencer.outcomes]
    assert kinds == [Success, Success, Timeout, Success, ParseError, Success]
    assert session.is_connected
    await session.aclose()


@pytest.mark.asyncio
async def test_repeated_timeouts_abort_and_disconnect():
    transport = FakeTransport(FakeChannel({}))
    session = await connected_session(transport)
    sequencer = _sequencer(session, max_consecutive_timeouts=3)

    assert await sequencer.run() is False

    assert transport.channel.sent == ["ATZ", "ATE0", "ATL0"]
    assert session.state == Disconnected()
    assert transport.channel.closed


@pytest.mark.asyncio
async def test_timeout_count_resets_after_a_reply():
    replies = elm_replies({"ATZ": None, "ATE0": None, "ATH0": None, "ATS0": None})
    transport = FakeTransport(FakeChannel(replies))
    session = await connected_session(transport)
    sequencer = _sequencer(session, max_consecutive_timeouts=3)

    assert await sequencer.run() is True
    assert session.is_connected
    await session.aclose()


@pytest.mark.asyncio
async def test_stops_when_session_drops():
    transport = FakeTransport(FakeChannel(elm_replies()))
    session = await connected_session(transport)
    transport.channel.fail_writes = True

    assert await _sequencer(session).run() is False
    assert transport.channel.written == []


@pytest.mark.asyncio
async def test_unexpected_error_disconnects_and_raises():
    transport = FakeTransport(FakeChannel(elm_replies()))
    session = await connected_session(transport)

    class ExplodingCorrelator(CommandCorrelator):
        async def send(self, command):
            raise RuntimeError("boom")

    sequencer = InitializationSequencer(ExplodingCorrelator(session), FAST_INIT, delay=0)

    with pytest.raises(RuntimeError):
        await sequencer.run()

    assert session.state == Disconnected()
