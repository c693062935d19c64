"""Tests for the response framer."""

from elm327_obd_mcp.protocol.commands import response_filter
from elm327_obd_mcp.protocol.framing import ResponseFramer, TERMINATOR


def test_single_frame():
    """A complete reply yields one trimmed frame."""
    framer = ResponseFramer()
    assert framer.feed(b"41 0C 1A F0>") == ["41 0C 1A F0"]
    assert framer.pending == ""


def test_reply_with_carriage_returns():
    """Line endings around the reply are trimmed."""
    framer = ResponseFramer()
    assert framer.feed(b"41 0D 32\r\r>") == ["41 0D 32"]


def test_two_frames_in_one_read():
    """Concatenated replies split into independent frames."""
    framer = ResponseFramer()
    frames = framer.feed(b"OK>41 0C 00 00>")
    assert frames == ["OK", "41 0C 00 00"]

    # Each frame matches its own command and not the other one
    assert response_filter("ATE0")(frames[0])
    assert not response_filter("010C")(frames[0])
    assert response_filter("010C")(frames[1])
    assert not response_filter("ATE0")(frames[1])


def test_partial_read_waits_for_terminator():
    """Bytes without a terminator are held until the reply completes."""
    framer = ResponseFramer()
    assert framer.feed(b"41 0C 1A") == []
    assert framer.pending == "41 0C 1A"
    assert framer.feed(b" F0>") == ["41 0C 1A F0"]
    assert framer.pending == ""


def test_trailing_fragment_kept():
    """The unterminated tail after the last prompt belongs to the next frame."""
    framer = ResponseFramer()
    assert framer.feed(b"OK>41 0D") == ["OK"]
    assert framer.pending == "41 0D"
    assert framer.feed(b" 32>") == ["41 0D 32"]


def test_empty_and_whitespace_frames_discarded():
    """Adjacent prompts and blank replies produce no frames."""
    framer = ResponseFramer()
    assert framer.feed(b">> \r\n >OK>") == ["OK"]
    assert framer.feed(b">") == []


def test_zero_length_read_closes():
    """An empty read marks end of stream; later input is ignored."""
    framer = ResponseFramer()
    assert framer.feed(b"41 0C") == []
    assert framer.feed(b"") == []
    assert framer.closed
    assert framer.feed(b" 00 00>") == []


def test_non_ascii_bytes_do_not_raise():
    """Line noise decodes as single-byte text instead of failing."""
    framer = ResponseFramer()
    assert framer.feed(b"\xffOK\x80>") == ["\xffOK\x80"]


def test_chunking_does_not_change_frames():
    """Frames are the same however the stream is split into reads."""
    stream = b"ATZ\r\r\rELM327 v1.5\r\r>OK\r>>  >41 0C 1A F0\r\r>41 0D 32>"
    expected = [
        part.strip()
        for part in stream.decode("latin-1").split(TERMINATOR)[:-1]
        if part.strip()
    ]
    assert expected == ["ATZ\r\r\rELM327 v1.5", "OK", "41 0C 1A F0", "41 0D 32"]

    for size in (1, 2, 3, 5, 7, 16, len(stream)):
        framer = ResponseFramer()
        frames = []
        for start in range(0, len(stream), size):
            frames.extend(framer.feed(stream[start:start + size]))
        assert frames == expected, f"chunk size {size}"


def test_max_buffer_discards_runaway_input():
    """A stream without terminators is dropped once it passes the cap."""
    framer = ResponseFramer(max_buffer=8)
    assert framer.feed(b"SEARCHING") == []
    assert framer.pending == ""
    assert framer.feed(b"OK>") == ["OK"]


def test_unbounded_by_default():
    """Without a cap the buffer keeps growing until a terminator arrives."""
    framer = ResponseFramer()
    framer.feed(b"X" * 10_000)
    assert len(framer.pending) == 10_000
    assert framer.feed(b">") == ["X" * 10_000]


def test_reset_drops_partial_reply():
    framer = ResponseFramer()
    framer.feed(b"41 0C")
    framer.reset()
    assert framer.feed(b"OK>") == ["OK"]
