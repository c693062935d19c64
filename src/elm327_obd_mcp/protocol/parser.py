"""Response parsing for ELM327 replies.

Every parser takes one frame of text and returns the decoded value, or
``None`` when the frame does not have the expected shape. Frames are
normalized first (whitespace removed, upper-cased) so they decode the same
with the adapter's spaces setting on or off.
"""

from __future__ import annotations

import re
from typing import Callable

SUCCESS_PREFIX = "41"
OK_TOKEN = "OK"

_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Strip all whitespace and upper-case ``text``."""
    return _WHITESPACE.sub("", text).upper()


def decode_pid_bytes(frame: str, pid: str, count: int) -> list[int] | None:
    """Extract the data bytes of a service 01 reply.

    Args:
        frame: Reply text, e.g. ``"41 0C 1A F0"``.
        pid: Two-character parameter id the reply must echo, e.g. ``"0C"``.
        count: Number of data bytes the parameter carries.

    Returns:
        ``count`` integers, or ``None`` if the prefix does not match, the
        reply is too short or the data is not hexadecimal.
    """
    cleaned = normalize(frame)
    prefix = SUCCESS_PREFIX + pid.upper()
    if not cleaned.startswith(prefix):
        return None

    data = cleaned[len(prefix):len(prefix) + count * 2]
    if len(data) < count * 2:
        return None

    try:
        return [int(data[i:i + 2], 16) for i in range(0, count * 2, 2)]
    except ValueError:
        return None


def parse_rpm(frame: str) -> int | None:
    """Engine speed, PID 0C: ``((A*256)+B)/4`` with integer division."""
    data = decode_pid_bytes(frame, "0C", 2)
    if data is None:
        return None
    a, b = data
    return ((a * 256) + b) // 4


def parse_speed(frame: str) -> int | None:
    """Vehicle speed in km/h, PID 0D: ``A``."""
    data = decode_pid_bytes(frame, "0D", 1)
    if data is None:
        return None
    return data[0]


def parse_coolant_temp(frame: str) -> int | None:
    """Engine coolant temperature in degrees Celsius, PID 05: ``A - 40``."""
    data = decode_pid_bytes(frame, "05", 1)
    if data is None:
        return None
    return data[0] - 40


def make_ack_parser(wire_text: str) -> Callable[[str], bool | None]:
    """Build a parser for an attention command reply.

    The reply acknowledges the command when it contains ``OK`` or echoes
    the command itself (echo is still on before ``ATE0`` takes effect).
    Anything else, including the ``?`` error marker, is not an
    acknowledgement.
    """
    expected = normalize(wire_text)

    def parse_ack(frame: str) -> bool | None:
        cleaned = normalize(frame)
        if OK_TOKEN in cleaned or expected in cleaned:
            return True
        return None

    return parse_ack


def parse_text(frame: str) -> str | None:
    """Pass-through parser for ad-hoc commands."""
    return frame if frame else None
