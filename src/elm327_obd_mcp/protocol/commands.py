"""Command descriptors, the fixed command sets and response filters.

A command is a value: the text sent on the wire, the parser for its reply
and how long to wait for that reply. Commands fall in two families:

- attention commands (``AT`` prefix) configure the adapter;
- data requests (``01`` service + two-digit PID) read vehicle parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Generic, TypeVar

from .parser import (
    OK_TOKEN,
    SUCCESS_PREFIX,
    make_ack_parser,
    normalize,
    parse_coolant_temp,
    parse_rpm,
    parse_speed,
    parse_text,
)

T = TypeVar("T")

LINE_TERMINATOR = "\r"
SERVICE_CURRENT_DATA = "01"
ATTENTION_PREFIX = "AT"
ERROR_TOKEN = "?"

DEFAULT_TIMEOUT = 1.0  # seconds
AT_TIMEOUT = 3.0  # ATZ resets the adapter and answers slowly


@dataclass(frozen=True)
class Command(Generic[T]):
    """An immutable request descriptor."""

    wire_text: str
    parse: Callable[[str], T | None]
    timeout: float = DEFAULT_TIMEOUT
    name: str = ""
    unit: str = ""
    # Overrides response_filter(wire_text) when set
    accepts: Callable[[str], bool] | None = field(default=None, compare=False)

    @property
    def normalized(self) -> str:
        return normalize(self.wire_text)

    @property
    def is_attention(self) -> bool:
        return self.normalized.startswith(ATTENTION_PREFIX)

    @property
    def pid(self) -> str | None:
        """Parameter id of a service 01 request, e.g. ``"0C"`` for ``010C``."""
        text = self.normalized
        if text.startswith(SERVICE_CURRENT_DATA) and len(text) >= 4:
            return text[2:4]
        return None

    def encode(self) -> bytes:
        """Wire bytes: the command text plus a carriage return."""
        return (self.wire_text + LINE_TERMINATOR).encode("ascii")

    def __repr__(self) -> str:
        return f"Command({self.wire_text!r}, timeout={self.timeout})"


def response_filter(wire_text: str) -> Callable[[str], bool]:
    """Build the predicate deciding whether a frame answers ``wire_text``.

    - ``01xx`` requests match frames starting with ``41xx``.
    - ``AT`` commands match frames containing ``OK``, the echoed command
      or the ``?`` error marker.
    - Anything else matches every frame.

    Matching ignores whitespace and case.
    """
    command = normalize(wire_text)

    if command.startswith(SERVICE_CURRENT_DATA) and len(command) >= 4:
        expected = SUCCESS_PREFIX + command[2:4]

        def matches_pid(frame: str) -> bool:
            return normalize(frame).startswith(expected)

        return matches_pid

    if command.startswith(ATTENTION_PREFIX):

        def matches_attention(frame: str) -> bool:
            cleaned = normalize(frame)
            return OK_TOKEN in cleaned or command in cleaned or ERROR_TOKEN in cleaned

        return matches_attention

    # Unclassified commands accept the next frame, whatever it is.
    return _any_frame


def _any_frame(frame: str) -> bool:
    return True


def attention(wire_text: str, timeout: float = AT_TIMEOUT) -> Command[bool]:
    """Build an attention command expecting ``OK`` or its own echo."""
    return Command(
        wire_text=wire_text,
        parse=make_ack_parser(wire_text),
        timeout=timeout,
        name=wire_text,
    )


def raw_command(wire_text: str, timeout: float = DEFAULT_TIMEOUT) -> Command[str]:
    """Build an ad-hoc command whose reply is returned verbatim.

    Data requests keep their ``41xx`` filter. Anything else, informational
    AT commands such as ``ATRV`` included, takes the next frame.
    """
    accepts = None
    if normalize(wire_text).startswith(ATTENTION_PREFIX):
        accepts = _any_frame
    return Command(
        wire_text=wire_text,
        parse=parse_text,
        timeout=timeout,
        name="raw",
        accepts=accepts,
    )


RPM = Command("010C", parse_rpm, name="rpm", unit="rpm")
SPEED = Command("010D", parse_speed, name="speed", unit="km/h")
COOLANT_TEMP = Command("0105", parse_coolant_temp, name="coolant_temp", unit="°C")

INIT_COMMANDS: tuple[Command[bool], ...] = (
    attention("ATZ"),    # reset
    attention("ATE0"),   # echo off
    attention("ATL0"),   # linefeeds off
    attention("ATH0"),   # headers off
    attention("ATS0"),   # spaces off
    attention("ATSP0"),  # automatic protocol
)

POLL_COMMANDS: tuple[Command[int], ...] = (RPM, SPEED, COOLANT_TEMP)

PID_DESCRIPTIONS: dict[str, str] = {
    "rpm": "Engine speed",
    "speed": "Vehicle speed",
    "coolant_temp": "Engine coolant temperature",
}


def with_timeout(command: Command[T], timeout: float) -> Command[T]:
    """Copy of ``command`` with a different reply timeout."""
    return replace(command, timeout=timeout)
