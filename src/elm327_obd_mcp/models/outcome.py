"""Result of one correlated command invocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from ..protocol.commands import Command

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """A matching frame arrived and parsed."""

    command: Command[T]
    value: T
    raw_frame: str

    ok = True


@dataclass(frozen=True)
class ParseError:
    """A matching frame arrived but did not have the expected shape."""

    command: Command[Any]
    raw_frame: str

    ok = False


@dataclass(frozen=True)
class NotConnected:
    """The session was not connected; nothing was sent."""

    command: Command[Any]

    ok = False


@dataclass(frozen=True)
class Timeout:
    """No matching frame arrived before the command's deadline."""

    command: Command[Any]

    ok = False


Outcome = Union[Success, ParseError, NotConnected, Timeout]


def outcome_to_dict(outcome: Outcome) -> dict[str, Any]:
    """Flatten an outcome for JSON output."""
    result: dict[str, Any] = {
        "command": outcome.command.wire_text,
        "outcome": type(outcome).__name__,
    }
    if isinstance(outcome, Success):
        result["value"] = outcome.value
    if isinstance(outcome, (Success, ParseError)):
        result["raw"] = outcome.raw_frame
    return result
