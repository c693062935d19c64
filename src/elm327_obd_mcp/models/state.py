"""Connection state of a session.

Exactly one state is active at a time::

    Disconnected --connect--> Connecting --ok--> Connected
                                  |                  |
                                  +------fail------> Error

``Error`` is left only by a new ``connect()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Disconnected:
    def describe(self) -> str:
        return "Status: Disconnected"


@dataclass(frozen=True)
class Connecting:
    target: str

    def describe(self) -> str:
        return f"Status: Connecting to {self.target}..."


@dataclass(frozen=True)
class Connected:
    target: str

    def describe(self) -> str:
        return f"Status: Connected to {self.target}"


@dataclass(frozen=True)
class Error:
    """A transport failure; ``target`` is set when the failure was a connect attempt."""

    message: str
    target: str | None = None

    def describe(self) -> str:
        if self.target:
            return f"Status: Error ({self.target}) - {self.message}"
        return f"Status: Error - {self.message}"


ConnectionState = Union[Disconnected, Connecting, Connected, Error]


def state_to_dict(state: ConnectionState) -> dict:
    """Flatten a state for JSON output."""
    result: dict = {"state": type(state).__name__.lower(), "status": state.describe()}
    if isinstance(state, (Connecting, Connected)):
        result["target"] = state.target
    elif isinstance(state, Error):
        result["message"] = state.message
        if state.target:
            result["target"] = state.target
    return result
