"""Data models for connection state and command outcomes."""

from .state import (
    ConnectionState,
    Connected,
    Connecting,
    Disconnected,
    Error,
)
from .outcome import (
    NotConnected,
    Outcome,
    ParseError,
    Success,
    Timeout,
)
