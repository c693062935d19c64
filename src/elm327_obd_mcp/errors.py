"""Exceptions raised by the transport and session layers.

Command-level failures (parse errors, timeouts) are not exceptions; they
come back from the correlator as outcomes.
"""

from __future__ import annotations


class TransportError(ConnectionError):
    """Connecting to, reading from or writing to the adapter failed."""


class NotConnectedError(TransportError):
    """An operation needed a connected session."""
