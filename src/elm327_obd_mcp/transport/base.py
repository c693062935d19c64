"""Transport interface consumed by the session.

A transport opens a duplex byte channel to a target (a serial device path
or URL). The session never touches the underlying handle directly.
"""

from __future__ import annotations

from typing import Protocol


class ByteChannel(Protocol):
    """An open duplex byte stream."""

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes.

        Returns ``b""`` once the stream has ended. Raises ``OSError`` on
        I/O failure.
        """
        ...

    async def write(self, data: bytes) -> None:
        """Write all of ``data``. Raises ``OSError`` on I/O failure."""
        ...

    def close(self) -> None:
        """Release the stream. Must not block for long."""
        ...


class Transport(Protocol):
    """Opens byte channels."""

    async def connect(self, target: str) -> ByteChannel:
        """Open a channel to ``target``. Raises ``OSError`` on failure."""
        ...
