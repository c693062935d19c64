"""Response framer for the ELM327 byte stream.

The adapter has no length prefix or start marker. Every reply ends with the
prompt character ``>``, so a single read may carry any mix of::

    +-----------------+---+-----------------+---+----------------+
    | reply 1         | > | reply 2         | > | partial tail.. |
    +-----------------+---+-----------------+---+----------------+

- Terminated parts are trimmed and emitted as frames, in order.
- Empty and whitespace-only parts (adjacent prompts) are dropped.
- The unterminated tail is kept until a later read completes it.
- A zero-length read means the stream ended; the framer closes.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

TERMINATOR = ">"
ENCODING = "latin-1"


class ResponseFramer:
    """Accumulates raw bytes and splits them into complete frames.

    Usage::

        framer = ResponseFramer()
        framer.feed(b"41 0C 1A")   # -> []
        framer.feed(b" F0>")       # -> ["41 0C 1A F0"]
    """

    def __init__(
        self,
        terminator: str = TERMINATOR,
        max_buffer: int | None = None,
    ) -> None:
        self._terminator = terminator
        self._max_buffer = max_buffer
        self._buffer = ""
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> str:
        """Text received since the last terminator."""
        return self._buffer

    def feed(self, data: bytes) -> list[str]:
        """Consume one read result and return the frames it completed.

        Args:
            data: Bytes from a single transport read. ``b""`` marks the
                end of the stream.

        Returns:
            Completed frames, oldest first. Empty when the read ended
            mid-reply or the framer is closed.
        """
        if self._closed:
            return []

        if not data:
            self._closed = True
            logger.debug("Stream closed with %d pending chars", len(self._buffer))
            return []

        self._buffer += data.decode(ENCODING)

        if self._terminator not in self._buffer:
            self._check_overflow()
            return []

        # The tail stays buffered until a later read terminates it.
        *complete, tail = self._buffer.split(self._terminator)
        self._buffer = tail
        self._check_overflow()

        frames = []
        for part in complete:
            text = part.strip()
            if text:
                frames.append(text)
        return frames

    def reset(self) -> None:
        """Drop any buffered partial reply."""
        self._buffer = ""

    def _check_overflow(self) -> None:
        if self._max_buffer is None or len(self._buffer) <= self._max_buffer:
            return
        logger.warning(
            "Discarding %d buffered chars with no terminator (limit %d)",
            len(self._buffer),
            self._max_buffer,
        )
        self._buffer = ""
