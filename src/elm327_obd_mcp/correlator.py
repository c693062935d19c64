"""Command correlator: one command in, one outcome out.

The correlator does not queue. Callers must await each ``send()`` before
issuing the next one on the same session; a concurrent call would see the
other command's replies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, TypeVar

from .channels import Subscription
from .errors import TransportError
from .models.outcome import NotConnected, Outcome, ParseError, Success, Timeout
from .protocol.commands import Command, response_filter
from .session import ConnectionSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandCorrelator:
    """Pairs an outgoing command with the first frame that answers it."""

    def __init__(self, session: ConnectionSession) -> None:
        self._session = session

    @property
    def session(self) -> ConnectionSession:
        return self._session

    async def send(self, command: Command[T]) -> Outcome:
        """Send ``command`` and wait for its reply.

        Returns:
            ``Success`` or ``ParseError`` when a matching frame arrived,
            ``Timeout`` when none did within ``command.timeout`` seconds,
            ``NotConnected`` when the session was not connected or the
            write failed. Only frames published after the call started are
            considered.
        """
        if not self._session.is_connected:
            logger.warning("Cannot send %s: not connected", command.wire_text)
            return NotConnected(command)

        matches = command.accepts or response_filter(command.wire_text)

        # Subscribe before writing so a fast reply cannot be missed.
        with self._session.frames.subscribe() as subscription:
            try:
                await self._session.write(command.encode())
            except TransportError as e:
                logger.warning("Cannot send %s: %s", command.wire_text, e)
                return NotConnected(command)

            logger.debug("Listening for reply to %s", command.wire_text)
            # Not wait_for(): before 3.12 it can swallow a cancel that races the reply.
            waiter = asyncio.ensure_future(self._first_match(subscription, matches))
            try:
                done, _ = await asyncio.wait({waiter}, timeout=command.timeout)
            finally:
                waiter.cancel()
            if waiter not in done:
                logger.warning("Timeout waiting for reply to %s", command.wire_text)
                return Timeout(command)
            frame = waiter.result()

        value = command.parse(frame)
        if value is None:
            logger.warning("Could not parse reply to %s: %r", command.wire_text, frame)
            return ParseError(command, frame)
        return Success(command, value, frame)

    @staticmethod
    async def _first_match(
        subscription: Subscription[str], matches: Callable[[str], bool]
    ) -> str:
        while True:
            frame = await subscription.get()
            if matches(frame):
                return frame
            logger.debug("Ignoring unrelated frame %r", frame)
