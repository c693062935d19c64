"""Adapter initialization handshake, run once per new connection."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .correlator import CommandCorrelator
from .models.outcome import NotConnected, Outcome, ParseError, Success, Timeout
from .protocol.commands import INIT_COMMANDS, Command

logger = logging.getLogger(__name__)

INIT_DELAY = 0.1  # seconds between init commands
MAX_CONSECUTIVE_TIMEOUTS = 3


class InitializationSequencer:
    """Sends the fixed AT setup sequence through the correlator.

    Individual parse errors and timeouts are logged and skipped. The
    sequence gives up, disconnecting the session, when
    ``max_consecutive_timeouts`` commands in a row time out or when any
    unexpected exception escapes a command.
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        commands: Sequence[Command[bool]] = INIT_COMMANDS,
        delay: float = INIT_DELAY,
        max_consecutive_timeouts: int = MAX_CONSECUTIVE_TIMEOUTS,
    ) -> None:
        self._correlator = correlator
        self._commands = tuple(commands)
        self._delay = delay
        self._max_consecutive_timeouts = max_consecutive_timeouts
        self.outcomes: list[Outcome] = []

    @property
    def commands(self) -> tuple[Command[bool], ...]:
        return self._commands

    async def run(self) -> bool:
        """Run the sequence.

        Returns:
            ``True`` if every command was issued, ``False`` if the session
            dropped or the sequence was aborted.

        Raises:
            Exception: Any unexpected error, after disconnecting the session.
        """
        session = self._correlator.session
        self.outcomes = []
        timeouts = 0
        logger.info("Initializing adapter (%d commands)", len(self._commands))

        try:
            for command in self._commands:
                outcome = await self._correlator.send(command)
                self.outcomes.append(outcome)

                if isinstance(outcome, Success):
                    logger.info("Init command %s acknowledged", command.wire_text)
                    timeouts = 0
                elif isinstance(outcome, ParseError):
                    logger.error(
                        "Init command %s rejected: %r", command.wire_text, outcome.raw_frame
                    )
                    timeouts = 0
                elif isinstance(outcome, Timeout):
                    timeouts += 1
                    logger.warning("Init command %s timed out", command.wire_text)
                    if timeouts >= self._max_consecutive_timeouts:
                        logger.error(
                            "Adapter not responding after %d timeouts, disconnecting",
                            timeouts,
                        )
                        session.disconnect()
                        return False
                elif isinstance(outcome, NotConnected):
                    logger.warning("Session dropped during initialization")
                    return False

                await asyncio.sleep(self._delay)
        except Exception:
            logger.exception("Error during adapter initialization")
            session.disconnect()
            raise

        logger.info("Adapter initialization complete")
        return True
