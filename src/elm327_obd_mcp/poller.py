"""Continuous polling of live vehicle parameters.

Each cycle requests every command once, in order, awaiting each reply
before sending the next. A successful reply publishes the parsed value;
any other outcome publishes ``None`` so a stale reading is never shown.
Polling stops as soon as the session leaves ``Connected``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from .channels import StateChannel, Subscription
from .correlator import CommandCorrelator
from .models.outcome import Outcome, Success
from .models.state import ConnectionState, Connected
from .protocol.commands import POLL_COMMANDS, Command

logger = logging.getLogger(__name__)

REQUEST_DELAY = 0.05  # seconds between commands in a cycle
CYCLE_DELAY = 0.5  # seconds between cycles


@dataclass(frozen=True)
class PollResult:
    """Latest outcome for one polled command."""

    command: Command[Any]
    outcome: Outcome | None = None

    @property
    def value(self) -> Any:
        if isinstance(self.outcome, Success):
            return self.outcome.value
        return None


class PollingScheduler:
    """Round-robin poller publishing the latest value per command.

    Usage::

        poller = PollingScheduler(correlator)
        poller.start()
        poller.values["rpm"].value   # latest engine speed or None
        await poller.stop()
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        commands: Sequence[Command[Any]] = POLL_COMMANDS,
        request_delay: float = REQUEST_DELAY,
        cycle_delay: float = CYCLE_DELAY,
    ) -> None:
        self._correlator = correlator
        self._commands = tuple(commands)
        self._request_delay = request_delay
        self._cycle_delay = cycle_delay
        self._task: asyncio.Task | None = None
        self._cycle = [PollResult(command) for command in self._commands]
        self.cycles = 0
        self.values: dict[str, StateChannel[Any]] = {
            command.name: StateChannel(None) for command in self._commands
        }

    @property
    def commands(self) -> tuple[Command[Any], ...]:
        return self._commands

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> tuple[PollResult, ...]:
        """Read-only copy of the latest cycle."""
        return tuple(self._cycle)

    def latest(self) -> dict[str, Any]:
        """Latest published value per command name."""
        return {name: channel.value for name, channel in self.values.items()}

    def start(self) -> None:
        """Start polling, replacing any poll task already running."""
        self.cancel()
        logger.info("Starting data polling")
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="elm327-poll"
        )

    def cancel(self) -> None:
        """Cancel the poll task without waiting for it."""
        if self._task is not None and not self._task.done():
            logger.info("Stopping data polling")
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        """Cancel the poll task and wait until it has finished."""
        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        session = self._correlator.session
        with session.state_changes.subscribe() as changes:
            if not session.is_connected:
                logger.warning("Session not connected, polling not started")
                return

            polling = asyncio.ensure_future(self._poll_cycles())
            watching = asyncio.ensure_future(self._wait_until_disconnected(changes))
            try:
                done, _ = await asyncio.wait(
                    {polling, watching}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in (polling, watching):
                    task.cancel()
                await asyncio.gather(polling, watching, return_exceptions=True)
        logger.debug("Data polling stopped")
        if polling in done and not polling.cancelled():
            polling.result()

    @staticmethod
    async def _wait_until_disconnected(changes: Subscription[ConnectionState]) -> None:
        while True:
            state = await changes.get()
            if not isinstance(state, Connected):
                return

    async def _poll_cycles(self) -> None:
        session = self._correlator.session
        while session.is_connected:
            for index, command in enumerate(self._commands):
                if index:
                    await asyncio.sleep(self._request_delay)
                outcome = await self._correlator.send(command)
                if not session.is_connected:
                    return
                self._record(index, command, outcome)
            self.cycles += 1
            await asyncio.sleep(self._cycle_delay)

    def _record(self, index: int, command: Command[Any], outcome: Outcome) -> None:
        result = PollResult(command, outcome)
        self._cycle[index] = result
        if not isinstance(outcome, Success):
            logger.debug("%s unavailable: %s", command.name, type(outcome).__name__)
        self.values[command.name].set(result.value)
