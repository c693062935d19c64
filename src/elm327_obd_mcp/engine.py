"""Engine facade wiring session, correlator, initializer and poller.

Everything is built explicitly from a transport and a config; there are
no module-level singletons. The engine reacts to session state:

- entering ``Connected`` runs the init sequence once, then starts polling;
- leaving ``Connected`` cancels init and polling.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

from .channels import StateChannel
from .config import EngineConfig
from .correlator import CommandCorrelator
from .initializer import InitializationSequencer
from .models.outcome import Outcome
from .models.state import ConnectionState, Connected
from .poller import PollingScheduler
from .protocol.commands import INIT_COMMANDS, POLL_COMMANDS, Command, with_timeout
from .session import ConnectionSession
from .transport.base import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObdEngine:
    """A complete ELM327 client for one adapter.

    Usage::

        engine = ObdEngine(SerialTransport(), EngineConfig.from_env())
        engine.start()
        engine.connect("/dev/rfcomm0")
        await engine.wait_for_state(Connected)
        ...
        await engine.aclose()
    """

    def __init__(self, transport: Transport, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.session = ConnectionSession(
            transport,
            read_size=self.config.read_size,
            max_buffer=self.config.max_buffer,
            frame_queue_size=self.config.frame_queue_size,
        )
        self.correlator = CommandCorrelator(self.session)
        self.initializer = InitializationSequencer(
            self.correlator,
            commands=[with_timeout(c, self.config.at_timeout) for c in INIT_COMMANDS],
            delay=self.config.init_delay,
            max_consecutive_timeouts=self.config.max_init_timeouts,
        )
        self.poller = PollingScheduler(
            self.correlator,
            commands=[with_timeout(c, self.config.command_timeout) for c in POLL_COMMANDS],
            request_delay=self.config.request_delay,
            cycle_delay=self.config.poll_interval,
        )
        self.status_text: StateChannel[str] = StateChannel(self.session.state.describe())
        self._last_state: ConnectionState | None = None
        self._watch_task: asyncio.Task | None = None
        self._setup_task: asyncio.Task | None = None
        self._request_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def initializing(self) -> bool:
        return self._setup_task is not None and not self._setup_task.done()

    # ─── LIFECYCLE ────────────────────────────────────────────────────

    def start(self) -> None:
        """Begin following session state. Must be called from the event loop."""
        if self._watch_task is not None and not self._watch_task.done():
            return
        self._watch_task = asyncio.get_running_loop().create_task(
            self._watch_state(), name="elm327-engine-watch"
        )

    def connect(self, target: str) -> None:
        self.start()
        self.session.connect(target)

    def disconnect(self) -> None:
        self.session.disconnect()

    async def aclose(self) -> None:
        """Stop polling, disconnect and stop following state."""
        self._cancel_setup()
        await self.poller.stop()
        await self.session.aclose()
        if self._watch_task is not None:
            self._watch_task.cancel()
            await asyncio.gather(self._watch_task, return_exceptions=True)
            self._watch_task = None

    async def wait_for_state(self, *types: type, timeout: float = 10.0) -> ConnectionState:
        """Wait until the session state is an instance of one of ``types``.

        Raises:
            asyncio.TimeoutError: If that does not happen within ``timeout``.
        """
        with self.session.state_changes.subscribe() as changes:
            if isinstance(self.session.state, types):
                return self.session.state

            async def _wait() -> ConnectionState:
                while True:
                    state = await changes.get()
                    if isinstance(state, types):
                        return state

            return await asyncio.wait_for(_wait(), timeout=timeout)

    async def wait_until_ready(self, timeout: float = 15.0) -> bool:
        """Wait until the current connection is initialized and polling.

        Returns ``False`` if the session stops being connected or
        ``timeout`` elapses first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if not self.session.is_connected:
                return False
            if self.poller.running:
                return True
            await asyncio.sleep(0.05)
        return False

    # ─── COMMANDS ─────────────────────────────────────────────────────

    async def request(self, command: Command[T]) -> Outcome:
        """Issue one ad-hoc command between poll cycles.

        Polling is paused around the command so only one command is ever
        in flight. Waits for a running init sequence first.
        """
        async with self._request_lock:
            if self._setup_task is not None and not self._setup_task.done():
                await asyncio.wait({self._setup_task})
            resume = self.poller.running
            connection = self.session.state
            await self.poller.stop()
            try:
                return await self.correlator.send(command)
            finally:
                # A reconnect while waiting runs its own init, then starts polling.
                if (
                    resume
                    and self.session.state is connection
                    and self.session.is_connected
                    and not self.initializing
                ):
                    self.poller.start()

    def live_data(self) -> dict[str, dict[str, Any]]:
        """Latest polled values with their units."""
        return {
            command.name: {
                "value": self.poller.values[command.name].value,
                "unit": command.unit,
            }
            for command in self.poller.commands
        }

    # ─── STATE HANDLING ───────────────────────────────────────────────

    async def _watch_state(self) -> None:
        with self.session.state_changes.subscribe() as changes:
            self._on_state(self.session.state)
            while True:
                self._on_state(await changes.get())

    def _on_state(self, state: ConnectionState) -> None:
        if state == self._last_state:
            return
        self._last_state = state
        self.status_text.set(state.describe())

        if isinstance(state, Connected):
            self._cancel_setup()
            self.poller.cancel()
            self._setup_task = asyncio.get_running_loop().create_task(
                self._set_up_connection(), name="elm327-engine-setup"
            )
        else:
            self._cancel_setup()
            self.poller.cancel()

    async def _set_up_connection(self) -> None:
        try:
            ready = await self.initializer.run()
        except Exception:
            # Logged by the sequencer, which has already disconnected.
            return
        if ready and self.session.is_connected:
            self.poller.start()

    def _cancel_setup(self) -> None:
        if self._setup_task is not None and not self._setup_task.done():
            self._setup_task.cancel()
        self._setup_task = None
