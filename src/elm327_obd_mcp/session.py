"""Connection session: owns the transport channel and the read loop.

State machine::

    Disconnected --connect(t)--> Connecting(t) --opened--> Connected(t)
    Connecting(t) --open failed--> Error(msg, t)
    Connected(t)  --stream end / I/O error--> Error(msg)
    any           --disconnect()--> Disconnected   (an Error is kept)

At most one connect task and one read loop exist at a time. Every
completed frame is published on :attr:`ConnectionSession.frames`; every
state change on :attr:`ConnectionSession.state_changes`. There is no
automatic reconnect.
"""

from __future__ import annotations

import asyncio
import logging

from .channels import DEFAULT_QUEUE_SIZE, Broadcast, StateChannel
from .errors import NotConnectedError, TransportError
from .models.state import (
    ConnectionState,
    Connected,
    Connecting,
    Disconnected,
    Error,
)
from .protocol.framing import ResponseFramer
from .transport.base import ByteChannel, Transport

logger = logging.getLogger(__name__)

READ_SIZE = 1024


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _close_orphan(future: asyncio.Future) -> None:
    """Close a channel whose connect finished after the attempt was cancelled."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.debug("Closing channel opened after cancellation")
    try:
        future.result().close()
    except Exception as e:
        logger.warning("Error closing orphaned channel: %s", e)


class ConnectionSession:
    """Drives one adapter connection.

    Usage::

        session = ConnectionSession(SerialTransport())
        session.connect("/dev/rfcomm0")
        with session.frames.subscribe() as frames:
            await session.write(b"ATI\\r")
            print(await frames.get())
        session.disconnect()
    """

    def __init__(
        self,
        transport: Transport,
        *,
        read_size: int = READ_SIZE,
        max_buffer: int | None = None,
        frame_queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._transport = transport
        self._read_size = read_size
        self._max_buffer = max_buffer
        self._state: StateChannel[ConnectionState] = StateChannel(Disconnected())
        self._frames: Broadcast[str] = Broadcast(maxsize=frame_queue_size)
        self._channel: ByteChannel | None = None
        self._connect_task: asyncio.Task | None = None
        self._read_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state.value

    @property
    def state_changes(self) -> StateChannel[ConnectionState]:
        return self._state

    @property
    def frames(self) -> Broadcast[str]:
        return self._frames

    @property
    def is_connected(self) -> bool:
        return isinstance(self._state.value, Connected)

    # ─── LIFECYCLE ────────────────────────────────────────────────────

    def connect(self, target: str) -> None:
        """Start connecting to ``target``. Must be called from the event loop.

        Does nothing (with a warning) while already connecting or connected.
        """
        current = self.state
        if isinstance(current, (Connecting, Connected)):
            logger.warning(
                "connect(%s) ignored: already %s", target, type(current).__name__.lower()
            )
            return

        self._release()
        self._set_state(Connecting(target))
        self._connect_task = asyncio.get_running_loop().create_task(
            self._open(target), name=f"elm327-connect-{target}"
        )

    def disconnect(self) -> None:
        """Cancel connect/read work and release the channel.

        Settles in ``Disconnected`` unless the session is in ``Error``,
        which is kept until the next ``connect()``.
        """
        logger.debug("Disconnecting")
        self._release()
        if not isinstance(self.state, Error):
            self._set_state(Disconnected())

    async def aclose(self) -> None:
        """Disconnect and wait for the cancelled tasks to finish."""
        tasks = [
            task
            for task in (self._connect_task, self._read_task)
            if task is not None and task is not _current_task()
        ]
        self.disconnect()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _open(self, target: str) -> None:
        connecting = asyncio.ensure_future(self._transport.connect(target))
        try:
            channel = await asyncio.shield(connecting)
        except asyncio.CancelledError:
            connecting.add_done_callback(_close_orphan)
            raise
        except Exception as e:
            logger.error("Connection to %s failed: %s", target, e)
            self._fail(f"Connection failed: {e}", target)
            return

        self._channel = channel
        self._connect_task = None
        self._set_state(Connected(target))
        logger.info("Connected to %s", target)
        self._read_task = asyncio.get_running_loop().create_task(
            self._read_loop(channel, target), name=f"elm327-read-{target}"
        )

    async def _read_loop(self, channel: ByteChannel, target: str) -> None:
        framer = ResponseFramer(max_buffer=self._max_buffer)
        logger.debug("Read loop started for %s", target)
        try:
            while True:
                data = await channel.read(self._read_size)
                for frame in framer.feed(data):
                    logger.debug("Frame received: %r", frame)
                    self._frames.publish(frame)
                if framer.closed:
                    logger.warning("Stream from %s ended", target)
                    self._fail("Device disconnected")
                    return
        except OSError as e:
            logger.error("Read from %s failed: %s", target, e)
            self._fail(f"Read error: {e}")
        except Exception as e:
            logger.exception("Unexpected error reading from %s", target)
            self._fail(f"Read error: {e}")
        finally:
            logger.debug("Read loop stopped for %s", target)

    # ─── I/O ──────────────────────────────────────────────────────────

    async def write(self, data: bytes) -> None:
        """Send raw bytes to the adapter.

        Raises:
            NotConnectedError: If the session is not connected.
            TransportError: If the write fails; the session is then in
                ``Error`` and its channel released.
        """
        channel = self._channel
        if channel is None or not self.is_connected:
            raise NotConnectedError("Not connected to adapter")

        logger.debug("Sending %r", data)
        try:
            await channel.write(data)
        except OSError as e:
            logger.error("Write failed: %s", e)
            self._fail(f"Write error: {e}")
            raise TransportError(f"Write failed: {e}") from e

    # ─── INTERNALS ────────────────────────────────────────────────────

    def _set_state(self, state: ConnectionState) -> None:
        if self._state.set(state):
            logger.info("%s", state.describe())

    def _fail(self, message: str, target: str | None = None) -> None:
        self._set_state(Error(message, target))
        self._release()

    def _release(self) -> None:
        """Cancel background tasks and close the channel, best effort."""
        current = _current_task()
        for task in (self._connect_task, self._read_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._connect_task = None
        self._read_task = None

        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            channel.close()
        except Exception as e:
            logger.warning("Error closing channel: %s", e)
