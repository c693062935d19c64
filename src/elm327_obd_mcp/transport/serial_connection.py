"""Serial transport for ELM327 adapters.

Bluetooth adapters show up as a serial port once paired (``/dev/rfcomm0``,
``COM5``); WiFi adapters are reached with a pyserial URL such as
``socket://192.168.0.10:35000``. Targets are opened with
``serial.serial_for_url`` so both work.

pyserial is blocking, so every call runs in the loop's default executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass

import serial
import serial.tools.list_ports

from ..errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 38400
READ_TIMEOUT = 0.1  # seconds; bounds how long a read thread outlives close()
WRITE_TIMEOUT = 3.0


@dataclass
class PortInfo:
    """A serial port that may host an adapter."""

    device: str
    description: str = ""
    manufacturer: str = ""
    hwid: str = ""

    @property
    def is_bluetooth(self) -> bool:
        text = f"{self.device} {self.description}".lower()
        return "rfcomm" in text or "bluetooth" in text

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "description": self.description,
            "manufacturer": self.manufacturer,
            "bluetooth": self.is_bluetooth,
        }


def available_ports() -> list[PortInfo]:
    """List the serial ports currently present on this machine."""
    return [
        PortInfo(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer or "",
            hwid=port.hwid or "",
        )
        for port in serial.tools.list_ports.comports()
    ]


class SerialChannel:
    """An open serial port exposed as an async byte channel."""

    def __init__(self, port: serial.SerialBase) -> None:
        self._port = port
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes, waiting until at least one arrives.

        A read timeout on the port is not end of stream; this only returns
        ``b""`` once the channel has been closed.
        """
        loop = asyncio.get_running_loop()
        while not self._closed:
            try:
                data = await loop.run_in_executor(None, self._read_some, size)
            except serial.SerialException:
                if self._closed:
                    break
                raise
            if data:
                return data
        return b""

    def _read_some(self, size: int) -> bytes:
        waiting = self._port.in_waiting
        return self._port.read(min(size, waiting) if waiting else 1)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportError("Serial channel is closed")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_all, data)

    def _write_all(self, data: bytes) -> None:
        self._port.write(data)
        self._port.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._port.close()
        except Exception as e:
            logger.warning("Error closing %s: %s", self._port.name, e)


class SerialTransport:
    """Opens :class:`SerialChannel` instances.

    Usage::

        transport = SerialTransport(baudrate=38400)
        channel = await transport.connect("/dev/rfcomm0")
    """

    def __init__(
        self,
        baudrate: int = DEFAULT_BAUDRATE,
        read_timeout: float = READ_TIMEOUT,
        write_timeout: float = WRITE_TIMEOUT,
    ) -> None:
        self._baudrate = baudrate
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout

    @property
    def baudrate(self) -> int:
        return self._baudrate

    async def connect(self, target: str) -> SerialChannel:
        """Open ``target``.

        Raises:
            TransportError: If the port cannot be opened.
        """
        loop = asyncio.get_running_loop()
        open_port = functools.partial(
            serial.serial_for_url,
            target,
            baudrate=self._baudrate,
            timeout=self._read_timeout,
            write_timeout=self._write_timeout,
        )
        try:
            port = await loop.run_in_executor(None, open_port)
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Could not open {target}: {e}") from e

        logger.info("Opened %s at %d baud", target, self._baudrate)
        return SerialChannel(port)
