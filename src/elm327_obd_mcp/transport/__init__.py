"""Byte transports: the channel interface and the pyserial implementation."""

from .base import ByteChannel, Transport
from .serial_connection import SerialChannel, SerialTransport, available_ports
