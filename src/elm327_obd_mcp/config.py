"""Engine configuration.

Defaults suit a Bluetooth ELM327 clone. Every field can be overridden with
an ``ELM327_*`` environment variable through :meth:`EngineConfig.from_env`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping

ENV_PREFIX = "ELM327_"


@dataclass(frozen=True)
class EngineConfig:
    """Timing, sizing and logging settings for one engine."""

    # Transport
    baudrate: int = 38400
    read_size: int = 1024
    max_buffer: int | None = None  # unbounded when None
    frame_queue_size: int = 64

    # Commands
    command_timeout: float = 1.0
    at_timeout: float = 3.0

    # Initialization
    init_delay: float = 0.1
    max_init_timeouts: int = 3

    # Polling
    request_delay: float = 0.05
    poll_interval: float = 0.5

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``ELM327_<FIELD>`` variables.

        Unset variables keep their defaults. ``ELM327_MAX_BUFFER`` accepts
        ``none`` or ``0`` for an unbounded buffer.

        Raises:
            ValueError: If a variable cannot be converted.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _convert(f.name, raw)
        return cls(**values)


def _convert(name: str, raw: str):
    if name == "max_buffer":
        if raw.strip().lower() in ("none", "0"):
            return None
        return int(raw)
    if name == "log_level":
        return raw.strip().upper()
    if name in ("baudrate", "read_size", "frame_queue_size", "max_init_timeouts"):
        return int(raw)
    return float(raw)
