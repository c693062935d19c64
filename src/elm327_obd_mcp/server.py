"""MCP server entry point for ELM327 OBD-II adapters.

Exposes connection control, live data and ad-hoc commands via the Model
Context Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import EngineConfig
from .engine import ObdEngine
from .models.outcome import outcome_to_dict
from .models.state import Connected, Error, state_to_dict
from .protocol.commands import (
    PID_DESCRIPTIONS,
    POLL_COMMANDS,
    raw_command,
    with_timeout,
)
from .transport.serial_connection import SerialTransport, available_ports

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "elm327-obd",
    instructions="MCP server for ELM327 OBD-II adapters over serial or Bluetooth",
)

# Global engine state
_engine: ObdEngine | None = None
_config: EngineConfig | None = None

MAX_COMMAND_LENGTH = 32


def _get_config() -> EngineConfig:
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def _get_engine() -> ObdEngine:
    """Get the active engine, raising if not connected."""
    if _engine is None or not _engine.session.is_connected:
        raise RuntimeError(
            "Not connected to adapter. Use the 'connect' tool first."
        )
    return _engine


def _status(engine: ObdEngine) -> dict[str, Any]:
    result = state_to_dict(engine.state)
    result["initializing"] = engine.initializing
    result["polling"] = engine.poller.running
    result["poll_cycles"] = engine.poller.cycles
    return result


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(
    port: str,
    baudrate: int | None = None,
    timeout: float = 15.0,
) -> dict[str, Any]:
    """Connect to an ELM327 adapter and start live polling.

    Opens the port, runs the AT initialization sequence (ATZ, ATE0, ATL0,
    ATH0, ATS0, ATSP0) and starts polling engine speed, vehicle speed and
    coolant temperature.

    Args:
        port: Serial device (e.g. /dev/rfcomm0, COM5) or pyserial URL
              (e.g. socket://192.168.0.10:35000).
        baudrate: Serial baud rate (default from ELM327_BAUDRATE or 38400).
        timeout: Seconds to wait for the connection and initialization.
    """
    global _engine
    if _engine is not None and _engine.session.is_connected:
        return {
            "connected": True,
            "message": "Already connected",
            **_status(_engine),
        }

    if _engine is not None:
        await _engine.aclose()

    config = _get_config()
    transport = SerialTransport(baudrate=baudrate or config.baudrate)
    _engine = ObdEngine(transport, config)
    _engine.connect(port)

    try:
        state = await _engine.wait_for_state(Connected, Error, timeout=timeout)
    except asyncio.TimeoutError:
        await _engine.aclose()
        return {"connected": False, "error": f"Timed out connecting to {port}"}

    if isinstance(state, Error):
        return {"connected": False, "error": state.describe()}

    ready = await _engine.wait_until_ready(timeout=timeout)
    result = {"connected": _engine.session.is_connected, "initialized": ready}
    result.update(_status(_engine))
    return result


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Stop polling and close the adapter connection."""
    global _engine
    if _engine is None:
        return {"disconnected": True}
    await _engine.aclose()
    _engine = None
    return {"disconnected": True}


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Report the connection state and the outcome of adapter initialization."""
    if _engine is None:
        return {"state": "disconnected", "status": "Status: Disconnected"}

    result = _status(_engine)
    result["init"] = [outcome_to_dict(o) for o in _engine.initializer.outcomes]
    return result


@mcp.tool()
def list_ports() -> dict[str, Any]:
    """List serial ports that may host an adapter."""
    return {"ports": [port.to_dict() for port in available_ports()]}


# ─── LIVE DATA TOOLS ──────────────────────────────────────────────────

@mcp.tool()
def get_live_data() -> dict[str, Any]:
    """Return the latest polled values.

    A value is null when the last request for it failed or timed out.
    """
    engine = _get_engine()
    return {
        "values": engine.live_data(),
        "cycles": engine.poller.cycles,
        "last_cycle": [
            outcome_to_dict(r.outcome) for r in engine.poller.snapshot() if r.outcome
        ],
    }


@mcp.tool()
async def read_pid(name: str) -> dict[str, Any]:
    """Request one polled parameter immediately.

    Args:
        name: One of "rpm", "speed", "coolant_temp".
    """
    commands = {command.name: command for command in POLL_COMMANDS}
    if name not in commands:
        return {"error": f"Unknown parameter {name!r}; expected one of {sorted(commands)}"}

    engine = _get_engine()
    command = with_timeout(commands[name], engine.config.command_timeout)
    result = outcome_to_dict(await engine.request(command))
    result["unit"] = command.unit
    return result


@mcp.tool()
async def send_command(command: str, timeout: float = 1.0) -> dict[str, Any]:
    """Send a raw command to the adapter and return the first reply.

    Args:
        command: ASCII command without the carriage return, e.g. "ATRV"
                 or "0100".
        timeout: Seconds to wait for the reply.
    """
    text = command.strip()
    if not text or len(text) > MAX_COMMAND_LENGTH:
        return {"error": f"Command must be 1-{MAX_COMMAND_LENGTH} characters"}
    if not text.isascii() or not text.isprintable():
        return {"error": "Command must be printable ASCII"}

    engine = _get_engine()
    return outcome_to_dict(await engine.request(raw_command(text, timeout=timeout)))


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("obd://pids")
def pid_catalog() -> str:
    """Parameters polled by the engine."""
    return json.dumps(
        [
            {
                "name": command.name,
                "request": command.wire_text,
                "pid": command.pid,
                "unit": command.unit,
                "description": PID_DESCRIPTIONS.get(command.name, ""),
            }
            for command in POLL_COMMANDS
        ],
        indent=2,
    )


# ─── PROMPTS ──────────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_live_data(symptom: str) -> str:
    """Guide a live-data check for a reported symptom.

    Args:
        symptom: What the driver noticed (e.g. "rough idle", "overheating").
    """
    return f"""Investigate this symptom using live data: {symptom}

Steps:
- Call get_status to confirm the adapter is connected and initialized.
- Call get_live_data a few times, a second or two apart.
- Engine speed at warm idle is usually 600-1000 rpm.
- Coolant temperature normally settles between 85 and 105 °C.
- Compare vehicle speed with what the driver reports.

Use read_pid for a fresh reading and send_command for anything else the
adapter supports. Values shown as null were unavailable on that cycle."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=_get_config().log_level)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
