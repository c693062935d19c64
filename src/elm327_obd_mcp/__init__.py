"""Client engine for ELM327 OBD-II adapters, with an MCP server front end."""

from .config import EngineConfig
from .engine import ObdEngine
from .session import ConnectionSession
from .correlator import CommandCorrelator
from .initializer import InitializationSequencer
from .poller import PollingScheduler

__version__ = "0.1.0"
