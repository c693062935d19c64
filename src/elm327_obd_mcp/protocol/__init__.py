"""Protocol layer: response framing, command descriptors and reply parsing."""

from .framing import ResponseFramer, TERMINATOR
from .commands import Command, INIT_COMMANDS, POLL_COMMANDS, response_filter
