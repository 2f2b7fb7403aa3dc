"""wait-on - wait for files, ports, sockets, HTTP endpoints and commands.

Polls a set of heterogeneous resources until all of them are available (or,
in reverse mode, all unavailable) and have stayed that way for a settle
window, failing if a deadline passes first.
"""

from wait_on.__main__ import main
from wait_on.api import run, wait_on
from wait_on.core.config import WaitOnOptions
from wait_on.core.errors import (
    ConfigurationError,
    InvalidResourceError,
    ResolutionError,
    RunFailedError,
    WaitOnError,
    WaitOnTimeoutError,
)

__all__ = [
    "ConfigurationError",
    "InvalidResourceError",
    "ResolutionError",
    "RunFailedError",
    "WaitOnError",
    "WaitOnOptions",
    "WaitOnTimeoutError",
    "main",
    "run",
    "wait_on",
]
