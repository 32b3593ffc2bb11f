"""
Snap interface connection checks.

Device requirements can list snap connections (driver and permission
gates) that must be connected before the device is usable. The check is
injected into the PCI matcher as a plain predicate.
"""

import subprocess
from typing import Callable

from engine_selector.utils.logger import log
from engine_selector.utils.subprocess_utils import run_command_status

# Predicate: connection name -> connected?
ConnectionChecker = Callable[[str], bool]

SNAPCTL_TIMEOUT = 10


class ConnectionCheckError(RuntimeError):
    """Raised when a connection's state cannot be determined."""

    def __init__(self, connection: str, message: str):
        self.connection = connection
        self.message = message
        super().__init__(message)


def check_snap_connection(connection: str) -> bool:
    """
    Ask snapd whether a plug of the running snap is connected.

    Runs ``snapctl is-connected <connection>``; exit code 0 means connected,
    1 means not connected.

    Raises:
        ConnectionCheckError: snapctl is unavailable, timed out or failed
    """
    command = ["snapctl", "is-connected", connection]
    try:
        returncode = run_command_status(command, timeout=SNAPCTL_TIMEOUT)
    except FileNotFoundError:
        raise ConnectionCheckError(connection, "snapctl not found, not running inside a snap")
    except subprocess.TimeoutExpired:
        raise ConnectionCheckError(connection, f"snapctl timed out after {SNAPCTL_TIMEOUT}s")
    except OSError as e:
        raise ConnectionCheckError(connection, f"cannot run snapctl: {e}")

    if returncode == 0:
        return True
    if returncode == 1:
        log.debug(f"Snap connection {connection} is not connected")
        return False
    raise ConnectionCheckError(connection, f"snapctl exited with status {returncode}")


def always_connected(connection: str) -> bool:
    """Predicate for running outside a snap, e.g. offline selection from a piped snapshot."""
    return True
