"""
Local port allocation.

A port counts as free only when two independent probes agree: the
kernel socket table as seen through psutil, and an lsof query. Each
probe may miss sockets it has no permission to see; requiring both to
report "free" narrows that blind spot.

Allocation is not reserved: two concurrent scans can return the same
port. The server that later binds the port is the authoritative check.
"""

import subprocess

import psutil

from subcode_tunnel.constants import MAX_PORT, PORT_SCAN_RANGE
from subcode_tunnel.core.validation import validate_port
from subcode_tunnel.exceptions import NoPortAvailableError
from subcode_tunnel.logging import get_logger

logger = get_logger(__name__)

LSOF_TIMEOUT = 5


def listening_ports() -> set[int]:
    """
    Ports with a listening TCP socket according to the socket table.

    Returns:
        Set of ports (empty when the table cannot be read)
    """
    try:
        return {
            conn.laddr.port
            for conn in psutil.net_connections(kind="tcp")
            if conn.status == psutil.CONN_LISTEN and conn.laddr
        }
    except psutil.AccessDenied:
        logger.debug("Socket table not readable without elevated permissions")
        return set()


def lsof_reports_listening(port: int) -> bool:
    """
    Check with lsof whether anything listens on port.

    Returns:
        True if lsof lists a listening process, False otherwise or if
        lsof is unavailable
    """
    try:
        result = subprocess.run(
            ["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"],
            capture_output=True,
            text=True,
            timeout=LSOF_TIMEOUT,
            check=False,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0 and bool(result.stdout.strip())


def is_port_listening(port: int) -> bool:
    """Check whether either probe sees a listener on port."""
    return port in listening_ports() or lsof_reports_listening(port)


def find_available_port(base: int) -> int:
    """
    Find the first free port in [base, base + 100).

    Args:
        base: First port to try

    Returns:
        A port no probe reports as listening

    Raises:
        ValueError: If base is not a valid port
        NoPortAvailableError: If every port in the range is taken
    """
    validate_port(base)
    end = min(base + PORT_SCAN_RANGE, MAX_PORT + 1)

    # One socket-table snapshot per scan; lsof only for the survivors
    taken = listening_ports()
    for port in range(base, end):
        if port in taken:
            continue
        if lsof_reports_listening(port):
            logger.debug("Port in use (lsof)", port=port)
            continue
        logger.debug("Found available port", port=port)
        return port

    raise NoPortAvailableError(base, end)
