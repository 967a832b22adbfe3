"""
Subprocess helpers for backend commands.

Every backend command goes through run_command so that a missing
binary and a hung command surface as typed tunnel errors.
"""

import os
import shutil
import subprocess

from subcode_tunnel.exceptions import CommandTimeoutError, NotInstalledError
from subcode_tunnel.logging import get_logger

logger = get_logger(__name__)


def is_installed(binary: str) -> bool:
    """Check whether a binary is on PATH."""
    return shutil.which(binary) is not None


def with_sudo(args: list[str], enabled: bool = True) -> list[str]:
    """
    Prefix a command with sudo when requested and not already root.

    Args:
        args: Command and arguments
        enabled: Whether sudo is wanted at all

    Returns:
        Command list, possibly prefixed with sudo
    """
    if not enabled or os.geteuid() == 0 or not is_installed("sudo"):
        return list(args)
    return ["sudo", *args]


def run_command(
    args: list[str],
    timeout: float | None = None,
    method: str | None = None,
) -> subprocess.CompletedProcess:
    """
    Run a command and capture its output.

    Args:
        args: Command and arguments
        timeout: Seconds before the command is abandoned
        method: Tunnel method the command belongs to, for error reporting

    Returns:
        Completed process result (never raises on non-zero exit)

    Raises:
        NotInstalledError: If the executable is not found
        CommandTimeoutError: If the command exceeds its timeout
    """
    # sudo wraps the real binary; report the binary itself when missing
    binary = args[1] if args[0] == "sudo" and len(args) > 1 else args[0]
    logger.debug("Running command", command=" ".join(args))
    try:
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise NotInstalledError(binary, method=method) from None
    except subprocess.TimeoutExpired:
        raise CommandTimeoutError(
            f"'{' '.join(args)}' did not finish within {timeout}s", method=method
        ) from None
