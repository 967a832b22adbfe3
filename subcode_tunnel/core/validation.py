"""
Validation utilities for subcode-tunnel.

Tunnel names end up in file paths, process command lines and public
hostnames, so they are restricted to a single DNS label.
"""

import re
from pathlib import Path

from subcode_tunnel.constants import MAX_PORT
from subcode_tunnel.exceptions import InvalidTunnelNameError

# Safe tunnel name pattern:
# - Must start with a letter or digit
# - Can contain letters, numbers and hyphens
# - Cannot end with a hyphen
# - Maximum 63 characters (DNS label limit)
TUNNEL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def validate_tunnel_name(name: str) -> str:
    """
    Validate tunnel name is safe for use in paths, commands, and hostnames.

    Args:
        name: Tunnel name to validate

    Returns:
        The validated name

    Raises:
        InvalidTunnelNameError: If name is invalid
    """
    if not name:
        raise InvalidTunnelNameError("Tunnel name cannot be empty")

    if len(name) > 63:
        raise InvalidTunnelNameError(
            f"Tunnel name too long (max 63 characters): {len(name)} characters"
        )

    if "/" in name or "\\" in name or "\x00" in name:
        raise InvalidTunnelNameError("Tunnel name cannot contain path separators or null bytes")

    if not TUNNEL_NAME_PATTERN.match(name):
        raise InvalidTunnelNameError(
            f"Invalid tunnel name: {name}. "
            "Must start and end with a letter or digit and contain only "
            "alphanumeric characters and hyphens (max 63 characters)."
        )

    return name


def validate_port(port: int) -> int:
    """
    Validate a TCP port number.

    Raises:
        ValueError: If port is outside 1-65535
    """
    if not 1 <= port <= MAX_PORT:
        raise ValueError(f"Port must be between 1 and {MAX_PORT}: {port}")
    return port


def get_safe_state_path(base_dir: Path, name: str, suffix: str) -> Path:
    """
    Get a state file path for a tunnel, preventing path traversal.

    Args:
        base_dir: State directory
        name: Tunnel name
        suffix: File suffix including the dot (e.g. ".json")

    Returns:
        Path inside base_dir

    Raises:
        InvalidTunnelNameError: If the name is invalid or escapes base_dir
    """
    validate_tunnel_name(name)

    path = (base_dir / f"{name}{suffix}").resolve()
    if not path.is_relative_to(base_dir.resolve()):
        raise InvalidTunnelNameError(
            f"Path traversal detected: tunnel name '{name}' "
            f"would escape state directory '{base_dir}'"
        )
    return path
