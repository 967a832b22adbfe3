"""
Custom exceptions for subcode-tunnel.

This module provides the exception hierarchy raised by the launchers,
the port allocator and the orchestrator. Every error records which
backend was attempted and, where one exists, the method to fall back to.
"""

from __future__ import annotations


class TunnelError(Exception):
    """Base exception for subcode-tunnel errors."""

    def __init__(
        self,
        message: str,
        method: str | None = None,
        fallback: str | None = None,
    ):
        """
        Initialize tunnel error.

        Args:
            message: Human readable reason
            method: Tunnel method that was attempted (if any)
            fallback: Suggested method to try next (if any)
        """
        self.message = message
        self.method = method
        self.fallback = fallback
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class NotInstalledError(TunnelError):
    """Raised when a backend binary is not on PATH."""

    def __init__(self, binary: str, method: str | None = None, fallback: str | None = None):
        self.binary = binary
        super().__init__(f"{binary} is not installed", method=method, fallback=fallback)


class NotAuthenticatedError(TunnelError):
    """Raised when a backend requires an external login first."""

    pass


class CredentialsMissingError(NotAuthenticatedError):
    """Raised when a named tunnel's credentials file is absent."""

    pass


class ConfigurationError(TunnelError):
    """Raised when required configuration (e.g. a domain) is missing."""

    pass


class NoPortAvailableError(TunnelError):
    """Raised when no free port exists in the scanned range."""

    def __init__(self, start: int, end: int):
        self.start = start
        self.end = end
        super().__init__(f"No available port found in range {start}-{end}")


class LaunchTimeoutError(TunnelError):
    """Raised when backend readiness is not observed within the bound."""

    pass


class CommandTimeoutError(LaunchTimeoutError):
    """Raised when a backend command does not return within its timeout."""

    pass


class LaunchFailedError(TunnelError):
    """Raised when a backend process died or a command exited non-zero."""

    def __init__(
        self,
        message: str,
        method: str | None = None,
        fallback: str | None = None,
        log_tail: str = "",
    ):
        self.log_tail = log_tail
        super().__init__(message, method=method, fallback=fallback)


class NoSuchTunnelError(TunnelError):
    """Raised when a tunnel record does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No tunnel found with name: {name}")


class UnknownMethodError(TunnelError):
    """Raised when a tunnel method string is not recognised."""

    pass


class InvalidTunnelNameError(TunnelError, ValueError):
    """Raised when a tunnel name fails validation."""

    pass
