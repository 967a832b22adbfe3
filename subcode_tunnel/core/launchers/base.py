"""
Common contract for tunnel launchers.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar

from subcode_tunnel.models.config import TunnelSettings
from subcode_tunnel.models.tunnel import TunnelMethod, TunnelRecord


class TunnelLauncher(ABC):
    """
    Starts and stops tunnels for one backend.

    start() returns an unsaved TunnelRecord; persisting it is the
    orchestrator's job. Failures raise a TunnelError subclass carrying
    this launcher's method and suggested fallback.
    """

    method: ClassVar[TunnelMethod]
    fallback: ClassVar[TunnelMethod | None] = None

    def __init__(
        self,
        settings: TunnelSettings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize launcher.

        Args:
            settings: Tunnel settings
            sleep: Sleep function used for fixed waits (injectable for tests)
        """
        self.settings = settings
        self.sleep = sleep

    @property
    def _fallback_value(self) -> str | None:
        return self.fallback.value if self.fallback else None

    @abstractmethod
    def start(self, local_port: int, name: str, **options: object) -> TunnelRecord:
        """Expose local_port publicly and describe the running tunnel."""

    @abstractmethod
    def stop(self, record: TunnelRecord) -> None:
        """Tear down the tunnel described by record."""

    @abstractmethod
    def reset(self) -> None:
        """Tear down every tunnel this backend serves on the machine."""
