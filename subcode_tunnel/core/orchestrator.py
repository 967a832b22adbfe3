"""
Tunnel lifecycle orchestration.

Selects a backend (explicitly or from the capability report), runs its
launcher under a per-name lock, and commits the resulting record. Also
implements stop, stop-all and list on top of the state store.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import psutil

from subcode_tunnel.core.detector import CapabilityDetector
from subcode_tunnel.core.ingress import IngressConfig
from subcode_tunnel.core.launchers import (
    FunnelLauncher,
    NamedLauncher,
    QuickLauncher,
    TunnelLauncher,
)
from subcode_tunnel.core.launchers.named import named_tunnel_process_pattern
from subcode_tunnel.core.ports import is_port_listening
from subcode_tunnel.core.process import find_processes, is_alive
from subcode_tunnel.core.store import TunnelStore
from subcode_tunnel.core.validation import validate_port, validate_tunnel_name
from subcode_tunnel.exceptions import NoSuchTunnelError, NotInstalledError, TunnelError
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.config import TunnelSettings
from subcode_tunnel.models.tunnel import TunnelMethod, TunnelRecord

logger = get_logger(__name__)

# Errors a teardown step may raise; stop and stop-all log them and carry on
TEARDOWN_ERRORS = (TunnelError, OSError, psutil.Error)


def default_tunnel_name(local_port: int) -> str:
    return f"app-{local_port}"


class TunnelOrchestrator:
    """
    Entry point for starting, stopping and listing tunnels.

    Operations on different names are independent. Operations on the
    same name are serialized with a lock file so that two invocations
    never interleave a kill-then-restart sequence.
    """

    def __init__(
        self,
        settings: TunnelSettings,
        store: TunnelStore | None = None,
        detector: CapabilityDetector | None = None,
        launchers: dict[TunnelMethod, TunnelLauncher] | None = None,
        port_probe: Callable[[int], bool] = is_port_listening,
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Tunnel settings shared with detector and launchers
            store: State store (defaults to one in settings.state_dir)
            detector: Capability detector
            launchers: Launcher per method (defaults to the three built-ins)
            port_probe: Returns True if something listens on a port
        """
        self.settings = settings
        self.store = store or TunnelStore(settings.state_dir)
        self.detector = detector or CapabilityDetector(settings)
        self.launchers = launchers or {
            TunnelMethod.OVERLAY_FUNNEL: FunnelLauncher(settings),
            TunnelMethod.ROUTED_NAMED: NamedLauncher(settings, detector=self.detector),
            TunnelMethod.QUICK_EPHEMERAL: QuickLauncher(settings),
        }
        self._port_probe = port_probe

    def launcher_for(self, method: TunnelMethod) -> TunnelLauncher:
        return self.launchers[method]

    def start(
        self,
        local_port: int,
        name: str | None = None,
        method: str | TunnelMethod | None = None,
        funnel_port: int | None = None,
    ) -> TunnelRecord:
        """
        Start a tunnel and persist its record.

        Args:
            local_port: Local port to expose
            name: Tunnel name (defaults to app-<port>)
            method: Method or alias; auto-detected when None
            funnel_port: Public port for overlay funnels

        Returns:
            The committed TunnelRecord

        Raises:
            TunnelError: Whatever the launcher raised; nothing is persisted
        """
        validate_port(local_port)
        name = validate_tunnel_name(name or default_tunnel_name(local_port))

        if method is None:
            selected = self.detector.detect().recommended_method
            logger.info("Auto-selected method", method=selected.value)
        else:
            selected = TunnelMethod.parse(method)

        if not self._port_probe(local_port):
            logger.warning(
                "Nothing is listening on port; make sure your dev server is running first",
                port=local_port,
            )

        launcher = self.launcher_for(selected)
        with self.store.lock(name):
            existing = self.store.get(name)
            if existing is not None:
                logger.info("Replacing existing tunnel", name=name, method=existing.method.value)
                self._teardown(existing)
                self.store.delete(name)

            options = {"funnel_port": funnel_port} if funnel_port else {}
            record = launcher.start(local_port, name, **options)
            self.store.put(record)

        logger.info("Tunnel started", name=name, method=selected.value, url=record.public_url)
        return record

    def get(self, name: str) -> TunnelRecord:
        """
        Look up a committed record.

        Raises:
            NoSuchTunnelError: If no readable record exists for name
        """
        validate_tunnel_name(name)
        record = self.store.get(name)
        if record is None:
            raise NoSuchTunnelError(name)
        return record

    def stop(self, name: str) -> bool:
        """
        Stop a tunnel and delete its record.

        The record is deleted even if backend teardown fails. A missing
        tunnel is not an error.

        Returns:
            True if a record existed, False if there was nothing to stop
        """
        validate_tunnel_name(name)
        with self.store.lock(name):
            try:
                record = self.get(name)
            except NoSuchTunnelError as e:
                # Removes a record file that exists but cannot be parsed
                self.store.delete(name)
                logger.warning("No tunnel found", name=name, error=str(e))
                return False
            try:
                self._teardown(record)
            finally:
                self.store.delete(name)
        logger.info("Tunnel stopped", name=name)
        return True

    def _teardown(self, record: TunnelRecord) -> None:
        try:
            self.launcher_for(record.method).stop(record)
        except TEARDOWN_ERRORS as e:
            logger.warning(
                "Backend teardown failed; removing record anyway",
                name=record.name,
                method=record.method.value,
                error=str(e),
            )

    def stop_all(self) -> int:
        """
        Tear down every backend and clear every record.

        Individual teardown failures are logged, never raised.

        Returns:
            Number of records cleared
        """
        logger.info("Stopping all tunnels")
        for method, launcher in self.launchers.items():
            try:
                launcher.reset()
            except NotInstalledError as e:
                logger.debug("Skipping backend reset", method=method.value, error=str(e))
            except TEARDOWN_ERRORS as e:
                logger.warning("Backend reset failed", method=method.value, error=str(e))
        cleared = self.store.clear()
        logger.info("All tunnels stopped", records=cleared)
        return cleared

    def list(self) -> list[TunnelRecord]:
        """Return every persisted record without probing backends."""
        return self.store.list()

    @staticmethod
    def liveness(record: TunnelRecord) -> str:
        """
        Report whether the record's backend process still runs.

        Routed tunnels share one process per tunnel resource, restarted on
        every routed start, so they are alive while some process serves the
        tunnel and their hostname is still in its ingress config.

        Returns:
            "alive", "dead", or "n/a" for backends without a process
        """
        if record.method == TunnelMethod.ROUTED_NAMED and record.tunnel_name:
            if not find_processes(named_tunnel_process_pattern(record.tunnel_name)):
                return "dead"
            if record.config_path and record.hostname:
                config = IngressConfig.load(Path(record.config_path))
                if config is None or record.hostname not in config.hostnames():
                    return "dead"
            return "alive"
        if record.pid is None:
            return "n/a"
        return "alive" if is_alive(record.pid) else "dead"
