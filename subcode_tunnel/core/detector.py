"""
Backend capability detection.

Probes which tunneling backends are installed and signed in, resolves
the machine name used in routed hostnames, and recommends a method in
fixed priority order:

1. routed_named    - cloudflared authenticated and a domain configured
2. overlay_funnel  - tailscale connected
3. quick_ephemeral - always available, needs no account
"""

from __future__ import annotations

import json
import socket
from typing import Any

from subcode_tunnel.constants import CLOUDFLARED_BIN, FUNNEL_PORTS, TAILSCALE_BIN
from subcode_tunnel.core.shell import is_installed, run_command
from subcode_tunnel.exceptions import TunnelError
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.config import TunnelSettings
from subcode_tunnel.models.tunnel import (
    CapabilityReport,
    OverlayStatus,
    RoutedStatus,
    TunnelMethod,
)

logger = get_logger(__name__)

DEFAULT_MACHINE_NAME = "dev"


def recommend_method(
    overlay_status: OverlayStatus, routed_status: RoutedStatus, domain: str
) -> TunnelMethod:
    """Pick the preferred method for the given backend states."""
    if routed_status == RoutedStatus.AUTHENTICATED and domain:
        return TunnelMethod.ROUTED_NAMED
    if overlay_status == OverlayStatus.READY:
        return TunnelMethod.OVERLAY_FUNNEL
    return TunnelMethod.QUICK_EPHEMERAL


def tailscale_status(timeout: float) -> dict[str, Any] | None:
    """
    Read `tailscale status --json`.

    Returns:
        Parsed status, or None when tailscale is missing, fails or times out
    """
    try:
        result = run_command([TAILSCALE_BIN, "status", "--json"], timeout=timeout)
    except TunnelError as e:
        logger.debug("tailscale status unavailable", error=str(e))
        return None
    # tailscale exits non-zero when logged out but still prints the JSON
    try:
        status = json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.debug("tailscale status not JSON", returncode=result.returncode)
        return None
    return status if isinstance(status, dict) else None


def overlay_dns_name(status: dict[str, Any] | None) -> str:
    """This node's MagicDNS name without the trailing dot, or ""."""
    if not status:
        return ""
    return ((status.get("Self") or {}).get("DNSName") or "").rstrip(".")


class CapabilityDetector:
    """
    Detects available tunneling backends.

    Holds no state between calls; each detect() re-probes the system.
    """

    def __init__(self, settings: TunnelSettings):
        """
        Initialize detector.

        Args:
            settings: Tunnel settings (machine name and domain overrides, timeouts)
        """
        self.settings = settings

    def detect(self) -> CapabilityReport:
        """
        Probe all backends and build a capability report.

        Returns:
            CapabilityReport with a recommended method
        """
        installed = is_installed(TAILSCALE_BIN)
        status = tailscale_status(self.settings.probe_timeout) if installed else None
        overlay = self._overlay_status(installed, status)
        routed = self.routed_status()
        domain = self.settings.domain
        report = CapabilityReport(
            machine_name=self._machine_name(status),
            overlay_status=overlay,
            routed_status=routed,
            routed_domain=domain,
            recommended_method=recommend_method(overlay, routed, domain),
            funnel_ports=(
                self._available_funnel_ports(status) if overlay == OverlayStatus.READY else []
            ),
        )
        logger.debug(
            "Detected capabilities",
            overlay=overlay.value,
            routed=routed.value,
            recommended=report.recommended_method.value,
        )
        return report

    def machine_name(self) -> str:
        """
        Resolve the machine name: override, then tailscale hostname, then OS hostname.
        """
        if self.settings.machine_name:
            return self.settings.machine_name
        status = None
        if is_installed(TAILSCALE_BIN):
            status = tailscale_status(self.settings.probe_timeout)
        return self._machine_name(status)

    def _machine_name(self, status: dict[str, Any] | None) -> str:
        if self.settings.machine_name:
            return self.settings.machine_name

        ts_name = ((status or {}).get("Self") or {}).get("HostName")
        if ts_name:
            return ts_name

        hostname = socket.gethostname().split(".")[0]
        return hostname or DEFAULT_MACHINE_NAME

    def _overlay_status(self, installed: bool, status: dict[str, Any] | None) -> OverlayStatus:
        if not installed:
            return OverlayStatus.NOT_INSTALLED

        backend_state = (status or {}).get("BackendState")
        if backend_state == "Running":
            return OverlayStatus.READY
        if backend_state == "NeedsLogin":
            return OverlayStatus.NEEDS_LOGIN
        return OverlayStatus.NOT_CONNECTED

    def routed_status(self) -> RoutedStatus:
        """Check whether cloudflared is installed and holds an origin certificate."""
        if not is_installed(CLOUDFLARED_BIN):
            return RoutedStatus.NOT_INSTALLED
        try:
            result = run_command(
                [CLOUDFLARED_BIN, "tunnel", "list"], timeout=self.settings.probe_timeout
            )
        except TunnelError as e:
            logger.debug("cloudflared tunnel list failed", error=str(e))
            return RoutedStatus.NOT_AUTHENTICATED
        if result.returncode == 0:
            return RoutedStatus.AUTHENTICATED
        return RoutedStatus.NOT_AUTHENTICATED

    def _available_funnel_ports(self, status: dict[str, Any] | None) -> list[int]:
        """
        Funnel ports not yet configured on this node.

        Returns:
            Free ports among 443/8443/10000; all of them if every port is
            taken (they can be reconfigured); [] if the node has no DNS name
        """
        host = overlay_dns_name(status)
        if not host:
            return []

        try:
            result = run_command(
                [TAILSCALE_BIN, "funnel", "status", "--json"],
                timeout=self.settings.probe_timeout,
            )
            funnel_config = json.loads(result.stdout or "{}")
        except (TunnelError, json.JSONDecodeError):
            funnel_config = {}

        configured = _configured_funnel_targets(funnel_config)
        available = [
            port
            for port in FUNNEL_PORTS
            if f"{host}:{port}" not in configured
            and not (port == 443 and host in configured)
        ]
        return available or list(FUNNEL_PORTS)


def _configured_funnel_targets(funnel_config: Any) -> set[str]:
    """Collect "host:port" keys from `tailscale funnel status --json` output."""
    if not isinstance(funnel_config, dict):
        return set()
    targets: set[str] = set()
    for section in ("AllowFunnel", "Web"):
        entries = funnel_config.get(section) or {}
        if isinstance(entries, dict):
            targets.update(entries.keys())
    # Older releases keyed the status directly by host[:port]
    targets.update(key for key in funnel_config if isinstance(key, str) and "." in key)
    return targets
