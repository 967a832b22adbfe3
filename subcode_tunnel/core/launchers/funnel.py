"""
Tailscale Funnel launcher.

Funnel forwarding is configured by a single synchronous command; there
is no dedicated process to supervise. The tunnel is identified by its
funnel port on this node's MagicDNS name.
"""

from __future__ import annotations

from subcode_tunnel.constants import FUNNEL_PORTS, TAILSCALE_BIN
from subcode_tunnel.core.detector import overlay_dns_name, tailscale_status
from subcode_tunnel.core.launchers.base import TunnelLauncher
from subcode_tunnel.core.shell import run_command, with_sudo
from subcode_tunnel.exceptions import (
    LaunchFailedError,
    NotAuthenticatedError,
    TunnelError,
)
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.tunnel import TunnelMethod, TunnelRecord

logger = get_logger(__name__)


def funnel_url(host: str, funnel_port: int) -> str:
    """Public URL for a funnel on host, omitting the default HTTPS port."""
    url = f"https://{host}"
    if funnel_port != 443:
        url = f"{url}:{funnel_port}"
    return url


class FunnelLauncher(TunnelLauncher):
    """Exposes a port through `tailscale funnel`."""

    method = TunnelMethod.OVERLAY_FUNNEL
    fallback = TunnelMethod.QUICK_EPHEMERAL

    def _tailscale(self, *args: str) -> list[str]:
        return with_sudo([TAILSCALE_BIN, *args], enabled=self.settings.funnel_sudo)

    def start(self, local_port: int, name: str, **options: object) -> TunnelRecord:
        """
        Enable a funnel from funnel_port to local_port.

        Args:
            local_port: Local port to expose
            name: Tunnel name
            funnel_port: Public port (443, 8443 or 10000; default from settings)

        Returns:
            Unsaved TunnelRecord

        Raises:
            NotAuthenticatedError: If the node has no MagicDNS name
            LaunchFailedError: If the funnel command fails
        """
        funnel_port = int(options.get("funnel_port") or self.settings.funnel_port)
        if funnel_port not in FUNNEL_PORTS:
            raise TunnelError(
                f"Funnel port must be one of {', '.join(map(str, FUNNEL_PORTS))}",
                method=self.method.value,
            )

        logger.info("Starting Tailscale funnel", port=local_port, funnel_port=funnel_port)

        host = overlay_dns_name(tailscale_status(self.settings.probe_timeout))
        if not host:
            raise NotAuthenticatedError(
                "Could not determine Tailscale hostname (is tailscale logged in?)",
                method=self.method.value,
                fallback=self._fallback_value,
            )

        result = run_command(
            self._tailscale("funnel", "--bg", f"--https={funnel_port}", str(local_port)),
            timeout=self.settings.probe_timeout,
            method=self.method.value,
        )
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise LaunchFailedError(
                f"Failed to start Tailscale funnel (may need sudo): {detail}",
                method=self.method.value,
                fallback=self._fallback_value,
            )

        url = funnel_url(host, funnel_port)
        logger.info("Tailscale funnel created", url=url)
        return TunnelRecord(
            name=name,
            method=self.method,
            local_port=local_port,
            public_url=url,
            funnel_port=funnel_port,
            overlay_host=host,
        )

    def stop(self, record: TunnelRecord) -> None:
        """Turn off the funnel on the record's port."""
        logger.info("Stopping Tailscale funnel", funnel_port=record.funnel_port)
        result = run_command(
            self._tailscale("funnel", f"--https={record.funnel_port}", "off"),
            timeout=self.settings.probe_timeout,
            method=self.method.value,
        )
        if result.returncode != 0:
            raise LaunchFailedError(
                f"Failed to disable funnel on port {record.funnel_port}: "
                f"{(result.stderr or result.stdout).strip()}",
                method=self.method.value,
            )

    def reset(self) -> None:
        """Remove every funnel and serve configuration on this node."""
        result = run_command(
            self._tailscale("funnel", "reset"),
            timeout=self.settings.probe_timeout,
            method=self.method.value,
        )
        if result.returncode != 0:
            raise LaunchFailedError(
                f"tailscale funnel reset failed: {(result.stderr or result.stdout).strip()}",
                method=self.method.value,
            )
