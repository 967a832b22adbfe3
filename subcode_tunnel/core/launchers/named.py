"""
Cloudflare named tunnel launcher.

A named tunnel is a persistent cloudflared resource with stable custom
hostnames. One resource (named after the machine by default) serves
every tunnel name through ingress rules in a shared config file:

    {name}-{machine}.{domain}  ->  http://localhost:{port}

cloudflared does not hot-reload its config, so each start rewrites the
config and restarts the resource's process. That kill-then-restart is
not reentrant: callers serialize starts per tunnel name, and the whole
rewrite-restart-settle sequence is serialized per tunnel resource.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

from subcode_tunnel.constants import CLOUDFLARED_BIN
from subcode_tunnel.core.detector import CapabilityDetector
from subcode_tunnel.core.ingress import IngressConfig
from subcode_tunnel.core.launchers.base import TunnelLauncher
from subcode_tunnel.core.process import spawn_background, tail, terminate_matching
from subcode_tunnel.core.shell import run_command
from subcode_tunnel.core.store import file_lock
from subcode_tunnel.core.validation import get_safe_state_path, validate_tunnel_name
from subcode_tunnel.exceptions import (
    ConfigurationError,
    CredentialsMissingError,
    LaunchFailedError,
    NotAuthenticatedError,
)
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.config import TunnelSettings
from subcode_tunnel.models.tunnel import TunnelMethod, TunnelRecord

logger = get_logger(__name__)

CREATE_TIMEOUT = 30.0


def named_tunnel_process_pattern(tunnel_name: str) -> str:
    """Regex matching `cloudflared ... tunnel ... run <tunnel_name>`."""
    return rf"cloudflared.*\btunnel\b.*\brun\s+{re.escape(tunnel_name)}(\s|$)"


class NamedLauncher(TunnelLauncher):
    """Exposes a port as a hostname on a persistent cloudflared tunnel."""

    method = TunnelMethod.ROUTED_NAMED
    fallback = TunnelMethod.QUICK_EPHEMERAL

    def __init__(
        self,
        settings: TunnelSettings,
        detector: CapabilityDetector | None = None,
        **kwargs,
    ):
        """
        Initialize named tunnel launcher.

        Args:
            settings: Tunnel settings (domain, tunnel name override, paths)
            detector: Detector used to resolve the machine name
        """
        super().__init__(settings, **kwargs)
        self.detector = detector or CapabilityDetector(settings)

    def _fail(self, message: str, log_tail: str = "") -> LaunchFailedError:
        return LaunchFailedError(
            message, method=self.method.value, fallback=self._fallback_value, log_tail=log_tail
        )

    def _cloudflared(self, *args: str, timeout: float | None = None):
        return run_command(
            [CLOUDFLARED_BIN, *args],
            timeout=timeout or self.settings.probe_timeout,
            method=self.method.value,
        )

    def tunnel_name(self, machine_name: str) -> str:
        return validate_tunnel_name(self.settings.named_tunnel or machine_name)

    def hostname(self, name: str, machine_name: str) -> str:
        return f"{name}-{machine_name}.{self.settings.domain}".lower()

    def config_path(self, tunnel_name: str) -> Path:
        return get_safe_state_path(self.settings.state_dir, tunnel_name, "-config.yml")

    def start(self, local_port: int, name: str, **options: object) -> TunnelRecord:
        """
        Route {name}-{machine}.{domain} to local_port and (re)start the tunnel.

        Returns:
            Unsaved TunnelRecord

        Raises:
            ConfigurationError: If no domain is configured
            NotAuthenticatedError: If cloudflared is not logged in
            CredentialsMissingError: If the tunnel credentials file is absent
            LaunchFailedError: If a cloudflared command fails or the process dies
        """
        if not self.settings.domain:
            raise ConfigurationError(
                "CLOUDFLARE_TUNNEL_DOMAIN is required for named tunnels "
                "(e.g. export CLOUDFLARE_TUNNEL_DOMAIN=yourdomain.com)",
                method=self.method.value,
                fallback=self._fallback_value,
            )

        machine_name = self.detector.machine_name()
        tunnel_name = self.tunnel_name(machine_name)
        hostname = self.hostname(name, machine_name)
        logger.info(
            "Starting Cloudflare named tunnel",
            port=local_port,
            hostname=hostname,
            tunnel=tunnel_name,
        )

        tunnel_id = self.ensure_tunnel(tunnel_name)
        credentials = self.credentials_file(tunnel_id)
        self.ensure_dns_route(tunnel_name, hostname)

        config_path = self.config_path(tunnel_name)
        log_path = get_safe_state_path(self.settings.state_dir, tunnel_name, ".log")

        # Held through the settle check so a concurrent start on the same
        # tunnel cannot restart the process mid-check.
        with file_lock(self._ingress_lock(tunnel_name)):
            config = self.write_ingress(
                config_path, tunnel_name, credentials, hostname, local_port
            )
            self.stop_running(tunnel_name)
            process = spawn_background(
                [CLOUDFLARED_BIN, "tunnel", "--config", str(config_path), "run", tunnel_name],
                log_path,
            )

            self.sleep(self.settings.settle_time)
            if process.poll() is not None:
                if config.remove(hostname):
                    config.save(config_path)
                raise self._fail(
                    f"Tunnel process died. Check log: {log_path}", log_tail=tail(log_path)
                )

        url = f"https://{hostname}"
        logger.info("Cloudflare named tunnel created", url=url, pid=process.pid)
        return TunnelRecord(
            name=name,
            method=self.method,
            local_port=local_port,
            public_url=url,
            pid=process.pid,
            hostname=hostname,
            tunnel_name=tunnel_name,
            config_path=str(config_path),
            log_path=str(log_path),
        )

    def _ingress_lock(self, tunnel_name: str) -> Path:
        return get_safe_state_path(self.settings.state_dir / "locks", tunnel_name, ".ingress.lock")

    def ensure_tunnel(self, tunnel_name: str) -> str:
        """
        Create the tunnel resource if it does not exist.

        Returns:
            Tunnel ID
        """
        tunnel_id = self._find_tunnel_id(tunnel_name)
        if tunnel_id:
            return tunnel_id

        logger.info("Creating tunnel", tunnel=tunnel_name)
        result = self._cloudflared("tunnel", "create", tunnel_name, timeout=CREATE_TIMEOUT)
        if result.returncode != 0:
            raise self._fail(f"Failed to create tunnel '{tunnel_name}': {result.stderr.strip()}")

        tunnel_id = self._find_tunnel_id(tunnel_name)
        if not tunnel_id:
            raise self._fail(f"Could not find tunnel ID for '{tunnel_name}'")
        return tunnel_id

    def _find_tunnel_id(self, tunnel_name: str) -> str | None:
        result = self._cloudflared("tunnel", "list", "--output", "json")
        if result.returncode != 0:
            raise NotAuthenticatedError(
                "cloudflared is not authenticated (run `cloudflared tunnel login`)",
                method=self.method.value,
                fallback=self._fallback_value,
            )
        try:
            tunnels = json.loads(result.stdout or "[]") or []
        except json.JSONDecodeError:
            raise self._fail("Unexpected output from `cloudflared tunnel list`") from None
        for tunnel in tunnels:
            if tunnel.get("name") == tunnel_name:
                return tunnel.get("id")
        return None

    def credentials_file(self, tunnel_id: str) -> Path:
        """
        Locate the tunnel's credentials file.

        Raises:
            CredentialsMissingError: If the file does not exist
        """
        path = Path(self.settings.cloudflared_dir).expanduser() / f"{tunnel_id}.json"
        if not path.is_file():
            raise CredentialsMissingError(
                f"Credentials file not found: {path}",
                method=self.method.value,
                fallback=self._fallback_value,
            )
        return path

    def ensure_dns_route(self, tunnel_name: str, hostname: str) -> None:
        """Route hostname to the tunnel; an existing route is not an error."""
        result = self._cloudflared("tunnel", "route", "dns", tunnel_name, hostname)
        if result.returncode != 0:
            logger.info("DNS route may already exist, continuing", hostname=hostname)

    def write_ingress(
        self,
        config_path: Path,
        tunnel_name: str,
        credentials: Path,
        hostname: str,
        local_port: int,
    ) -> IngressConfig:
        """Replace hostname's ingress rule in the tunnel's config file."""
        config = IngressConfig.load(config_path) or IngressConfig(
            tunnel=tunnel_name, credentials_file=str(credentials)
        )
        config.tunnel = tunnel_name
        config.credentials_file = str(credentials)
        config.upsert(hostname, f"http://localhost:{local_port}")
        config.save(config_path)
        return config

    def stop_running(self, tunnel_name: str) -> None:
        """Stop any process serving tunnel_name and wait before restarting."""
        stopped = terminate_matching(named_tunnel_process_pattern(tunnel_name))
        if stopped:
            logger.info("Restarting tunnel to apply new configuration", pids=stopped)
            self.sleep(self.settings.restart_delay)

    def stop(self, record: TunnelRecord) -> None:
        """
        Remove the record's ingress rule.

        The tunnel process keeps running: it may serve other names.
        """
        if not record.tunnel_name or not record.hostname:
            return
        config_path = Path(record.config_path) if record.config_path else self.config_path(
            record.tunnel_name
        )
        logger.info(
            "Removing hostname from tunnel", hostname=record.hostname, tunnel=record.tunnel_name
        )
        with file_lock(self._ingress_lock(record.tunnel_name)):
            config = IngressConfig.load(config_path)
            if config is None:
                return
            if config.remove(record.hostname):
                config.save(config_path)

    def reset(self) -> None:
        """Terminate every named cloudflared tunnel process."""
        stopped = terminate_matching(r"cloudflared.*\btunnel\b.*\brun\b")
        logger.info("Stopped named tunnel processes", pids=stopped)
