"""
Cloudflare quick tunnel launcher.

Quick tunnels need no account. cloudflared prints the random
trycloudflare.com hostname to its log while starting, so the launcher
polls the log with a bounded wait and kills the process if no URL shows
up in time. A failed launch never leaves a process behind.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path

from subcode_tunnel.constants import CLOUDFLARED_BIN
from subcode_tunnel.core.launchers.base import TunnelLauncher
from subcode_tunnel.core.process import (
    process_matches,
    spawn_background,
    tail,
    terminate_matching,
    terminate_process,
)
from subcode_tunnel.core.validation import get_safe_state_path
from subcode_tunnel.core.wait import Ready, wait_for
from subcode_tunnel.exceptions import LaunchFailedError, LaunchTimeoutError, NotInstalledError
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.tunnel import TunnelMethod, TunnelRecord

logger = get_logger(__name__)

# Quick tunnel hostname; api.trycloudflare.com appears in error messages
TUNNEL_URL_PATTERN = re.compile(r"https://(?!api\.)[a-z0-9\-]+\.trycloudflare\.com")

# Any cloudflared tunnel process (quick or named)
CLOUDFLARED_PROCESS_PATTERN = r"cloudflared.*\btunnel\b"


def parse_tunnel_url(output: str) -> str | None:
    """
    Parse tunnel URL from cloudflared output.

    Args:
        output: stdout/stderr from cloudflared process

    Returns:
        Tunnel URL if found, None otherwise
    """
    match = TUNNEL_URL_PATTERN.search(output)
    if match:
        return match.group(0)
    return None


class QuickLauncher(TunnelLauncher):
    """Exposes a port through an ephemeral `cloudflared tunnel --url`."""

    method = TunnelMethod.QUICK_EPHEMERAL

    def start(self, local_port: int, name: str, **options: object) -> TunnelRecord:
        """
        Spawn cloudflared and wait for its public URL.

        Returns:
            Unsaved TunnelRecord with the running process's pid

        Raises:
            NotInstalledError: If cloudflared is missing
            LaunchFailedError: If cloudflared exits before printing a URL
            LaunchTimeoutError: If no URL appears within the timeout
        """
        logger.info("Starting Cloudflare quick tunnel", port=local_port)
        log_path = get_safe_state_path(self.settings.state_dir, name, ".log")

        try:
            process = spawn_background(
                [CLOUDFLARED_BIN, "tunnel", "--url", f"http://localhost:{local_port}"],
                log_path,
            )
        except NotInstalledError as e:
            e.method = self.method.value
            raise

        try:
            result = wait_for(
                lambda: self._poll_url(process, log_path),
                timeout=self.settings.quick_timeout,
                interval=self.settings.poll_interval,
                sleep=self.sleep,
            )
        except BaseException:
            self._kill(process)
            raise

        if not isinstance(result, Ready):
            self._kill(process)
            raise LaunchTimeoutError(
                f"Failed to get tunnel URL within {self.settings.quick_timeout:g}s. "
                f"Check log: {log_path}",
                method=self.method.value,
            )

        url = result.value
        logger.info("Cloudflare quick tunnel created", url=url, pid=process.pid)
        return TunnelRecord(
            name=name,
            method=self.method,
            local_port=local_port,
            public_url=url,
            pid=process.pid,
            log_path=str(log_path),
        )

    def _poll_url(self, process: subprocess.Popen, log_path: Path) -> str | None:
        try:
            url = parse_tunnel_url(log_path.read_text(errors="replace"))
        except FileNotFoundError:
            url = None
        if url:
            return url
        if process.poll() is not None:
            raise LaunchFailedError(
                f"cloudflared exited with code {process.returncode} before reporting a URL",
                method=self.method.value,
                log_tail=tail(log_path),
            )
        return None

    def _kill(self, process: subprocess.Popen) -> None:
        if process.poll() is None:
            terminate_process(process.pid)

    def stop(self, record: TunnelRecord) -> None:
        """Terminate the record's cloudflared process."""
        if record.pid is None:
            return
        logger.info("Stopping Cloudflare quick tunnel", pid=record.pid)
        if process_matches(record.pid, CLOUDFLARED_PROCESS_PATTERN):
            terminate_process(record.pid)
        else:
            logger.warning("Quick tunnel process already gone", pid=record.pid)

    def reset(self) -> None:
        """Terminate every cloudflared tunnel process."""
        stopped = terminate_matching(CLOUDFLARED_PROCESS_PATTERN)
        logger.info("Stopped cloudflared processes", pids=stopped)
