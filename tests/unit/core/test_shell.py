"""
Tests for backend command helpers.
"""

import subprocess
from unittest.mock import patch

import pytest

from subcode_tunnel.core.shell import is_installed, run_command, with_sudo
from subcode_tunnel.exceptions import CommandTimeoutError, LaunchTimeoutError, NotInstalledError


class TestIsInstalled:
    """Test binary detection."""

    def test_found_on_path(self):
        """Should report binaries shutil.which finds."""
        with patch("subcode_tunnel.core.shell.shutil.which", return_value="/usr/bin/tailscale"):
            assert is_installed("tailscale") is True

    def test_missing(self):
        """Should report missing binaries."""
        with patch("subcode_tunnel.core.shell.shutil.which", return_value=None):
            assert is_installed("tailscale") is False


class TestWithSudo:
    """Test sudo prefixing."""

    def test_prefixes_for_regular_user(self):
        """Should prefix sudo for non-root users."""
        with (
            patch("subcode_tunnel.core.shell.os.geteuid", return_value=1000),
            patch("subcode_tunnel.core.shell.is_installed", return_value=True),
        ):
            assert with_sudo(["tailscale", "funnel", "reset"]) == [
                "sudo",
                "tailscale",
                "funnel",
                "reset",
            ]

    def test_skipped_for_root(self):
        """Should not prefix sudo when already root."""
        with patch("subcode_tunnel.core.shell.os.geteuid", return_value=0):
            assert with_sudo(["tailscale", "funnel", "reset"]) == ["tailscale", "funnel", "reset"]

    def test_skipped_when_disabled(self):
        """Should not prefix sudo when disabled."""
        with patch("subcode_tunnel.core.shell.os.geteuid", return_value=1000):
            assert with_sudo(["tailscale"], enabled=False) == ["tailscale"]


class TestRunCommand:
    """Test command execution."""

    def test_returns_result_on_failure(self, make_completed):
        """Should not raise on a non-zero exit."""
        with patch(
            "subcode_tunnel.core.shell.subprocess.run",
            return_value=make_completed(1, "", "error"),
        ):
            result = run_command(["cloudflared", "tunnel", "list"])

        assert result.returncode == 1

    def test_missing_binary(self):
        """Should raise NotInstalledError naming the binary."""
        with patch("subcode_tunnel.core.shell.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(NotInstalledError) as exc_info:
                run_command(["cloudflared", "tunnel", "list"], method="routed_named")

        assert exc_info.value.binary == "cloudflared"
        assert exc_info.value.method == "routed_named"

    def test_missing_binary_behind_sudo(self):
        """Should name the wrapped binary, not sudo."""
        with patch("subcode_tunnel.core.shell.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(NotInstalledError) as exc_info:
                run_command(["sudo", "tailscale", "funnel", "reset"])

        assert exc_info.value.binary == "tailscale"

    def test_timeout(self):
        """Should raise CommandTimeoutError on timeout."""
        with patch(
            "subcode_tunnel.core.shell.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="tailscale", timeout=10),
        ):
            with pytest.raises(CommandTimeoutError) as exc_info:
                run_command(["tailscale", "status", "--json"], timeout=10)

        assert isinstance(exc_info.value, LaunchTimeoutError)
