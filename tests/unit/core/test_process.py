"""
Tests for background process supervision.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from subcode_tunnel.core.process import (
    find_processes,
    is_alive,
    process_matches,
    spawn_background,
    tail,
    terminate_matching,
    terminate_process,
)
from subcode_tunnel.exceptions import NotInstalledError


def fake_proc(pid: int, cmdline: list[str]) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.info = {"pid": pid, "cmdline": cmdline}
    return proc


class TestSpawnBackground:
    """Test detached process spawning."""

    def test_redirects_output_to_log(self, tmp_path: Path):
        """Should detach the process and send its output to the log file."""
        log_path = tmp_path / "logs" / "app.log"
        mock_process = MagicMock(pid=999)

        with patch(
            "subcode_tunnel.core.process.subprocess.Popen", return_value=mock_process
        ) as mock_popen:
            process = spawn_background(["cloudflared", "tunnel"], log_path)

        assert process is mock_process
        assert log_path.exists()
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["start_new_session"] is True
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["stdin"] == subprocess.DEVNULL

    def test_missing_binary(self, tmp_path: Path):
        """Should raise NotInstalledError when the executable is missing."""
        with patch(
            "subcode_tunnel.core.process.subprocess.Popen", side_effect=FileNotFoundError()
        ):
            with pytest.raises(NotInstalledError, match="cloudflared is not installed"):
                spawn_background(["cloudflared", "tunnel"], tmp_path / "x.log")


class TestFindProcesses:
    """Test command-line matching."""

    def test_matches_by_regex(self):
        """Should return processes whose command line matches."""
        procs = [
            fake_proc(10, ["cloudflared", "tunnel", "--config", "c.yml", "run", "devbox"]),
            fake_proc(11, ["cloudflared", "tunnel", "--url", "http://localhost:3000"]),
            fake_proc(12, ["python", "server.py"]),
            fake_proc(13, []),
        ]

        with patch("subcode_tunnel.core.process.psutil.process_iter", return_value=procs):
            found = find_processes(r"cloudflared.*\btunnel\b.*\brun\b")

        assert [p.pid for p in found] == [10]

    def test_excludes_current_process(self):
        """Should never match the current process."""
        procs = [fake_proc(42, ["cloudflared", "tunnel", "run", "x"])]

        with (
            patch("subcode_tunnel.core.process.psutil.process_iter", return_value=procs),
            patch("subcode_tunnel.core.process.os.getpid", return_value=42),
        ):
            assert find_processes("cloudflared") == []


class TestTerminateProcess:
    """Test process termination."""

    def test_terminates_gracefully(self):
        """Should send SIGTERM and wait."""
        proc = MagicMock()

        with patch("subcode_tunnel.core.process.psutil.Process", return_value=proc):
            assert terminate_process(100) is True

        proc.terminate.assert_called_once()
        proc.kill.assert_not_called()

    def test_kills_after_timeout(self):
        """Should SIGKILL a process that ignores SIGTERM."""
        proc = MagicMock()
        proc.wait.side_effect = psutil.TimeoutExpired(5)

        with patch("subcode_tunnel.core.process.psutil.Process", return_value=proc):
            assert terminate_process(100) is True

        proc.kill.assert_called_once()

    def test_already_gone(self):
        """Should report False when the process does not exist."""
        with patch(
            "subcode_tunnel.core.process.psutil.Process",
            side_effect=psutil.NoSuchProcess(100),
        ):
            assert terminate_process(100) is False

    def test_terminate_matching_returns_pids(self):
        """Should terminate every match and report their pids."""
        procs = [fake_proc(10, ["cloudflared"]), fake_proc(11, ["cloudflared"])]

        with (
            patch("subcode_tunnel.core.process.find_processes", return_value=procs),
            patch(
                "subcode_tunnel.core.process.terminate_process", side_effect=[True, False]
            ) as mock_terminate,
        ):
            assert terminate_matching("cloudflared") == [10]

        assert mock_terminate.call_count == 2


class TestProcessQueries:
    """Test liveness and identity checks."""

    def test_is_alive_running(self):
        """Should report a running process as alive."""
        proc = MagicMock()
        proc.status.return_value = psutil.STATUS_RUNNING

        with patch("subcode_tunnel.core.process.psutil.Process", return_value=proc):
            assert is_alive(100) is True

    def test_is_alive_zombie(self):
        """Should report a zombie as dead."""
        proc = MagicMock()
        proc.status.return_value = psutil.STATUS_ZOMBIE

        with patch("subcode_tunnel.core.process.psutil.Process", return_value=proc):
            assert is_alive(100) is False

    def test_is_alive_missing(self):
        """Should report a missing process as dead."""
        with (
            patch(
                "subcode_tunnel.core.process.psutil.Process",
                side_effect=psutil.NoSuchProcess(100),
            ),
            patch("subcode_tunnel.core.process.psutil.pid_exists", return_value=False),
        ):
            assert is_alive(100) is False

    def test_process_matches(self):
        """Should check the command line of a live pid."""
        proc = MagicMock()
        proc.cmdline.return_value = ["cloudflared", "tunnel", "--url", "http://localhost:3000"]

        with patch("subcode_tunnel.core.process.psutil.Process", return_value=proc):
            assert process_matches(100, r"cloudflared.*\btunnel\b") is True
            assert process_matches(100, r"tailscale") is False

    def test_process_matches_reused_pid(self):
        """Should not match a pid that no longer exists."""
        with patch(
            "subcode_tunnel.core.process.psutil.Process",
            side_effect=psutil.NoSuchProcess(100),
        ):
            assert process_matches(100, "cloudflared") is False


class TestTail:
    """Test log tailing."""

    def test_returns_last_lines(self, tmp_path: Path):
        """Should return only the last N lines."""
        log = tmp_path / "x.log"
        log.write_text("".join(f"line {i}\n" for i in range(50)))

        result = tail(log, lines=3)

        assert result == "line 47\nline 48\nline 49\n"

    def test_missing_file(self, tmp_path: Path):
        """Should return an empty string for a missing log."""
        assert tail(tmp_path / "missing.log") == ""
