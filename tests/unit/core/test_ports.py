"""
Tests for local port allocation.
"""

import subprocess
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import psutil
import pytest

from subcode_tunnel.core.ports import (
    find_available_port,
    is_port_listening,
    listening_ports,
    lsof_reports_listening,
)
from subcode_tunnel.exceptions import NoPortAvailableError


def conn(port: int, status: str = psutil.CONN_LISTEN):
    return SimpleNamespace(laddr=SimpleNamespace(ip="127.0.0.1", port=port), status=status)


class TestListeningPorts:
    """Test the socket-table probe."""

    def test_collects_listening_ports_only(self):
        """Should ignore established connections."""
        conns = [conn(3000), conn(3001, psutil.CONN_ESTABLISHED), conn(8080)]

        with patch("subcode_tunnel.core.ports.psutil.net_connections", return_value=conns):
            assert listening_ports() == {3000, 8080}

    def test_access_denied_returns_empty(self):
        """Should degrade to an empty set without permission."""
        with patch(
            "subcode_tunnel.core.ports.psutil.net_connections",
            side_effect=psutil.AccessDenied(),
        ):
            assert listening_ports() == set()


class TestLsofProbe:
    """Test the lsof probe."""

    def test_reports_listener(self, make_completed):
        """Should report a port lsof lists a pid for."""
        with patch(
            "subcode_tunnel.core.ports.subprocess.run",
            return_value=make_completed(0, "1234\n"),
        ) as mock_run:
            assert lsof_reports_listening(3000) is True

        args = mock_run.call_args[0][0]
        assert args[0] == "lsof"
        assert "-iTCP:3000" in args
        assert "-sTCP:LISTEN" in args

    def test_no_listener(self, make_completed):
        """Should report free when lsof finds nothing."""
        with patch(
            "subcode_tunnel.core.ports.subprocess.run", return_value=make_completed(1, "")
        ):
            assert lsof_reports_listening(3000) is False

    @pytest.mark.parametrize(
        "error", [FileNotFoundError(), subprocess.TimeoutExpired(cmd="lsof", timeout=5)]
    )
    def test_lsof_unavailable(self, error):
        """Should fall back to "not listening" when lsof cannot run."""
        with patch("subcode_tunnel.core.ports.subprocess.run", side_effect=error):
            assert lsof_reports_listening(3000) is False


class TestIsPortListening:
    """Test the combined probe."""

    def test_either_probe_marks_port_taken(self):
        """A port is taken if either probe sees a listener."""
        with (
            patch("subcode_tunnel.core.ports.listening_ports", return_value=set()),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=True),
        ):
            assert is_port_listening(3000) is True

        with (
            patch("subcode_tunnel.core.ports.listening_ports", return_value={3000}),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=False),
        ):
            assert is_port_listening(3000) is True

    def test_free_when_both_agree(self):
        """A port is free only if both probes agree."""
        with (
            patch("subcode_tunnel.core.ports.listening_ports", return_value=set()),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=False),
        ):
            assert is_port_listening(3000) is False


class TestFindAvailablePort:
    """Test port allocation."""

    def test_returns_base_when_free(self):
        """Should return the base port when nothing listens on it."""
        with (
            patch("subcode_tunnel.core.ports.listening_ports", return_value=set()),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=False),
        ):
            assert find_available_port(3000) == 3000

    def test_skips_taken_ports(self):
        """Should skip ports either probe reports as taken."""
        lsof = MagicMock(side_effect=lambda port: port == 3002)

        with (
            patch("subcode_tunnel.core.ports.listening_ports", return_value={3000, 3001}),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", lsof),
        ):
            assert find_available_port(3000) == 3003

        # The socket table already ruled out 3000 and 3001
        assert [c.args[0] for c in lsof.call_args_list] == [3002, 3003]

    def test_raises_when_range_exhausted(self):
        """Should raise when all 100 ports are taken."""
        with (
            patch(
                "subcode_tunnel.core.ports.listening_ports",
                return_value=set(range(3000, 3100)),
            ),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=False),
        ):
            with pytest.raises(NoPortAvailableError) as exc_info:
                find_available_port(3000)

        assert exc_info.value.start == 3000
        assert exc_info.value.end == 3100

    def test_range_clamped_at_max_port(self):
        """Should not scan beyond 65535."""
        with (
            patch(
                "subcode_tunnel.core.ports.listening_ports",
                return_value=set(range(65500, 65536)),
            ),
            patch("subcode_tunnel.core.ports.lsof_reports_listening", return_value=False),
        ):
            with pytest.raises(NoPortAvailableError):
                find_available_port(65500)

    def test_rejects_invalid_base(self):
        """Should reject a base outside 1-65535."""
        with pytest.raises(ValueError):
            find_available_port(70000)
