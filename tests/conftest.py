"""
pytest fixtures and configuration for subcode-tunnel tests.
"""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from subcode_tunnel.config import Config, reset_config
from subcode_tunnel.core.store import TunnelStore
from subcode_tunnel.models.config import TunnelSettings

# Store original environment variables before any tests run
_ORIG_ENV = os.environ.copy()

ENV_VARS_TO_CLEAR = [
    "LOG_LEVEL",
    "TUNNEL_MACHINE_NAME",
    "TUNNEL_FUNNEL_SUDO",
    "CLOUDFLARE_TUNNEL_DOMAIN",
    "CLOUDFLARE_TUNNEL_NAME",
    "CLOUDFLARED_CONFIG_DIR",
    "SUBCODE_TUNNEL_STATE_DIR",
]


@pytest.fixture(autouse=True, scope="session")
def clean_test_environment() -> None:  # type: ignore[misc]
    """
    Clean environment for entire test session.

    Prevents the user's own tunnel configuration from leaking into tests.
    """
    for var in ENV_VARS_TO_CLEAR:
        os.environ.pop(var, None)

    yield


@pytest.fixture(autouse=True)
def reset_global_config() -> None:  # type: ignore[misc]
    """
    Reset global config singleton and environment variables around each test.
    """
    reset_config()

    yield

    reset_config()

    pytest_vars = {"PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_XDIST_WORKER_COUNT"}
    added_vars = (set(os.environ.keys()) - set(_ORIG_ENV.keys())) - pytest_vars
    for var in added_vars:
        os.environ.pop(var, None)
    for var in set(_ORIG_ENV.keys()) & set(os.environ.keys()):
        if os.environ[var] != _ORIG_ENV[var]:
            os.environ[var] = _ORIG_ENV[var]
    for var in ENV_VARS_TO_CLEAR:
        os.environ.pop(var, None)


@pytest.fixture(autouse=True)
def prevent_env_file_loading() -> None:  # type: ignore[misc]
    """
    Prevent loading of .env files during tests.
    """
    with patch.object(Config, "_load_env_file", return_value=None):
        yield


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Temporary tunnel state directory."""
    path = tmp_path / "tunnels"
    path.mkdir()
    return path


@pytest.fixture
def settings(state_dir: Path, tmp_path: Path) -> TunnelSettings:
    """
    Tunnel settings pointing at temporary directories.

    Waits are zeroed so launchers never actually sleep.
    """
    cloudflared_dir = tmp_path / ".cloudflared"
    cloudflared_dir.mkdir()
    return TunnelSettings(
        machine_name="devbox",
        domain="example.com",
        state_dir=state_dir,
        cloudflared_dir=cloudflared_dir,
        funnel_sudo=False,
        probe_timeout=1.0,
        quick_timeout=3.0,
        poll_interval=1.0,
        settle_time=0.0,
        restart_delay=0.0,
    )


@pytest.fixture
def store(state_dir: Path) -> TunnelStore:
    """Tunnel store in the temporary state directory."""
    return TunnelStore(state_dir)


@pytest.fixture
def no_sleep() -> MagicMock:
    """Recording replacement for time.sleep."""
    return MagicMock()


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    """Build a fake subprocess.CompletedProcess."""
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


@pytest.fixture
def make_completed():
    """Factory for fake subprocess results."""
    return completed
