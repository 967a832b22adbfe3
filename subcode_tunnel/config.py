"""
Configuration management for subcode-tunnel.

This module provides a layered configuration system with priority:
1. CLI arguments
2. Environment variables
3. TOML config file (~/.subcode/tunnel.toml)
4. Defaults
"""

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, ClassVar

import toml

from subcode_tunnel.constants import (
    DEFAULT_FUNNEL_PORT,
    NAMED_TUNNEL_RESTART_DELAY,
    NAMED_TUNNEL_SETTLE_TIME,
    PROBE_TIMEOUT,
    QUICK_TUNNEL_POLL_INTERVAL,
    QUICK_TUNNEL_TIMEOUT,
)
from subcode_tunnel.models.config import LoggingConfig, TunnelSettings


def _to_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


class Config:
    """
    Configuration manager with layered priority system.

    Configuration is loaded from multiple sources with the following priority:
    1. CLI arguments (highest priority)
    2. Environment variables
    3. TOML config file
    4. Defaults (lowest priority)
    """

    DEFAULTS: ClassVar[dict[str, Any]] = {
        "tunnel": {
            "machine_name": "",
            "domain": "",
            "named_tunnel": "",
            "funnel_port": DEFAULT_FUNNEL_PORT,
            "funnel_sudo": True,
        },
        "paths": {
            "state_dir": "~/.subcode/tunnels",
            "cloudflared_dir": "~/.cloudflared",
        },
        "timeouts": {
            "probe": PROBE_TIMEOUT,
            "quick_tunnel": QUICK_TUNNEL_TIMEOUT,
            "poll_interval": QUICK_TUNNEL_POLL_INTERVAL,
            "settle": NAMED_TUNNEL_SETTLE_TIME,
            "restart_delay": NAMED_TUNNEL_RESTART_DELAY,
        },
        "logging": {
            "level": "INFO",
            "format": "text",
            "file": "~/.subcode/logs/tunnel.log",
            "max_bytes": 1048576,  # 1MB
            "backup_count": 3,
        },
    }

    CONFIG_PATH = Path.home() / ".subcode" / "tunnel.toml"

    def __init__(self, config_path: Path | None = None, env_file: Path | None = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to config file (defaults to ~/.subcode/tunnel.toml)
            env_file: Optional path to .env file (defaults to ./.env, then ~/.subcode/.env)
        """
        self.config_path = config_path or self.CONFIG_PATH
        self._config: dict[str, Any] = {}
        self._load_env_file(env_file)
        self._load()
        self._apply_env_overrides()
        self._expand_paths()

    def _load_env_file(self, env_file: Path | None) -> None:
        """
        Load environment variables from .env file.

        Variables already present in the environment are not overwritten.

        Args:
            env_file: Path to .env file, or None to auto-detect
        """
        if env_file is None:
            cwd_env = Path.cwd() / ".env"
            if cwd_env.exists():
                env_file = cwd_env
            else:
                home_env = Path.home() / ".subcode" / ".env"
                if home_env.exists():
                    env_file = home_env

        if env_file and env_file.exists():
            try:
                with env_file.open() as f:
                    for raw_line in f:
                        line = raw_line.strip()
                        if not line or line.startswith("#"):
                            continue
                        if "=" in line:
                            key, value = line.split("=", 1)
                            value = value.strip().strip('"').strip("'")
                            os.environ.setdefault(key.strip(), value)
            except OSError:
                pass  # Unreadable .env files are ignored

    def _load(self) -> None:
        """
        Load configuration from file.

        If config file doesn't exist, use defaults.
        """
        if self.config_path.exists():
            with self.config_path.open() as f:
                file_config = toml.load(f)
            self._merge_config(file_config)
        else:
            self._config = deepcopy(self.DEFAULTS)

    def _merge_config(self, new_config: dict[str, Any]) -> None:
        """
        Merge new configuration into existing config using deep merge.

        Args:
            new_config: New configuration dictionary to merge
        """
        self._config = self._deep_merge(deepcopy(self.DEFAULTS), new_config)

    def _deep_merge(
        self, base: dict[str, Any], update: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            update: Dictionary to merge into base

        Returns:
            Merged dictionary
        """
        result = deepcopy(base)

        for key, value in update.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables take precedence over config file values.
        Supported variables:
        - TUNNEL_MACHINE_NAME
        - CLOUDFLARE_TUNNEL_DOMAIN
        - CLOUDFLARE_TUNNEL_NAME
        - SUBCODE_TUNNEL_STATE_DIR
        - CLOUDFLARED_CONFIG_DIR
        - TUNNEL_FUNNEL_SUDO
        - LOG_LEVEL
        """
        env_mappings = {
            "TUNNEL_MACHINE_NAME": "tunnel.machine_name",
            "CLOUDFLARE_TUNNEL_DOMAIN": "tunnel.domain",
            "CLOUDFLARE_TUNNEL_NAME": "tunnel.named_tunnel",
            "SUBCODE_TUNNEL_STATE_DIR": "paths.state_dir",
            "CLOUDFLARED_CONFIG_DIR": "paths.cloudflared_dir",
            "TUNNEL_FUNNEL_SUDO": ("tunnel.funnel_sudo", _to_bool),
            "LOG_LEVEL": "logging.level",
        }

        for env_var, config_mapping in env_mappings.items():
            env_value = os.environ.get(env_var)
            if env_value is None:
                continue
            if isinstance(config_mapping, tuple):
                config_key, converter = config_mapping
                try:
                    env_value = converter(env_value)
                except (ValueError, TypeError):
                    continue
            else:
                config_key = config_mapping
            self.set(config_key, env_value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., "tunnel.domain")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., "tunnel.domain")
            value: Value to set
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    @property
    def tunnel(self) -> dict[str, Any]:
        """Get tunnel configuration section."""
        return self._config.get("tunnel", {})

    @property
    def paths(self) -> dict[str, Any]:
        """Get paths configuration section."""
        return self._config.get("paths", {})

    @property
    def timeouts(self) -> dict[str, Any]:
        """Get timeouts configuration section."""
        return self._config.get("timeouts", {})

    @property
    def logging(self) -> dict[str, Any]:
        """Get logging configuration section."""
        return self._config.get("logging", {})

    def tunnel_settings(self) -> TunnelSettings:
        """
        Build the typed settings passed to the detector, launchers and store.

        Empty strings mean "not set" and fall back to model defaults.

        Returns:
            Validated TunnelSettings
        """
        tunnel = self.tunnel
        paths = self.paths
        timeouts = self.timeouts
        return TunnelSettings(
            machine_name=tunnel.get("machine_name") or None,
            domain=tunnel.get("domain") or "",
            named_tunnel=tunnel.get("named_tunnel") or None,
            state_dir=Path(paths.get("state_dir", "~/.subcode/tunnels")),
            cloudflared_dir=Path(paths.get("cloudflared_dir", "~/.cloudflared")),
            funnel_port=int(tunnel.get("funnel_port", DEFAULT_FUNNEL_PORT)),
            funnel_sudo=bool(tunnel.get("funnel_sudo", True)),
            probe_timeout=float(timeouts.get("probe", PROBE_TIMEOUT)),
            quick_timeout=float(timeouts.get("quick_tunnel", QUICK_TUNNEL_TIMEOUT)),
            poll_interval=float(timeouts.get("poll_interval", QUICK_TUNNEL_POLL_INTERVAL)),
            settle_time=float(timeouts.get("settle", NAMED_TUNNEL_SETTLE_TIME)),
            restart_delay=float(timeouts.get("restart_delay", NAMED_TUNNEL_RESTART_DELAY)),
        )

    def logging_config(self) -> LoggingConfig:
        """Build the typed logging configuration."""
        return LoggingConfig.model_validate(self.logging)

    # Each entry is a tuple: (section, field)
    PATH_CONFIG_FIELDS: ClassVar[list[tuple[str, ...]]] = [
        ("logging", "file"),
        ("paths", "state_dir"),
        ("paths", "cloudflared_dir"),
    ]

    def _expand_paths(self) -> None:
        """
        Expand ~ and environment variables in file paths to absolute paths.

        Supports:
        - ~ (home directory)
        - $VAR or ${VAR} (environment variables)
        """
        for field_path in self.PATH_CONFIG_FIELDS:
            config_key = ".".join(field_path)

            path_value = self.get(config_key)
            if path_value and isinstance(path_value, str):
                expanded = os.path.expandvars(path_value)
                expanded = str(Path(expanded).expanduser())

                if expanded != path_value:
                    self.set(config_key, expanded)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """
    Get global configuration instance.

    Returns:
        Global Config instance
    """
    global _config  # noqa: PLW0603
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """
    Reset global config singleton for testing.

    WARNING: Do not use in production code. This is only for tests
    to ensure clean state between test runs.
    """
    global _config  # noqa: PLW0603
    _config = None
