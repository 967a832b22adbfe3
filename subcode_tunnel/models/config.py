"""
Configuration models for subcode-tunnel.

This module contains Pydantic models for configuration validation.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from subcode_tunnel.constants import (
    DEFAULT_FUNNEL_PORT,
    FUNNEL_PORTS,
    NAMED_TUNNEL_RESTART_DELAY,
    NAMED_TUNNEL_SETTLE_TIME,
    PROBE_TIMEOUT,
    QUICK_TUNNEL_POLL_INTERVAL,
    QUICK_TUNNEL_TIMEOUT,
)


class TunnelSettings(BaseModel):
    """Settings consumed by the detector, the launchers and the store."""

    machine_name: str | None = Field(default=None, description="Machine name override")
    domain: str = Field(default="", description="Domain for named tunnels")
    named_tunnel: str | None = Field(default=None, description="Named tunnel resource override")

    state_dir: Path = Field(
        default=Path.home() / ".subcode" / "tunnels", description="Tunnel state directory"
    )
    cloudflared_dir: Path = Field(
        default=Path.home() / ".cloudflared", description="cloudflared credentials directory"
    )

    funnel_port: int = Field(default=DEFAULT_FUNNEL_PORT, description="Default funnel port")
    funnel_sudo: bool = Field(default=True, description="Prefix funnel commands with sudo")

    probe_timeout: float = Field(default=PROBE_TIMEOUT, gt=0)
    quick_timeout: float = Field(default=QUICK_TUNNEL_TIMEOUT, gt=0)
    poll_interval: float = Field(default=QUICK_TUNNEL_POLL_INTERVAL, ge=0)
    settle_time: float = Field(default=NAMED_TUNNEL_SETTLE_TIME, ge=0)
    restart_delay: float = Field(default=NAMED_TUNNEL_RESTART_DELAY, ge=0)

    @field_validator("funnel_port")
    @classmethod
    def validate_funnel_port(cls, value: int) -> int:
        if value not in FUNNEL_PORTS:
            raise ValueError(f"Funnel port must be one of {FUNNEL_PORTS}, got {value}")
        return value

    @field_validator("domain")
    @classmethod
    def strip_domain(cls, value: str) -> str:
        return value.strip().strip(".")


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (json or text)")
    file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=1048576, description="Max log file size in bytes")
    backup_count: int = Field(default=3, ge=0, description="Number of backup files")
