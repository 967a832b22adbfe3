"""
Pydantic models for tunnel records and capability reports.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_serializer, model_validator

from subcode_tunnel.exceptions import UnknownMethodError


class TunnelMethod(str, Enum):
    """Tunneling backend used for a tunnel."""

    OVERLAY_FUNNEL = "overlay_funnel"
    ROUTED_NAMED = "routed_named"
    QUICK_EPHEMERAL = "quick_ephemeral"

    @classmethod
    def parse(cls, value: "str | TunnelMethod") -> "TunnelMethod":
        """
        Resolve a method from its value or one of its backend aliases.

        Args:
            value: Method value such as "quick_ephemeral" or "cloudflare_quick"

        Returns:
            Matching TunnelMethod

        Raises:
            UnknownMethodError: If the value names no known method
        """
        if isinstance(value, cls):
            return value
        key = value.strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            pass
        if key in METHOD_ALIASES:
            return METHOD_ALIASES[key]
        valid = ", ".join(m.value for m in cls)
        raise UnknownMethodError(f"Unknown method: {value}. Available methods: {valid}")


METHOD_ALIASES: dict[str, TunnelMethod] = {
    "tailscale": TunnelMethod.OVERLAY_FUNNEL,
    "cloudflare": TunnelMethod.ROUTED_NAMED,
    "cloudflare_named": TunnelMethod.ROUTED_NAMED,
    "cloudflare_quick": TunnelMethod.QUICK_EPHEMERAL,
    "quick": TunnelMethod.QUICK_EPHEMERAL,
}


class OverlayStatus(str, Enum):
    NOT_INSTALLED = "not_installed"
    NEEDS_LOGIN = "needs_login"
    NOT_CONNECTED = "not_connected"
    READY = "ready"


class RoutedStatus(str, Enum):
    NOT_INSTALLED = "not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    AUTHENTICATED = "authenticated"


class TunnelRecord(BaseModel):
    """Persisted description of one active tunnel."""

    name: str = Field(description="Tunnel name")
    method: TunnelMethod = Field(description="Backend serving the tunnel")
    local_port: int = Field(ge=1, le=65535, description="Local port being exposed")
    public_url: str = Field(description="Public HTTPS URL")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Record creation timestamp"
    )

    # Spawned daemons (quick and routed)
    pid: int | None = Field(default=None, description="Backend process ID")

    # Overlay funnel
    funnel_port: int | None = Field(default=None, description="Public funnel port")
    overlay_host: str | None = Field(default=None, description="Overlay DNS name")

    # Routed tunnels
    hostname: str | None = Field(default=None, description="Routed public hostname")
    tunnel_name: str | None = Field(default=None, description="Named tunnel resource")

    config_path: str | None = Field(default=None, description="Routing config file")
    log_path: str | None = Field(default=None, description="Background process log")

    @model_validator(mode="after")
    def validate_ownership_handle(self) -> "TunnelRecord":
        """Each method must carry the handle needed to stop it."""
        if not self.public_url.startswith("https://"):
            raise ValueError(f"Tunnel '{self.name}' public_url must be an https URL")
        if self.method == TunnelMethod.OVERLAY_FUNNEL:
            if self.funnel_port is None or not self.overlay_host:
                raise ValueError(
                    f"Funnel tunnel '{self.name}' requires funnel_port and overlay_host."
                )
        elif self.method == TunnelMethod.ROUTED_NAMED:
            if not self.hostname or not self.tunnel_name:
                raise ValueError(
                    f"Routed tunnel '{self.name}' requires hostname and tunnel_name."
                )
        elif self.pid is None:
            raise ValueError(f"Quick tunnel '{self.name}' requires pid.")
        return self

    @field_serializer("created_at")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime fields to ISO format strings."""
        return value.isoformat()

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.local_port}"


class CapabilityReport(BaseModel):
    """Which backends are usable on this machine, and which one to prefer."""

    machine_name: str
    overlay_status: OverlayStatus
    routed_status: RoutedStatus
    routed_domain: str = ""
    recommended_method: TunnelMethod
    funnel_ports: list[int] = Field(default_factory=list)
