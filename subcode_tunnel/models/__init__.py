"""
Pydantic models for subcode-tunnel.
"""

from subcode_tunnel.models.config import LoggingConfig, TunnelSettings
from subcode_tunnel.models.tunnel import (
    CapabilityReport,
    OverlayStatus,
    RoutedStatus,
    TunnelMethod,
    TunnelRecord,
)

__all__ = [
    "CapabilityReport",
    "LoggingConfig",
    "OverlayStatus",
    "RoutedStatus",
    "TunnelMethod",
    "TunnelRecord",
    "TunnelSettings",
]
