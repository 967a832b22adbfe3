"""
Tunnel launchers, one per backend.
"""

from subcode_tunnel.core.launchers.base import TunnelLauncher
from subcode_tunnel.core.launchers.funnel import FunnelLauncher
from subcode_tunnel.core.launchers.named import NamedLauncher
from subcode_tunnel.core.launchers.quick import QuickLauncher

__all__ = [
    "FunnelLauncher",
    "NamedLauncher",
    "QuickLauncher",
    "TunnelLauncher",
]
