"""
subcode-tunnel: public HTTPS URLs for local dev servers.

Exposes a local port through Tailscale Funnel, a Cloudflare named
tunnel or a Cloudflare quick tunnel, and tracks active tunnels on disk
so they can be listed and stopped from later invocations.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
