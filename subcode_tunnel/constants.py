"""
Constants for subcode-tunnel.

Named values for ports, timeouts and backend command lines used
throughout the launchers and the allocator.
"""

# Port allocation
PORT_SCAN_RANGE = 100
MAX_PORT = 65535
DEFAULT_BASE_PORT = 3000

# Overlay funnel
DEFAULT_FUNNEL_PORT = 443
FUNNEL_PORTS = (443, 8443, 10000)

# Timeouts (in seconds)
PROBE_TIMEOUT = 10.0
QUICK_TUNNEL_TIMEOUT = 30.0
QUICK_TUNNEL_POLL_INTERVAL = 1.0
NAMED_TUNNEL_SETTLE_TIME = 5.0
NAMED_TUNNEL_RESTART_DELAY = 2.0
PROCESS_TERMINATE_TIMEOUT = 5.0

# Lines of backend log shown when a launch fails
LOG_TAIL_LINES = 20

# Catch-all service terminating every ingress rule list
INGRESS_CATCH_ALL_SERVICE = "http_status:404"

# Binaries
TAILSCALE_BIN = "tailscale"
CLOUDFLARED_BIN = "cloudflared"

# Exit Codes (for CLI commands)
EXIT_ERROR = 1

__all__ = [
    "CLOUDFLARED_BIN",
    "DEFAULT_BASE_PORT",
    "DEFAULT_FUNNEL_PORT",
    "EXIT_ERROR",
    "FUNNEL_PORTS",
    "INGRESS_CATCH_ALL_SERVICE",
    "LOG_TAIL_LINES",
    "MAX_PORT",
    "NAMED_TUNNEL_RESTART_DELAY",
    "NAMED_TUNNEL_SETTLE_TIME",
    "PORT_SCAN_RANGE",
    "PROBE_TIMEOUT",
    "PROCESS_TERMINATE_TIMEOUT",
    "QUICK_TUNNEL_POLL_INTERVAL",
    "QUICK_TUNNEL_TIMEOUT",
    "TAILSCALE_BIN",
]
