"""
CLI entry point for subcode-tunnel.

This module provides the main Typer CLI application with all commands
for managing tunnels to local dev servers.
"""

from typer import Typer

from subcode_tunnel.commands.tunnel import (
    detect,
    find_port,
    list_tunnels,
    start,
    stop,
    stop_all,
)
from subcode_tunnel.config import get_config
from subcode_tunnel.logging import get_logger, setup_logging

# Initialize configuration
config = get_config()

# Setup logging based on configuration
log_config = config.logging_config()
setup_logging(
    level=log_config.level,
    log_format=log_config.format,
    log_file=log_config.file,
    max_bytes=log_config.max_bytes,
    backup_count=log_config.backup_count,
)

logger = get_logger(__name__)

app = Typer(
    name="subcode-tunnel",
    help="Create public URLs for local dev servers using Tailscale Funnel or Cloudflare Tunnels",
    add_completion=True,
    no_args_is_help=True,
)

app.command(name="detect")(detect)
app.command(name="start")(start)
app.command(name="stop")(stop)
app.command(name="stop-all")(stop_all)
app.command(name="list")(list_tunnels)
app.command(name="find-port")(find_port)


if __name__ == "__main__":
    app()
