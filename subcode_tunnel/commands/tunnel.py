"""
Tunnel commands.

This module provides the detect, start, stop, stop-all, list and
find-port commands. Command results (URLs, JSON, port numbers) go to
stdout; status messages go to stderr.
"""

import json

import typer
from pydantic import ValidationError

from subcode_tunnel.config import get_config
from subcode_tunnel.constants import DEFAULT_BASE_PORT, EXIT_ERROR
from subcode_tunnel.core.detector import CapabilityDetector
from subcode_tunnel.core.orchestrator import TunnelOrchestrator
from subcode_tunnel.core.ports import find_available_port
from subcode_tunnel.exceptions import (
    InvalidTunnelNameError,
    LaunchFailedError,
    NoPortAvailableError,
    TunnelError,
)
from subcode_tunnel.logging import get_logger
from subcode_tunnel.models.config import TunnelSettings
from subcode_tunnel.models.tunnel import TunnelRecord

logger = get_logger(__name__)

app = typer.Typer(help="Manage public tunnels to local ports")


def _load_settings() -> TunnelSettings:
    """Build settings from config, exiting with a one-line error if they are invalid."""
    try:
        return get_config().tunnel_settings()
    except ValidationError as e:
        message = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
    except ValueError as e:
        message = str(e)
    logger.error("Invalid configuration", error=message)
    typer.echo(f"❌ Invalid configuration: {message}", err=True)
    raise typer.Exit(EXIT_ERROR)


def _get_orchestrator() -> TunnelOrchestrator:
    return TunnelOrchestrator(_load_settings())


def _report_failure(error: TunnelError) -> None:
    """Explain a failed start: backend, reason and what to try next."""
    backend = f"{error.method} " if error.method else ""
    typer.echo(f"❌ {backend}failed: {error}", err=True)
    if isinstance(error, LaunchFailedError) and error.log_tail:
        typer.echo(error.log_tail.rstrip(), err=True)
    if error.fallback:
        typer.echo(f"   Try another method: --method={error.fallback}", err=True)


@app.command()
def detect():
    """
    Check available tunneling methods.

    Prints a JSON capability report with the recommended method.
    """
    report = CapabilityDetector(_load_settings()).detect()
    typer.echo(json.dumps(report.model_dump(mode="json"), indent=2))


@app.command()
def start(
    port: int = typer.Argument(..., min=1, max=65535, help="Local port to expose"),
    name: str | None = typer.Argument(None, help="Tunnel name (default: app-<port>)"),
    method: str | None = typer.Option(
        None,
        "--method",
        "-m",
        help="Force a method: overlay_funnel, routed_named, quick_ephemeral",
    ),
    funnel_port: int | None = typer.Option(
        None, "--funnel-port", help="Public port for overlay funnels (443, 8443, 10000)"
    ),
):
    """
    Create a tunnel to a local port and print its public URL.
    """
    orchestrator = _get_orchestrator()
    try:
        record = orchestrator.start(port, name=name, method=method, funnel_port=funnel_port)
    except TunnelError as e:
        logger.error("Failed to start tunnel", method=e.method, error=str(e))
        _report_failure(e)
        raise typer.Exit(EXIT_ERROR) from None

    typer.echo(f"✅ Tunnel '{record.name}' created ({record.method.value})", err=True)
    typer.echo(record.public_url)


@app.command()
def stop(name: str = typer.Argument(..., help="Tunnel name")):
    """
    Stop a tunnel.

    Succeeds whether or not the tunnel exists.
    """
    try:
        stopped = _get_orchestrator().stop(name)
    except InvalidTunnelNameError as e:
        typer.echo(f"❌ Invalid tunnel name: {e}", err=True)
        raise typer.Exit(EXIT_ERROR) from None

    if stopped:
        typer.echo(f"✅ Tunnel '{name}' stopped", err=True)
    else:
        typer.echo(f"⚠️  No tunnel found with name: {name}", err=True)


@app.command("stop-all")
def stop_all():
    """
    Stop all tunnels and clear all tunnel state.
    """
    cleared = _get_orchestrator().stop_all()
    typer.echo(f"✅ All tunnels stopped ({cleared} record(s) cleared)", err=True)


def _render_table(records: list[TunnelRecord], statuses: list[str] | None = None) -> str:
    headers = ["NAME", "METHOD", "LOCAL", "PUBLIC"]
    rows = [[r.name, r.method.value, r.local_url, r.public_url] for r in records]
    if statuses is not None:
        headers.append("STATUS")
        for row, status in zip(rows, statuses, strict=True):
            row.append(status)

    widths = [max(len(str(cell)) for cell in column) for column in zip(headers, *rows)]
    lines = []
    for row in [headers, *rows]:
        lines.append("  ".join(str(cell).ljust(width) for cell, width in zip(row, widths)).rstrip())
    return "\n".join(lines)


@app.command("list")
def list_tunnels(
    verify: bool = typer.Option(
        False, "--verify", help="Also check whether each backend process is still running"
    ),
):
    """
    List active tunnels.

    Shows what is recorded on disk; use --verify to check process liveness.
    """
    orchestrator = _get_orchestrator()
    records = orchestrator.list()
    if not records:
        typer.echo("No active tunnels")
        return

    statuses = [orchestrator.liveness(r) for r in records] if verify else None
    typer.echo(_render_table(records, statuses))


@app.command("find-port")
def find_port(
    base: int = typer.Argument(DEFAULT_BASE_PORT, min=1, max=65535, help="First port to try"),
):
    """
    Find the next available port starting from BASE.
    """
    try:
        typer.echo(find_available_port(base))
    except NoPortAvailableError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(EXIT_ERROR) from None


