"""agentwatch CLI — command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from agentwatch import __version__

app = typer.Typer(
    name="agentwatch",
    help="Live status dashboard for concurrent coding-agent sessions.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"[bold cyan]agentwatch[/bold cyan] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Know which of your agent sessions needs you."""
    pass


# ── Hook Command ────────────────────────────────────────────


@app.command()
def hook(
    event: Optional[str] = typer.Argument(
        None,
        help="Event name (e.g. 'session-start', 'stop'). Read from the payload if omitted.",
    ),
    agent: str = typer.Option("claude", "--agent", "-a", help="Agent protocol of the payload."),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug detail to debug.log."),
):
    """
    Apply one agent lifecycle event (JSON on stdin) to the session store.

    Install as an agent hook, e.g.:
        agentwatch hook session-start
    """
    import logging

    from agentwatch.config import LOG_DIR, load_config
    from agentwatch.errors import AgentWatchError, UnknownEventError
    from agentwatch.hooks.handler import handle_hook
    from agentwatch.log import setup_file_logging
    from agentwatch.store.json_store import SessionStore
    from agentwatch.tmux.client import TmuxClient

    setup_file_logging(LOG_DIR, verbose)
    logger = logging.getLogger("agentwatch.hook")

    try:
        config = load_config()
        store = SessionStore(config.sessions_dir)
        tmux = TmuxClient(timeout=config.reconcile.pane_timeout)
        handle_hook(store, tmux, sys.stdin.read(), event_name=event, agent=agent)
    except UnknownEventError as e:
        logger.error("%s", e)
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    except (AgentWatchError, OSError) as e:
        # Never disturb the agent over a lost event
        logger.warning("Event %s dropped: %s", event, e)


# ── Dashboard & Server ──────────────────────────────────────


@app.command()
def tui(
    serve: bool = typer.Option(False, "--serve", help="Also start the HTTP server."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port."),
    host: Optional[str] = typer.Option(None, "--host", help="Server bind address."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
):
    """Run the live session dashboard."""
    import asyncio

    from agentwatch.config import load_config
    from agentwatch.dashboard import run_dashboard
    from agentwatch.log import setup_console_logging
    from agentwatch.reconcile.loop import ReconciliationLoop
    from agentwatch.snapshot import SnapshotReader
    from agentwatch.store.json_store import SessionStore

    setup_console_logging(verbose)
    config = load_config()
    store = SessionStore(config.sessions_dir)
    reader = SnapshotReader(store)
    loop = ReconciliationLoop.from_config(config, store)

    async def _run() -> None:
        if not serve:
            await run_dashboard(config, reader, loop)
            return

        import uvicorn

        from agentwatch.server.app import create_app

        # The server only reads; the dashboard owns reconciliation
        server = uvicorn.Server(uvicorn.Config(
            create_app(config, store, reconcile=False),
            host=host or config.server.bind,
            port=port or config.server.port,
            log_level="warning",
        ))
        server_task = asyncio.create_task(server.serve())
        try:
            await run_dashboard(config, reader, loop)
        finally:
            server.should_exit = True
            await server_task

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


@app.command("serve")
def serve_cmd(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port."),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (0.0.0.0 for LAN)."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
):
    """Start the HTTP server only (no dashboard)."""
    import uvicorn

    from agentwatch.config import load_config
    from agentwatch.log import setup_console_logging
    from agentwatch.server.app import create_app

    setup_console_logging(verbose)
    config = load_config()
    port = port or config.server.port
    host = host or config.server.bind

    console.print(f"\n[bold cyan]⚡ agentwatch server[/bold cyan]")
    console.print(f"  [dim]API:    http://{host}:{port}/api/sessions[/dim]")
    console.print(f"  [dim]Stream: http://{host}:{port}/api/sessions/stream[/dim]")
    console.print(f"  [dim]WS:     ws://{host}:{port}/ws[/dim]")
    console.print()

    uvicorn.run(create_app(config), host=host, port=port, log_level="warning")


# ── Store Commands ──────────────────────────────────────────


@app.command()
def sessions():
    """List current sessions, most urgent first."""
    from agentwatch.config import load_config
    from agentwatch.dashboard import render_sessions
    from agentwatch.snapshot import SnapshotReader
    from agentwatch.store.json_store import SessionStore

    config = load_config()
    snapshot = SnapshotReader(SessionStore(config.sessions_dir)).snapshot()
    if not snapshot:
        console.print("[dim]No active sessions.[/dim]")
        return
    console.print(render_sessions(snapshot, config.dashboard.show_working_dir))


@app.command()
def cleanup(
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
):
    """Remove sessions whose agent process has exited, and corrupt files."""
    from agentwatch.config import load_config
    from agentwatch.errors import StoreUnavailableError
    from agentwatch.log import setup_console_logging
    from agentwatch.process import is_alive
    from agentwatch.store.json_store import SessionStore

    setup_console_logging(verbose)
    config = load_config()
    try:
        removed = SessionStore(config.sessions_dir).cleanup_stale(is_alive)
    except StoreUnavailableError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed {len(removed)} stale session(s)")


@app.command()
def detect(
    file: Optional[Path] = typer.Argument(
        None, help="File with captured pane text (stdin if omitted)."
    ),
    target: Optional[str] = typer.Option(
        None, "--target", "-t", help="Capture this tmux pane instead (session:window.pane)."
    ),
):
    """Test the interruption detector against captured pane text."""
    from agentwatch.config import load_config
    from agentwatch.models import TerminalTarget
    from agentwatch.tmux.client import TmuxClient
    from agentwatch.tmux.detector import Markers, detect_interruption

    config = load_config()
    if target:
        try:
            pane = TerminalTarget.parse(target)
        except ValueError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(1)
        text = TmuxClient(timeout=config.reconcile.pane_timeout).capture_pane(pane)
        if text is None:
            console.print(f"[red]✗[/red] Cannot capture pane {pane}")
            raise typer.Exit(1)
    elif file is not None:
        text = file.read_text(encoding="utf-8", errors="replace")
    else:
        text = sys.stdin.read()

    result = detect_interruption(text, Markers.from_config(config.detection))
    if result is None:
        console.print("[yellow]No interruption detected.[/yellow]")
    else:
        console.print(f"[green]✓ DETECTED[/green] → {result.value}")


# ── Config Commands ─────────────────────────────────────────


config_app = typer.Typer(help="Manage agentwatch configuration.")
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init():
    """Create the default configuration file."""
    from agentwatch.config import CONFIG_FILE, ensure_dirs, save_default_config

    ensure_dirs()

    if CONFIG_FILE.exists():
        console.print(f"[yellow]Config already exists:[/yellow] {CONFIG_FILE}")
    else:
        path = save_default_config()
        console.print(f"[green]✓[/green] Created config: {path}")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from agentwatch.config import load_config

    config = load_config()
    console.print_json(data=config.model_dump())


@config_app.command("paths")
def config_paths():
    """Show where agentwatch keeps its files."""
    from agentwatch.config import AGENTWATCH_DIR, CONFIG_FILE, LOG_DIR, load_config

    table = Table(title="agentwatch — Paths")
    table.add_column("What", style="cyan")
    table.add_column("Path", style="green")
    table.add_row("Home", str(AGENTWATCH_DIR))
    table.add_row("Config", str(CONFIG_FILE))
    table.add_row("Sessions", str(load_config().sessions_dir))
    table.add_row("Logs", str(LOG_DIR))
    console.print(table)


if __name__ == "__main__":
    app()
