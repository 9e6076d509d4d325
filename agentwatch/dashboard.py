"""Terminal dashboard — live table of sessions, most urgent first."""

from __future__ import annotations

import asyncio
import os
import time

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from agentwatch.config import AgentWatchConfig
from agentwatch.models import SessionRecord, SessionState
from agentwatch.reconcile.loop import ReconciliationLoop
from agentwatch.snapshot import SnapshotReader

STATE_STYLES = {
    SessionState.PERMISSION: ("bold red", "●"),
    SessionState.WAITING: ("red", "●"),
    SessionState.IDLE: ("yellow", "○"),
    SessionState.BUSY: ("green", "◉"),
}


def _shorten_path(path: str, max_len: int = 40) -> str:
    """Shorten a path for display, replacing home dir with ~."""
    home = os.path.expanduser("~")
    if path.startswith(home):
        path = "~" + path[len(home):]
    if len(path) > max_len:
        parts = path.split(os.sep)
        if len(parts) > 3:
            path = os.sep.join([parts[0], "...", *parts[-2:]])
    return path


def _age(last_update: int, now: float | None = None) -> str:
    """Compact age of a timestamp in ms: ``12s``, ``4m``, ``2h``."""
    now = time.time() if now is None else now
    seconds = max(0, int(now - last_update / 1000))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    return f"{seconds // 3600}h"


def render_sessions(
    sessions: list[SessionRecord],
    show_working_dir: bool = True,
    now: float | None = None,
) -> Table:
    """Build the session table for one frame."""
    table = Table(title=f"agentwatch — {len(sessions)} session(s)", expand=True)
    table.add_column("", width=1)
    table.add_column("Session", style="cyan", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Action", overflow="ellipsis", no_wrap=True)
    if show_working_dir:
        table.add_column("Directory", style="dim", overflow="ellipsis", no_wrap=True)
    table.add_column("Updated", style="dim", justify="right")

    if not sessions:
        table.caption = "No active sessions."

    for s in sessions:
        style, glyph = STATE_STYLES[s.state]
        action = s.prompt_text or s.current_action or ""
        row = [
            Text(glyph, style=style),
            s.to_display_name(),
            Text(s.state.value, style=style),
            action,
        ]
        if show_working_dir:
            row.append(_shorten_path(s.cwd))
        row.append(_age(s.last_update, now))
        table.add_row(*row)
    return table


async def run_dashboard(
    config: AgentWatchConfig,
    reader: SnapshotReader,
    loop: ReconciliationLoop,
    console: Console | None = None,
) -> None:
    """Render until cancelled, with reconciliation running on its own timers."""
    console = console or Console()
    loop.start()
    try:
        with Live(console=console, screen=True, auto_refresh=False) as live:
            while True:
                table = render_sessions(reader.snapshot(), config.dashboard.show_working_dir)
                live.update(table, refresh=True)
                await asyncio.sleep(config.dashboard.refresh_interval)
    finally:
        await loop.stop()
