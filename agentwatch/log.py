"""Logging setup for the long-running commands and the hook entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

DEBUG_LOG_NAME = "debug.log"


def setup_console_logging(verbose: bool = False) -> None:
    """Route log records to stderr through rich (tui, serve, cleanup)."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    _install(handler, logging.DEBUG if verbose else logging.WARNING)


def setup_file_logging(log_dir: Path, verbose: bool = False) -> Path | None:
    """
    Append log records to ``log_dir/debug.log``.

    Used by the hook entrypoint, whose stdout/stderr belong to the agent.
    Returns the log path, or None if the directory is not writable.
    """
    path = log_dir / DEBUG_LOG_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        _install(logging.NullHandler(), logging.WARNING)
        return None
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(process)d %(name)s %(levelname)s %(message)s")
    )
    _install(handler, logging.DEBUG if verbose else logging.INFO)
    return path


def _install(handler: logging.Handler, level: int) -> None:
    root = logging.getLogger("agentwatch")
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.addHandler(handler)
    root.setLevel(level)
