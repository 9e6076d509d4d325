"""Read-only tmux queries used for session discovery and reconciliation."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable, Mapping

from agentwatch.models import TerminalTarget

logger = logging.getLogger(__name__)

TARGET_FORMAT = "#{session_name}:#{window_index}.#{pane_index}"


class TmuxClient:
    """
    Best-effort wrapper around the tmux CLI.

    Every call has a hard timeout (tmux commands can hang) and every failure,
    including tmux not being installed or not running, comes back as None
    or an empty list rather than an exception.
    """

    def __init__(self, timeout: float = 1.0, env: Mapping[str, str] | None = None):
        self.timeout = timeout
        self.env = os.environ if env is None else env

    def in_tmux(self) -> bool:
        """True when the current process is running inside a tmux pane."""
        return bool(self.env.get("TMUX"))

    def _run(self, *args: str) -> str | None:
        try:
            result = subprocess.run(
                ["tmux", *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.debug("tmux not installed")
            return None
        except subprocess.TimeoutExpired:
            logger.debug("tmux %s timed out after %.1fs", args[0], self.timeout)
            return None
        except OSError as e:
            logger.debug("tmux %s failed: %s", args[0], e)
            return None
        if result.returncode != 0:
            logger.debug("tmux %s exited %d: %s", args[0], result.returncode, result.stderr.strip())
            return None
        return result.stdout

    def current_target(self) -> TerminalTarget | None:
        """The pane this process runs in, or None outside tmux."""
        if not self.in_tmux():
            return None
        out = self._run("display-message", "-p", TARGET_FORMAT)
        if not out:
            return None
        try:
            return TerminalTarget.parse(out)
        except ValueError:
            return None

    def current_window_name(self) -> str | None:
        """Name of the window this process runs in, or None outside tmux."""
        if not self.in_tmux():
            return None
        out = self._run("display-message", "-p", "#{window_name}")
        return (out.strip() or None) if out else None

    def capture_pane(self, target: TerminalTarget) -> str | None:
        """Visible text of a pane, or None if it can't be captured."""
        return self._run("capture-pane", "-p", "-t", str(target))

    def pane_title(self, target: TerminalTarget) -> str | None:
        out = self._run("display-message", "-p", "-t", str(target), "#{pane_title}")
        return (out.strip() or None) if out else None

    def list_panes(self) -> list[tuple[TerminalTarget, int]]:
        """Every pane on the tmux server with the pid of its root process."""
        out = self._run("list-panes", "-a", "-F", f"{TARGET_FORMAT}\t#{{pane_pid}}")
        if not out:
            return []
        panes = []
        for line in out.splitlines():
            target_str, _, pid_str = line.rpartition("\t")
            try:
                panes.append((TerminalTarget.parse(target_str), int(pid_str)))
            except ValueError:
                continue
        return panes

    def target_for_pids(self, pids: Iterable[int]) -> TerminalTarget | None:
        """Find the pane whose root process is any of ``pids``."""
        wanted = set(pids)
        if not wanted:
            return None
        for target, pane_pid in self.list_panes():
            if pane_pid in wanted:
                return target
        return None
