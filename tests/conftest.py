"""Shared fixtures."""

import pytest

from agentwatch.models import TerminalTarget
from agentwatch.store.json_store import SessionStore


@pytest.fixture
def store(tmp_path):
    """An isolated session store."""
    return SessionStore(tmp_path / "sessions")


@pytest.fixture
def target():
    return TerminalTarget(session="main", window=1, pane=0)


class FakeTmux:
    """In-memory stand-in for TmuxClient."""

    def __init__(self, panes=None, current=None, window_name=None, pane_pids=None):
        self.panes = panes or {}
        self.current = current
        self.window_name = window_name
        self.pane_pids = pane_pids or []
        self.captured = []

    def current_target(self):
        return self.current

    def current_window_name(self):
        return self.window_name

    def capture_pane(self, target):
        self.captured.append(target)
        return self.panes.get(str(target))

    def pane_title(self, target):
        return None

    def list_panes(self):
        return list(self.pane_pids)

    def target_for_pids(self, pids):
        wanted = set(pids)
        for t, pid in self.pane_pids:
            if pid in wanted:
                return t
        return None


@pytest.fixture
def fake_tmux():
    return FakeTmux()
