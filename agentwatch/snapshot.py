"""Snapshot reader — the prioritised session list consumers render."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from agentwatch.errors import StoreUnavailableError
from agentwatch.models import SessionRecord, TerminalTarget
from agentwatch.store.json_store import SessionStore

logger = logging.getLogger(__name__)


def sort_sessions(records: Iterable[SessionRecord]) -> list[SessionRecord]:
    """Permission, waiting, idle, busy; newest first within each band."""
    return sorted(records, key=lambda r: (r.state.priority, -r.last_update))


def deduplicate_by_target(records: Iterable[SessionRecord]) -> list[SessionRecord]:
    """
    Keep only the most recently updated session per tmux pane.

    Sessions without a pane are never collapsed into each other.
    """
    by_target: dict[TerminalTarget, SessionRecord] = {}
    untargeted: list[SessionRecord] = []
    for record in records:
        if record.tmux_target is None:
            untargeted.append(record)
            continue
        current = by_target.get(record.tmux_target)
        if current is None or record.last_update > current.last_update:
            by_target[record.tmux_target] = record
    return [*by_target.values(), *untargeted]


class SnapshotReader:
    """Read-only projection over a SessionStore."""

    def __init__(self, store: SessionStore):
        self.store = store

    def snapshot(self) -> list[SessionRecord]:
        """Deduplicated, prioritised sessions. Never raises; [] if the store is down."""
        try:
            records = self.store.list()
        except StoreUnavailableError as e:
            logger.debug("Snapshot skipped: %s", e)
            return []
        return sort_sessions(deduplicate_by_target(records))
