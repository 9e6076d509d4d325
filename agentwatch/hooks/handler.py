"""Hook entrypoint: parse one agent event and apply it to the store.

Runs once per lifecycle event in a short-lived process spawned by the
agent. There is no state beyond what the store holds.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from agentwatch.hooks.protocols import parse_hook_input
from agentwatch.hooks.reconciler import Change, ChangeType, reconcile
from agentwatch.models import EventKind, HookEvent
from agentwatch.process import ancestry, find_agent_pid
from agentwatch.store.json_store import SessionStore
from agentwatch.tmux.client import TmuxClient

logger = logging.getLogger(__name__)


def resolve_environment(
    event: HookEvent,
    tmux: TmuxClient,
    pid_finder: Callable[[], int] = find_agent_pid,
) -> HookEvent:
    """
    Fill in pid and terminal location from the hook's surroundings.

    The agent pid is only looked up on session start. When ``$TMUX`` is
    unavailable the pane is matched by the agent's process ancestry instead.
    Anything that can't be determined stays None so it won't overwrite a
    known value.
    """
    updates: dict = {}
    if event.kind is EventKind.SESSION_START:
        updates["pid"] = pid_finder()

    target = tmux.current_target()
    if target is None and updates.get("pid"):
        target = tmux.target_for_pids(pid for pid, _ in ancestry(updates["pid"]))
    if target is not None:
        updates["tmux_target"] = target
        updates["window_name"] = tmux.current_window_name()

    return event.model_copy(update=updates)


def apply_change(store: SessionStore, change: Change) -> None:
    """Perform a reconciler decision against the store."""
    if change.type is ChangeType.NOOP:
        logger.debug("No session %s; event ignored", change.session_id)
        return

    if change.type is ChangeType.DELETE:
        store.delete(change.session_id)
        return

    if change.type is ChangeType.UPSERT:
        if change.supersede is not None:
            for record in store.list():
                if record.id != change.session_id and record.tmux_target == change.supersede:
                    logger.info(
                        "Session %s supersedes %s on %s",
                        change.session_id, record.id, change.supersede,
                    )
                    store.delete(record.id)
        store.upsert(change.session_id, **change.fields)
        return

    store.update(change.session_id, **change.fields)


def handle_event(store: SessionStore, event: HookEvent) -> Change:
    """Reconcile an environment-resolved event against the store and apply it."""
    existing = store.get(event.session_id)
    change = reconcile(event, existing)
    apply_change(store, change)
    logger.info("%s %s -> %s", event.kind.value, event.session_id, change.type.value)
    return change


def handle_hook(
    store: SessionStore,
    tmux: TmuxClient,
    raw_input: str,
    event_name: str | None = None,
    agent: str = "claude",
    pid_finder: Callable[[], int] = find_agent_pid,
) -> Change | None:
    """
    Full hook pipeline: stdin payload -> HookEvent -> store.

    Returns None for events the agent sends that carry no state change.

    Raises:
        UnknownEventError: unknown event or agent; nothing is written.
        HookInputError: unparseable payload; nothing is written.
        StoreUnavailableError: the store directory can't be created.
    """
    event = parse_hook_input(agent, event_name, raw_input)
    if event is None:
        logger.debug("Ignoring untracked %s event", agent)
        return None
    event = resolve_environment(event, tmux, pid_finder)
    return handle_event(store, event)
