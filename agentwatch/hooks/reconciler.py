"""Session state machine: one lifecycle event + existing record -> change.

Pure functions only; ``handler.apply_change`` performs the writes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentwatch.models import EventKind, HookEvent, SessionRecord, SessionState, TerminalTarget

_MCP_PREFIX_RE = re.compile(r"^mcp__[^_]+__")

COMMAND_PREVIEW_LEN = 30

THINKING = "Thinking..."
WAITING = "Waiting..."
WAITING_PERMISSION = "Waiting for permission"
WAITING_INPUT = "Waiting for input"


class ChangeType(str, Enum):
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class Change:
    """What a single event does to the store."""

    type: ChangeType
    session_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    # Other sessions on this pane are dropped (agent restarted in place)
    supersede: TerminalTarget | None = None


# Events that only touch an existing session: kind -> (state, action)
_UPDATES: dict[EventKind, tuple[SessionState, str | None]] = {
    EventKind.USER_PROMPT_SUBMIT: (SessionState.BUSY, THINKING),
    EventKind.POST_TOOL_USE: (SessionState.BUSY, None),
    EventKind.POST_TOOL_USE_FAILURE: (SessionState.BUSY, None),
    EventKind.STOP: (SessionState.IDLE, None),
    EventKind.PERMISSION_REQUEST: (SessionState.WAITING, WAITING),
    EventKind.NOTIFICATION_IDLE: (SessionState.IDLE, None),
    EventKind.NOTIFICATION_PERMISSION: (SessionState.PERMISSION, WAITING_PERMISSION),
    EventKind.NOTIFICATION_ELICITATION: (SessionState.WAITING, WAITING_INPUT),
}

# The session is back in the user's hands, or working: any stored question is stale
_CLEARS_PROMPT = {
    EventKind.USER_PROMPT_SUBMIT,
    EventKind.STOP,
    EventKind.NOTIFICATION_IDLE,
}


def format_tool_action(tool_name: str | None, tool_input: dict[str, Any] | None = None) -> str:
    """Short description of a tool call for the dashboard."""
    if not tool_name:
        return "Working..."
    tool_input = tool_input or {}
    name = _MCP_PREFIX_RE.sub("", tool_name)

    if name == "Bash":
        command = tool_input.get("command")
        if isinstance(command, str) and command:
            preview = command[:COMMAND_PREVIEW_LEN]
            suffix = "..." if len(command) > COMMAND_PREVIEW_LEN else ""
            return f"Bash: {preview}{suffix}"
    elif name in ("Read", "Edit", "Write"):
        file_path = tool_input.get("file_path")
        if isinstance(file_path, str) and file_path:
            base = file_path.rstrip("/").rsplit("/", 1)[-1] or file_path
            return f"{name}: {base}"
    elif name in ("Grep", "Glob"):
        return "Searching..."
    elif name in ("Task", "Agent"):
        return "Running agent..."

    return f"Running: {name}"


def _environment_fields(event: HookEvent) -> dict[str, Any]:
    """Terminal location from the hook environment, only where known."""
    fields: dict[str, Any] = {}
    if event.tmux_target is not None:
        fields["tmux_target"] = event.tmux_target
    if event.window_name is not None:
        fields["window_name"] = event.window_name
    return fields


def reconcile(event: HookEvent, existing: SessionRecord | None) -> Change:
    """
    Map one event onto the store.

    Events other than session start/end are no-ops for unknown sessions:
    hooks are fire-and-forget, so a lost SessionStart must not turn every
    later event into an error.
    """
    sid = event.session_id
    kind = event.kind

    if kind is EventKind.SESSION_END:
        return Change(ChangeType.DELETE, sid)

    if kind is EventKind.SESSION_START:
        fields = {
            "pid": event.pid,
            "cwd": event.cwd,
            "state": SessionState.IDLE,
            "current_action": None,
            "prompt_text": None,
            **_environment_fields(event),
        }
        return Change(ChangeType.UPSERT, sid, fields, supersede=event.tmux_target)

    if existing is None:
        return Change(ChangeType.NOOP, sid)

    if kind is EventKind.PRE_TOOL_USE:
        state, action = SessionState.BUSY, format_tool_action(event.tool_name, event.tool_input)
    else:
        state, action = _UPDATES[kind]

    fields = {"state": state, "current_action": action, **_environment_fields(event)}
    if kind in _CLEARS_PROMPT:
        fields["prompt_text"] = None
    elif event.prompt_text is not None:
        fields["prompt_text"] = event.prompt_text
    return Change(ChangeType.UPDATE, sid, fields)
