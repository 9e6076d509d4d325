"""Agent hook payload adapters.

Each agent family sends its own JSON shape and event names. An adapter
turns one raw hook invocation into the protocol-agnostic ``HookEvent`` the
reconciler consumes, or None for events that carry no state change.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentwatch.errors import HookInputError, UnknownEventError
from agentwatch.models import EventKind, HookEvent, is_valid_session_id


class ClaudeHookPayload(BaseModel):
    """JSON object Claude Code writes to a hook's stdin."""

    model_config = ConfigDict(extra="ignore")

    session_id: str
    cwd: str = ""
    hook_event_name: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] = Field(default_factory=dict)
    notification_type: str | None = None
    message: str | None = None

    @field_validator("session_id")
    @classmethod
    def _check_session_id(cls, value: str) -> str:
        if not is_valid_session_id(value):
            raise ValueError(f"unusable session id {value!r}")
        return value


# Claude's own event names -> ours
CLAUDE_EVENTS: dict[str, EventKind] = {
    "SessionStart": EventKind.SESSION_START,
    "UserPromptSubmit": EventKind.USER_PROMPT_SUBMIT,
    "PreToolUse": EventKind.PRE_TOOL_USE,
    "PostToolUse": EventKind.POST_TOOL_USE,
    "PostToolUseFailure": EventKind.POST_TOOL_USE_FAILURE,
    "Stop": EventKind.STOP,
    "PermissionRequest": EventKind.PERMISSION_REQUEST,
    "SessionEnd": EventKind.SESSION_END,
}

CLAUDE_NOTIFICATIONS: dict[str, EventKind] = {
    "idle_prompt": EventKind.NOTIFICATION_IDLE,
    "permission_prompt": EventKind.NOTIFICATION_PERMISSION,
    "elicitation_dialog": EventKind.NOTIFICATION_ELICITATION,
}

_PROMPTING = {EventKind.NOTIFICATION_PERMISSION, EventKind.NOTIFICATION_ELICITATION}


def parse_event_kind(name: str) -> EventKind:
    """Look up an event by its hook-argument name (``session-start``, ...)."""
    try:
        return EventKind(name)
    except ValueError:
        raise UnknownEventError(f"Unknown event: {name}") from None


def _resolve_claude_kind(event_name: str | None, payload: ClaudeHookPayload) -> EventKind | None:
    if event_name:
        return parse_event_kind(event_name)

    hook_name = payload.hook_event_name
    if hook_name == "Notification":
        # Notification types we don't track are not errors
        return CLAUDE_NOTIFICATIONS.get(payload.notification_type or "")
    if hook_name in CLAUDE_EVENTS:
        return CLAUDE_EVENTS[hook_name]
    raise UnknownEventError(f"Unknown Claude hook event: {hook_name!r}")


def parse_claude(event_name: str | None, data: dict[str, Any]) -> HookEvent | None:
    """
    Build a HookEvent from a Claude Code hook payload.

    ``event_name`` is the argument the hook was installed with; when absent
    the payload's ``hook_event_name`` (and ``notification_type``) decide.
    """
    try:
        payload = ClaudeHookPayload.model_validate(data)
    except ValidationError as e:
        raise HookInputError(f"Invalid Claude hook payload: {e}") from e

    kind = _resolve_claude_kind(event_name, payload)
    if kind is None:
        return None

    return HookEvent(
        kind=kind,
        session_id=payload.session_id,
        cwd=payload.cwd,
        tool_name=payload.tool_name,
        tool_input=payload.tool_input,
        prompt_text=payload.message if kind in _PROMPTING else None,
    )


Adapter = Callable[[str | None, dict[str, Any]], HookEvent | None]

ADAPTERS: dict[str, Adapter] = {
    "claude": parse_claude,
}


def parse_hook_input(agent: str, event_name: str | None, raw: str) -> HookEvent | None:
    """
    Parse raw hook stdin for ``agent``.

    Raises:
        UnknownEventError: unknown agent or event name.
        HookInputError: stdin is not a JSON object the adapter accepts.
    """
    adapter = ADAPTERS.get(agent)
    if adapter is None:
        raise UnknownEventError(f"Unknown agent protocol: {agent}")

    # Validate the event name before touching stdin
    if event_name:
        parse_event_kind(event_name)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HookInputError(f"Hook input is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise HookInputError("Hook input is not a JSON object")
    return adapter(event_name, data)
