"""Shared data models for agentwatch."""

from __future__ import annotations

import os
import re
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

SCHEMA_VERSION = 1

_TARGET_RE = re.compile(r"^(?P<session>.+):(?P<window>\d+)\.(?P<pane>\d+)$")


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def is_valid_session_id(session_id: str) -> bool:
    """True if the id can name a record file without escaping its directory."""
    return bool(session_id) and session_id not in (".", "..") and not any(
        sep in session_id for sep in ("/", os.sep, "\x00")
    )


class SessionState(str, Enum):
    """State of an agent session, as shown on the dashboard."""

    BUSY = "busy"
    IDLE = "idle"
    WAITING = "waiting"
    PERMISSION = "permission"

    @property
    def priority(self) -> int:
        """Sort rank: lower values need attention sooner."""
        return _PRIORITY[self]


_PRIORITY = {
    SessionState.PERMISSION: 1,
    SessionState.WAITING: 2,
    SessionState.IDLE: 3,
    SessionState.BUSY: 4,
}


class EventKind(str, Enum):
    """Lifecycle events understood by the reconciler."""

    SESSION_START = "session-start"
    USER_PROMPT_SUBMIT = "user-prompt-submit"
    PRE_TOOL_USE = "pre-tool-use"
    POST_TOOL_USE = "post-tool-use"
    POST_TOOL_USE_FAILURE = "post-tool-use-failure"
    STOP = "stop"
    PERMISSION_REQUEST = "permission-request"
    NOTIFICATION_IDLE = "notification-idle"
    NOTIFICATION_PERMISSION = "notification-permission"
    NOTIFICATION_ELICITATION = "notification-elicitation"
    SESSION_END = "session-end"


class TerminalTarget(BaseModel):
    """Locates a tmux pane: ``session:window.pane``."""

    model_config = ConfigDict(frozen=True)

    session: str
    window: int
    pane: int

    @classmethod
    def parse(cls, value: str) -> TerminalTarget:
        """Parse ``"main:1.0"`` into a target. Raises ValueError if malformed."""
        match = _TARGET_RE.match(value.strip())
        if not match:
            raise ValueError(f"Not a tmux target: {value!r}")
        return cls(
            session=match.group("session"),
            window=int(match.group("window")),
            pane=int(match.group("pane")),
        )

    def __str__(self) -> str:
        return f"{self.session}:{self.window}.{self.pane}"


class SessionRecord(BaseModel):
    """One live agent session as persisted in the store."""

    v: int = SCHEMA_VERSION
    id: str
    pid: int = 0  # 0 = unknown, never garbage-collected by liveness
    cwd: str = ""
    tmux_target: TerminalTarget | None = None
    window_name: str | None = None
    state: SessionState = SessionState.IDLE
    current_action: str | None = None
    prompt_text: str | None = None
    last_update: int = Field(default_factory=now_ms)

    @field_validator("tmux_target", mode="before")
    @classmethod
    def _parse_target(cls, value: Any) -> Any:
        if isinstance(value, str):
            return TerminalTarget.parse(value) if value else None
        return value

    @field_serializer("tmux_target")
    def _dump_target(self, target: TerminalTarget | None) -> str | None:
        return str(target) if target is not None else None

    def to_display_name(self) -> str:
        """Short label: window name, tmux target, or session id prefix."""
        if self.window_name:
            return self.window_name
        if self.tmux_target is not None:
            return str(self.tmux_target)
        return self.id[:8]


class HookEvent(BaseModel):
    """A single lifecycle event, normalised from any agent protocol."""

    kind: EventKind
    session_id: str
    cwd: str = ""
    tool_name: str | None = None
    tool_input: dict[str, Any] = Field(default_factory=dict)
    prompt_text: str | None = None

    # Filled in from the hook's environment, None when undeterminable.
    pid: int = 0
    tmux_target: TerminalTarget | None = None
    window_name: str | None = None
