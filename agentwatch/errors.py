"""Exception types raised by agentwatch."""

from __future__ import annotations


class AgentWatchError(Exception):
    """Base class for agentwatch errors."""


class StoreUnavailableError(AgentWatchError):
    """The session store's root directory cannot be created or scanned."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Session store unavailable at {path}: {reason}")
        self.path = path
        self.reason = reason


class UnknownEventError(AgentWatchError):
    """An event kind or agent protocol this version does not understand."""


class HookInputError(AgentWatchError):
    """The hook payload could not be parsed."""
