from agentwatch.store.json_store import SessionStore

__all__ = ["SessionStore"]
