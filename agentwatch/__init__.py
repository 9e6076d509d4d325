"""agentwatch — live status dashboard for concurrent coding-agent sessions."""

__version__ = "0.1.0"
