"""Configuration management for agentwatch."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


AGENTWATCH_DIR = Path(os.environ.get("AGENTWATCH_HOME", Path.home() / ".agentwatch"))
CONFIG_FILE = AGENTWATCH_DIR / "config.yaml"
SESSIONS_DIR = AGENTWATCH_DIR / "sessions"
LOG_DIR = AGENTWATCH_DIR / "logs"


class StoreConfig(BaseModel):
    """Session store settings."""

    sessions_dir: str | None = None  # Defaults to ~/.agentwatch/sessions


class ReconcileConfig(BaseModel):
    """Reconciliation loop timers (seconds)."""

    pane_check_interval: float = 2.0
    cleanup_interval: float = 5.0
    pane_timeout: float = 1.0
    check_panes: bool = True


class DetectionConfig(BaseModel):
    """Markers used to spot interruptions in captured pane text."""

    busy_markers: list[str] = Field(
        default_factory=lambda: ["Esc to cancel", "Esc to interrupt"]
    )
    separator_prefix: str = "─────"
    interaction_glyphs: list[str] = Field(default_factory=lambda: ["●", "❯"])
    interrupted_marker: str = "Interrupted"
    declined_marker: str = "User declined to answer"
    scan_window: int = 15
    tail_lines: int = 5


class ServerConfig(BaseModel):
    """HTTP server settings."""

    port: int = 9384
    bind: str = "127.0.0.1"
    stream_interval: float = 0.5


class DashboardConfig(BaseModel):
    """Terminal dashboard settings."""

    refresh_interval: float = 0.5
    show_working_dir: bool = True


class AgentWatchConfig(BaseModel):
    """Root configuration model."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)

    @property
    def sessions_dir(self) -> Path:
        if self.store.sessions_dir:
            return Path(self.store.sessions_dir).expanduser()
        return SESSIONS_DIR


def ensure_dirs() -> None:
    """Create agentwatch directories if they don't exist."""
    AGENTWATCH_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> AgentWatchConfig:
    """Load configuration from ~/.agentwatch/config.yaml, falling back to defaults."""
    raw = load_yaml(path or CONFIG_FILE)
    return AgentWatchConfig(**raw)


def save_default_config(path: Path | None = None) -> Path:
    """Write default config to ~/.agentwatch/config.yaml."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    config = AgentWatchConfig()
    with open(path, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return path


def load_yaml(path: Path) -> dict[str, Any]:
    """Safely load a YAML file, returning empty dict on failure."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}
