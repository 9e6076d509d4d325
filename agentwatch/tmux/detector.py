"""Interruption detector — spots user cancellations in captured pane text.

The agent emits no lifecycle event when the user presses Esc mid-operation
or declines a question, so the only trace is what the pane shows. A Claude
Code pane looks like this near the bottom::

    ❯ user command            <- interaction start (● or ❯)
      ⎿  Interrupted ...      <- the signal
    ──────────────────────    <- top separator
    ❯ [user input]            <- prompt area
    ──────────────────────    <- bottom separator
      status line

Pane text is a rolling buffer: old interruption text stays visible until
it scrolls away, so only the block directly above the prompt counts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from agentwatch.config import DetectionConfig

# Regex to strip ANSI escape codes from terminal output
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]|\x1b\].*?\x07|\x1b\[.*?[@-~]")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text."""
    return _ANSI_RE.sub("", text)


class Interruption(str, Enum):
    """Kinds of user cancellation visible in a pane."""

    INTERRUPTED = "interrupted"
    DECLINED = "declined"


@dataclass(frozen=True)
class Markers:
    """Literal strings the detector looks for."""

    busy: tuple[str, ...] = ("Esc to cancel", "Esc to interrupt")
    separator: str = "─────"
    interaction_start: tuple[str, ...] = ("●", "❯")
    interrupted: str = "Interrupted"
    declined: str = "User declined to answer"
    scan_window: int = 15
    tail_lines: int = 5

    @classmethod
    def from_config(cls, config: DetectionConfig) -> Markers:
        return cls(
            busy=tuple(config.busy_markers),
            separator=config.separator_prefix,
            interaction_start=tuple(config.interaction_glyphs),
            interrupted=config.interrupted_marker,
            declined=config.declined_marker,
            scan_window=config.scan_window,
            tail_lines=config.tail_lines,
        )


DEFAULT_MARKERS = Markers()


def _find_separator(lines: list[str], start: int, separator: str) -> int:
    """Index of the last separator line at or above ``start``, or -1."""
    for i in range(start, -1, -1):
        if lines[i].startswith(separator):
            return i
    return -1


def detect_interruption(
    pane_text: str, markers: Markers = DEFAULT_MARKERS
) -> Interruption | None:
    """
    Detect a fresh interruption in the most recent interaction block.

    Returns None when the agent is visibly still working, when the pane has
    no prompt box, or when the nearest interaction start is further than
    ``markers.scan_window`` lines above the prompt.
    """
    if not pane_text:
        return None

    lines = strip_ansi(pane_text).split("\n")

    # Active UI (menu open or agent working) means visible interruptions are old
    tail = "\n".join(lines[-markers.tail_lines:])
    if any(marker in tail for marker in markers.busy):
        return None

    bottom = _find_separator(lines, len(lines) - 1, markers.separator)
    if bottom == -1:
        return None

    top = _find_separator(lines, bottom - 1, markers.separator)
    if top == -1:
        return None

    start = -1
    floor = max(0, top - markers.scan_window)
    for i in range(top - 1, floor - 1, -1):
        if lines[i].startswith(markers.interaction_start):
            start = i
            break
    if start == -1:
        return None

    block = "\n".join(lines[start + 1:top])
    if markers.interrupted in block:
        return Interruption.INTERRUPTED
    if markers.declined in block:
        return Interruption.DECLINED
    return None


@dataclass
class PaneDetector:
    """Binds a marker set to the detector, for callers that hold config."""

    markers: Markers = field(default_factory=Markers)

    def detect(self, pane_text: str | None) -> Interruption | None:
        if not pane_text:
            return None
        return detect_interruption(pane_text, self.markers)
