"""Process-table helpers: liveness probes and agent pid discovery."""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

MAX_ANCESTRY_DEPTH = 10


def is_alive(pid: int) -> bool:
    """
    Check if a process with the given pid still exists.

    Sends signal 0, which probes the process table without delivering
    anything. Non-positive pids are never reported alive.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except PermissionError:
        # Exists, but owned by someone else
        return True
    except (OSError, OverflowError, ValueError):
        return False
    return True


def _ps(pid: int) -> tuple[int, str] | None:
    """Return (ppid, command line) for a pid, or None if ps can't see it."""
    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", "ppid=,args="],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("ps failed for pid %d: %s", pid, e)
        return None
    line = result.stdout.strip()
    if result.returncode != 0 or not line:
        return None
    ppid_str, _, args = line.partition(" ")
    try:
        ppid = int(ppid_str)
    except ValueError:
        return None
    return ppid, args.strip()


def ancestry(pid: int, max_depth: int = MAX_ANCESTRY_DEPTH) -> list[tuple[int, str]]:
    """Walk up the process tree from ``pid``: [(pid, args), (parent, args), ...]."""
    chain: list[tuple[int, str]] = []
    for _ in range(max_depth):
        if pid <= 1:
            break
        info = _ps(pid)
        if info is None:
            break
        ppid, args = info
        chain.append((pid, args))
        pid = ppid
    return chain


def find_agent_pid(
    start_pid: int | None = None,
    agent_name: str = "claude",
    exclude: str = "agentwatch",
) -> int:
    """
    Find the agent process that spawned this hook.

    The hook runs as agent -> shell -> agentwatch, so walk up from our
    parent looking for a command line mentioning ``agent_name`` (but not
    our own ``exclude`` name). Returns 0 if not found.
    """
    start = os.getppid() if start_pid is None else start_pid
    for pid, args in ancestry(start):
        if agent_name in args and exclude not in args:
            logger.debug("Found %s at pid %d", agent_name, pid)
            return pid
    logger.debug("No %s process above pid %d", agent_name, start)
    return 0
