"""
File-per-session JSON store.

Each session lives in ``<root>/<id>.json``. Writers are short-lived hook
processes and the long-running dashboard, so no in-process lock can
serialise them. Every write goes to a temp file in the same directory and
is moved into place with ``os.replace``, which is atomic on POSIX: readers
see either the old record or the new one, never a mix.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agentwatch.errors import StoreUnavailableError
from agentwatch.models import SessionRecord, is_valid_session_id, now_ms

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"

# Fields a caller may set through upsert/update.
WRITABLE_FIELDS = frozenset({
    "pid",
    "cwd",
    "tmux_target",
    "window_name",
    "state",
    "current_action",
    "prompt_text",
})


class SessionStore:
    """Durable keyed store of SessionRecords, safe across OS processes."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    # ── Paths ───────────────────────────────────────────────

    def path_for(self, session_id: str) -> Path:
        """File path holding a session. Rejects ids that escape the root."""
        if not is_valid_session_id(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.root / f"{session_id}{RECORD_SUFFIX}"

    def ensure_root(self) -> None:
        """Create the store directory. Raises StoreUnavailableError on failure."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(str(self.root), e.strerror or str(e)) from e

    # ── Low-level I/O ───────────────────────────────────────

    def _write(self, record: SessionRecord) -> None:
        """
        Write a record atomically via temp file + rename.

        Raises:
            StoreUnavailableError: the directory refused the write (permissions, full disk).
        """
        self.ensure_root()
        path = self.path_for(record.id)
        # Leading dot and .tmp suffix keep temp files out of list().
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self.root, prefix=f".{record.id}.", suffix=".tmp"
            )
        except OSError as e:
            raise StoreUnavailableError(str(self.root), e.strerror or str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_path, path)
        except BaseException as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(e, OSError):
                raise StoreUnavailableError(str(self.root), e.strerror or str(e)) from e
            raise

    @staticmethod
    def _read(path: Path) -> SessionRecord:
        """
        Parse one record file.

        Raises:
            FileNotFoundError: the file vanished (concurrent delete).
            OSError: the file could not be read.
            ValueError: the file is not a valid record (includes ValidationError).
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Record is not an object: {path.name}")
        return SessionRecord.model_validate(data)

    def _load(self, session_id: str, heal: bool = False) -> SessionRecord | None:
        """Read a record, treating corrupt files as absent (and deleting them if heal)."""
        path = self.path_for(session_id)
        try:
            return self._read(path)
        except FileNotFoundError:
            return None
        except (ValueError, ValidationError) as e:
            logger.debug("Corrupt session record %s: %s", path.name, e)
            if heal:
                self._unlink(path)
            return None
        except OSError as e:
            logger.debug("Unreadable session record %s: %s", path.name, e)
            return None

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug("Failed to remove %s: %s", path.name, e)
            return False

    def _iter_paths(self) -> Iterator[Path]:
        self.ensure_root()
        try:
            names = sorted(os.listdir(self.root))
        except OSError as e:
            raise StoreUnavailableError(str(self.root), e.strerror or str(e)) from e
        for name in names:
            if name.endswith(RECORD_SUFFIX) and not name.startswith("."):
                yield self.root / name

    # ── Public API ──────────────────────────────────────────

    def get(self, session_id: str) -> SessionRecord | None:
        """Return the record, or None if absent or unreadable."""
        return self._load(session_id)

    def upsert(self, session_id: str, **fields: Any) -> SessionRecord:
        """
        Create a session or merge ``fields`` into the existing one.

        Fields not given keep their existing value (or the model default on
        create; state defaults to idle). ``last_update`` is always refreshed.
        """
        _check_fields(fields)
        existing = self._load(session_id, heal=True)
        data = existing.model_dump() if existing else {"id": session_id}
        data.update(fields)
        data["last_update"] = _next_timestamp(existing)
        record = SessionRecord.model_validate(data)
        self._write(record)
        return record

    def update(self, session_id: str, **fields: Any) -> SessionRecord | None:
        """
        Apply ``fields`` to an existing session.

        A no-op returning None when the session does not exist.
        """
        _check_fields(fields)
        existing = self._load(session_id, heal=True)
        if existing is None:
            return None
        data = existing.model_dump()
        data.update(fields)
        data["last_update"] = _next_timestamp(existing)
        record = SessionRecord.model_validate(data)
        self._write(record)
        return record

    def delete(self, session_id: str) -> bool:
        """Remove a session. Idempotent; returns True if a file was removed."""
        return self._unlink(self.path_for(session_id))

    def list(self) -> list[SessionRecord]:
        """
        All readable sessions, in no particular order.

        Records that vanish or fail to parse mid-scan are skipped.

        Raises:
            StoreUnavailableError: the root directory cannot be created or listed.
        """
        records = []
        for path in self._iter_paths():
            try:
                records.append(self._read(path))
            except FileNotFoundError:
                continue
            except (OSError, ValueError, ValidationError) as e:
                logger.debug("Skipping session file %s: %s", path.name, e)
        return records

    def delete_where(self, predicate: Callable[[int], bool]) -> list[str]:
        """
        Delete every session whose pid satisfies ``predicate``.

        Matches are collected from a full scan before anything is deleted.
        Returns the deleted session ids.
        """
        doomed = [record.id for record in self.list() if predicate(record.pid)]
        return [session_id for session_id in doomed if self.delete(session_id)]

    def purge_corrupt(self) -> list[str]:
        """Delete record files that no longer parse. Returns their file names."""
        corrupt = []
        for path in self._iter_paths():
            try:
                self._read(path)
            except (ValueError, ValidationError) as e:
                logger.info("Removing corrupt session file %s: %s", path.name, e)
                corrupt.append(path)
            except OSError:
                continue
        return [path.name for path in corrupt if self._unlink(path)]

    def cleanup_stale(self, is_alive: Callable[[int], bool]) -> list[str]:
        """
        Maintenance scan: delete corrupt files and sessions whose pid is gone.

        Liveness is checked once per distinct pid over a complete scan before
        anything is deleted. Sessions with pid 0 are never removed here; only
        a session-end event clears them. Returns the removed ids/file names.
        """
        removed = self.purge_corrupt()
        pids = {record.pid for record in self.list() if record.pid > 0}
        dead = {pid for pid in pids if not is_alive(pid)}
        if dead:
            for session_id in self.delete_where(dead.__contains__):
                logger.info("Removed session %s (process gone)", session_id)
                removed.append(session_id)
        return removed


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise TypeError(f"Unknown session fields: {', '.join(sorted(unknown))}")


def _next_timestamp(existing: SessionRecord | None) -> int:
    now = now_ms()
    if existing is not None and existing.last_update > now:
        return existing.last_update
    return now
