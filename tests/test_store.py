"""Tests for the file-per-session JSON store."""

import errno
import json
import os
import threading
from unittest.mock import patch

import pytest

from agentwatch.errors import StoreUnavailableError
from agentwatch.models import SessionState, TerminalTarget
from agentwatch.store.json_store import SessionStore


class TestUpsert:
    def test_creates_with_defaults(self, store):
        record = store.upsert("s1", pid=1234, cwd="/home/user/project")
        assert record.state == SessionState.IDLE
        assert record.tmux_target is None
        assert record.current_action is None

        loaded = store.get("s1")
        assert loaded == record
        assert loaded.pid == 1234
        assert loaded.cwd == "/home/user/project"

    def test_merges_into_existing(self, store, target):
        store.upsert("s1", pid=1234, cwd="/a", tmux_target=target, window_name="api")
        store.upsert("s1", cwd="/b", state=SessionState.BUSY)

        record = store.get("s1")
        assert record.cwd == "/b"
        assert record.state == SessionState.BUSY
        assert record.pid == 1234
        assert record.tmux_target == target
        assert record.window_name == "api"

    def test_explicit_none_clears(self, store):
        store.upsert("s1", current_action="Thinking...")
        store.upsert("s1", current_action=None)
        assert store.get("s1").current_action is None

    def test_accepts_target_string(self, store):
        store.upsert("s1", tmux_target="main:2.1")
        assert store.get("s1").tmux_target == TerminalTarget(session="main", window=2, pane=1)

    def test_refreshes_last_update(self, store):
        first = store.upsert("s1")
        second = store.upsert("s1", cwd="/x")
        assert second.last_update >= first.last_update

    def test_last_update_never_decreases(self, store):
        path = store.path_for("s1")
        store.upsert("s1")
        data = json.loads(path.read_text())
        future = data["last_update"] + 10_000_000
        data["last_update"] = future
        path.write_text(json.dumps(data))

        assert store.upsert("s1", cwd="/y").last_update == future

    def test_unknown_field_rejected(self, store):
        with pytest.raises(TypeError):
            store.upsert("s1", colour="blue")

    def test_writes_schema_version(self, store):
        store.upsert("s1")
        data = json.loads(store.path_for("s1").read_text())
        assert data["v"] == 1
        assert data["id"] == "s1"

    def test_replaces_corrupt_record(self, store):
        store.ensure_root()
        store.path_for("s1").write_text("{not json")
        record = store.upsert("s1", cwd="/fresh")
        assert record.cwd == "/fresh"
        assert store.get("s1").cwd == "/fresh"

    def test_no_temp_files_left(self, store):
        store.upsert("s1")
        store.upsert("s1", cwd="/z")
        assert sorted(os.listdir(store.root)) == ["s1.json"]


class TestUpdate:
    def test_updates_existing(self, store):
        store.upsert("s1", cwd="/a")
        record = store.update("s1", state=SessionState.WAITING, current_action="Waiting...")
        assert record.state == SessionState.WAITING
        assert store.get("s1").current_action == "Waiting..."
        assert store.get("s1").cwd == "/a"

    def test_missing_is_noop(self, store):
        assert store.update("ghost", state=SessionState.BUSY) is None
        assert store.get("ghost") is None
        assert store.list() == []

    def test_refreshes_last_update(self, store):
        created = store.upsert("s1")
        updated = store.update("s1", state=SessionState.BUSY)
        assert updated.last_update >= created.last_update

    def test_corrupt_record_deleted(self, store):
        store.ensure_root()
        path = store.path_for("s1")
        path.write_text('{"id": "s1", "state": "exploded"}')
        assert store.update("s1", state=SessionState.BUSY) is None
        assert not path.exists()


class TestGetDelete:
    def test_get_missing(self, store):
        assert store.get("nope") is None

    def test_get_corrupt_is_absent(self, store):
        store.ensure_root()
        store.path_for("s1").write_text("[]")
        assert store.get("s1") is None

    def test_delete_idempotent(self, store):
        store.upsert("s1")
        assert store.delete("s1") is True
        assert store.delete("s1") is False
        assert store.get("s1") is None

    def test_delete_missing_root(self, tmp_path):
        assert SessionStore(tmp_path / "never").delete("s1") is False

    @pytest.mark.parametrize("bad", ["", ".", "..", "../etc", "a/b"])
    def test_rejects_path_escape(self, store, bad):
        with pytest.raises(ValueError):
            store.path_for(bad)


class TestList:
    def test_lists_all(self, store):
        store.upsert("s1")
        store.upsert("s2")
        assert {r.id for r in store.list()} == {"s1", "s2"}

    def test_creates_missing_root(self, tmp_path):
        store = SessionStore(tmp_path / "a" / "b")
        assert store.list() == []
        assert store.root.is_dir()

    def test_skips_corrupt_and_foreign_files(self, store):
        store.upsert("good")
        (store.root / "bad.json").write_text("{")
        (store.root / "notes.txt").write_text("hello")
        (store.root / ".good.abc.tmp").write_text("{")
        assert [r.id for r in store.list()] == ["good"]

    def test_unavailable_root(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = SessionStore(blocker / "sessions")
        with pytest.raises(StoreUnavailableError):
            store.list()


class TestDeleteWhere:
    def test_deletes_matching_pids(self, store):
        store.upsert("a", pid=100)
        store.upsert("b", pid=200)
        store.upsert("c", pid=0)
        deleted = store.delete_where(lambda pid: pid in {100, 0})
        assert sorted(deleted) == ["a", "c"]
        assert [r.id for r in store.list()] == ["b"]

    def test_no_match(self, store):
        store.upsert("a", pid=100)
        assert store.delete_where(lambda pid: False) == []


class TestCleanupStale:
    def test_removes_dead_keeps_live_and_unknown(self, store):
        store.upsert("live", pid=os.getpid())
        store.upsert("dead", pid=999_999_999)
        store.upsert("unknown", pid=0)

        removed = store.cleanup_stale(lambda pid: pid == os.getpid())

        assert removed == ["dead"]
        assert {r.id for r in store.list()} == {"live", "unknown"}

    def test_liveness_checked_once_per_pid(self, store):
        store.upsert("a", pid=42)
        store.upsert("b", pid=42)
        calls = []

        def alive(pid):
            calls.append(pid)
            return True

        store.cleanup_stale(alive)
        assert calls == [42]

    def test_never_probes_pid_zero(self, store):
        store.upsert("unknown", pid=0)
        store.cleanup_stale(lambda pid: pytest.fail("pid 0 probed"))
        assert store.get("unknown") is not None

    def test_removes_corrupt_files(self, store):
        store.upsert("ok", pid=0)
        (store.root / "broken.json").write_text("{oops")
        removed = store.cleanup_stale(lambda pid: True)
        assert removed == ["broken.json"]
        assert not (store.root / "broken.json").exists()


class TestAtomicity:
    def test_reader_never_sees_torn_record(self, store):
        """Every observed record matches exactly one completed write."""
        store.upsert("s1", cwd="/0", current_action="step 0", prompt_text="0")
        stop = threading.Event()
        torn = []

        def writer():
            i = 1
            while not stop.is_set():
                store.upsert("s1", cwd=f"/{i}", current_action=f"step {i}", prompt_text=str(i))
                i += 1

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            for _ in range(300):
                for record in store.list():
                    n = record.prompt_text
                    if record.cwd != f"/{n}" or record.current_action != f"step {n}":
                        torn.append(record)
        finally:
            stop.set()
            thread.join()

        assert torn == []
        assert len(store.list()) == 1


class TestWriteFailures:
    def test_permission_denied_is_store_unavailable(self, store):
        store.ensure_root()
        denied = PermissionError(errno.EACCES, "Permission denied")
        with patch("tempfile.mkstemp", side_effect=denied):
            with pytest.raises(StoreUnavailableError, match="Permission denied"):
                store.upsert("s1")
        assert store.list() == []

    def test_failed_replace_leaves_no_temp_file(self, store):
        store.upsert("s1", cwd="/old")
        full = OSError(errno.ENOSPC, "No space left on device")
        with patch("os.replace", side_effect=full):
            with pytest.raises(StoreUnavailableError):
                store.upsert("s1", cwd="/new")
        assert sorted(os.listdir(store.root)) == ["s1.json"]
        assert store.get("s1").cwd == "/old"
