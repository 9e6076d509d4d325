"""Tests for the reconciliation loop."""

import asyncio
import errno
import logging
import time
from unittest.mock import patch

from agentwatch.config import AgentWatchConfig
from agentwatch.models import SessionState, TerminalTarget
from agentwatch.reconcile.loop import ReconciliationLoop
from agentwatch.store.json_store import SessionStore

from conftest import FakeTmux

SEP = "─" * 60

INTERRUPTED_PANE = "\n".join([
    "❯ refactor the parser",
    "● Reading parser.py",
    "  ⎿  Interrupted · What should Claude do instead?",
    SEP,
    "❯ ",
    SEP,
    "  ? for shortcuts",
])

WORKING_PANE = "\n".join([
    "❯ refactor the parser",
    "● Reading parser.py",
    "✻ Thinking… (esc to interrupt)",
    SEP,
    "❯ ",
    SEP,
    "  Esc to interrupt",
])


def make_loop(store, tmux, liveness=lambda pid: True, **kwargs):
    return ReconciliationLoop(store, tmux, liveness=liveness, **kwargs)


class TestSyncInterruptions:
    def test_interrupted_session_goes_idle(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, current_action="Read: parser.py", tmux_target=target)
        tmux = FakeTmux(panes={"main:1.0": INTERRUPTED_PANE})

        assert make_loop(store, tmux).sync_interruptions() == ["s1"]
        record = store.get("s1")
        assert record.state == SessionState.IDLE
        assert record.current_action is None
        assert record.prompt_text is None

    def test_permission_prompt_declined(self, store, target):
        store.upsert("s1", state=SessionState.PERMISSION, prompt_text="Allow?", tmux_target=target)
        pane = INTERRUPTED_PANE.replace(
            "  ⎿  Interrupted · What should Claude do instead?",
            "  ⎿  User declined to answer questions",
        )
        tmux = FakeTmux(panes={"main:1.0": pane})

        assert make_loop(store, tmux).sync_interruptions() == ["s1"]
        assert store.get("s1").state == SessionState.IDLE

    def test_working_pane_untouched(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, current_action="Thinking...", tmux_target=target)
        tmux = FakeTmux(panes={"main:1.0": WORKING_PANE})

        assert make_loop(store, tmux).sync_interruptions() == []
        assert store.get("s1").state == SessionState.BUSY

    def test_idle_sessions_not_captured(self, store, target):
        store.upsert("s1", state=SessionState.IDLE, tmux_target=target)
        tmux = FakeTmux(panes={"main:1.0": INTERRUPTED_PANE})

        make_loop(store, tmux).sync_interruptions()
        assert tmux.captured == []

    def test_untargeted_sessions_skipped(self, store):
        store.upsert("s1", state=SessionState.BUSY)
        tmux = FakeTmux()

        assert make_loop(store, tmux).sync_interruptions() == []
        assert tmux.captured == []

    def test_capture_failure_skipped(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, tmux_target=target)
        other = TerminalTarget(session="work", window=0, pane=0)
        store.upsert("s2", state=SessionState.BUSY, tmux_target=other)
        tmux = FakeTmux(panes={"work:0.0": INTERRUPTED_PANE})

        assert make_loop(store, tmux).sync_interruptions() == ["s2"]
        assert store.get("s1").state == SessionState.BUSY


class TestCollectGarbage:
    def test_dead_sessions_removed(self, store):
        store.upsert("alive", pid=100)
        store.upsert("dead", pid=200)
        store.upsert("unknown", pid=0)
        loop = make_loop(store, FakeTmux(), liveness=lambda pid: pid == 100)

        assert loop.collect_garbage() == ["dead"]
        assert {r.id for r in store.list()} == {"alive", "unknown"}

    def test_liveness_checked_once_per_pid(self, store):
        store.upsert("a", pid=300)
        store.upsert("b", pid=300)
        checked = []

        def liveness(pid):
            checked.append(pid)
            return False

        assert sorted(make_loop(store, FakeTmux(), liveness=liveness).collect_garbage()) == ["a", "b"]
        assert checked == [300]


class TestStoreOutage:
    def test_outage_logged_once_then_recovery(self, tmp_path, caplog):
        blocker = tmp_path / "home"
        blocker.write_text("")
        store = SessionStore(blocker / "sessions")
        loop = make_loop(store, FakeTmux())

        with caplog.at_level(logging.WARNING, logger="agentwatch"):
            assert loop.cleanup_once() == []
            assert loop.check_panes_once() == []
            warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
            assert len(warnings) == 1
            assert "unavailable" in warnings[0].getMessage()

            blocker.unlink()
            assert loop.cleanup_once() == []
            assert "available again" in caplog.records[-1].getMessage()


class TestScheduling:
    def test_from_config(self, store):
        config = AgentWatchConfig()
        config.reconcile.pane_check_interval = 0.25
        config.reconcile.check_panes = False
        loop = ReconciliationLoop.from_config(config, store, FakeTmux())
        assert loop.pane_check_interval == 0.25
        assert loop.check_panes is False

    def test_runs_until_stopped(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, tmux_target=target)
        store.upsert("gone", pid=999)
        tmux = FakeTmux(panes={"main:1.0": INTERRUPTED_PANE})
        loop = make_loop(
            store, tmux,
            liveness=lambda pid: pid != 999,
            pane_check_interval=0.01,
            cleanup_interval=0.01,
        )

        async def scenario():
            task = loop.start()
            assert loop.start() is task
            await asyncio.sleep(0.1)
            await loop.stop()
            return task

        task = asyncio.run(scenario())
        assert task.cancelled()
        assert store.get("s1").state == SessionState.IDLE
        assert store.get("gone") is None

    def test_pane_checks_disabled(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, tmux_target=target)
        tmux = FakeTmux(panes={"main:1.0": INTERRUPTED_PANE})
        loop = make_loop(store, tmux, check_panes=False, cleanup_interval=0.01)

        async def scenario():
            loop.start()
            await asyncio.sleep(0.05)
            await loop.stop()

        asyncio.run(scenario())
        assert tmux.captured == []
        assert store.get("s1").state == SessionState.BUSY

    def test_stop_without_start(self, store):
        asyncio.run(make_loop(store, FakeTmux()).stop())


class SlowTmux(FakeTmux):
    def __init__(self, delay, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay

    def capture_pane(self, target):
        time.sleep(self.delay)
        return super().capture_pane(target)


class TestFailureTolerance:
    def test_unwritable_store_keeps_timers_running(self, store, target):
        store.upsert("s1", state=SessionState.BUSY, tmux_target=target)
        tmux = FakeTmux(panes={"main:1.0": INTERRUPTED_PANE})
        loop = make_loop(store, tmux, pane_check_interval=0.01, cleanup_interval=0.01)
        denied = PermissionError(errno.EACCES, "Permission denied")

        async def scenario():
            task = loop.start()
            await asyncio.sleep(0.1)
            alive = not task.done()
            await loop.stop()
            return alive

        with patch("tempfile.mkstemp", side_effect=denied):
            assert asyncio.run(scenario()) is True
        assert len(tmux.captured) > 1
        assert store.get("s1").state == SessionState.BUSY

    def test_failing_step_is_retried(self, store, caplog):
        store.upsert("s1", pid=123)
        calls = []

        def liveness(pid):
            calls.append(pid)
            raise RuntimeError("probe exploded")

        loop = make_loop(store, FakeTmux(), liveness=liveness, check_panes=False, cleanup_interval=0.01)

        async def scenario():
            task = loop.start()
            await asyncio.sleep(0.1)
            alive = not task.done()
            await loop.stop()
            return alive

        with caplog.at_level(logging.ERROR, logger="agentwatch"):
            assert asyncio.run(scenario()) is True
        assert len(calls) > 1
        assert any("step failed" in r.getMessage() for r in caplog.records)

    def test_crashed_run_is_logged_not_raised_on_stop(self, store, caplog):
        loop = make_loop(store, FakeTmux())

        async def broken():
            raise RuntimeError("boom")

        loop.run = broken

        async def scenario():
            task = loop.start()
            await asyncio.sleep(0.01)
            await loop.stop()
            return task

        with caplog.at_level(logging.ERROR, logger="agentwatch"):
            task = asyncio.run(scenario())
        assert isinstance(task.exception(), RuntimeError)
        assert any("loop stopped" in r.getMessage() for r in caplog.records)


class TestEventLoopResponsiveness:
    def test_slow_pane_capture_runs_off_the_event_loop(self, store):
        for i in range(3):
            target = TerminalTarget(session="main", window=i, pane=0)
            store.upsert(f"s{i}", state=SessionState.BUSY, tmux_target=target)
        loop = make_loop(store, SlowTmux(0.2), pane_check_interval=0.01, cleanup_interval=10)

        async def scenario():
            loop.start()
            worst = 0.0
            last = time.monotonic()
            deadline = last + 0.5
            while time.monotonic() < deadline:
                await asyncio.sleep(0.02)
                now = time.monotonic()
                worst = max(worst, now - last)
                last = now
            await loop.stop()
            return worst

        assert asyncio.run(scenario()) < 0.15
