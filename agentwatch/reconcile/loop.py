"""Reconciliation loop — periodic maintenance over the session store.

Two independent timers share one asyncio event loop:

* pane check: capture each session's tmux pane and reset it to idle when
  the detector sees a fresh interruption (no hook fires for Esc).
* cleanup: drop sessions whose agent process has exited, and corrupt files.

Each pass runs in a worker thread so tmux and ps calls never stall the
event loop. Every store write is atomic, so cancelling between ticks is
always safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from agentwatch.config import AgentWatchConfig
from agentwatch.errors import StoreUnavailableError
from agentwatch.models import SessionState
from agentwatch.process import is_alive
from agentwatch.store.json_store import SessionStore
from agentwatch.tmux.client import TmuxClient
from agentwatch.tmux.detector import Markers, PaneDetector

logger = logging.getLogger(__name__)


class ReconciliationLoop:
    """Combines store contents, pane text and process liveness on a timer."""

    def __init__(
        self,
        store: SessionStore,
        tmux: TmuxClient,
        detector: PaneDetector | None = None,
        liveness: Callable[[int], bool] = is_alive,
        pane_check_interval: float = 2.0,
        cleanup_interval: float = 5.0,
        check_panes: bool = True,
    ):
        self.store = store
        self.tmux = tmux
        self.detector = detector or PaneDetector()
        self.liveness = liveness
        self.pane_check_interval = pane_check_interval
        self.cleanup_interval = cleanup_interval
        self.check_panes = check_panes

        self._store_down = False
        self._task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        config: AgentWatchConfig,
        store: SessionStore,
        tmux: TmuxClient | None = None,
    ) -> ReconciliationLoop:
        return cls(
            store=store,
            tmux=tmux or TmuxClient(timeout=config.reconcile.pane_timeout),
            detector=PaneDetector(Markers.from_config(config.detection)),
            pane_check_interval=config.reconcile.pane_check_interval,
            cleanup_interval=config.reconcile.cleanup_interval,
            check_panes=config.reconcile.check_panes,
        )

    # ── Single passes ───────────────────────────────────────

    def sync_interruptions(self) -> list[str]:
        """
        Reset sessions whose pane shows a fresh interruption to idle.

        A pane that can't be captured is simply skipped this round.
        Returns the ids that were updated.
        """
        updated = []
        for record in self.store.list():
            if record.tmux_target is None or record.state is SessionState.IDLE:
                continue
            text = self.tmux.capture_pane(record.tmux_target)
            interruption = self.detector.detect(text)
            if interruption is None:
                continue
            logger.info(
                "Session %s %s on %s; marking idle",
                record.id, interruption.value, record.tmux_target,
            )
            if self.store.update(
                record.id,
                state=SessionState.IDLE,
                current_action=None,
                prompt_text=None,
            ):
                updated.append(record.id)
        return updated

    def collect_garbage(self) -> list[str]:
        """Remove sessions whose process has exited. pid 0 sessions are kept."""
        return self.store.cleanup_stale(self.liveness)

    def _guarded(self, name: str, step: Callable[[], list[str]]) -> list[str]:
        """Run a pass, reporting store outages once instead of every tick."""
        try:
            result = step()
        except StoreUnavailableError as e:
            if not self._store_down:
                logger.warning("%s; will keep retrying", e)
                self._store_down = True
            else:
                logger.debug("%s skipped: store still unavailable", name)
            return []
        if self._store_down:
            logger.warning("Session store available again")
            self._store_down = False
        return result

    def check_panes_once(self) -> list[str]:
        return self._guarded("pane check", self.sync_interruptions)

    def cleanup_once(self) -> list[str]:
        return self._guarded("cleanup", self.collect_garbage)

    # ── Scheduling ──────────────────────────────────────────

    @staticmethod
    async def _every(interval: float, step: Callable[[], object]) -> None:
        """Run ``step`` in a worker thread every ``interval`` seconds, surviving failures."""
        while True:
            try:
                await asyncio.to_thread(step)
            except Exception:
                logger.exception("Reconciliation step failed; retrying next tick")
            await asyncio.sleep(interval)

    async def run(self) -> None:
        """Run both timers until cancelled."""
        jobs: list[Awaitable[None]] = [self._every(self.cleanup_interval, self.cleanup_once)]
        if self.check_panes:
            jobs.append(self._every(self.pane_check_interval, self.check_panes_once))
        await asyncio.gather(*jobs)

    def start(self) -> asyncio.Task:
        """Schedule ``run`` on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="agentwatch-reconcile")
            self._task.add_done_callback(_report_failure)
        return self._task

    async def stop(self) -> None:
        """Cancel the timers and wait for them to unwind."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            # Logged by _report_failure when the task ended
            pass
        self._task = None


def _report_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Reconciliation loop stopped", exc_info=task.exception())
