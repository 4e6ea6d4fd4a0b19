"""
RewardFlow Operator.

Asyncio driver for a long-running engine: an aggregator loop runs a
scheduling pass every ``aggregation_interval_seconds`` and a monitor loop
applies inactivity decay and refreshes gauges every
``monitor_interval_seconds``. Passes run in a worker thread so dispatch
never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from typing import Any, Optional

from rewardflow.engine import RewardFlowEngine
from rewardflow.events.analytics import RewardAnalytics
from rewardflow.scheduling.models import SchedulerPassReport
from rewardflow.storage.state import EngineStateStore

logger = logging.getLogger(__name__)


class RewardFlowOperator:
    """Runs the engine's periodic work until stopped.

    Args:
        engine: The engine to drive.
        state_store: Optional store; state is saved after every pass.
        aggregation_interval: Seconds between passes (defaults to config).
        monitor_interval: Seconds between monitor ticks (defaults to config).
    """

    def __init__(
        self,
        engine: RewardFlowEngine,
        state_store: Optional[EngineStateStore] = None,
        aggregation_interval: Optional[float] = None,
        monitor_interval: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.state_store = state_store
        self.aggregation_interval = (
            aggregation_interval
            if aggregation_interval is not None
            else engine.config.aggregation_interval_seconds
        )
        self.monitor_interval = (
            monitor_interval
            if monitor_interval is not None
            else engine.config.monitor_interval_seconds
        )
        self._running = False
        self._started_at: Optional[float] = None
        self._stopped = asyncio.Event()
        self._aggregator_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Future] = set()
        self.analytics = RewardAnalytics(engine.bus)

        self.passes_run = 0
        self.pass_errors = 0
        self.monitor_ticks = 0
        self.last_report: Optional[SchedulerPassReport] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the aggregator and monitor loops."""
        if self._running:
            return
        if self.state_store is not None:
            await self.state_store.load(self.engine)
        self._running = True
        self._started_at = time.time()
        self._stopped.clear()
        self._aggregator_task = asyncio.create_task(self._aggregator_loop())
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info(
            "Operator started (aggregation every %.0fs, monitor every %.0fs)",
            self.aggregation_interval, self.monitor_interval,
        )

    async def stop(self) -> None:
        """Stop both loops and persist state once more.

        A pass or save already running in a worker thread is awaited first,
        so the final snapshot never sees a half-finished pass.
        """
        if not self._running:
            return
        self._running = False
        for task in (self._aggregator_task, self._monitor_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._aggregator_task, self._monitor_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await self._settle()
        if self.state_store is not None:
            await self.state_store.save(self.engine)
        self._stopped.set()
        logger.info("Operator stopped after %d passes", self.passes_run)

    async def run(self) -> None:
        """Start and block until ``stop()`` is called."""
        await self.start()
        await self._stopped.wait()

    async def run_pass(self) -> SchedulerPassReport:
        """Run one scheduling pass off the event loop."""
        report = await asyncio.shield(self._track(asyncio.to_thread(self.engine.run_aggregation_pass)))
        self.passes_run += 1
        self.last_report = report
        if self.state_store is not None:
            await asyncio.shield(self._track(self.state_store.save(self.engine)))
        return report

    def _track(self, awaitable: Any) -> asyncio.Future:
        future = asyncio.ensure_future(awaitable)
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        return future

    async def _settle(self) -> None:
        # Cancelling a loop does not stop its worker thread or a save in progress.
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _aggregator_loop(self) -> None:
        while self._running:
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.pass_errors += 1
                self.last_error = str(exc)
                logger.exception("Aggregation pass failed")
            await asyncio.sleep(self.aggregation_interval)

    async def _monitor_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.monitor_interval)
            try:
                await asyncio.shield(self._track(asyncio.to_thread(self.engine.apply_inactivity_decay)))
                self.monitor_ticks += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.last_error = str(exc)
                logger.exception("Monitor tick failed")

    def get_status(self) -> dict[str, Any]:
        """Operator and engine status for health endpoints and the CLI."""
        uptime = time.time() - self._started_at if self._running and self._started_at else 0.0
        return {
            "running": self._running,
            "uptime_seconds": round(uptime, 3),
            "passes_run": self.passes_run,
            "pass_errors": self.pass_errors,
            "monitor_ticks": self.monitor_ticks,
            "last_error": self.last_error,
            "last_report": self.last_report.model_dump() if self.last_report else None,
            "analytics": asdict(self.analytics.snapshot()),
            "engine": self.engine.summary(),
        }
