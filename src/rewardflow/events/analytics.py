"""
Analytics subscriber for real-time distribution statistics.

Subscribes to all engine events and keeps rolling-window counts of
distributions, failures and accrued value.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from .bus import (
    EVENT_DISTRIBUTION_EXECUTED,
    EVENT_DISTRIBUTION_FAILED,
    EVENT_REWARD_ACCRUED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_FAILED,
    Event,
    EventBus,
)


@dataclass
class AnalyticsSnapshot:
    """Point-in-time analytics snapshot."""

    distributions_per_min_1m: float = 0.0
    distributions_per_min_15m: float = 0.0
    failures_per_min_1m: float = 0.0
    failures_per_min_15m: float = 0.0
    accrued_last_15m: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)


class RewardAnalytics:
    """Aggregates rolling window statistics from the event bus.

    Windows are pruned as events arrive, so memory stays bounded by the
    15 minute window whether or not anyone takes snapshots.

    Args:
        bus: The event bus to subscribe to.
        clock: Monotonic time source.
    """

    WINDOW_1M = 60
    WINDOW_15M = 900

    def __init__(self, bus: EventBus, clock: Callable[[], float] = time.monotonic) -> None:
        self._bus = bus
        self._clock = clock
        self._lock = threading.Lock()
        self._total_events = 0
        self._events_by_type: dict[str, int] = {}
        self._tasks_completed = 0
        self._tasks_failed = 0

        self._distributions: deque[float] = deque()
        self._failures: deque[float] = deque()
        self._accruals: deque[tuple[float, int]] = deque()  # (timestamp, amount)

        self._bus.subscribe("*", self._handle_event)

    def _handle_event(self, event: Event) -> None:
        now = self._clock()
        with self._lock:
            self._total_events += 1
            self._events_by_type[event.event_type] = (
                self._events_by_type.get(event.event_type, 0) + 1
            )
            if event.event_type == EVENT_DISTRIBUTION_EXECUTED:
                self._distributions.append(now)
            elif event.event_type == EVENT_DISTRIBUTION_FAILED:
                self._failures.append(now)
            elif event.event_type == EVENT_REWARD_ACCRUED:
                self._accruals.append((now, int(event.payload.get("amount", 0))))
            elif event.event_type == EVENT_TASK_COMPLETED:
                self._tasks_completed += 1
            elif event.event_type == EVENT_TASK_FAILED:
                self._tasks_failed += 1
            self._prune()

    def _count_in_window(self, dq: deque[Any], window_seconds: int) -> int:
        cutoff = self._clock() - window_seconds
        return sum(1 for t in dq if t >= cutoff)

    def _prune(self) -> None:
        cutoff = self._clock() - self.WINDOW_15M
        while self._distributions and self._distributions[0] < cutoff:
            self._distributions.popleft()
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()
        while self._accruals and self._accruals[0][0] < cutoff:
            self._accruals.popleft()

    def snapshot(self) -> AnalyticsSnapshot:
        """Return current rolling statistics."""
        with self._lock:
            self._prune()
            return AnalyticsSnapshot(
                distributions_per_min_1m=float(self._count_in_window(self._distributions, self.WINDOW_1M)),
                distributions_per_min_15m=len(self._distributions) / 15.0,
                failures_per_min_1m=float(self._count_in_window(self._failures, self.WINDOW_1M)),
                failures_per_min_15m=len(self._failures) / 15.0,
                accrued_last_15m=sum(amount for _, amount in self._accruals),
                tasks_completed=self._tasks_completed,
                tasks_failed=self._tasks_failed,
                total_events=self._total_events,
                events_by_type=dict(self._events_by_type),
            )
