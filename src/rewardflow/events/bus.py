"""
Event bus for engine notifications.

Tier changes, accruals, task transitions and distribution outcomes are
published here so that the scheduler, analytics and metrics can react
without the emitting component knowing about them.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Standard event types
EVENT_ACTIVITY_RECORDED = "activity.recorded"
EVENT_TIER_CHANGED = "tier.changed"
EVENT_REWARD_ACCRUED = "reward.accrued"
EVENT_MEV_CAPTURED = "mev.captured"
EVENT_TASK_CREATED = "task.created"
EVENT_TASK_COMPLETED = "task.completed"
EVENT_TASK_FAILED = "task.failed"
EVENT_TASK_RETRIED = "task.retried"
EVENT_TASK_CANCELLED = "task.cancelled"
EVENT_DISTRIBUTION_EXECUTED = "distribution.executed"
EVENT_DISTRIBUTION_FAILED = "distribution.failed"
EVENT_DISTRIBUTOR_PAUSED = "distributor.paused"
EVENT_DISTRIBUTOR_UNPAUSED = "distributor.unpaused"
EVENT_CHAIN_UPDATED = "chain.updated"

ALL_EVENT_TYPES = [
    EVENT_ACTIVITY_RECORDED,
    EVENT_TIER_CHANGED,
    EVENT_REWARD_ACCRUED,
    EVENT_MEV_CAPTURED,
    EVENT_TASK_CREATED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_FAILED,
    EVENT_TASK_RETRIED,
    EVENT_TASK_CANCELLED,
    EVENT_DISTRIBUTION_EXECUTED,
    EVENT_DISTRIBUTION_FAILED,
    EVENT_DISTRIBUTOR_PAUSED,
    EVENT_DISTRIBUTOR_UNPAUSED,
    EVENT_CHAIN_UPDATED,
]


@dataclass
class Event:
    """An event emitted by the engine."""

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: f"evt-{time.monotonic_ns()}")


EventHandler = Callable[[Event], Any]


class EventBus(ABC):
    """Abstract base class for event bus implementations."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Emit an event to all matching subscribers."""

    @abstractmethod
    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe a handler to events matching a glob-style pattern.

        Args:
            pattern: Glob-style pattern (e.g., ``task.*``, ``*``).
            handler: Callable invoked with the matching Event.
        """

    @abstractmethod
    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler from all subscriptions."""


class InMemoryEventBus(EventBus):
    """Synchronous in-process event bus with glob-style pattern matching.

    Safe to emit from dispatch worker threads; handlers run on the emitting
    thread. A failing handler is logged and never reaches the emitter.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for pattern, handler in subscriptions:
            if not fnmatch.fnmatch(event.event_type, pattern):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s (%s)", event.event_type, event.source)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions = [
                (p, h) for p, h in self._subscriptions if h is not handler
            ]
