"""
Aggregation Scheduler.

Groups pending per-user rewards into aggregation tasks and drives them
through their lifecycle::

    Pending -> InProgress -> Completed | Failed
    Failed  -> Pending        (retry_count < max_retries, retry delay elapsed)
    Pending -> Cancelled      (deadline passed)

A pass is triggered externally; windows and delays are evaluated against the
``now`` timestamp, never slept on.
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from rewardflow import constants as c
from rewardflow.concurrency import AtomicCounters
from rewardflow.config import SchedulerConfig
from rewardflow.distribution.distributor import CrossChainDistributor
from rewardflow.events.bus import (
    EVENT_TASK_CANCELLED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_CREATED,
    EVENT_TASK_FAILED,
    EVENT_TASK_RETRIED,
    Event,
    EventBus,
)
from rewardflow.exceptions import InvalidEntriesError, RewardFlowError
from rewardflow.observability.metrics import MetricsCollector
from rewardflow.reward.ledger import PendingRewardLedger
from rewardflow.tiers.classifier import TierChange, TierClassifier, TierLevel

from .models import (
    AggregationTask,
    EntryResult,
    SchedulerPassReport,
    SchedulerStats,
    TaskEntry,
    TaskPriority,
    TaskStatus,
)
from .registry import TaskRegistry

logger = logging.getLogger(__name__)

TIER_URGENCY: dict[TierLevel, int] = {
    TierLevel.DIAMOND: 95,
    TierLevel.PLATINUM: 75,
    TierLevel.GOLD: 55,
    TierLevel.SILVER: 30,
    TierLevel.BRONZE: 10,
}

HOLD_NOT_READY = "not ready"
HOLD_UNPROFITABLE = "unprofitable"
HOLD_TIMING = "waiting for preferred timing"


class AggregationScheduler:
    """Builds, prioritizes, dispatches, retries and expires aggregation tasks.

    Args:
        config: Windows, batch bounds, cost model and priority thresholds.
        ledger: Pending reward ledger drained into task entries.
        distributor: Executes each entry's payout.
        classifier: Supplies current tiers for urgency; optional.
        registry: Task store; a fresh one by default.
        bus: Optional event bus.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        ledger: PendingRewardLedger,
        distributor: CrossChainDistributor,
        classifier: Optional[TierClassifier] = None,
        registry: Optional[TaskRegistry] = None,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self._ledger = ledger
        self._distributor = distributor
        self._classifier = classifier
        self._registry = registry or TaskRegistry()
        self._bus = bus
        self._metrics = metrics
        self._counters = AtomicCounters(
            "passes",
            "tasks_created",
            "tasks_completed",
            "tasks_failed",
            "tasks_retried",
            "tasks_cancelled",
            "entries_dispatched",
            "entries_failed",
            "amount_dispatched",
            "amount_restored",
        )
        if classifier is not None:
            classifier.on_tier_change(self._on_tier_change)

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def is_ready_for_execution(self, task: AggregationTask, now: Optional[float] = None) -> bool:
        """True once the aggregation window has elapsed and the batch is big enough."""
        now = time.time() if now is None else now
        if len(task.entries) < self.config.min_batch_size:
            return False
        return now - task.created_at >= self.config.aggregation_window_seconds

    def compute_priority(self, total_amount: int, user_count: int, urgency_hint: int = 0) -> TaskPriority:
        average = total_amount // user_count if user_count > 0 else 0
        if average >= self.config.urgent_amount_threshold or urgency_hint >= c.URGENCY_URGENT:
            return TaskPriority.URGENT
        if average >= self.config.high_amount_threshold or urgency_hint >= c.URGENCY_HIGH:
            return TaskPriority.HIGH
        if average >= self.config.medium_amount_threshold or urgency_hint >= c.URGENCY_MEDIUM:
            return TaskPriority.MEDIUM
        return TaskPriority.LOW

    def urgency_for(self, users: list[str]) -> int:
        """Urgency hint from the highest current tier among *users*."""
        if self._classifier is None or not users:
            return 0
        highest = max(self._classifier.current_level(user) for user in users)
        return TIER_URGENCY[highest]

    def estimated_dispatch_cost(self, task: AggregationTask, unit_cost: Optional[int] = None) -> int:
        unit = self.config.unit_cost if unit_cost is None else unit_cost
        return unit * self.config.per_user_cost * len(task.entries)

    def is_profitable(self, task: AggregationTask, unit_cost: Optional[int] = None) -> bool:
        """A task is worth dispatching when it moves more than twice its cost."""
        return task.total_amount > 2 * self.estimated_dispatch_cost(task, unit_cost)

    def optimal_batch_size(self, total_users: int, resource_limit: Optional[int] = None) -> int:
        limit = self.config.resource_limit if resource_limit is None else resource_limit
        size = limit // self.config.per_user_cost
        size = max(self.config.min_batch_size, min(self.config.max_batch_size, size))
        if total_users >= self.config.min_batch_size:
            size = min(size, total_users)
        return size

    def should_wait(self, task: AggregationTask, now: Optional[float] = None) -> bool:
        """Hold a ready task while every user prefers a later window before the deadline."""
        now = time.time() if now is None else now
        recommended = [
            self._distributor.get_optimal_distribution_timing(entry.user, now)
            for _, entry in task.undispatched()
        ]
        if not recommended or min(recommended) <= now:
            return False
        return min(recommended) < task.deadline

    # ------------------------------------------------------------------
    # Task construction
    # ------------------------------------------------------------------

    def build_task(self, now: Optional[float] = None) -> Optional[AggregationTask]:
        """Snapshot qualifying pending balances into a new Pending task.

        Users whose balance is below their claim threshold stay pending.
        Returns None when fewer than ``min_batch_size`` users qualify.
        """
        now = time.time() if now is None else now
        qualifying: list[tuple[int, str]] = []
        for user in self._ledger.users_with_balance():
            balance = self._ledger.balance(user)
            threshold = self._distributor.get_user_preferences(user).claim_threshold
            if balance >= threshold:
                qualifying.append((balance, user))
        if len(qualifying) < self.config.min_batch_size:
            return None

        qualifying.sort(key=lambda item: (-item[0], item[1]))
        batch = qualifying[: self.optimal_batch_size(len(qualifying))]

        entries: list[TaskEntry] = []
        for _, user in batch:
            prefs = self._distributor.get_user_preferences(user)
            amount = self._ledger.drain_if_at_least(user, prefs.claim_threshold)
            if amount > 0:
                entries.append(TaskEntry(user=user, amount=amount, target_chain=prefs.preferred_chain))

        if len(entries) < self.config.min_batch_size:
            # Balances moved between the scan and the drain.
            for entry in entries:
                self._ledger.restore(entry.user, entry.amount)
            return None

        return self.create_task(entries, now)

    def create_task(self, entries: list[TaskEntry], now: Optional[float] = None) -> AggregationTask:
        """Register a Pending task for already-drained *entries*.

        Raises:
            InvalidEntriesError: If *entries* is empty or names a user twice.
        """
        if not entries:
            raise InvalidEntriesError("a task needs at least one entry")
        users = [entry.user for entry in entries]
        if len(set(users)) != len(users):
            raise InvalidEntriesError("a task may hold at most one entry per user")
        now = time.time() if now is None else now

        total = sum(entry.amount for entry in entries)
        task = AggregationTask(
            task_id=f"task_{uuid.uuid4().hex[:16]}",
            entries=entries,
            deadline=now + self.config.task_deadline_seconds,
            priority=self.compute_priority(total, len(entries), self.urgency_for(users)),
            created_at=now,
        )
        self._registry.add(task)
        self._counters.add("tasks_created")
        if self._metrics is not None:
            self._metrics.record_task(TaskStatus.PENDING.value)
        logger.info(
            "Created task %s: %d entries, %d total, priority %s",
            task.task_id, len(entries), total, task.priority.label,
        )
        self._emit(EVENT_TASK_CREATED, task, {"entries": len(entries), "total_amount": total})
        return task

    # ------------------------------------------------------------------
    # Scheduling pass
    # ------------------------------------------------------------------

    def run_pass(self, now: Optional[float] = None) -> SchedulerPassReport:
        """Expire, retry, build and dispatch tasks once."""
        now = time.time() if now is None else now
        started = time.monotonic()
        report = SchedulerPassReport(started_at=now)

        report.cancelled.extend(self.expire_tasks(now))
        report.retried.extend(self.retry_failed(now))

        while True:
            task = self.build_task(now)
            if task is None:
                break
            report.created.append(task.task_id)

        for task in self._pending_by_priority():
            reason = self._hold_reason(task, now)
            if reason is not None:
                report.held[task.task_id] = reason
                logger.debug("Holding task %s: %s", task.task_id, reason)
                continue
            result = self.dispatch_task(task.task_id, now)
            if result is None:
                continue
            if result.status == TaskStatus.COMPLETED:
                report.completed.append(result.task_id)
            elif result.status == TaskStatus.FAILED:
                report.failed.append(result.task_id)

        report.duration_seconds = time.monotonic() - started
        self._counters.add("passes")
        if self._metrics is not None:
            self._metrics.set_pending_rewards(self._ledger.total_pending())
        logger.info(
            "Scheduling pass: %d created, %d completed, %d failed, %d held, %d cancelled",
            len(report.created), len(report.completed), len(report.failed),
            len(report.held), len(report.cancelled),
        )
        return report

    def expire_tasks(self, now: Optional[float] = None) -> list[str]:
        """Cancel Pending tasks past their deadline and restore their amounts."""
        now = time.time() if now is None else now
        cancelled: list[str] = []
        for task_id in self._registry.ids(TaskStatus.PENDING):
            task = self._registry.get(task_id)
            if now <= task.deadline:
                continue
            if not self._registry.transition(task_id, TaskStatus.PENDING, TaskStatus.CANCELLED):
                continue
            restored = self._restore_undispatched(task)
            self._counters.add("tasks_cancelled")
            if self._metrics is not None:
                self._metrics.record_task(TaskStatus.CANCELLED.value)
            logger.warning("Task %s cancelled past its deadline; restored %d", task_id, restored)
            self._emit(EVENT_TASK_CANCELLED, task, {"restored": restored})
            cancelled.append(task_id)
        return cancelled

    def retry_failed(self, now: Optional[float] = None) -> list[str]:
        """Move retryable Failed tasks back to Pending."""
        now = time.time() if now is None else now
        retried: list[str] = []
        for task_id in self._registry.ids(TaskStatus.FAILED):
            task = self._registry.get(task_id)
            if task.exhausted or task.retry_count >= self.config.max_retries:
                continue
            if task.failed_at is not None and now - task.failed_at < self.config.retry_delay_seconds:
                continue
            moved = self._registry.transition(
                task_id,
                TaskStatus.FAILED,
                TaskStatus.PENDING,
                retry_count=task.retry_count + 1,
            )
            if not moved:
                continue
            self._counters.add("tasks_retried")
            logger.info("Retrying task %s (attempt %d)", task_id, task.retry_count + 1)
            self._emit(EVENT_TASK_RETRIED, task, {"retry_count": task.retry_count + 1})
            retried.append(task_id)
        return retried

    def dispatch_task(self, task_id: str, now: Optional[float] = None) -> Optional[AggregationTask]:
        """Dispatch every undispatched entry of a Pending task.

        Returns the finished task, or None if another pass claimed it first.
        Successful entries are never rolled back.
        """
        now = time.time() if now is None else now
        if not self._registry.transition(task_id, TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
            return None
        task = self._registry.get(task_id)
        pending = task.undispatched()
        started = time.monotonic()

        workers = max(1, min(self.config.dispatch_workers, len(pending)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rewardflow-dispatch") as pool:
            outcomes = list(pool.map(lambda item: self._dispatch_entry(task_id, item[1], now), pending))

        dispatched_amount = 0
        errors: list[str] = []
        for (index, entry), result in zip(pending, outcomes):
            self._registry.record_result(task_id, index, result)
            if result.dispatched:
                dispatched_amount += entry.amount
            else:
                errors.append(f"{entry.user}: {result.error}")

        self._counters.add_many({
            "entries_dispatched": len(pending) - len(errors),
            "entries_failed": len(errors),
            "amount_dispatched": dispatched_amount,
        })
        if self._metrics is not None:
            self._metrics.observe_dispatch(time.monotonic() - started)

        if not errors:
            self._registry.transition(task_id, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, completed_at=now)
            finished = self._registry.get(task_id)
            self._counters.add("tasks_completed")
            if self._metrics is not None:
                self._metrics.record_task(TaskStatus.COMPLETED.value)
            logger.info("Task %s completed: %d entries", task_id, len(finished.entries))
            self._emit(EVENT_TASK_COMPLETED, finished, {"total_amount": finished.total_amount})
            return finished

        return self._fail(task, errors, now)

    def _dispatch_entry(self, task_id: str, entry: TaskEntry, now: float) -> EntryResult:
        try:
            request = self._distributor.execute_distribution(
                entry.user, entry.amount, entry.target_chain, now=now, task_id=task_id,
            )
        except RewardFlowError as exc:
            logger.debug("Entry for %s in task %s failed: %s", entry.user, task_id, exc)
            return EntryResult(error=str(exc) or type(exc).__name__)
        except Exception as exc:
            # A task leaves InProgress only once every entry has a result.
            logger.exception("Unexpected error dispatching %s in task %s", entry.user, task_id)
            return EntryResult(error=f"{type(exc).__name__}: {exc}")
        return EntryResult(request_id=request.request_id)

    def _fail(self, task: AggregationTask, errors: list[str], now: float) -> AggregationTask:
        reason = f"{len(errors)} of {len(task.entries)} entries failed; first: {errors[0]}"
        exhausted = task.retry_count >= self.config.max_retries
        if exhausted:
            reason = f"retries exhausted: {reason}"
        self._registry.transition(
            task.task_id,
            TaskStatus.IN_PROGRESS,
            TaskStatus.FAILED,
            failed_at=now,
            failure_reason=reason,
            exhausted=exhausted,
        )
        finished = self._registry.get(task.task_id)
        restored = self._restore_undispatched(finished) if exhausted else 0
        self._counters.add("tasks_failed")
        if self._metrics is not None:
            self._metrics.record_task(TaskStatus.FAILED.value)
        logger.warning("Task %s failed: %s", task.task_id, reason)
        self._emit(EVENT_TASK_FAILED, finished, {
            "reason": reason,
            "exhausted": exhausted,
            "restored": restored,
        })
        return finished

    def _restore_undispatched(self, task: AggregationTask) -> int:
        restored = 0
        for _, entry in task.undispatched():
            self._ledger.restore(entry.user, entry.amount)
            restored += entry.amount
        if restored:
            self._counters.add("amount_restored", restored)
        return restored

    def _pending_by_priority(self) -> list[AggregationTask]:
        tasks = self._registry.tasks(TaskStatus.PENDING)
        return sorted(tasks, key=lambda t: (-int(t.priority), t.created_at))

    def _hold_reason(self, task: AggregationTask, now: float) -> Optional[str]:
        if not self.is_ready_for_execution(task, now):
            return HOLD_NOT_READY
        if not self.is_profitable(task):
            return HOLD_UNPROFITABLE
        if self.config.respect_timing and self.should_wait(task, now):
            return HOLD_TIMING
        return None

    def _on_tier_change(self, change: TierChange) -> None:
        for task_id in self._registry.ids(TaskStatus.PENDING):
            task = self._registry.get(task_id)
            if change.user not in task.users:
                continue
            priority = self.compute_priority(task.total_amount, task.user_count, self.urgency_for(task.users))
            if priority != task.priority:
                self._registry.update(task_id, priority=priority)
                logger.debug("Task %s reprioritized to %s", task_id, priority.label)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> AggregationTask:
        return self._registry.get(task_id)

    def tasks(self, status: Optional[TaskStatus] = None) -> list[AggregationTask]:
        return self._registry.tasks(status)

    def task_counts(self) -> dict[str, int]:
        return self._registry.counts()

    def counters(self) -> dict[str, int]:
        return self._counters.snapshot()

    def stats(self) -> SchedulerStats:
        return SchedulerStats(**self._counters.snapshot(), tasks_by_status=self._registry.counts())

    def load(self, tasks: list[AggregationTask], counters: dict[str, int]) -> None:
        self._registry.load(tasks)
        self._counters.restore(counters)

    def _emit(self, event_type: str, task: AggregationTask, payload: dict) -> None:
        if self._bus is not None:
            self._bus.emit(Event(
                event_type=event_type,
                source=task.task_id,
                payload={"priority": task.priority.label, **payload},
            ))
