"""
Task Registry.

Holds every aggregation task, partitioned by status. Status changes are
compare-and-set so two scheduling passes can never both move the same task
out of Pending.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from rewardflow.exceptions import InvalidTransitionError, TaskNotFoundError

from .models import AggregationTask, EntryResult, TaskStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class TaskRegistry:
    """Status-partitioned store of aggregation tasks."""

    def __init__(self) -> None:
        self._tasks: dict[str, AggregationTask] = {}
        self._order: list[str] = []
        self._by_status: dict[TaskStatus, set[str]] = {status: set() for status in TaskStatus}
        self._lock = threading.Lock()

    def add(self, task: AggregationTask) -> None:
        with self._lock:
            if task.task_id in self._tasks:
                raise InvalidTransitionError(f"task {task.task_id} already registered")
            self._tasks[task.task_id] = task.model_copy(deep=True)
            self._order.append(task.task_id)
            self._by_status[task.status].add(task.task_id)

    def get(self, task_id: str) -> AggregationTask:
        with self._lock:
            return self._require(task_id).model_copy(deep=True)

    def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new: TaskStatus,
        **updates: Any,
    ) -> bool:
        """Move *task_id* from *expected* to *new*, applying *updates*.

        Returns False when the task is no longer in *expected*.

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If *expected* -> *new* is never allowed.
        """
        if new not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidTransitionError(f"{expected.value} -> {new.value} is not allowed")
        with self._lock:
            task = self._require(task_id)
            if task.status != expected:
                return False
            self._tasks[task_id] = task.model_copy(update={**updates, "status": new})
            self._by_status[expected].discard(task_id)
            self._by_status[new].add(task_id)
        logger.debug("Task %s: %s -> %s", task_id, expected.value, new.value)
        return True

    def update(self, task_id: str, **updates: Any) -> AggregationTask:
        """Change non-status fields of a task."""
        if "status" in updates:
            raise InvalidTransitionError("use transition() to change status")
        with self._lock:
            task = self._require(task_id).model_copy(update=updates)
            self._tasks[task_id] = task
            return task.model_copy(deep=True)

    def record_result(self, task_id: str, index: int, result: EntryResult) -> None:
        with self._lock:
            task = self._require(task_id)
            results = list(task.entry_results)
            results[index] = result
            self._tasks[task_id] = task.model_copy(update={"entry_results": results})

    def ids(self, status: TaskStatus) -> list[str]:
        """Task ids currently in *status*, in creation order."""
        with self._lock:
            members = self._by_status[status]
            return [task_id for task_id in self._order if task_id in members]

    def tasks(self, status: Optional[TaskStatus] = None) -> list[AggregationTask]:
        with self._lock:
            return [
                self._tasks[task_id].model_copy(deep=True)
                for task_id in self._order
                if status is None or self._tasks[task_id].status == status
            ]

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {status.value: len(ids) for status, ids in self._by_status.items()}

    def load(self, tasks: list[AggregationTask]) -> None:
        """Register persisted tasks, skipping ids already present."""
        with self._lock:
            for task in tasks:
                if task.task_id in self._tasks:
                    continue
                self._tasks[task.task_id] = task.model_copy(deep=True)
                self._order.append(task.task_id)
                self._by_status[task.status].add(task.task_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def _require(self, task_id: str) -> AggregationTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"no aggregation task {task_id}")
        return task
