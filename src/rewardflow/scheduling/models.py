"""Data models for aggregation tasks."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    """Lifecycle states of an aggregation task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskPriority(IntEnum):
    """Processing order; higher values are dispatched first."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    URGENT = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class TaskEntry(BaseModel):
    """One user's share of a task."""

    model_config = ConfigDict(frozen=True)

    user: str
    amount: int = Field(gt=0)
    target_chain: int = Field(ge=1)


class EntryResult(BaseModel):
    """Dispatch outcome for one entry: a request id or an error."""

    request_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def dispatched(self) -> bool:
        return self.request_id is not None


class AggregationTask(BaseModel):
    """A batch of drained pending rewards awaiting cross-chain dispatch."""

    task_id: str
    entries: list[TaskEntry]
    deadline: float
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.LOW
    created_at: float
    completed_at: Optional[float] = None
    failed_at: Optional[float] = None
    retry_count: int = Field(default=0, ge=0)
    failure_reason: Optional[str] = None
    exhausted: bool = False
    entry_results: list[EntryResult] = Field(default_factory=list)

    def model_post_init(self, context: object) -> None:
        if not self.entry_results:
            self.entry_results = [EntryResult() for _ in self.entries]

    @property
    def total_amount(self) -> int:
        return sum(entry.amount for entry in self.entries)

    @property
    def user_count(self) -> int:
        return len(self.entries)

    @property
    def users(self) -> list[str]:
        return [entry.user for entry in self.entries]

    def undispatched(self) -> list[tuple[int, TaskEntry]]:
        """Entries with no successful request yet, with their indexes."""
        return [
            (index, entry)
            for index, entry in enumerate(self.entries)
            if not self.entry_results[index].dispatched
        ]

    @property
    def dispatched_amount(self) -> int:
        return sum(
            entry.amount
            for index, entry in enumerate(self.entries)
            if self.entry_results[index].dispatched
        )


class SchedulerPassReport(BaseModel):
    """What one scheduling pass did."""

    started_at: float
    duration_seconds: float = 0.0
    created: list[str] = Field(default_factory=list)
    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    retried: list[str] = Field(default_factory=list)
    cancelled: list[str] = Field(default_factory=list)
    held: dict[str, str] = Field(default_factory=dict, description="task id -> reason")


class SchedulerStats(BaseModel):
    """Aggregate scheduler statistics."""

    passes: int = 0
    tasks_created: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_retried: int = 0
    tasks_cancelled: int = 0
    entries_dispatched: int = 0
    entries_failed: int = 0
    amount_dispatched: int = 0
    amount_restored: int = 0
    tasks_by_status: dict[str, int] = Field(default_factory=dict)
