"""
Aggregation Scheduling

Batches pending rewards into tasks and drives their dispatch lifecycle.
"""

from .models import (
    AggregationTask,
    EntryResult,
    SchedulerPassReport,
    SchedulerStats,
    TaskEntry,
    TaskPriority,
    TaskStatus,
)
from .registry import ALLOWED_TRANSITIONS, TaskRegistry
from .scheduler import TIER_URGENCY, AggregationScheduler

__all__ = [
    "AggregationTask",
    "EntryResult",
    "SchedulerPassReport",
    "SchedulerStats",
    "TaskEntry",
    "TaskPriority",
    "TaskStatus",
    "ALLOWED_TRANSITIONS",
    "TaskRegistry",
    "TIER_URGENCY",
    "AggregationScheduler",
]
