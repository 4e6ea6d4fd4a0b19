"""Event bus and analytics for RewardFlow."""

from .analytics import AnalyticsSnapshot, RewardAnalytics
from .bus import (
    ALL_EVENT_TYPES,
    EVENT_ACTIVITY_RECORDED,
    EVENT_CHAIN_UPDATED,
    EVENT_DISTRIBUTION_EXECUTED,
    EVENT_DISTRIBUTION_FAILED,
    EVENT_DISTRIBUTOR_PAUSED,
    EVENT_DISTRIBUTOR_UNPAUSED,
    EVENT_MEV_CAPTURED,
    EVENT_REWARD_ACCRUED,
    EVENT_TASK_CANCELLED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_CREATED,
    EVENT_TASK_FAILED,
    EVENT_TASK_RETRIED,
    EVENT_TIER_CHANGED,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
    "RewardAnalytics",
    "AnalyticsSnapshot",
    "EVENT_ACTIVITY_RECORDED",
    "EVENT_TIER_CHANGED",
    "EVENT_REWARD_ACCRUED",
    "EVENT_MEV_CAPTURED",
    "EVENT_TASK_CREATED",
    "EVENT_TASK_COMPLETED",
    "EVENT_TASK_FAILED",
    "EVENT_TASK_RETRIED",
    "EVENT_TASK_CANCELLED",
    "EVENT_DISTRIBUTION_EXECUTED",
    "EVENT_DISTRIBUTION_FAILED",
    "EVENT_DISTRIBUTOR_PAUSED",
    "EVENT_DISTRIBUTOR_UNPAUSED",
    "EVENT_CHAIN_UPDATED",
    "ALL_EVENT_TYPES",
]
