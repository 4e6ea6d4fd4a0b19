"""
Activity & Engagement Tracking

Rolling per-user statistics with decaying loyalty and consistency scores.
"""

from .tracker import ActivitySummary, ActivityTracker, UserActivity

__all__ = [
    "ActivityTracker",
    "ActivitySummary",
    "UserActivity",
]
