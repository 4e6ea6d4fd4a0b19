"""
Activity & Engagement Tracker.

Per-user rolling statistics plus a decaying loyalty score and a
consistency score. Scores are recomputed on every activity event, never
on a timer alone:

1. Loyalty decays by whole days elapsed since the last event, then gains
   a per-event bonus (liquidity > claim > swap), clamped to [0, 100].
2. Consistency compares the transaction count against one expected
   transaction per 7-day window since first activity.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from pydantic import BaseModel, Field

from rewardflow import constants as c
from rewardflow.concurrency import KeyedLockRegistry
from rewardflow.config import TrackerConfig
from rewardflow.events.bus import EVENT_ACTIVITY_RECORDED, Event, EventBus
from rewardflow.exceptions import InvalidAmountError

logger = logging.getLogger(__name__)

EVENT_KIND_LIQUIDITY = "liquidity"
EVENT_KIND_SWAP = "swap"
EVENT_KIND_CLAIM = "claim"


class UserActivity(BaseModel):
    """Rolling activity statistics for one user."""

    user: str
    total_liquidity: int = Field(default=0, ge=0)
    swap_volume: int = Field(default=0, ge=0)
    total_claimed: int = Field(default=0, ge=0)
    transaction_count: int = Field(default=0, ge=0)
    claim_count: int = Field(default=0, ge=0)
    loyalty_score: int = Field(default=0, ge=c.SCORE_MIN, le=c.SCORE_MAX)
    consistency_score: int = Field(default=0, ge=c.SCORE_MIN, le=c.SCORE_MAX)
    consecutive_active_days: int = Field(default=0, ge=0)
    last_active_day: Optional[int] = None
    first_activity_time: Optional[float] = None
    last_activity_time: Optional[float] = None


class ActivitySummary(BaseModel):
    """Read-only view returned by the query surface."""

    activity: UserActivity
    engagement_score: float


class ActivityTracker:
    """Tracks activity and engagement for every user.

    Args:
        config: Tracker tunables.
        unit: Base units per liquidity/volume unit, used for normalization.
        bus: Optional event bus for ``activity.recorded`` notifications.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        unit: int = 1,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.unit = unit
        self._bus = bus
        self._records: dict[str, UserActivity] = {}
        self._records_lock = threading.Lock()
        self._locks = KeyedLockRegistry()

    # -- Events ---------------------------------------------------------------

    def record_liquidity_event(self, user: str, delta: int, now: Optional[float] = None) -> UserActivity:
        """Record liquidity added by *user*."""
        return self._record(user, EVENT_KIND_LIQUIDITY, delta, now)

    def record_swap_event(self, user: str, volume: int, now: Optional[float] = None) -> UserActivity:
        """Record swap volume traded by *user*."""
        return self._record(user, EVENT_KIND_SWAP, volume, now)

    def record_claim_event(self, user: str, amount: int, now: Optional[float] = None) -> UserActivity:
        """Record a reward claim by *user*."""
        return self._record(user, EVENT_KIND_CLAIM, amount, now)

    def _record(self, user: str, kind: str, amount: int, now: Optional[float]) -> UserActivity:
        if not user:
            raise InvalidAmountError("user identifier is required")
        if amount < 0:
            raise InvalidAmountError(f"{kind} amount must be non-negative, got {amount}")
        now = time.time() if now is None else now

        with self._locks.hold(user):
            record = self._get_or_create(user)

            if kind == EVENT_KIND_LIQUIDITY:
                record.total_liquidity += amount
                bonus = self.config.liquidity_bonus
            elif kind == EVENT_KIND_SWAP:
                record.swap_volume += amount
                bonus = self.config.swap_bonus
            else:
                record.total_claimed += amount
                record.claim_count += 1
                bonus = self.config.claim_bonus

            decayed = record.loyalty_score - self._loyalty_decay(record, now)
            record.loyalty_score = _clamp(max(0, decayed) + bonus)

            if record.first_activity_time is None:
                record.first_activity_time = now
            record.transaction_count += 1
            record.consistency_score = self._consistency(record, now)
            self._update_streak(record, now)
            record.last_activity_time = max(now, record.last_activity_time or now)

            snapshot = record.model_copy()

        logger.debug(
            "Recorded %s event for %s (amount=%d, loyalty=%d, consistency=%d)",
            kind, user, amount, snapshot.loyalty_score, snapshot.consistency_score,
        )
        if self._bus is not None:
            self._bus.emit(Event(
                event_type=EVENT_ACTIVITY_RECORDED,
                source=user,
                payload={"kind": kind, "amount": amount, "loyalty_score": snapshot.loyalty_score},
            ))
        return snapshot

    # -- Score helpers --------------------------------------------------------

    def _loyalty_decay(self, record: UserActivity, now: float) -> int:
        if record.last_activity_time is None:
            return 0
        elapsed = max(0.0, now - record.last_activity_time)
        return int(elapsed // c.SECONDS_PER_DAY) * self.config.loyalty_decay_per_day

    def _consistency(self, record: UserActivity, now: float) -> int:
        first = record.first_activity_time if record.first_activity_time is not None else now
        windows = int(max(0.0, now - first) // self.config.expected_tx_window_seconds) + 1
        return _clamp(record.transaction_count * 100 // windows)

    @staticmethod
    def _update_streak(record: UserActivity, now: float) -> None:
        day = int(now // c.SECONDS_PER_DAY)
        last = record.last_active_day
        if last is None or day > last + 1:
            record.consecutive_active_days = 1
        elif day == last + 1:
            record.consecutive_active_days += 1
        if last is None or day > last:
            record.last_active_day = day

    # -- Queries --------------------------------------------------------------

    def get_activity(self, user: str) -> Optional[UserActivity]:
        """Return a copy of *user*'s record, or ``None`` if never seen."""
        with self._locks.hold(user):
            record = self._records.get(user)
            return record.model_copy() if record is not None else None

    def get_engagement_score(self, user: str) -> float:
        """Weighted blend of liquidity, volume, loyalty and consistency in [0, 100]."""
        record = self.get_activity(user)
        if record is None:
            return 0.0
        return self.engagement_for(record)

    def engagement_for(self, record: UserActivity) -> float:
        liquidity_cap = self.config.engagement_liquidity_cap * self.unit
        volume_cap = self.config.engagement_volume_cap * self.unit
        liquidity = min(record.total_liquidity, liquidity_cap) * 100 / liquidity_cap
        volume = min(record.swap_volume, volume_cap) * 100 / volume_cap
        score = (
            c.WEIGHT_LIQUIDITY * liquidity
            + c.WEIGHT_VOLUME * volume
            + c.WEIGHT_LOYALTY * record.loyalty_score
            + c.WEIGHT_CONSISTENCY * record.consistency_score
        ) / 100
        return max(0.0, min(100.0, score))

    def summary(self, user: str) -> Optional[ActivitySummary]:
        record = self.get_activity(user)
        if record is None:
            return None
        return ActivitySummary(activity=record, engagement_score=self.engagement_for(record))

    def inactive_days(self, user: str, now: Optional[float] = None) -> int:
        """Whole days since *user*'s last activity (0 for unknown users)."""
        now = time.time() if now is None else now
        record = self.get_activity(user)
        if record is None or record.last_activity_time is None:
            return 0
        return int(max(0.0, now - record.last_activity_time) // c.SECONDS_PER_DAY)

    def users(self) -> list[str]:
        with self._records_lock:
            return list(self._records)

    def records(self) -> list[UserActivity]:
        with self._records_lock:
            return [record.model_copy() for record in self._records.values()]

    def load(self, records: list[UserActivity]) -> None:
        """Replace in-memory state with previously persisted records."""
        with self._records_lock:
            for record in records:
                self._records[record.user] = record.model_copy()

    def _get_or_create(self, user: str) -> UserActivity:
        with self._records_lock:
            record = self._records.get(user)
            if record is None:
                record = UserActivity(user=user)
                self._records[user] = record
            return record


def _clamp(score: int) -> int:
    return max(c.SCORE_MIN, min(c.SCORE_MAX, score))
