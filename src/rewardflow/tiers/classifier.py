"""
Tier Classifier.

Maps tracker state to a discrete tier and a reward multiplier.

    tier_points = min(cap, liquidity_units + loyalty + consecutive_days * 2)

The level is the highest tier whose threshold is <= tier_points, with
Bronze as the always-satisfied floor. Inactivity regresses points one per
day through ``apply_decay``.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import IntEnum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from rewardflow import constants as c
from rewardflow.activity.tracker import UserActivity
from rewardflow.concurrency import KeyedLockRegistry
from rewardflow.config import TierConfig
from rewardflow.events.bus import EVENT_TIER_CHANGED, Event, EventBus

logger = logging.getLogger(__name__)


class TierLevel(IntEnum):
    """Engagement tiers, ordered."""

    BRONZE = 0
    SILVER = 1
    GOLD = 2
    PLATINUM = 3
    DIAMOND = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class UserTier(BaseModel):
    """Derived tier state for one user."""

    user: str
    level: TierLevel = TierLevel.BRONZE
    tier_points: int = Field(default=0, ge=0)
    consecutive_active_days: int = Field(default=0, ge=0)
    last_activity_time: Optional[float] = None
    evaluated_at: Optional[float] = None
    decayed_days: int = Field(default=0, ge=0, description="Inactive days already applied")


class TierChange(BaseModel):
    """Notification payload for a tier level change."""

    user: str
    previous: TierLevel
    current: TierLevel
    tier_points: int


TierChangeHandler = Callable[[TierChange], None]


class TierClassifier:
    """Classifies users into tiers and tracks tier regression.

    Args:
        config: Thresholds, cap and multipliers.
        unit: Base units per liquidity point.
        bus: Optional event bus for ``tier.changed`` notifications.
    """

    def __init__(
        self,
        config: Optional[TierConfig] = None,
        unit: int = 1,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or TierConfig()
        self.unit = unit
        self._bus = bus
        self._tiers: dict[str, UserTier] = {}
        self._tiers_lock = threading.Lock()
        self._locks = KeyedLockRegistry()
        self._handlers: list[TierChangeHandler] = []

        self._thresholds: list[tuple[TierLevel, int]] = [
            (TierLevel.DIAMOND, self.config.diamond_threshold),
            (TierLevel.PLATINUM, self.config.platinum_threshold),
            (TierLevel.GOLD, self.config.gold_threshold),
            (TierLevel.SILVER, self.config.silver_threshold),
        ]
        self._multipliers: dict[TierLevel, int] = {
            TierLevel.BRONZE: self.config.bronze_multiplier_bps,
            TierLevel.SILVER: self.config.silver_multiplier_bps,
            TierLevel.GOLD: self.config.gold_multiplier_bps,
            TierLevel.PLATINUM: self.config.platinum_multiplier_bps,
            TierLevel.DIAMOND: self.config.diamond_multiplier_bps,
        }

    # -- Pure classification --------------------------------------------------

    def compute_points(self, total_liquidity: int, loyalty_score: int, consecutive_days: int) -> int:
        points = (
            max(0, total_liquidity) // self.unit
            + max(0, loyalty_score)
            + max(0, consecutive_days) * self.config.consecutive_day_points
        )
        return min(points, self.config.max_tier_points)

    def level_for_points(self, points: int) -> TierLevel:
        for level, threshold in self._thresholds:
            if points >= threshold:
                return level
        return TierLevel.BRONZE

    def classify(self, activity: UserActivity) -> UserTier:
        """Compute a tier from tracker state without touching stored state."""
        points = self.compute_points(
            activity.total_liquidity,
            activity.loyalty_score,
            activity.consecutive_active_days,
        )
        return UserTier(
            user=activity.user,
            level=self.level_for_points(points),
            tier_points=points,
            consecutive_active_days=activity.consecutive_active_days,
            last_activity_time=activity.last_activity_time,
        )

    def get_multiplier(self, level: TierLevel) -> int:
        """Reward multiplier for *level*, in bps."""
        return self._multipliers[level]

    def apply_decay(self, tier: UserTier, inactive_days: int) -> UserTier:
        """Return *tier* with ``inactive_days`` points removed and level recomputed."""
        if inactive_days <= 0:
            return tier.model_copy()
        points = max(0, tier.tier_points - inactive_days)
        return tier.model_copy(update={
            "tier_points": points,
            "level": self.level_for_points(points),
            "decayed_days": tier.decayed_days + inactive_days,
        })

    # -- Stored tiers ---------------------------------------------------------

    def update(self, activity: UserActivity, now: Optional[float] = None) -> UserTier:
        """Reclassify *activity*'s user and store the result."""
        now = time.time() if now is None else now
        fresh = self.classify(activity).model_copy(update={"evaluated_at": now})
        with self._locks.hold(activity.user):
            previous = self._store(fresh)
        self._notify(previous, fresh)
        return fresh.model_copy()

    def get_tier(self, user: str) -> Optional[UserTier]:
        with self._locks.hold(user):
            with self._tiers_lock:
                tier = self._tiers.get(user)
            return tier.model_copy() if tier is not None else None

    def current_level(self, user: str) -> TierLevel:
        tier = self.get_tier(user)
        return tier.level if tier is not None else TierLevel.BRONZE

    def multiplier_for(self, user: str, now: Optional[float] = None) -> int:
        """Current multiplier for *user*, regressing a stale tier first."""
        tier = self.refresh(user, now)
        level = tier.level if tier is not None else TierLevel.BRONZE
        return self.get_multiplier(level)

    def refresh(self, user: str, now: Optional[float] = None) -> Optional[UserTier]:
        """Apply any inactivity decay not yet applied to *user*'s tier."""
        now = time.time() if now is None else now
        with self._locks.hold(user):
            with self._tiers_lock:
                tier = self._tiers.get(user)
            if tier is None or tier.last_activity_time is None:
                return tier.model_copy() if tier is not None else None
            inactive = int(max(0.0, now - tier.last_activity_time) // c.SECONDS_PER_DAY)
            pending = inactive - tier.decayed_days
            if pending <= 0:
                return tier.model_copy()
            decayed = self.apply_decay(tier, pending).model_copy(update={"evaluated_at": now})
            previous = self._store(decayed)
        logger.debug("Applied %d days of tier decay to %s", pending, user)
        self._notify(previous, decayed)
        return decayed.model_copy()

    def decay_all(self, now: Optional[float] = None) -> list[TierChange]:
        """Refresh every stored tier; return the level changes that resulted."""
        changes: list[TierChange] = []
        for user in self.users():
            before = self.get_tier(user)
            after = self.refresh(user, now)
            if before is None or after is None or before.level == after.level:
                continue
            changes.append(TierChange(
                user=user,
                previous=before.level,
                current=after.level,
                tier_points=after.tier_points,
            ))
        return changes

    def users(self) -> list[str]:
        with self._tiers_lock:
            return list(self._tiers)

    def tiers(self) -> list[UserTier]:
        with self._tiers_lock:
            return [tier.model_copy() for tier in self._tiers.values()]

    def load(self, tiers: list[UserTier]) -> None:
        with self._tiers_lock:
            for tier in tiers:
                self._tiers[tier.user] = tier.model_copy()

    # -- Notifications --------------------------------------------------------

    def on_tier_change(self, handler: TierChangeHandler) -> None:
        self._handlers.append(handler)

    def _store(self, tier: UserTier) -> Optional[UserTier]:
        with self._tiers_lock:
            previous = self._tiers.get(tier.user)
            self._tiers[tier.user] = tier
        return previous

    def _notify(self, previous: Optional[UserTier], current: UserTier) -> None:
        old_level = previous.level if previous is not None else TierLevel.BRONZE
        if old_level == current.level:
            return
        change = TierChange(
            user=current.user,
            previous=old_level,
            current=current.level,
            tier_points=current.tier_points,
        )
        logger.info(
            "Tier change for %s: %s -> %s (%d points)",
            current.user, old_level.label, current.level.label, current.tier_points,
        )
        for handler in list(self._handlers):
            try:
                handler(change)
            except Exception:
                logger.exception("Tier change handler failed for %s", current.user)
        if self._bus is not None:
            self._bus.emit(Event(
                event_type=EVENT_TIER_CHANGED,
                source=current.user,
                payload={
                    "previous": old_level.label,
                    "current": current.level.label,
                    "tier_points": current.tier_points,
                },
            ))
