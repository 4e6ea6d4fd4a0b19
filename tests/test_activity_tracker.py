"""Tests for the activity and engagement tracker."""

import pytest

from rewardflow.activity import ActivityTracker
from rewardflow.config import TrackerConfig
from rewardflow.events import EVENT_ACTIVITY_RECORDED, InMemoryEventBus
from rewardflow.exceptions import InvalidAmountError

from conftest import DAY, NOW


@pytest.fixture
def tracker():
    return ActivityTracker()


# ---------------------------------------------------------------------------
# Recording events
# ---------------------------------------------------------------------------

class TestRecordEvents:
    def test_first_liquidity_event(self, tracker):
        record = tracker.record_liquidity_event("alice", 1_000, now=NOW)
        assert record.total_liquidity == 1_000
        assert record.transaction_count == 1
        assert record.loyalty_score == 5
        assert record.consistency_score == 100
        assert record.consecutive_active_days == 1
        assert record.first_activity_time == NOW
        assert record.last_activity_time == NOW

    def test_swap_event_adds_volume_and_small_bonus(self, tracker):
        record = tracker.record_swap_event("alice", 2_500, now=NOW)
        assert record.swap_volume == 2_500
        assert record.total_liquidity == 0
        assert record.loyalty_score == 1

    def test_claim_event(self, tracker):
        record = tracker.record_claim_event("alice", 40, now=NOW)
        assert record.total_claimed == 40
        assert record.claim_count == 1
        assert record.loyalty_score == 3

    def test_bonus_ordering(self, tracker):
        liquidity = tracker.record_liquidity_event("a", 1, now=NOW).loyalty_score
        claim = tracker.record_claim_event("b", 1, now=NOW).loyalty_score
        swap = tracker.record_swap_event("c", 1, now=NOW).loyalty_score
        assert liquidity > claim > swap

    def test_running_totals_accumulate(self, tracker):
        tracker.record_liquidity_event("alice", 100, now=NOW)
        tracker.record_liquidity_event("alice", 250, now=NOW + 10)
        record = tracker.get_activity("alice")
        assert record.total_liquidity == 350
        assert record.transaction_count == 2

    def test_negative_delta_rejected(self, tracker):
        with pytest.raises(InvalidAmountError):
            tracker.record_liquidity_event("alice", -1, now=NOW)
        assert tracker.get_activity("alice") is None

    def test_empty_user_rejected(self, tracker):
        with pytest.raises(InvalidAmountError):
            tracker.record_swap_event("", 10, now=NOW)

    def test_returns_copy(self, tracker):
        record = tracker.record_liquidity_event("alice", 100, now=NOW)
        record.total_liquidity = 999_999
        assert tracker.get_activity("alice").total_liquidity == 100

    def test_emits_event(self):
        bus = InMemoryEventBus()
        seen = []
        bus.subscribe(EVENT_ACTIVITY_RECORDED, seen.append)
        ActivityTracker(bus=bus).record_liquidity_event("alice", 10, now=NOW)
        assert len(seen) == 1
        assert seen[0].source == "alice"
        assert seen[0].payload["kind"] == "liquidity"


# ---------------------------------------------------------------------------
# Loyalty decay and consistency
# ---------------------------------------------------------------------------

class TestScores:
    def test_loyalty_decays_per_whole_day(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        record = tracker.record_liquidity_event("alice", 10, now=NOW + 3 * DAY)
        # 5 - 3 days of decay + 5 bonus
        assert record.loyalty_score == 7

    def test_partial_day_does_not_decay(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        record = tracker.record_liquidity_event("alice", 10, now=NOW + DAY - 1)
        assert record.loyalty_score == 10

    def test_loyalty_decay_floors_at_zero(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        record = tracker.record_swap_event("alice", 10, now=NOW + 60 * DAY)
        assert record.loyalty_score == 1

    def test_loyalty_capped_at_100(self, tracker):
        record = None
        for i in range(30):
            record = tracker.record_liquidity_event("alice", 1, now=NOW + i)
        assert record.loyalty_score == 100

    def test_consistency_against_weekly_expectation(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        record = tracker.record_liquidity_event("alice", 10, now=NOW + 21 * DAY)
        # two transactions over four expected weekly windows
        assert record.consistency_score == 50

    def test_consistency_capped(self, tracker):
        for i in range(5):
            record = tracker.record_swap_event("alice", 1, now=NOW + i)
        assert record.consistency_score == 100


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------

class TestStreaks:
    def test_consecutive_days(self, tracker):
        for day in range(3):
            record = tracker.record_swap_event("alice", 1, now=NOW + day * DAY)
        assert record.consecutive_active_days == 3

    def test_gap_resets_streak(self, tracker):
        tracker.record_swap_event("alice", 1, now=NOW)
        tracker.record_swap_event("alice", 1, now=NOW + DAY)
        record = tracker.record_swap_event("alice", 1, now=NOW + 5 * DAY)
        assert record.consecutive_active_days == 1

    def test_same_day_does_not_extend(self, tracker):
        tracker.record_swap_event("alice", 1, now=NOW)
        record = tracker.record_swap_event("alice", 1, now=NOW + 60)
        assert record.consecutive_active_days == 1


# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------

class TestEngagement:
    def test_unknown_user_scores_zero(self, tracker):
        assert tracker.get_engagement_score("nobody") == 0.0

    def test_weighted_blend(self, tracker):
        tracker.record_liquidity_event("alice", 1_000, now=NOW)
        # 30% * 100 liquidity + 25% * 5 loyalty + 20% * 100 consistency
        assert tracker.get_engagement_score("alice") == pytest.approx(51.25)

    def test_caps_normalize_to_100(self, tracker):
        tracker.record_liquidity_event("alice", 10**9, now=NOW)
        tracker.record_swap_event("alice", 10**9, now=NOW)
        score = tracker.get_engagement_score("alice")
        assert 0.0 <= score <= 100.0
        assert score == pytest.approx((30 * 100 + 25 * 100 + 25 * 6 + 20 * 100) / 100)

    def test_unit_scales_caps(self):
        tracker = ActivityTracker(TrackerConfig(), unit=10)
        tracker.record_liquidity_event("alice", 5_000, now=NOW)
        summary = tracker.summary("alice")
        # 5000 of a 10000 cap -> 50 normalized
        assert summary.engagement_score == pytest.approx((30 * 50 + 25 * 5 + 20 * 100) / 100)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:
    def test_inactive_days(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        assert tracker.inactive_days("alice", now=NOW + 2 * DAY + 5) == 2
        assert tracker.inactive_days("nobody", now=NOW) == 0

    def test_records_and_load(self, tracker):
        tracker.record_liquidity_event("alice", 10, now=NOW)
        tracker.record_swap_event("bob", 10, now=NOW)
        restored = ActivityTracker()
        restored.load(tracker.records())
        assert sorted(restored.users()) == ["alice", "bob"]
        assert restored.get_activity("alice").total_liquidity == 10
