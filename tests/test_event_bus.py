"""Tests for the event bus and analytics subscriber."""

from datetime import timezone

from rewardflow.events import (
    ALL_EVENT_TYPES,
    EVENT_DISTRIBUTION_EXECUTED,
    EVENT_DISTRIBUTION_FAILED,
    EVENT_REWARD_ACCRUED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_CREATED,
    EVENT_TIER_CHANGED,
    Event,
    InMemoryEventBus,
    RewardAnalytics,
)

from conftest import NOW


class TestInMemoryEventBus:
    def test_glob_subscription(self):
        bus = InMemoryEventBus()
        seen = []
        bus.subscribe("task.*", seen.append)
        bus.emit(Event(event_type=EVENT_TASK_CREATED, source="task_1"))
        bus.emit(Event(event_type=EVENT_TIER_CHANGED, source="alice"))
        assert [e.event_type for e in seen] == [EVENT_TASK_CREATED]

    def test_wildcard(self):
        bus = InMemoryEventBus()
        seen = []
        bus.subscribe("*", seen.append)
        for event_type in ALL_EVENT_TYPES:
            bus.emit(Event(event_type=event_type, source="x"))
        assert len(seen) == len(ALL_EVENT_TYPES)

    def test_unsubscribe(self):
        bus = InMemoryEventBus()
        seen = []
        handler = seen.append
        bus.subscribe("*", handler)
        bus.unsubscribe(handler)
        bus.emit(Event(event_type=EVENT_TASK_CREATED, source="x"))
        assert seen == []

    def test_failing_handler_isolated(self, caplog):
        bus = InMemoryEventBus()
        seen = []

        def broken(event):
            raise RuntimeError("analytics sink down")

        bus.subscribe("*", broken)
        bus.subscribe("*", seen.append)
        bus.emit(Event(event_type=EVENT_TASK_CREATED, source="task_1"))
        assert len(seen) == 1
        assert "Event handler failed for task.created" in caplog.text

    def test_event_defaults(self):
        event = Event(event_type=EVENT_TASK_CREATED, source="x")
        assert event.payload == {}
        assert event.event_id.startswith("evt-")
        assert event.timestamp.tzinfo == timezone.utc


class TestRewardAnalytics:
    def test_counts_events(self):
        bus = InMemoryEventBus()
        analytics = RewardAnalytics(bus)
        bus.emit(Event(event_type=EVENT_REWARD_ACCRUED, source="alice", payload={"amount": 300}))
        bus.emit(Event(event_type=EVENT_REWARD_ACCRUED, source="bob", payload={"amount": 200}))
        bus.emit(Event(event_type=EVENT_DISTRIBUTION_EXECUTED, source="alice"))
        bus.emit(Event(event_type=EVENT_DISTRIBUTION_FAILED, source="bob"))
        bus.emit(Event(event_type=EVENT_TASK_COMPLETED, source="task_1"))

        snapshot = analytics.snapshot()
        assert snapshot.total_events == 5
        assert snapshot.accrued_last_15m == 500
        assert snapshot.distributions_per_min_1m == 1.0
        assert snapshot.failures_per_min_1m == 1.0
        assert snapshot.tasks_completed == 1
        assert snapshot.events_by_type[EVENT_REWARD_ACCRUED] == 2

    def test_windows_pruned_without_snapshots(self):
        bus = InMemoryEventBus()
        clock = [0.0]
        analytics = RewardAnalytics(bus, clock=lambda: clock[0])
        for _ in range(3):
            bus.emit(Event(event_type=EVENT_DISTRIBUTION_EXECUTED, source="alice"))
        clock[0] = RewardAnalytics.WINDOW_15M + 1
        bus.emit(Event(event_type=EVENT_DISTRIBUTION_EXECUTED, source="bob"))
        assert len(analytics._distributions) == 1
        assert analytics.snapshot().distributions_per_min_1m == 1.0
        assert analytics.snapshot().total_events == 4

    def test_engine_events_reach_analytics(self, engine, weth_pool):
        analytics = RewardAnalytics(engine.bus)
        engine.record_liquidity_event("alice", weth_pool, 100_000, now=NOW)
        engine.record_liquidity_event("bob", weth_pool, 100_000, now=NOW)
        engine.run_aggregation_pass(NOW)
        engine.run_aggregation_pass(NOW + 3_600)
        snapshot = analytics.snapshot()
        assert snapshot.accrued_last_15m == 6_000
        assert snapshot.tasks_completed == 1
        assert snapshot.events_by_type[EVENT_DISTRIBUTION_EXECUTED] == 2
        assert snapshot.events_by_type[EVENT_TIER_CHANGED] == 2
