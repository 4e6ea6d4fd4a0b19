"""
Prometheus Metrics Integration.

Provides metrics collection and export for RewardFlow.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Prometheus metrics collector for RewardFlow.

    Exposes metrics:
    - rewardflow_rewards_accrued_total{source="liquidity|swap|mev|hook"}
    - rewardflow_distributions_total{status="success|fail", target_chain="..."}
    - rewardflow_distributed_amount_total{target_chain="..."}
    - rewardflow_fees_collected_total{target_chain="..."}
    - rewardflow_tasks_total{status="..."}
    - rewardflow_tier_changes_total{level="..."}
    - rewardflow_pending_rewards
    - rewardflow_mev_captured_total
    - rewardflow_task_dispatch_duration_seconds

    Args:
        registry: Optional ``CollectorRegistry``. Defaults to the global one.
        prefix: Metric name prefix.
    """

    def __init__(self, registry: Optional[Any] = None, prefix: str = "rewardflow") -> None:
        try:
            from prometheus_client import REGISTRY, Counter, Gauge, Histogram

            reg = registry if registry is not None else REGISTRY

            self.rewards_accrued_total = Counter(
                f"{prefix}_rewards_accrued_total",
                "Reward value accrued to pending balances",
                ["source"],
                registry=reg,
            )
            self.distributions_total = Counter(
                f"{prefix}_distributions_total",
                "Distribution attempts by outcome",
                ["status", "target_chain"],
                registry=reg,
            )
            self.distributed_amount_total = Counter(
                f"{prefix}_distributed_amount_total",
                "Gross amount distributed",
                ["target_chain"],
                registry=reg,
            )
            self.fees_collected_total = Counter(
                f"{prefix}_fees_collected_total",
                "Flat destination fees charged",
                ["target_chain"],
                registry=reg,
            )
            self.tasks_total = Counter(
                f"{prefix}_tasks_total",
                "Aggregation task transitions",
                ["status"],
                registry=reg,
            )
            self.tier_changes_total = Counter(
                f"{prefix}_tier_changes_total",
                "Tier level changes by new level",
                ["level"],
                registry=reg,
            )
            self.pending_rewards = Gauge(
                f"{prefix}_pending_rewards",
                "Total undistributed pending reward value",
                registry=reg,
            )
            self.mev_captured_total = Counter(
                f"{prefix}_mev_captured_total",
                "Total MEV value captured",
                registry=reg,
            )
            self.task_dispatch_duration = Histogram(
                f"{prefix}_task_dispatch_duration_seconds",
                "Wall time spent dispatching one aggregation task",
                registry=reg,
            )
            self._enabled = True
        except ImportError:
            # Prometheus client not installed
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled."""
        return self._enabled

    def record_accrual(self, source: str, amount: int) -> None:
        """Record reward value accrued from *source*."""
        if not self._enabled or amount <= 0:
            return
        self.rewards_accrued_total.labels(source=source).inc(amount)

    def record_distribution(self, success: bool, target_chain: int, amount: int = 0, fee: int = 0) -> None:
        """Record a distribution attempt."""
        if not self._enabled:
            return
        status = "success" if success else "fail"
        chain = str(target_chain)
        self.distributions_total.labels(status=status, target_chain=chain).inc()
        if success:
            self.distributed_amount_total.labels(target_chain=chain).inc(amount)
            self.fees_collected_total.labels(target_chain=chain).inc(fee)

    def record_task(self, status: str) -> None:
        """Record a task transition into *status*."""
        if not self._enabled:
            return
        self.tasks_total.labels(status=status).inc()

    def record_tier_change(self, level: str) -> None:
        if not self._enabled:
            return
        self.tier_changes_total.labels(level=level).inc()

    def set_pending_rewards(self, total: int) -> None:
        if not self._enabled:
            return
        self.pending_rewards.set(total)

    def record_mev(self, amount: int) -> None:
        if not self._enabled or amount <= 0:
            return
        self.mev_captured_total.inc(amount)

    def observe_dispatch(self, duration_seconds: float) -> None:
        if not self._enabled:
            return
        self.task_dispatch_duration.observe(duration_seconds)


def start_metrics_server(port: int = 8080, registry: Optional[Any] = None) -> bool:
    """Start the Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 8080).
        registry: Registry to expose, defaults to the global one.

    Returns:
        ``True`` if the server was started.
    """
    try:
        from prometheus_client import REGISTRY, start_http_server
    except ImportError:
        logger.warning("prometheus_client not installed; metrics server disabled")
        return False
    start_http_server(port, registry=registry if registry is not None else REGISTRY)
    logger.info("Metrics server listening on port %d", port)
    return True
