"""
Observability components for RewardFlow.

Provides Prometheus metrics for accruals, tasks and distributions.
"""

from .metrics import MetricsCollector, start_metrics_server

__all__ = [
    "MetricsCollector",
    "start_metrics_server",
]
