"""Analytics over pool cycle history."""

from .metrics import PoolMetrics, PoolMetricsCalculator

__all__ = ["PoolMetrics", "PoolMetricsCalculator"]
