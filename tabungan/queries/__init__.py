"""Statistics query package."""

from tabungan.queries.statistics import StatisticsAggregator

__all__ = ["StatisticsAggregator"]
