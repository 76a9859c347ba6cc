from __future__ import annotations

from notiload.metrics.aggregator import MetricsAggregator, aggregate_per_second, summarize_outcomes
from notiload.metrics.models import (
    ConnectionState,
    ErrorType,
    OperationKind,
    PerSecondMetrics,
    RequestOutcome,
    Summary,
)

__all__ = [
    "ConnectionState",
    "ErrorType",
    "MetricsAggregator",
    "OperationKind",
    "PerSecondMetrics",
    "RequestOutcome",
    "Summary",
    "aggregate_per_second",
    "summarize_outcomes",
]
