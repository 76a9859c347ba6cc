from __future__ import annotations

import math
import threading
from collections import Counter, defaultdict
from typing import Iterable, Sequence

import numpy as np

from notiload.metrics.models import (
    ConnectionState,
    ErrorType,
    OperationKind,
    PerSecondMetrics,
    RequestOutcome,
    Summary,
)


class MetricsAggregator:
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._lock = threading.Lock()
        self._outcomes: list[RequestOutcome] = []
        self._states: dict[int, ConnectionState] = {}

    def record(self, outcome: RequestOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def record_state(self, connection_id: int, state: ConnectionState) -> None:
        with self._lock:
            self._states[connection_id] = state

    def outcomes(self, kind: OperationKind | None = None) -> list[RequestOutcome]:
        with self._lock:
            snapshot = list(self._outcomes)
        if kind is None:
            return snapshot
        return [o for o in snapshot if o.kind is kind]

    def connection_states(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(state.value for state in self._states.values())
        return dict(counts)

    def summarize(self, kind: OperationKind | None = None) -> Summary:
        return summarize_outcomes(self.outcomes(kind))


def summarize_outcomes(outcomes: Sequence[RequestOutcome]) -> Summary:
    count = len(outcomes)
    if count == 0:
        return Summary(
            count=0,
            success_count=0,
            failure_count=0,
            error_rate=0.0,
            p50_ms=0.0,
            p95_ms=0.0,
            p99_ms=0.0,
            throughput_per_sec=0.0,
            errors_by_kind={},
        )
    latencies = sorted(o.latency_ms for o in outcomes if o.success)
    failures = [o for o in outcomes if not o.success]
    errors_by_kind = Counter(
        (o.error_type or ErrorType.OTHER).value for o in failures
    )
    p50, p95, p99 = _percentiles(latencies)
    span = max(o.mono_time for o in outcomes) - min(o.started_mono for o in outcomes)
    throughput = count / span if span > 0 else 0.0
    return Summary(
        count=count,
        success_count=len(latencies),
        failure_count=len(failures),
        error_rate=len(failures) / count,
        p50_ms=p50,
        p95_ms=p95,
        p99_ms=p99,
        throughput_per_sec=throughput,
        errors_by_kind=dict(sorted(errors_by_kind.items())),
    )


def aggregate_per_second(
    run_id: str,
    outcomes: Iterable[RequestOutcome],
    start_mono: float,
    duration_sec: float | None = None,
) -> list[PerSecondMetrics]:
    buckets: dict[int, list[RequestOutcome]] = defaultdict(list)
    for outcome in outcomes:
        second = max(0, int(outcome.mono_time - start_mono))
        buckets[second].append(outcome)

    if duration_sec is not None:
        duration = max(0, math.ceil(duration_sec))
    else:
        duration = max(buckets) + 1 if buckets else 0

    metrics: list[PerSecondMetrics] = []
    for second in range(duration):
        bucket = buckets.get(second, [])
        latencies = [o.latency_ms for o in bucket if o.success]
        completed = len(bucket)
        error_count = sum(1 for o in bucket if not o.success)
        timeout_count = sum(1 for o in bucket if o.error_type is ErrorType.TIMEOUT)
        p50, p95, p99 = _percentiles(latencies)
        total = max(1, completed)
        metrics.append(
            PerSecondMetrics(
                run_id=run_id,
                second=second,
                completed=completed,
                p50_ms=p50,
                p95_ms=p95,
                p99_ms=p99,
                error_rate=error_count / total,
                timeout_rate=timeout_count / total,
            )
        )
    return metrics


def _percentiles(latencies: Sequence[float]) -> tuple[float, float, float]:
    if not latencies:
        return 0.0, 0.0, 0.0
    p50, p95, p99 = np.percentile(latencies, [50, 95, 99])
    return float(p50), float(p95), float(p99)
