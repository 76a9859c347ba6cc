from __future__ import annotations

from typing import Iterable, Mapping

import pandas as pd

from notiload.loadgen.runner import RunReport
from notiload.metrics import PerSecondMetrics, Summary


def summary_frame(summaries: Mapping[str, Summary]) -> pd.DataFrame:
    rows = [
        {
            "operation": name,
            "count": s.count,
            "errors": s.failure_count,
            "error_rate": s.error_rate,
            "p50_ms": s.p50_ms,
            "p95_ms": s.p95_ms,
            "p99_ms": s.p99_ms,
            "throughput_per_sec": s.throughput_per_sec,
        }
        for name, s in summaries.items()
    ]
    return pd.DataFrame(rows).set_index("operation") if rows else pd.DataFrame()


def errors_frame(summaries: Mapping[str, Summary]) -> pd.DataFrame:
    rows = [
        {"operation": name, "error_type": error_type, "count": count}
        for name, s in summaries.items()
        for error_type, count in s.errors_by_kind.items()
    ]
    if not rows:
        return pd.DataFrame(columns=["operation", "error_type", "count"])
    return pd.DataFrame(rows).sort_values(["operation", "error_type"]).reset_index(drop=True)


def per_second_frame(metrics: Iterable[PerSecondMetrics]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "second": m.second,
                "completed": m.completed,
                "p50_ms": m.p50_ms,
                "p95_ms": m.p95_ms,
                "p99_ms": m.p99_ms,
                "error_rate": m.error_rate,
                "timeout_rate": m.timeout_rate,
            }
            for m in metrics
        ]
    )


def format_report(report: RunReport, per_second: bool = False) -> str:
    summaries = {"all": report.overall, **report.by_kind}
    lines = [
        f"Run {report.run_id} finished in {report.elapsed_sec:.2f}s",
        f"Connections ready: {report.connections_ready}/{report.connections_requested}",
        "Connection states: "
        + (", ".join(f"{k}={v}" for k, v in sorted(report.connection_states.items())) or "none"),
        "",
        summary_frame(summaries).to_string(float_format=lambda v: f"{v:.3f}"),
        "",
    ]
    errors = errors_frame(report.by_kind)
    if errors.empty:
        lines.append("Errors: none")
    else:
        lines.append("Errors by kind:")
        lines.append(errors.to_string(index=False))
    if per_second and report.per_second:
        lines += ["", per_second_frame(report.per_second).to_string(index=False, float_format=lambda v: f"{v:.3f}")]
    return "\n".join(lines)
