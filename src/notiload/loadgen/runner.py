from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, replace

import httpx
import structlog

from notiload.config import RunConfig
from notiload.loadgen.burst import RequestBurstDriver
from notiload.loadgen.payloads import ws_messages
from notiload.loadgen.pool import open_pool
from notiload.loadgen.transport import Connector
from notiload.metrics import (
    MetricsAggregator,
    OperationKind,
    PerSecondMetrics,
    Summary,
    aggregate_per_second,
)

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class RunReport:
    run_id: str
    connections_requested: int
    connections_ready: int
    overall: Summary
    by_kind: dict[str, Summary]
    connection_states: dict[str, int]
    per_second: list[PerSecondMetrics]
    elapsed_sec: float


def _new_run_id() -> str:
    return uuid.uuid4().hex


async def run_load_test(
    config: RunConfig,
    *,
    aggregator: MetricsAggregator | None = None,
    connector: Connector | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> RunReport:
    run_id = config.run_id or _new_run_id()
    config = replace(config, run_id=run_id)
    aggregator = aggregator or MetricsAggregator(run_id)
    started_mono = time.perf_counter()
    stop_at = None
    if config.deadline_sec is not None:
        stop_at = started_mono + config.deadline_sec

    log = logger.bind(run_id=run_id)
    log.info("run_started", config=config.to_metadata())

    messages = ws_messages(config.pool.messages, config.pool.message_type)
    burst = RequestBurstDriver.from_config(config.burst, aggregator, transport=http_transport)
    async with open_pool(
        config.pool,
        aggregator,
        connector=connector,
        stop_at=stop_at,
        grace_sec=config.grace_sec,
    ) as pool:
        connections_ready = pool.ready_count()
        await asyncio.gather(
            pool.dispatch_many(
                messages,
                concurrency=config.pool.send_concurrency,
                stop_at=stop_at,
                grace_sec=config.grace_sec,
            ),
            burst.run(
                config.burst.url,
                config.burst.total_requests,
                config.burst.concurrency,
                config.burst.duration_sec,
                stop_at=stop_at,
                grace_sec=config.grace_sec,
            ),
        )

    elapsed = time.perf_counter() - started_mono
    report = RunReport(
        run_id=run_id,
        connections_requested=config.pool.connections,
        connections_ready=connections_ready,
        overall=aggregator.summarize(),
        by_kind={kind.value: aggregator.summarize(kind) for kind in OperationKind},
        connection_states=aggregator.connection_states(),
        per_second=aggregate_per_second(run_id, aggregator.outcomes(), started_mono, elapsed),
        elapsed_sec=elapsed,
    )
    log.info(
        "run_finished",
        elapsed_sec=round(elapsed, 3),
        operations=report.overall.count,
        error_rate=round(report.overall.error_rate, 4),
    )
    return report
