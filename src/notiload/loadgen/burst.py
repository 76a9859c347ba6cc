from __future__ import annotations

import json
import time
from typing import Any, Mapping

import httpx
import structlog

from notiload.config import BurstConfig
from notiload.loadgen.client import send_request
from notiload.loadgen.driver import BoundedDriver
from notiload.loadgen.payloads import notification_body
from notiload.metrics import ErrorType, MetricsAggregator, OperationKind, RequestOutcome, Summary

logger = structlog.get_logger()


class RequestBurstDriver:
    def __init__(
        self,
        aggregator: MetricsAggregator,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout_sec: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.body = json.dumps(dict(body)).encode("utf-8")
        self.headers = dict(headers) if headers is not None else {"content-type": "application/json"}
        self.timeout_sec = timeout_sec
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: BurstConfig,
        aggregator: MetricsAggregator,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestBurstDriver:
        return cls(
            aggregator,
            notification_body(config.notification),
            headers=config.headers,
            timeout_sec=config.timeout_sec,
            transport=transport,
        )

    async def run(
        self,
        url: str,
        total_requests: int | None,
        concurrency: int,
        duration_sec: float | None,
        *,
        stop_at: float | None = None,
        grace_sec: float = 5.0,
    ) -> Summary:
        started = time.perf_counter()
        if duration_sec is not None:
            duration_stop = started + duration_sec
            stop_at = duration_stop if stop_at is None else min(stop_at, duration_stop)
        driver = BoundedDriver(
            concurrency=concurrency,
            total=total_requests,
            stop_at=stop_at,
            grace_sec=grace_sec,
        )
        if total_requests == 0:
            return self.aggregator.summarize(OperationKind.HTTP_REQUEST)

        limits = httpx.Limits(max_connections=concurrency, max_keepalive_connections=concurrency)
        logger.info("burst_started", url=url, total_requests=total_requests, concurrency=concurrency, duration_sec=duration_sec)
        async with httpx.AsyncClient(limits=limits, transport=self._transport) as client:

            async def issue(index: int) -> None:
                outcome = await send_request(
                    client,
                    self.aggregator.run_id,
                    url,
                    self.body,
                    self.headers,
                    self.timeout_sec,
                )
                self.aggregator.record(outcome)

            def abandon(index: int, started_wall: float, started_mono: float) -> None:
                now = time.perf_counter()
                self.aggregator.record(
                    RequestOutcome(
                        run_id=self.aggregator.run_id,
                        kind=OperationKind.HTTP_REQUEST,
                        success=False,
                        latency_ms=(now - started_mono) * 1000.0,
                        wall_time=started_wall,
                        mono_time=now,
                        error_type=ErrorType.TIMEOUT,
                    )
                )

            issued = await driver.run(issue, abandon)

        summary = self.aggregator.summarize(OperationKind.HTTP_REQUEST)
        logger.info(
            "burst_finished",
            url=url,
            issued=issued,
            error_rate=round(summary.error_rate, 4),
            elapsed_sec=round(time.perf_counter() - started, 3),
        )
        return summary
