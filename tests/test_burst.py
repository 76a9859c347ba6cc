from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from notiload.config import BurstConfig
from notiload.loadgen.burst import RequestBurstDriver
from notiload.metrics import MetricsAggregator, OperationKind

URL = "http://svc/notifications"


class InFlightTracker:
    def __init__(self, status_code: int = 202, delay_sec: float = 0.0) -> None:
        self.status_code = status_code
        self.delay_sec = delay_sec
        self.in_flight = 0
        self.max_in_flight = 0
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            return httpx.Response(self.status_code, json={"status": "queued"})
        finally:
            self.in_flight -= 1


def _driver(aggregator: MetricsAggregator, handler: object) -> RequestBurstDriver:
    return RequestBurstDriver.from_config(BurstConfig(url=URL), aggregator, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_burst_reports_latency_and_bounded_concurrency(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker(delay_sec=0.05)
    summary = await _driver(aggregator, handler).run(URL, 100, concurrency=10, duration_sec=None)
    assert summary.count == 100
    assert summary.error_rate == 0.0
    assert 45.0 <= summary.p50_ms <= 150.0
    assert summary.throughput_per_sec > 0
    assert handler.max_in_flight == 10


@pytest.mark.asyncio
async def test_requests_carry_notification_body(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker()
    await _driver(aggregator, handler).run(URL, 3, concurrency=2, duration_sec=None)
    assert len(handler.requests) == 3
    request = handler.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {
        "type": "email",
        "recipient": "test@example.com",
        "subject": "Load Test",
        "content": "Test Content",
    }


@pytest.mark.asyncio
async def test_server_errors_do_not_abort_the_burst(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker(status_code=500)
    summary = await _driver(aggregator, handler).run(URL, 50, concurrency=5, duration_sec=None)
    assert summary.count == 50
    assert len(handler.requests) == 50
    assert summary.error_rate == 1.0
    assert summary.errors_by_kind == {"http_status": 50}
    assert summary.p50_ms == 0.0
    assert {o.status_code for o in aggregator.outcomes()} == {500}


@pytest.mark.asyncio
async def test_zero_requests_returns_immediately(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker()
    summary = await _driver(aggregator, handler).run(URL, 0, concurrency=10, duration_sec=10.0)
    assert summary.count == 0
    assert summary.error_rate == 0.0
    assert summary.p99_ms == 0.0
    assert handler.requests == []


@pytest.mark.asyncio
async def test_duration_stops_before_request_budget(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker(delay_sec=0.01)
    summary = await _driver(aggregator, handler).run(URL, 10_000, concurrency=5, duration_sec=0.2)
    assert 0 < summary.count < 10_000
    assert summary.count == len(handler.requests)
    assert summary.error_rate == 0.0


@pytest.mark.asyncio
async def test_stuck_requests_are_abandoned_as_timeouts(aggregator: MetricsAggregator) -> None:
    handler = InFlightTracker(delay_sec=10.0)
    summary = await _driver(aggregator, handler).run(URL, None, concurrency=3, duration_sec=0.05, grace_sec=0.05)
    assert summary.count == 3
    assert summary.errors_by_kind == {"timeout": 3}


@pytest.mark.asyncio
async def test_transport_errors_are_classified(aggregator: MetricsAggregator) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    summary = await _driver(aggregator, refuse).run(URL, 4, concurrency=2, duration_sec=None)
    assert summary.errors_by_kind == {"connection": 4}

    def hang_up(request: httpx.Request) -> httpx.Response:
        raise httpx.RemoteProtocolError("server disconnected", request=request)

    other = MetricsAggregator("other-run")
    assert (await _driver(other, hang_up).run(URL, 2, 1, None)).errors_by_kind == {"protocol": 2}

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    third = MetricsAggregator("third-run")
    assert (await _driver(third, slow).run(URL, 2, 1, None)).errors_by_kind == {"timeout": 2}


@pytest.mark.asyncio
async def test_unbounded_burst_is_rejected(aggregator: MetricsAggregator) -> None:
    with pytest.raises(ValueError):
        await _driver(aggregator, InFlightTracker()).run(URL, None, concurrency=1, duration_sec=None)


@pytest.mark.asyncio
async def test_outcomes_are_http_kind(aggregator: MetricsAggregator) -> None:
    await _driver(aggregator, InFlightTracker()).run(URL, 5, concurrency=5, duration_sec=None)
    assert {o.kind for o in aggregator.outcomes()} == {OperationKind.HTTP_REQUEST}
    assert all(o.error_type is None for o in aggregator.outcomes())
    assert aggregator.summarize(OperationKind.SEND).count == 0
