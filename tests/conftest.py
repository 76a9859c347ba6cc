from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterator

import pytest
import structlog

from notiload.metrics import MetricsAggregator


@dataclass
class FakeTransport:
    id: int
    sent: list[str] = field(default_factory=list)
    closed: bool = False
    fail_send: bool = False
    fail_close: bool = False
    send_delay_sec: float = 0.0

    async def send(self, message: str) -> None:
        if self.send_delay_sec:
            await asyncio.sleep(self.send_delay_sec)
        if self.fail_send:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(message)

    async def close(self) -> None:
        if self.fail_close:
            raise OSError("close failed")
        self.closed = True


@dataclass
class FakeConnector:
    """Hands out in-memory transports; the first ``fail_first`` calls are refused."""

    fail_first: int = 0
    always_fail: bool = False
    calls: int = 0
    urls: list[str] = field(default_factory=list)
    transports: list[FakeTransport] = field(default_factory=list)

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        self.urls.append(url)
        await asyncio.sleep(0)
        if self.always_fail or self.calls <= self.fail_first:
            raise ConnectionRefusedError(f"refused: {url}")
        transport = FakeTransport(id=len(self.transports))
        self.transports.append(transport)
        return transport


@pytest.fixture
def aggregator() -> MetricsAggregator:
    return MetricsAggregator("test-run")


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)
