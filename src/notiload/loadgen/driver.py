from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()

IssueFn = Callable[[int], Awaitable[object]]
AbandonFn = Callable[[int, float, float], None]


@dataclass(slots=True)
class BoundedDriver:
    concurrency: int
    total: int | None = None
    stop_at: float | None = None
    grace_sec: float = 5.0
    issued: int = 0

    def __post_init__(self) -> None:
        if self.concurrency <= 0:
            msg = f"concurrency must be positive, got {self.concurrency}"
            raise ValueError(msg)
        if self.total is not None and self.total < 0:
            msg = f"total must not be negative, got {self.total}"
            raise ValueError(msg)
        if self.total is None and self.stop_at is None:
            msg = "either total or stop_at must bound the run"
            raise ValueError(msg)

    async def run(self, issue: IssueFn, abandon: AbandonFn) -> int:
        workers = self.concurrency
        if self.total is not None:
            workers = min(workers, self.total)
        if workers == 0 or self._stopped():
            return 0
        tasks = [asyncio.create_task(self._worker(issue, abandon)) for _ in range(workers)]
        timeout = None
        if self.stop_at is not None:
            timeout = max(0.0, self.stop_at + self.grace_sec - time.perf_counter())
        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        if pending:
            logger.warning("driver_abandoning_in_flight", workers=len(pending), grace_sec=self.grace_sec)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()
        return self.issued

    async def _worker(self, issue: IssueFn, abandon: AbandonFn) -> None:
        while True:
            index = self._claim()
            if index is None:
                return
            started_wall = time.time()
            started_mono = time.perf_counter()
            try:
                await issue(index)
            except asyncio.CancelledError:
                abandon(index, started_wall, started_mono)
                raise

    def _claim(self) -> int | None:
        if self.total is not None and self.issued >= self.total:
            return None
        if self._stopped():
            return None
        index = self.issued
        self.issued += 1
        return index

    def _stopped(self) -> bool:
        return self.stop_at is not None and time.perf_counter() >= self.stop_at
