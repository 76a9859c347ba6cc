from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Sequence

import structlog

from notiload.config import PoolConfig, RetryConfig
from notiload.errors import NoCapacityError, OperationTimeoutError, PoolConnectionError
from notiload.loadgen.driver import BoundedDriver
from notiload.loadgen.transport import (
    TRANSPORT_ERRORS,
    Connector,
    Transport,
    classify_transport_error,
    websocket_connect,
)
from notiload.metrics import (
    ConnectionState,
    ErrorType,
    MetricsAggregator,
    OperationKind,
    RequestOutcome,
)

logger = structlog.get_logger()

StateCallback = Callable[[int, ConnectionState], None]

_ALLOWED_TRANSITIONS = {
    (ConnectionState.CONNECTING, ConnectionState.READY),
    (ConnectionState.CONNECTING, ConnectionState.FAILED),
    (ConnectionState.READY, ConnectionState.CLOSED),
}


@dataclass(slots=True)
class Connection:
    id: int
    transport: Transport | None = None
    state: ConnectionState = ConnectionState.CONNECTING
    last_activity: float = 0.0
    messages_sent: int = 0


@dataclass(frozen=True, slots=True)
class DispatchTask:
    payload: bytes
    connection_id: int
    enqueued_mono: float


class ConnectionPool:
    def __init__(
        self,
        aggregator: MetricsAggregator,
        *,
        retry: RetryConfig | None = None,
        connect_timeout_sec: float = 10.0,
        connect_concurrency: int = 100,
        min_ready: int | None = None,
        connector: Connector | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.retry = retry or RetryConfig()
        self.connect_timeout_sec = connect_timeout_sec
        self.connect_concurrency = connect_concurrency
        self.min_ready = min_ready
        self._connector = connector or websocket_connect
        self._on_state_change = on_state_change or aggregator.record_state
        self._connections: list[Connection] = []
        self._cursor = 0

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections)

    def ready_count(self) -> int:
        return sum(1 for c in self._connections if c.state is ConnectionState.READY)

    async def open(
        self,
        count: int,
        url: str,
        *,
        stop_at: float | None = None,
        grace_sec: float = 5.0,
    ) -> ConnectionPool:
        if count <= 0:
            msg = f"connection count must be positive, got {count}"
            raise ValueError(msg)
        required = count if self.min_ready is None else min(self.min_ready, count)
        self._connections = [Connection(id=i) for i in range(count)]
        self._cursor = 0
        for conn in self._connections:
            self._on_state_change(conn.id, conn.state)

        logger.info("pool_opening", url=url, count=count, required=required)
        semaphore = asyncio.Semaphore(max(1, self.connect_concurrency))

        tasks = [
            asyncio.create_task(self._connect_one(conn, url, semaphore, stop_at)) for conn in self._connections
        ]
        timeout = None
        if stop_at is not None:
            timeout = max(0.0, stop_at + grace_sec - time.perf_counter())
        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._cancel(tasks)
            await self.close()
            raise
        if pending:
            logger.warning("pool_abandoning_connects", pending=len(pending), grace_sec=grace_sec)
            await self._cancel(pending)
        errors = [t.exception() for t in done if not t.cancelled() and t.exception() is not None]
        if errors:
            await self.close()
            raise errors[0]

        ready = self.ready_count()
        if ready < required:
            logger.error("pool_open_failed", url=url, ready=ready, required=required, count=count)
            await self.close()
            msg = f"only {ready}/{count} connections to {url} became ready, {required} required"
            raise PoolConnectionError(msg)
        if ready < count:
            logger.warning("pool_partially_open", url=url, ready=ready, failed=count - ready)
        else:
            logger.info("pool_opened", url=url, ready=ready)
        return self

    async def _connect_one(
        self,
        conn: Connection,
        url: str,
        semaphore: asyncio.Semaphore,
        stop_at: float | None,
    ) -> None:
        start_wall = time.time()
        start_mono = time.perf_counter()
        try:
            async with semaphore:
                transport = await self._establish(conn, url, stop_at)
        except asyncio.CancelledError:
            self._fail(conn, start_wall, start_mono, ErrorType.TIMEOUT)
            raise
        except TRANSPORT_ERRORS as exc:
            logger.debug("connection_failed", connection_id=conn.id, error=str(exc))
            self._fail(conn, start_wall, start_mono, classify_transport_error(exc))
            return
        except Exception:
            self._fail(conn, start_wall, start_mono, ErrorType.OTHER)
            raise
        conn.transport = transport
        conn.last_activity = time.perf_counter()
        self._transition(conn, ConnectionState.READY)
        self._record(OperationKind.CONNECT, start_wall, start_mono, connection_id=conn.id)

    async def _establish(self, conn: Connection, url: str, stop_at: float | None) -> Transport:
        if stop_at is not None and time.perf_counter() >= stop_at:
            msg = f"run deadline passed before connection {conn.id} was attempted"
            raise OperationTimeoutError(msg)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(url)
            except TRANSPORT_ERRORS:
                if attempt >= self.retry.max_attempts:
                    raise
                delay = self.retry.delay_for(attempt)
                # no retry may start past the run deadline
                if stop_at is not None and time.perf_counter() + delay >= stop_at:
                    raise
                await asyncio.sleep(delay)

    def _fail(self, conn: Connection, start_wall: float, start_mono: float, error_type: ErrorType) -> None:
        if conn.state is not ConnectionState.CONNECTING:
            return
        self._transition(conn, ConnectionState.FAILED)
        self._record(
            OperationKind.CONNECT,
            start_wall,
            start_mono,
            connection_id=conn.id,
            error_type=error_type,
        )

    @staticmethod
    async def _cancel(tasks: Iterable[asyncio.Task[None]]) -> None:
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _attempt(self, url: str) -> Transport:
        try:
            return await asyncio.wait_for(self._connector(url), timeout=self.connect_timeout_sec)
        except asyncio.TimeoutError as exc:
            msg = f"connecting to {url} took longer than {self.connect_timeout_sec}s"
            raise OperationTimeoutError(msg) from exc

    def _select(self) -> Connection | None:
        total = len(self._connections)
        for step in range(total):
            conn = self._connections[(self._cursor + step) % total]
            if conn.state is ConnectionState.READY:
                self._cursor = (self._cursor + step + 1) % total
                return conn
        return None

    async def dispatch(self, payload: str) -> RequestOutcome:
        start_wall = time.time()
        start_mono = time.perf_counter()
        conn = self._select()
        if conn is None:
            self._record(
                OperationKind.SEND,
                start_wall,
                start_mono,
                error_type=ErrorType.NO_CAPACITY,
            )
            msg = "no ready connection to dispatch to"
            raise NoCapacityError(msg)
        task = DispatchTask(
            payload=payload.encode("utf-8"),
            connection_id=conn.id,
            enqueued_mono=start_mono,
        )
        transport = conn.transport
        if transport is None:
            msg = f"connection {conn.id} is ready without a transport"
            raise RuntimeError(msg)
        try:
            await transport.send(payload)
        except TRANSPORT_ERRORS as exc:
            logger.warning("connection_lost", connection_id=conn.id, error=str(exc))
            if conn.state is ConnectionState.READY:
                self._transition(conn, ConnectionState.CLOSED)
            return self._record(
                OperationKind.SEND,
                start_wall,
                task.enqueued_mono,
                connection_id=task.connection_id,
                error_type=classify_transport_error(exc),
            )
        conn.last_activity = time.perf_counter()
        conn.messages_sent += 1
        return self._record(
            OperationKind.SEND,
            start_wall,
            task.enqueued_mono,
            connection_id=task.connection_id,
            bytes_sent=len(task.payload),
        )

    async def dispatch_many(
        self,
        payloads: Sequence[str],
        concurrency: int,
        stop_at: float | None = None,
        grace_sec: float = 5.0,
    ) -> int:
        driver = BoundedDriver(
            concurrency=concurrency,
            total=len(payloads),
            stop_at=stop_at,
            grace_sec=grace_sec,
        )

        async def issue(index: int) -> None:
            try:
                await self.dispatch(payloads[index])
            except NoCapacityError:
                pass  # recorded as a no_capacity outcome

        def abandon(index: int, started_wall: float, started_mono: float) -> None:
            self._record(
                OperationKind.SEND,
                started_wall,
                started_mono,
                error_type=ErrorType.TIMEOUT,
            )

        issued = await driver.run(issue, abandon)
        logger.info("dispatch_finished", issued=issued, requested=len(payloads), ready=self.ready_count())
        return issued

    async def close(self) -> None:
        for conn in self._connections:
            if conn.state is ConnectionState.READY:
                self._transition(conn, ConnectionState.CLOSED)
        # connections lost mid-send are already closed but still hold a transport
        closing = [c for c in self._connections if c.transport is not None]
        results = await asyncio.gather(
            *(self._close_transport(conn) for conn in closing),
            return_exceptions=True,
        )
        failures = sum(1 for r in results if isinstance(r, BaseException))
        if closing:
            logger.info("pool_closed", closed=len(closing), close_errors=failures)

    async def _close_transport(self, conn: Connection) -> None:
        transport, conn.transport = conn.transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("connection_close_failed", connection_id=conn.id, error=str(exc))
            raise

    def _transition(self, conn: Connection, new_state: ConnectionState) -> None:
        if (conn.state, new_state) not in _ALLOWED_TRANSITIONS:
            msg = f"connection {conn.id} cannot move from {conn.state.value} to {new_state.value}"
            raise RuntimeError(msg)
        conn.state = new_state
        self._on_state_change(conn.id, new_state)

    def _record(
        self,
        kind: OperationKind,
        start_wall: float,
        start_mono: float,
        *,
        connection_id: int | None = None,
        error_type: ErrorType | None = None,
        bytes_sent: int = 0,
    ) -> RequestOutcome:
        now = time.perf_counter()
        outcome = RequestOutcome(
            run_id=self.aggregator.run_id,
            kind=kind,
            success=error_type is None,
            latency_ms=(now - start_mono) * 1000.0,
            wall_time=start_wall,
            mono_time=now,
            error_type=error_type,
            connection_id=connection_id,
            bytes_sent=bytes_sent,
        )
        self.aggregator.record(outcome)
        return outcome


@asynccontextmanager
async def open_pool(
    config: PoolConfig,
    aggregator: MetricsAggregator,
    connector: Connector | None = None,
    *,
    stop_at: float | None = None,
    grace_sec: float = 5.0,
) -> AsyncIterator[ConnectionPool]:
    pool = ConnectionPool(
        aggregator,
        retry=config.retry,
        connect_timeout_sec=config.connect_timeout_sec,
        connect_concurrency=config.connect_concurrency,
        min_ready=config.min_ready,
        connector=connector,
    )
    try:
        await pool.open(config.connections, config.url, stop_at=stop_at, grace_sec=grace_sec)
        yield pool
    finally:
        await pool.close()
