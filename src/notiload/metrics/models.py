from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class OperationKind(str, Enum):
    CONNECT = "connect"
    SEND = "send"
    HTTP_REQUEST = "http_request"


class ErrorType(str, Enum):
    CONNECTION = "connection"
    NO_CAPACITY = "no_capacity"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    HTTP_STATUS = "http_status"
    OTHER = "other"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    run_id: str
    kind: OperationKind
    success: bool
    latency_ms: float
    wall_time: float
    mono_time: float  # completion, perf_counter clock
    error_type: ErrorType | None = None
    status_code: int | None = None
    connection_id: int | None = None
    bytes_sent: int = 0
    bytes_received: int = 0

    @property
    def started_mono(self) -> float:
        return self.mono_time - self.latency_ms / 1000.0


@dataclass(frozen=True, slots=True)
class Summary:
    count: int
    success_count: int
    failure_count: int
    error_rate: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    throughput_per_sec: float
    errors_by_kind: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PerSecondMetrics:
    run_id: str
    second: int
    completed: int
    p50_ms: float
    p95_ms: float
    p99_ms: float
    error_rate: float
    timeout_rate: float
