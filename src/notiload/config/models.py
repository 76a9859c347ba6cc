from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


def _json_headers() -> dict[str, str]:
    return {"content-type": "application/json"}


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_sec: float = 0.1
    max_delay_sec: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_sec, self.base_delay_sec * (2 ** (attempt - 1)))


@dataclass(frozen=True, slots=True)
class PoolConfig:
    url: str = "ws://localhost:8084/ws"
    connections: int = 1000
    messages: int = 10000
    send_concurrency: int = 100
    connect_concurrency: int = 100
    connect_timeout_sec: float = 10.0
    min_ready: int | None = None  # None: every connection must be ready
    message_type: str = "test"
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    type: str = "email"
    recipient: str = "test@example.com"
    subject: str = "Load Test"
    content: str = "Test Content"


@dataclass(frozen=True, slots=True)
class BurstConfig:
    url: str = "http://localhost:8084/notifications"
    total_requests: int | None = None
    concurrency: int = 100
    duration_sec: float | None = 10.0
    timeout_sec: float = 10.0
    headers: Mapping[str, str] = field(default_factory=_json_headers)
    notification: NotificationConfig = field(default_factory=NotificationConfig)


@dataclass(frozen=True, slots=True)
class RunConfig:
    pool: PoolConfig = field(default_factory=PoolConfig)
    burst: BurstConfig = field(default_factory=BurstConfig)
    deadline_sec: float | None = None
    grace_sec: float = 5.0
    run_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str = ""

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "run_id": self.run_id or "",
            "created_at": self.created_at.isoformat(),
            "deadline_sec": self.deadline_sec,
            "grace_sec": self.grace_sec,
            "notes": self.notes,
            "pool": {
                "url": self.pool.url,
                "connections": self.pool.connections,
                "messages": self.pool.messages,
                "send_concurrency": self.pool.send_concurrency,
                "connect_concurrency": self.pool.connect_concurrency,
                "connect_timeout_sec": self.pool.connect_timeout_sec,
                "min_ready": self.pool.min_ready,
                "message_type": self.pool.message_type,
                "retry": {
                    "max_attempts": self.pool.retry.max_attempts,
                    "base_delay_sec": self.pool.retry.base_delay_sec,
                    "max_delay_sec": self.pool.retry.max_delay_sec,
                },
            },
            "burst": {
                "url": self.burst.url,
                "total_requests": self.burst.total_requests,
                "concurrency": self.burst.concurrency,
                "duration_sec": self.burst.duration_sec,
                "timeout_sec": self.burst.timeout_sec,
                "headers": dict(self.burst.headers),
                "notification": {
                    "type": self.burst.notification.type,
                    "recipient": self.burst.notification.recipient,
                    "subject": self.burst.notification.subject,
                    "content": self.burst.notification.content,
                },
            },
        }
