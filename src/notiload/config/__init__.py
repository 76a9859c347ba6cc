from __future__ import annotations

from notiload.config.models import (
    BurstConfig,
    NotificationConfig,
    PoolConfig,
    RetryConfig,
    RunConfig,
)

__all__ = [
    "BurstConfig",
    "NotificationConfig",
    "PoolConfig",
    "RetryConfig",
    "RunConfig",
]
