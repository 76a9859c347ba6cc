from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

import structlog

from notiload.config import BurstConfig, PoolConfig, RetryConfig, RunConfig
from notiload.errors import PoolConnectionError
from notiload.loadgen.runner import run_load_test
from notiload.log import setup_logging
from notiload.report import format_report

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WebSocket and HTTP load generator for the notification service")
    parser.add_argument("--ws-url", default="ws://localhost:8084/ws", help="Target WebSocket URL")
    parser.add_argument("--http-url", default="http://localhost:8084/notifications", help="Target HTTP URL")
    parser.add_argument("--connections", type=int, default=1000)
    parser.add_argument("--messages", type=int, default=10000)
    parser.add_argument("--send-concurrency", type=int, default=100)
    parser.add_argument("--min-connections", type=int, default=1, help="Ready connections required to proceed")
    parser.add_argument("--connect-timeout", type=float, default=10.0)
    parser.add_argument("--connect-attempts", type=int, default=3)

    parser.add_argument("--http-concurrency", type=int, default=100)
    parser.add_argument("--duration", type=float, default=10.0, help="HTTP burst duration in seconds")
    parser.add_argument("--requests", type=int, default=None, help="Stop the HTTP burst after this many requests")
    parser.add_argument("--http-timeout", type=float, default=10.0)

    parser.add_argument("--deadline", type=float, default=None, help="Overall run deadline in seconds")
    parser.add_argument("--grace", type=float, default=5.0, help="Drain period after the deadline")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--notes", default="")
    parser.add_argument("--per-second", action="store_true", help="Print the per-second timeline")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--json-logs", action="store_true")
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    pool = PoolConfig(
        url=args.ws_url,
        connections=args.connections,
        messages=args.messages,
        send_concurrency=args.send_concurrency,
        connect_timeout_sec=args.connect_timeout,
        min_ready=args.min_connections,
        retry=RetryConfig(max_attempts=args.connect_attempts),
    )
    burst = BurstConfig(
        url=args.http_url,
        total_requests=args.requests,
        concurrency=args.http_concurrency,
        duration_sec=args.duration,
        timeout_sec=args.http_timeout,
    )
    return RunConfig(
        pool=pool,
        burst=burst,
        deadline_sec=args.deadline,
        grace_sec=args.grace,
        run_id=args.run_id,
        notes=args.notes,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, json_logs=args.json_logs)
    config = build_config(args)
    try:
        report = asyncio.run(run_load_test(config))
    except PoolConnectionError as exc:
        logger.error("run_aborted", error=str(exc))
        print(f"Load test aborted: {exc}", file=sys.stderr)
        return 1
    print(format_report(report, per_second=args.per_second))
    return 0


if __name__ == "__main__":
    sys.exit(main())
