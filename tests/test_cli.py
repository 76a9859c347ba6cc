from __future__ import annotations

import pytest
import structlog

from notiload import cli
from notiload.log import setup_logging
from notiload.config import RunConfig
from notiload.errors import PoolConnectionError
from notiload.loadgen.runner import RunReport
from notiload.metrics import summarize_outcomes


def test_defaults_mirror_original_script() -> None:
    config = cli.build_config(cli.build_parser().parse_args([]))
    assert config.pool.connections == 1000
    assert config.pool.messages == 10000
    assert config.burst.concurrency == 100
    assert config.burst.duration_sec == 10.0
    assert config.burst.total_requests is None
    assert config.pool.min_ready == 1
    assert config.pool.retry.max_attempts == 3
    assert config.burst.headers == {"content-type": "application/json"}


def test_options_map_onto_config() -> None:
    args = cli.build_parser().parse_args(
        [
            "--ws-url",
            "ws://other:9000/ws",
            "--http-url",
            "http://other:9000/notifications",
            "--connections",
            "5",
            "--messages",
            "20",
            "--http-concurrency",
            "7",
            "--duration",
            "2.5",
            "--requests",
            "100",
            "--deadline",
            "30",
        ]
    )
    config = cli.build_config(args)
    assert config.pool.url == "ws://other:9000/ws"
    assert config.burst.url == "http://other:9000/notifications"
    assert (config.pool.connections, config.pool.messages) == (5, 20)
    assert config.burst.concurrency == 7
    assert config.burst.duration_sec == 2.5
    assert config.burst.total_requests == 100
    assert config.deadline_sec == 30.0


def test_main_exits_non_zero_when_pool_fails(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def fail(config: RunConfig) -> RunReport:
        raise PoolConnectionError("only 0/5 connections to ws://down/ws became ready, 1 required")

    monkeypatch.setattr(cli, "run_load_test", fail)
    monkeypatch.setattr(cli, "setup_logging", lambda level, json_logs: None)
    assert cli.main(["--connections", "5"]) == 1
    assert "Load test aborted" in capsys.readouterr().err


def test_main_prints_summary(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    empty = summarize_outcomes([])

    async def succeed(config: RunConfig) -> RunReport:
        return RunReport(
            run_id="run-9",
            connections_requested=config.pool.connections,
            connections_ready=config.pool.connections,
            overall=empty,
            by_kind={"connect": empty, "send": empty, "http_request": empty},
            connection_states={"closed": config.pool.connections},
            per_second=[],
            elapsed_sec=0.5,
        )

    monkeypatch.setattr(cli, "run_load_test", succeed)
    monkeypatch.setattr(cli, "setup_logging", lambda level, json_logs: None)
    assert cli.main(["--connections", "2"]) == 0
    out = capsys.readouterr().out
    assert "Run run-9" in out
    assert "Connections ready: 2/2" in out


def test_logging_goes_through_stdlib_handlers(caplog: pytest.LogCaptureFixture) -> None:
    setup_logging("INFO")
    assert isinstance(structlog.get_config()["logger_factory"], structlog.stdlib.LoggerFactory)
    structlog.get_logger().info("pool_opened", ready=3)
    structlog.get_logger().debug("connection_failed", connection_id=0)
    assert "pool_opened" in caplog.text
    assert "connection_failed" not in caplog.text
