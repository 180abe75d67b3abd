"""Tests for meshdeploy.core.logging."""

from __future__ import annotations

import json

import pytest
import structlog

from meshdeploy.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


def _records(err: str) -> list[dict]:
    return [json.loads(line) for line in err.splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_output_uses_ecs_fields(self, capsys):
        configure_logging(level="INFO", json_format=True, service="meshdeploy-test")
        get_logger("tests").info("unit.deploying", unit="vault")

        (record,) = _records(capsys.readouterr().err)
        assert record["event"] == "unit.deploying"
        assert record["unit"] == "vault"
        assert record["log.level"] == "info"
        assert record["service.name"] == "meshdeploy-test"
        assert "@timestamp" in record

    def test_level_filters_debug(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        log = get_logger("tests")
        log.info("ignored")
        log.warning("kept")

        records = _records(capsys.readouterr().err)
        assert [r["event"] for r in records] == ["kept"]


class TestGetLogger:
    def test_named_logger_before_configuration(self):
        log = get_logger("meshdeploy.deploy.health")
        assert hasattr(log, "info")

    def test_named_logger_emits(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        get_logger("meshdeploy.deploy.orchestrator").info("plan.built", units=3)

        (record,) = _records(capsys.readouterr().err)
        assert record["event"] == "plan.built"
        assert record["units"] == 3

    def test_unnamed_logger(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        get_logger().info("anonymous")

        (record,) = _records(capsys.readouterr().err)
        assert record["event"] == "anonymous"


class TestLogContext:
    def test_context_is_bound_and_released(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        log = get_logger("tests")
        with LogContext(run_id="abc123", environment="staging"):
            log.info("inside")
        log.info("outside")

        inside, outside = _records(capsys.readouterr().err)
        assert inside["run_id"] == "abc123"
        assert inside["environment"] == "staging"
        assert "run_id" not in outside

    @pytest.mark.asyncio
    async def test_async_context(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        async with LogContext(run_id="r9"):
            get_logger("tests").info("inside")

        (record,) = _records(capsys.readouterr().err)
        assert record["run_id"] == "r9"

    def test_clear_context(self, capsys):
        configure_logging(json_format=True, add_timestamp=False)
        bind_context(unit="vault")
        clear_context()
        get_logger("tests").info("after")

        (record,) = _records(capsys.readouterr().err)
        assert "unit" not in record
