"""
Shared pytest fixtures for meshdeploy tests.

This module provides:
- Fast orchestrator configs (short poll intervals and health timeouts)
- A scripted status source for health tests
- Environment-variable isolation

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.
"""

from __future__ import annotations

import os
from collections.abc import Iterable

import pytest

from meshdeploy.deploy.config import OrchestratorConfig
from meshdeploy.deploy.health import HealthVerifier


# =============================================================================
# Fakes
# =============================================================================


class ScriptedChecker:
    """Status source returning scripted statuses per unit.

    Each unit's script is consumed one value per ``status`` call; the last
    value repeats. A unit mapped to an exception instance raises it.
    """

    def __init__(
        self,
        statuses: dict[str, str | Iterable[str] | BaseException] | None = None,
        endpoints: dict[str, str] | None = None,
    ) -> None:
        self._scripts: dict[str, list] = {}
        for name, value in (statuses or {}).items():
            if isinstance(value, (str, BaseException)):
                self._scripts[name] = [value]
            else:
                self._scripts[name] = list(value)
        self._endpoints = dict(endpoints or {})
        self.calls: list[str] = []

    async def status(self, name: str) -> str:
        self.calls.append(name)
        script = self._scripts.get(name, ["not_found"])
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, BaseException):
            raise value
        return value

    async def endpoint(self, name: str) -> str:
        return self._endpoints.get(name, "")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_meshdeploy_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep MESHDEPLOY_* variables from the host out of every test."""
    for key in list(os.environ):
        if key.startswith("MESHDEPLOY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def dev_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        environment="development",
        run_id="testrun00001",
        poll_interval_seconds=0.01,
        probe_timeout_seconds=1.0,
        local_health_timeout_seconds=0.2,
        cloud_health_timeout_seconds=0.2,
    )


@pytest.fixture
def prod_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        environment="production",
        run_id="testrun00002",
        poll_interval_seconds=0.01,
        probe_timeout_seconds=1.0,
        local_health_timeout_seconds=0.2,
        cloud_health_timeout_seconds=0.2,
    )


@pytest.fixture
def fast_verifier() -> HealthVerifier:
    return HealthVerifier(poll_interval=0.01, probe_timeout=1.0)


@pytest.fixture
def checker_factory():
    return ScriptedChecker
