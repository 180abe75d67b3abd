"""Health verification for deployed units.

Answers "is this unit healthy?" for one unit or many at once, using a
status source (normally the active provider) plus an optional HTTP check
against the unit's health endpoint.

Key Concepts:
    StatusSource: Anything with ``async status(name) -> str`` and
        ``async endpoint(name) -> str``. Providers satisfy it; tests use
        fakes. Endpoints are resolved per check, so a fresh provider checks
        the same URLs as the one that deployed the unit.
    HealthCheckResult: Immutable outcome of one check.
    HealthVerifier: ``check_one`` / ``check_many`` for snapshots,
        ``wait_until_healthy`` / ``wait_many_until_healthy`` for bounded
        polling, ``summarize`` for reporting.

Status Vocabulary:
    Status strings are compared lower-cased.

    - running, succeeded, healthy  -> eligible for the HTTP check
    - failed, unhealthy            -> terminal; waits stop immediately
    - anything else                -> not ready yet (starting, not_found, ...)

Architecture Decisions:
    - ``check_one`` never raises for unit problems: a status source that
      errors yields an unhealthy result, so one bad unit cannot abort a
      ``check_many`` fan-out.
    - Fan-out uses ``asyncio.gather`` with one task per unit. Each task
      returns its own result, nothing is shared.
    - Waits are deadline loops over ``asyncio.sleep``; cancelling the
      waiting task raises ``CancelledError`` at the sleep or the request,
      never ``HealthTimeoutError``.
    - Only http(s) endpoints are requested. A running unit without one
      (databases, brokers) counts as healthy.

Related Modules:
    - :mod:`meshdeploy.deploy.providers` - providers delegate ``wait_healthy`` here
    - :mod:`meshdeploy.deploy.orchestrator` - post-deployment validation

Tags:
    health, readiness, polling, httpx, asyncio
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from meshdeploy.core.errors import HealthFailedError, HealthTimeoutError
from meshdeploy.core.logging import get_logger

logger = get_logger(__name__)

RUNNING_STATES = frozenset({"running", "succeeded", "healthy"})
TERMINAL_FAILURE_STATES = frozenset({"failed", "unhealthy"})

SIDECAR_HEALTH_PATH = "/v1.0/healthz"


@runtime_checkable
class StatusSource(Protocol):
    """Source of unit status and health endpoints."""

    async def status(self, name: str) -> str: ...

    async def endpoint(self, name: str) -> str: ...


class HealthCheckResult(BaseModel):
    """Outcome of a single health check."""

    model_config = ConfigDict(frozen=True)

    unit_name: str
    healthy: bool
    status: str = "unknown"
    message: str = ""
    endpoint: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_FAILURE_STATES


def _is_http(endpoint: str) -> bool:
    return endpoint.startswith(("http://", "https://"))


def sidecar_health_url(base_url: str) -> str:
    """Conventional sidecar health URL under ``base_url``."""
    return f"{base_url.rstrip('/')}{SIDECAR_HEALTH_PATH}"


class HealthVerifier:
    """Single and concurrent health checks with bounded polling.

    Parameters
    ----------
    poll_interval
        Seconds between polls in the ``wait_*`` methods.
    probe_timeout
        Upper bound for one HTTP request.
    transport
        Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        poll_interval: float = 5.0,
        probe_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.poll_interval = poll_interval
        self.probe_timeout = probe_timeout
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        """HTTP client bounded by ``probe_timeout``."""
        return httpx.AsyncClient(timeout=self.probe_timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def check_one(self, unit: str, checker: StatusSource) -> HealthCheckResult:
        """Check one unit; problems become an unhealthy result."""
        try:
            status = (await checker.status(unit)).strip().lower()
            endpoint = await checker.endpoint(unit)
        except Exception as exc:  # noqa: BLE001
            logger.debug("health.status_error", unit=unit, error=str(exc))
            return HealthCheckResult(
                unit_name=unit,
                healthy=False,
                message=f"status query failed: {exc}",
            )

        if status in TERMINAL_FAILURE_STATES:
            return HealthCheckResult(
                unit_name=unit,
                healthy=False,
                status=status,
                endpoint=endpoint,
                message=f"unit is in terminal state {status!r}",
            )
        if status not in RUNNING_STATES:
            return HealthCheckResult(
                unit_name=unit,
                healthy=False,
                status=status,
                endpoint=endpoint,
                message=f"not ready: status {status!r}",
            )
        if not _is_http(endpoint):
            return HealthCheckResult(
                unit_name=unit, healthy=True, status=status, endpoint=endpoint, message=status
            )
        return await self._request_health(unit, status, endpoint)

    async def check_many(
        self, units: Iterable[str], checker: StatusSource
    ) -> dict[str, HealthCheckResult]:
        """Check every unit concurrently and collect all results."""
        names = list(dict.fromkeys(units))
        results = await asyncio.gather(*(self.check_one(name, checker) for name in names))
        return dict(zip(names, results))

    async def check_sidecar(self, app_id: str, base_url: str) -> HealthCheckResult:
        """Check a sidecar's conventional health path under ``base_url``."""
        return await self._request_health(app_id, "running", sidecar_health_url(base_url))

    # ------------------------------------------------------------------
    # Waits
    # ------------------------------------------------------------------

    async def wait_until_healthy(
        self, unit: str, checker: StatusSource, timeout: float
    ) -> HealthCheckResult:
        """Poll until ``unit`` is healthy.

        Raises
        ------
        HealthFailedError
            The unit reported a terminal failure state.
        HealthTimeoutError
            ``timeout`` seconds elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = await self.check_one(unit, checker)
            if result.healthy:
                logger.info("health.ready", unit=unit, status=result.status)
                return result
            if result.is_terminal:
                logger.warning("health.terminal", unit=unit, status=result.status)
                raise HealthFailedError(unit, result.status, result.message)
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("health.timeout", unit=unit, timeout=timeout)
                raise HealthTimeoutError(unit, timeout, result.message)
            logger.debug("health.waiting", unit=unit, status=result.status)
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def wait_many_until_healthy(
        self, units: Iterable[str], checker: StatusSource, timeout: float
    ) -> dict[str, HealthCheckResult]:
        """Poll all ``units`` together until every one is healthy."""
        names = list(dict.fromkeys(units))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            results = await self.check_many(names, checker)
            for name in names:
                if results[name].is_terminal:
                    raise HealthFailedError(name, results[name].status, results[name].message)
            pending = [name for name in names if not results[name].healthy]
            if not pending:
                return results
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise HealthTimeoutError(", ".join(pending), timeout)
            await asyncio.sleep(min(self.poll_interval, remaining))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def summarize(results: dict[str, HealthCheckResult]) -> tuple[int, int, list[str]]:
        """Return ``(healthy_count, unhealthy_count, issues)``."""
        healthy = 0
        issues: list[str] = []
        for name, result in results.items():
            if result.healthy:
                healthy += 1
            else:
                issues.append(f"{name}: {result.message}")
        return healthy, len(results) - healthy, issues

    # ------------------------------------------------------------------
    # HTTP check
    # ------------------------------------------------------------------

    async def _request_health(self, unit: str, status: str, endpoint: str) -> HealthCheckResult:
        try:
            async with self.client() as client:
                response = await asyncio.wait_for(client.get(endpoint), self.probe_timeout)
        except (httpx.HTTPError, TimeoutError) as exc:
            return HealthCheckResult(
                unit_name=unit,
                healthy=False,
                status=status,
                endpoint=endpoint,
                message=f"health check failed: {str(exc) or type(exc).__name__}",
            )
        if response.is_success:
            return HealthCheckResult(
                unit_name=unit,
                healthy=True,
                status=status,
                endpoint=endpoint,
                message=f"HTTP {response.status_code}",
            )
        return HealthCheckResult(
            unit_name=unit,
            healthy=False,
            status=status,
            endpoint=endpoint,
            message=f"health endpoint returned HTTP {response.status_code}",
        )


__all__ = [
    "HealthCheckResult",
    "HealthVerifier",
    "RUNNING_STATES",
    "SIDECAR_HEALTH_PATH",
    "StatusSource",
    "TERMINAL_FAILURE_STATES",
    "sidecar_health_url",
]
