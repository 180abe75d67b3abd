"""Result models for meshdeploy runs.

Pydantic v2 models capturing what a run did: the plan it followed, what
happened to each unit, the post-deployment health snapshot and an overall
status. CI reads ``overall_status``; ``model_dump_json(indent=2)`` gives the
JSON artifact.

Key Concepts:
    OverallStatus: PASSED, PARTIAL, FAILED, ERROR, RUNNING, PENDING.
    UnitOutcome: One unit's progress through pull -> deploy -> sidecar ->
        health, with the failing step when it stopped.
    DeploymentReport: Whole-run record. ``mark_complete()`` finalises
        timestamps, duration, status and summary.

Tags:
    results, models, pydantic, deployment, status, reporting
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from meshdeploy.deploy.health import HealthCheckResult


class OverallStatus(str, Enum):
    """Overall status of a run."""

    PASSED = "PASSED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    ERROR = "ERROR"
    RUNNING = "RUNNING"
    PENDING = "PENDING"


class UnitOutcome(BaseModel):
    """What happened to one unit during execution."""

    name: str
    tier: str | None = None
    image: str | None = None
    status: Literal["pending", "deployed", "healthy", "failed"] = "pending"
    sidecar: str | None = None
    failed_step: str | None = None
    error: str | None = None
    duration_seconds: float = 0.0


class DeploymentReport(BaseModel):
    """Result of one orchestrator run."""

    run_id: str
    environment: str
    provider: str = ""
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    plan: list[str] = Field(default_factory=list)
    units: list[UnitOutcome] = Field(default_factory=list)
    health: dict[str, HealthCheckResult] = Field(default_factory=dict)
    healthy_count: int = 0
    unhealthy_count: int = 0
    issues: list[str] = Field(default_factory=list)
    component_issues: list[str] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.PENDING
    error: str | None = None
    summary: str = ""

    def unit(self, name: str) -> UnitOutcome | None:
        return next((u for u in self.units if u.name == name), None)

    def mark_complete(self, status: OverallStatus | None = None) -> None:
        """Finalize run: compute duration, status, summary."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        if status:
            self.overall_status = status
        elif self.error:
            if any(u.status == "failed" for u in self.units) or self.unhealthy_count:
                self.overall_status = OverallStatus.FAILED
            else:
                self.overall_status = OverallStatus.ERROR
        elif self.unhealthy_count == 0:
            self.overall_status = OverallStatus.PASSED
        elif self.healthy_count:
            self.overall_status = OverallStatus.PARTIAL
        else:
            self.overall_status = OverallStatus.FAILED

        total = self.healthy_count + self.unhealthy_count
        self.summary = (
            f"{self.healthy_count}/{total} units healthy in {self.environment} "
            f"({self.overall_status.value}) in {self.duration_seconds:.1f}s"
        )


__all__ = ["DeploymentReport", "OverallStatus", "UnitOutcome"]
