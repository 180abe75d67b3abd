"""Runtime orchestrator: plan, execute, validate.

Turns the static unit table into a running system on whichever provider
the environment selects, one unit at a time in dependency order, then
checks the health of everything it deployed.

Why This Matters:
    Services crash-loop when they start before the database, secrets store
    or sidecar control plane they need. Deploying strictly in topological
    order and waiting for each unit to be healthy before the next one
    starts removes that whole class of startup failures.

State Machine:
    ::

        IDLE ──build_plan──▶ PLAN_BUILT ──execute──▶ EXECUTING
          │                      │                      │
          └──(cycle / bad decl)──┴──────(unit fails)────┤
                                                        ▼
                                  validate ──▶ HEALTH_VALIDATED ──▶ DONE
                                     │
                                     └──(unhealthy, non-development)──▶ FAILED

Per-Unit Steps:
    spec (built and sidecar-enriched at plan time) -> pull -> components
    (component host only) -> deploy -> sidecar (service tier) -> health ->
    sidecar-health (when the sidecar is its own container) -> component
    registration check (component host only).

Architecture Decisions:
    - Every spec is built, validated and enriched during ``build_plan`` so
      cycles, bad declarations and missing provisioning outputs all fail
      before any provider call.
    - Sidecar enrichment happens before deploy so ``DAPR_*`` variables
      reach the main container; the sidecar itself is attached after the
      main unit exists.
    - The first failing unit stops the run. Units already deployed keep
      running; there is no rollback.
    - Post-deployment validation is advisory in development and fatal in
      staging and production.
    - Component registration is checked once the component host is
      healthy. Gaps become ``report.component_issues``, never a failure.

Related Modules:
    - :mod:`meshdeploy.deploy.units` - declaration table and plan derivation
    - :mod:`meshdeploy.deploy.providers` - provider selection
    - :mod:`meshdeploy.deploy.results` - ``DeploymentReport``

Tags:
    orchestrator, topological-order, state-machine, deployment, health
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from enum import Enum
from typing import TypeVar

from meshdeploy.core.errors import HealthValidationError, MeshDeployError, OrchestrationError
from meshdeploy.core.logging import LogContext, get_logger
from meshdeploy.deploy.components import MeshComponent, check_registration, default_components
from meshdeploy.deploy.config import OrchestratorConfig
from meshdeploy.deploy.graph import ExecutionPlan
from meshdeploy.deploy.health import SIDECAR_HEALTH_PATH, HealthCheckResult, HealthVerifier
from meshdeploy.deploy.providers import ContainerProvider, ProviderRegistry, create_provider
from meshdeploy.deploy.results import DeploymentReport, OverallStatus, UnitOutcome
from meshdeploy.deploy.sidecar import SidecarManager
from meshdeploy.deploy.spec import ContainerSpec
from meshdeploy.deploy.units import ProvisioningOutputs, Tier, UnitCatalog

logger = get_logger(__name__)

T = TypeVar("T")


class OrchestratorState(str, Enum):
    """Lifecycle of one orchestrator run."""

    IDLE = "idle"
    PLAN_BUILT = "plan_built"
    EXECUTING = "executing"
    HEALTH_VALIDATED = "health_validated"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    OrchestratorState.IDLE: {OrchestratorState.PLAN_BUILT, OrchestratorState.FAILED},
    OrchestratorState.PLAN_BUILT: {
        OrchestratorState.PLAN_BUILT,
        OrchestratorState.EXECUTING,
        OrchestratorState.FAILED,
    },
    OrchestratorState.EXECUTING: {OrchestratorState.HEALTH_VALIDATED, OrchestratorState.FAILED},
    OrchestratorState.HEALTH_VALIDATED: {OrchestratorState.DONE, OrchestratorState.FAILED},
    OrchestratorState.DONE: set(),
    OrchestratorState.FAILED: set(),
}


def _default_outputs(config: OrchestratorConfig) -> ProvisioningOutputs:
    if config.outputs_file is not None:
        return ProvisioningOutputs.from_file(config.outputs_file)
    if config.environment.is_local:
        return ProvisioningOutputs.development_defaults()
    return ProvisioningOutputs()


class RuntimeOrchestrator:
    """Deploys the unit catalog in dependency order and validates health.

    Parameters
    ----------
    config
        Run configuration; read from ``MESHDEPLOY_*`` variables when omitted.
    provider
        Container provider; chosen by environment when omitted.
    catalog
        Unit declarations; the built-in table when omitted.
    outputs
        Provisioning outputs; from ``config.outputs_file`` or development
        defaults when omitted.
    providers
        Environment -> provider factory mapping used when ``provider`` is
        omitted; ``DEFAULT_PROVIDERS`` when omitted.

    Example::

        orchestrator = RuntimeOrchestrator(OrchestratorConfig(environment="development"))
        report = await orchestrator.run()
        print(report.summary)
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        provider: ContainerProvider | None = None,
        catalog: UnitCatalog | None = None,
        outputs: ProvisioningOutputs | None = None,
        verifier: HealthVerifier | None = None,
        sidecars: SidecarManager | None = None,
        providers: ProviderRegistry | None = None,
    ) -> None:
        self.config = config or OrchestratorConfig.from_env()
        self.verifier = verifier or HealthVerifier(
            poll_interval=self.config.poll_interval_seconds,
            probe_timeout=self.config.probe_timeout_seconds,
        )
        self.sidecars = sidecars or SidecarManager(
            self.config.environment, self.config.components_path
        )
        self.catalog = catalog if catalog is not None else UnitCatalog()
        self.provider = provider or create_provider(
            self.config,
            verifier=self.verifier,
            sidecars=self.sidecars,
            catalog=self.catalog,
            registry=providers,
        )
        self.outputs = outputs if outputs is not None else _default_outputs(self.config)
        self.state = OrchestratorState.IDLE
        self.plan: ExecutionPlan | None = None
        self.specs: dict[str, ContainerSpec] = {}
        self.components: list[MeshComponent] = []
        self.report = DeploymentReport(
            run_id=self.config.run_id,
            environment=self.config.environment.value,
            provider=self.provider.provider_name,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def build_plan(self) -> ExecutionPlan:
        """Order the catalog and prepare every unit's spec.

        Raises
        ------
        CircularDependencyError
            The declared dependencies contain a cycle.
        """
        try:
            plan = self.catalog.plan()
            specs = {name: self._prepare_spec(name) for name in plan.order}
            components = default_components(self.outputs) if self.catalog.component_hosts else []
        except MeshDeployError as exc:
            self._transition(OrchestratorState.FAILED)
            logger.error("plan.failed", error=str(exc))
            raise
        self.plan = plan
        self.specs = specs
        self.components = components
        self.report.plan = list(plan.order)
        self._transition(OrchestratorState.PLAN_BUILT)
        logger.info(
            "plan.built",
            units=len(plan),
            order=list(plan.order),
            tiers={tier: len(plan.units_in(tier)) for tier in plan.tiers},
        )
        return plan

    async def execute(self, plan: ExecutionPlan | None = None) -> None:
        """Deploy every unit in plan order, waiting for each to be healthy."""
        plan = plan or self.plan
        if plan is None or self.state is not OrchestratorState.PLAN_BUILT:
            raise OrchestrationError(f"cannot execute from state {self.state.value}")
        self._transition(OrchestratorState.EXECUTING)
        for name in plan.order:
            outcome = UnitOutcome(
                name=name, tier=plan.tier_of(name), image=self.specs[name].image
            )
            self.report.units.append(outcome)
            started = time.monotonic()
            try:
                await self._deploy_unit(self.specs[name], outcome)
            except MeshDeployError as exc:
                exc.with_context(unit=name, run_id=self.config.run_id)
                outcome.status = "failed"
                outcome.failed_step = exc.context.step
                outcome.error = str(exc)
                self._transition(OrchestratorState.FAILED)
                logger.error("unit.failed", unit=name, step=exc.context.step, error=str(exc))
                raise
            except asyncio.CancelledError:
                outcome.status = "failed"
                outcome.error = "cancelled"
                self._transition(OrchestratorState.FAILED)
                raise
            finally:
                outcome.duration_seconds = round(time.monotonic() - started, 3)

    async def validate(self, plan: ExecutionPlan | None = None) -> dict[str, HealthCheckResult]:
        """Check every planned unit concurrently and summarize."""
        plan = plan or self.plan
        if plan is None:
            raise OrchestrationError("no execution plan to validate")
        results = await self.verifier.check_many(plan.order, self.provider)
        healthy, unhealthy, issues = self.verifier.summarize(results)
        self.report.health = results
        self.report.healthy_count = healthy
        self.report.unhealthy_count = unhealthy
        self.report.issues = issues

        if unhealthy:
            if self.config.validation_is_fatal:
                self._transition(OrchestratorState.FAILED)
                logger.error("validation.failed", unhealthy=unhealthy, issues=issues)
                raise HealthValidationError(issues).with_context(
                    environment=self.config.environment.value, run_id=self.config.run_id
                )
            logger.warning("validation.advisory", unhealthy=unhealthy, issues=issues)
        else:
            logger.info("validation.passed", healthy=healthy)
        self._transition(OrchestratorState.HEALTH_VALIDATED)
        return results

    async def run(self) -> DeploymentReport:
        """Plan, initialize the provider, execute and validate."""
        async with LogContext(
            run_id=self.config.run_id, environment=self.config.environment.value
        ):
            logger.info("run.started", provider=self.provider.provider_name)
            try:
                plan = self.build_plan()
                try:
                    await self.provider.initialize()
                except MeshDeployError:
                    self._transition(OrchestratorState.FAILED)
                    raise
                await self.execute(plan)
                await self.validate(plan)
                self._transition(OrchestratorState.DONE)
            except MeshDeployError as exc:
                self.report.error = str(exc)
                self.report.mark_complete()
                logger.error("run.failed", error=str(exc), status=self.report.overall_status.value)
                raise
            self.report.mark_complete()
            logger.info("run.completed", summary=self.report.summary)
            return self.report

    async def teardown(self) -> None:
        """Stop everything the provider owns."""
        await self.provider.cleanup()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare_spec(self, name: str) -> ContainerSpec:
        spec = self.catalog.build_spec(
            name, self.config.environment, self.outputs, self.config.components_path
        )
        if self.catalog.get(name).tier is Tier.SERVICE and spec.dapr_enabled:
            spec = self.sidecars.enrich_spec(spec)
        return spec

    async def _deploy_unit(self, spec: ContainerSpec, outcome: UnitOutcome) -> None:
        name = spec.name
        timeout = self.provider.default_health_timeout
        hosts_components = bool(self.components) and self.catalog.get(name).hosts_components
        logger.info("unit.starting", unit=name, tier=outcome.tier)

        await _step("pull", self.provider.pull_image(spec.image))
        if hosts_components:
            await _step("components", self.provider.publish_components(self.components))
        await _step("deploy", self.provider.deploy(spec))
        outcome.status = "deployed"

        sidecar: str | None = None
        if outcome.tier == Tier.SERVICE.value and spec.dapr_enabled:
            sidecar = await _step("sidecar", self.provider.inject_sidecar(spec))
            outcome.sidecar = sidecar

        await _step("health", self.provider.wait_healthy(name, timeout))
        if sidecar:
            try:
                await self.provider.wait_healthy(sidecar, timeout)
            except MeshDeployError as exc:
                raise exc.with_context(step="sidecar-health", sidecar=sidecar)
        if hosts_components:
            await self._verify_components(name)
        outcome.status = "healthy"

    async def _verify_components(self, host: str) -> None:
        """Check the healthy component host registered every component.

        Advisory: gaps are logged and added to ``report.component_issues``.
        """
        endpoint = await self.provider.endpoint(host)
        if not endpoint.startswith(("http://", "https://")):
            logger.debug("components.check_skipped", unit=host)
            return
        registration = await check_registration(
            self.verifier,
            host,
            endpoint.removesuffix(SIDECAR_HEALTH_PATH),
            [component.name for component in self.components],
        )
        if registration.ok:
            logger.info("components.registered", unit=host, components=list(registration.registered))
            return
        self.report.component_issues.extend(registration.issues)
        logger.warning("components.unverified", unit=host, issues=registration.issues)

    def _transition(self, target: OrchestratorState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise OrchestrationError(
                f"invalid orchestrator transition {self.state.value} -> {target.value}"
            )
        logger.debug("orchestrator.state", previous=self.state.value, state=target.value)
        self.state = target
        if target is OrchestratorState.FAILED:
            self.report.overall_status = OverallStatus.FAILED


async def _step(step: str, awaitable: Awaitable[T]) -> T:
    """Await one provider call, tagging errors with the step if unset."""
    try:
        return await awaitable
    except MeshDeployError as exc:
        if exc.context.step is None:
            exc.with_context(step=step)
        raise


__all__ = ["OrchestratorState", "RuntimeOrchestrator"]
