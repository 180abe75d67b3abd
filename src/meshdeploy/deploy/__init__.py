"""meshdeploy.deploy - ordered container deployment with sidecar injection.

Deploys a multi-service application across a local container engine
(development) or a managed cloud container platform (staging, production),
in dependency order, attaching a service-mesh sidecar to every service and
verifying health before moving on.

Key Concepts:
    ContainerSpec / ContainerSpecBuilder: What a provider runs.
    HealthVerifier: Single, concurrent and polling health checks.
    SidecarManager: Deterministic per-environment sidecar configuration.
    ContainerProvider: Backend interface; ``create_provider`` selects one.
    UnitCatalog: Static unit table, dependency graph and execution plan.
    RuntimeOrchestrator: plan -> execute -> validate -> report.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                   RuntimeOrchestrator                         │
    ├──────────────┬──────────────┬─────────────┬──────────────────┤
    │  UnitCatalog │ SidecarMgr   │ HealthVerif │ DeploymentReport │
    ├──────────────┴──────────────┴─────────────┴──────────────────┤
    │  ContainerProvider: local engine │ managed cloud │ stub       │
    └──────────────────────────────────────────────────────────────┘

Related Modules:
    - :mod:`meshdeploy.cli` - ``meshdeploy`` command line
    - :mod:`meshdeploy.core` - errors and logging
"""

from meshdeploy.deploy.components import MeshComponent, check_registration, default_components
from meshdeploy.deploy.config import Environment, OrchestratorConfig
from meshdeploy.deploy.graph import DependencyGraph, ExecutionPlan
from meshdeploy.deploy.health import HealthCheckResult, HealthVerifier, StatusSource
from meshdeploy.deploy.orchestrator import OrchestratorState, RuntimeOrchestrator
from meshdeploy.deploy.providers import (
    DEFAULT_PROVIDERS,
    ContainerProvider,
    LocalEngineProvider,
    ManagedCloudProvider,
    ProviderRegistry,
    StubContainerProvider,
    create_provider,
    register_provider,
)
from meshdeploy.deploy.results import DeploymentReport, OverallStatus, UnitOutcome
from meshdeploy.deploy.sidecar import SidecarConfig, SidecarManager, validate_app_id
from meshdeploy.deploy.spec import (
    CloudConfig,
    ContainerSpec,
    ContainerSpecBuilder,
    HealthCheckConfig,
    LocalEngineConfig,
    ResourceLimits,
    VolumeMount,
    new_spec,
)
from meshdeploy.deploy.units import ProvisioningOutputs, Tier, UnitCatalog, UnitDefinition

__all__ = [
    # Config
    "Environment",
    "OrchestratorConfig",
    # Specs
    "CloudConfig",
    "ContainerSpec",
    "ContainerSpecBuilder",
    "HealthCheckConfig",
    "LocalEngineConfig",
    "ResourceLimits",
    "VolumeMount",
    "new_spec",
    # Health
    "HealthCheckResult",
    "HealthVerifier",
    "StatusSource",
    # Sidecar
    "SidecarConfig",
    "SidecarManager",
    "validate_app_id",
    # Components
    "MeshComponent",
    "check_registration",
    "default_components",
    # Providers
    "DEFAULT_PROVIDERS",
    "ContainerProvider",
    "LocalEngineProvider",
    "ManagedCloudProvider",
    "ProviderRegistry",
    "StubContainerProvider",
    "create_provider",
    "register_provider",
    # Planning
    "DependencyGraph",
    "ExecutionPlan",
    "ProvisioningOutputs",
    "Tier",
    "UnitCatalog",
    "UnitDefinition",
    # Orchestration
    "OrchestratorState",
    "RuntimeOrchestrator",
    "DeploymentReport",
    "OverallStatus",
    "UnitOutcome",
]
