"""Container providers and environment-based selection.

``create_provider(config)`` picks the backend registered for the config's
environment: the local engine for development, the managed cloud platform
for staging and production. ``DEFAULT_PROVIDERS`` is read-only; callers
that need another backend build their own mapping with
``register_provider`` and pass it to ``create_provider`` or the
orchestrator.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType

from meshdeploy.core.errors import UnsupportedEnvironmentError
from meshdeploy.deploy.config import Environment, OrchestratorConfig
from meshdeploy.deploy.health import HealthVerifier
from meshdeploy.deploy.providers._base import BaseContainerProvider
from meshdeploy.deploy.providers._types import CommandResult, ContainerProvider
from meshdeploy.deploy.providers.cloud import ManagedCloudProvider, traffic_weights
from meshdeploy.deploy.providers.local import LocalEngineProvider
from meshdeploy.deploy.providers.stub import StubContainerProvider
from meshdeploy.deploy.sidecar import SidecarManager
from meshdeploy.deploy.units import UnitCatalog

ProviderFactory = Callable[..., ContainerProvider]
ProviderRegistry = Mapping[Environment, ProviderFactory]

DEFAULT_PROVIDERS: ProviderRegistry = MappingProxyType({
    Environment.DEVELOPMENT: LocalEngineProvider,
    Environment.STAGING: ManagedCloudProvider,
    Environment.PRODUCTION: ManagedCloudProvider,
})


def register_provider(
    environment: Environment | str,
    factory: ProviderFactory,
    registry: ProviderRegistry = DEFAULT_PROVIDERS,
) -> ProviderRegistry:
    """Copy of ``registry`` using ``factory(config, verifier=..., sidecars=...,
    catalog=...)`` for ``environment``. ``registry`` is left unchanged."""
    updated = dict(registry)
    updated[Environment.parse(environment)] = factory
    return MappingProxyType(updated)


def create_provider(
    config: OrchestratorConfig,
    verifier: HealthVerifier | None = None,
    sidecars: SidecarManager | None = None,
    catalog: UnitCatalog | None = None,
    registry: ProviderRegistry | None = None,
) -> ContainerProvider:
    """Instantiate the provider ``registry`` maps ``config.environment`` to."""
    registry = DEFAULT_PROVIDERS if registry is None else registry
    factory = registry.get(config.environment)
    if factory is None:
        raise UnsupportedEnvironmentError(config.environment.value)
    return factory(config, verifier=verifier, sidecars=sidecars, catalog=catalog)


__all__ = [
    "BaseContainerProvider",
    "CommandResult",
    "ContainerProvider",
    "DEFAULT_PROVIDERS",
    "LocalEngineProvider",
    "ManagedCloudProvider",
    "ProviderRegistry",
    "StubContainerProvider",
    "create_provider",
    "register_provider",
    "traffic_weights",
]
