"""Sidecar component definitions and registration checks.

The sidecar runtime reaches the state store, message broker, secrets store
and blob storage through named components. This module declares them from
the provisioning outputs, renders them for each backend and checks that a
running sidecar actually registered them.

Key Concepts:
    MeshComponent: One named component (``statestore``, ``pubsub``...) with
        its component type and metadata.
    default_components(outputs): The four components every service expects.
    Rendering: ``to_document()`` is the self-hosted manifest written into
        the components directory; ``to_cloud_document()`` is the body for
        ``az containerapp env dapr-component set --yaml``.
    ComponentRegistration: Result of ``check_registration``: sidecar health
        plus the component names reported by ``/v1.0/metadata``.

Architecture Decisions:
    - Registration checks never raise for a missing component or an
      unreachable sidecar; the caller decides whether that is fatal.
    - Metadata is parsed as JSON. Only the ``components[].name`` values
      count, so a component name appearing elsewhere in the payload is
      not mistaken for a registration.

Related Modules:
    - :mod:`meshdeploy.deploy.providers` - ``publish_components`` per backend
    - :mod:`meshdeploy.deploy.orchestrator` - publish before the component
      host starts, check after it is healthy

Tags:
    components, sidecar, metadata-api, yaml, registration
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from meshdeploy.core.logging import get_logger
from meshdeploy.deploy.health import HealthVerifier
from meshdeploy.deploy.units import ProvisioningOutputs

logger = get_logger(__name__)

COMPONENT_API_VERSION = "dapr.io/v1alpha1"
METADATA_PATH = "/v1.0/metadata"


@dataclass(frozen=True)
class MeshComponent:
    """One sidecar component."""

    name: str
    component_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    version: str = "v1"

    @property
    def filename(self) -> str:
        return f"{self.name}.yaml"

    def _metadata_items(self) -> list[dict[str, str]]:
        return [{"name": key, "value": value} for key, value in self.metadata.items()]

    def to_document(self) -> dict[str, Any]:
        """Self-hosted component manifest."""
        return {
            "apiVersion": COMPONENT_API_VERSION,
            "kind": "Component",
            "metadata": {"name": self.name},
            "spec": {
                "type": self.component_type,
                "version": self.version,
                "metadata": self._metadata_items(),
            },
        }

    def to_cloud_document(self) -> dict[str, Any]:
        """Managed-environment component body."""
        return {
            "componentType": self.component_type,
            "version": self.version,
            "metadata": self._metadata_items(),
        }


def default_components(outputs: ProvisioningOutputs) -> list[MeshComponent]:
    """State store, pub/sub, secrets store and blob binding.

    Raises
    ------
    ConfigError
        A required provisioning output is missing.
    """
    return [
        MeshComponent(
            "statestore",
            "state.postgresql",
            {"connectionString": outputs.get("postgresql", "connection_string")},
        ),
        MeshComponent(
            "pubsub",
            "pubsub.rabbitmq",
            {"connectionString": outputs.get("rabbitmq", "connection_string")},
        ),
        MeshComponent(
            "secretstore",
            "secretstores.hashicorp.vault",
            {
                "vaultAddr": outputs.get("vault", "address"),
                "vaultToken": outputs.get("vault", "token"),
            },
        ),
        MeshComponent(
            "blobstore",
            "bindings.azure.blobstorage",
            {
                "storageConnectionString": outputs.get("azurite", "connection_string"),
                "container": "content",
            },
        ),
    ]


@dataclass(frozen=True)
class ComponentRegistration:
    """Outcome of a registration check against one sidecar."""

    app_id: str
    healthy: bool
    registered: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.healthy and not self.missing

    @property
    def issues(self) -> list[str]:
        if self.message:
            return [f"{self.app_id}: {self.message}"]
        return [f"{self.app_id}: component {name!r} not registered" for name in self.missing]


def registered_names(payload: Any) -> list[str]:
    """Component names from a ``/v1.0/metadata`` response body."""
    if not isinstance(payload, dict):
        return []
    components = payload.get("components")
    if not isinstance(components, list):
        return []
    return [
        item["name"]
        for item in components
        if isinstance(item, dict) and isinstance(item.get("name"), str)
    ]


async def check_registration(
    verifier: HealthVerifier,
    app_id: str,
    base_url: str,
    expected: Iterable[str],
) -> ComponentRegistration:
    """Check the sidecar under ``base_url`` is healthy and lists ``expected``."""
    expected = tuple(expected)
    health = await verifier.check_sidecar(app_id, base_url)
    if not health.healthy:
        return ComponentRegistration(
            app_id=app_id, healthy=False, missing=expected, message=health.message
        )

    url = f"{base_url.rstrip('/')}{METADATA_PATH}"
    try:
        async with verifier.client() as client:
            response = await client.get(url)
        response.raise_for_status()
        names = registered_names(response.json())
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("components.metadata_failed", app_id=app_id, url=url, error=str(exc))
        return ComponentRegistration(
            app_id=app_id,
            healthy=True,
            missing=expected,
            message=f"metadata query failed: {exc}",
        )

    missing = tuple(name for name in expected if name not in names)
    for name in missing:
        logger.warning("components.missing", app_id=app_id, component=name)
    return ComponentRegistration(
        app_id=app_id, healthy=True, registered=tuple(names), missing=missing
    )


__all__ = [
    "COMPONENT_API_VERSION",
    "ComponentRegistration",
    "METADATA_PATH",
    "MeshComponent",
    "check_registration",
    "default_components",
    "registered_names",
]
