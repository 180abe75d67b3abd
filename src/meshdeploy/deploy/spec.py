"""Container specifications for meshdeploy.

A ``ContainerSpec`` is the single value handed to a provider: what image to
run, on which port, with which environment, resources, volumes, health
endpoint and sidecar settings, plus at most one provider-specific extension.

Key Concepts:
    ContainerSpec: Mutable dataclass while being built; treated as a value
        once validated. Every per-call modification goes through
        ``clone()`` so callers never share nested maps or lists.
    ContainerSpecBuilder: Fluent construction. Chained ``with_*`` calls
        never raise; ``build()`` validates once and returns an independent
        clone or raises ``InvalidSpecError``.
    ResourceLimits: Kubernetes-style quantities (``500m`` CPU, ``256Mi``
        memory). ``parse_cpu`` / ``parse_memory_mib`` convert them for the
        engine and cloud CLIs.
    LocalEngineConfig / CloudConfig: Backend extensions. A spec holds one
        ``extension`` slot, so both can never be populated at once.

Related Modules:
    - :mod:`meshdeploy.deploy.sidecar` - enriches sidecar-enabled specs
    - :mod:`meshdeploy.deploy.units` - builds specs from the unit table
    - :mod:`meshdeploy.deploy.providers` - consumes specs

Tags:
    container, spec, builder, validation, clone
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any

from meshdeploy.core.errors import InvalidSpecError

DEFAULT_CPU_LIMIT = "500m"
DEFAULT_MEMORY_LIMIT = "256Mi"
DEFAULT_CPU_REQUEST = "100m"
DEFAULT_MEMORY_REQUEST = "128Mi"

_CPU_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>m?)$")
_MEMORY_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>Ki|Mi|Gi|k|m|g|M|G)?$")
_MEMORY_FACTORS_MIB = {
    None: 1 / (1024 * 1024),
    "Ki": 1 / 1024,
    "k": 1 / 1024,
    "Mi": 1,
    "m": 1,
    "M": 1,
    "Gi": 1024,
    "g": 1024,
    "G": 1024,
}


# ---------------------------------------------------------------------------
# Resource quantities
# ---------------------------------------------------------------------------


def parse_cpu(quantity: str) -> float:
    """Convert a CPU quantity (``500m``, ``2``, ``0.5``) to cores."""
    match = _CPU_RE.match(quantity.strip())
    if match is None:
        raise InvalidSpecError(f"invalid CPU quantity: {quantity!r}", field="cpu", value=quantity)
    value = float(match.group("value"))
    return value / 1000 if match.group("unit") == "m" else value


def parse_memory_mib(quantity: str) -> float:
    """Convert a memory quantity (``256Mi``, ``1Gi``, ``512m``) to MiB."""
    match = _MEMORY_RE.match(quantity.strip())
    if match is None:
        raise InvalidSpecError(
            f"invalid memory quantity: {quantity!r}", field="memory", value=quantity
        )
    return float(match.group("value")) * _MEMORY_FACTORS_MIB[match.group("unit")]


@dataclass
class ResourceLimits:
    """CPU and memory limit plus request."""

    cpu: str = DEFAULT_CPU_LIMIT
    memory: str = DEFAULT_MEMORY_LIMIT
    cpu_request: str = DEFAULT_CPU_REQUEST
    memory_request: str = DEFAULT_MEMORY_REQUEST

    @property
    def cpu_cores(self) -> float:
        return parse_cpu(self.cpu)

    @property
    def memory_mib(self) -> float:
        return parse_memory_mib(self.memory)


@dataclass
class VolumeMount:
    """Host path mounted into the container."""

    host_path: str
    container_path: str
    read_only: bool = False

    def as_engine_arg(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.host_path}:{self.container_path}{suffix}"


# ---------------------------------------------------------------------------
# Provider extensions
# ---------------------------------------------------------------------------


@dataclass
class HealthCheckConfig:
    """Engine-level health directive embedded in a local container."""

    command: str = ""
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3
    start_period: str = "60s"


@dataclass
class LocalEngineConfig:
    """Local container engine settings."""

    network_name: str = ""
    restart_policy: str = ""
    security_opts: list[str] = field(default_factory=list)
    health_check: HealthCheckConfig | None = None


@dataclass
class CloudConfig:
    """Managed cloud container platform settings."""

    resource_group: str = ""
    container_environment: str = ""
    min_replicas: int | None = None
    max_replicas: int | None = None
    scaling_rules: dict[str, Any] = field(default_factory=dict)
    ingress: dict[str, Any] = field(default_factory=dict)
    traffic_splitting: dict[str, int] = field(default_factory=dict)
    revision_suffix: str = ""


# ---------------------------------------------------------------------------
# ContainerSpec
# ---------------------------------------------------------------------------


@dataclass
class ContainerSpec:
    """Everything a provider needs to run one unit."""

    name: str
    image: str
    port: int
    command: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    health_endpoint: str = ""
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)
    volumes: list[VolumeMount] = field(default_factory=list)
    dapr_enabled: bool = False
    dapr_app_id: str = ""
    dapr_port: int = 0
    dapr_config: dict[str, Any] = field(default_factory=dict)
    extension: LocalEngineConfig | CloudConfig | None = None

    @property
    def local_config(self) -> LocalEngineConfig | None:
        return self.extension if isinstance(self.extension, LocalEngineConfig) else None

    @property
    def cloud_config(self) -> CloudConfig | None:
        return self.extension if isinstance(self.extension, CloudConfig) else None

    def validate(self) -> None:
        """Raise ``InvalidSpecError`` for the first violated invariant."""
        if not self.name:
            raise InvalidSpecError("container name is required", field="name")
        if not self.image:
            raise InvalidSpecError("container image is required", field="image")
        if self.port <= 0:
            raise InvalidSpecError("valid port number is required", field="port", value=self.port)
        if self.dapr_enabled and not self.dapr_app_id:
            raise InvalidSpecError(
                "Dapr app ID is required when Dapr is enabled", field="dapr_app_id"
            )

    def clone(self) -> ContainerSpec:
        """Deep copy: no map, list or extension is shared with the original."""
        return copy.deepcopy(self)


def new_spec(name: str, image: str, port: int) -> ContainerSpec:
    """Create a spec with default resources and a conventional health endpoint."""
    return ContainerSpec(
        name=name,
        image=image,
        port=port,
        health_endpoint=f"http://localhost:{port}/health",
    )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class ContainerSpecBuilder:
    """Fluent builder for ``ContainerSpec``.

    Example::

        spec = (
            ContainerSpecBuilder("content-api", "content-api:latest", 3001)
            .with_dapr("content-api")
            .with_environment({"LOG_LEVEL": "debug"})
            .with_resource_limits("250m", "256Mi")
            .build()
        )
    """

    def __init__(self, name: str, image: str, port: int) -> None:
        self._spec = new_spec(name, image, port)

    def with_dapr(
        self,
        app_id: str,
        dapr_port: int = 0,
        config: dict[str, Any] | None = None,
    ) -> ContainerSpecBuilder:
        self._spec.dapr_enabled = True
        self._spec.dapr_app_id = app_id
        self._spec.dapr_port = dapr_port
        if config:
            self._spec.dapr_config.update(copy.deepcopy(config))
        return self

    def with_environment(self, env: dict[str, str]) -> ContainerSpecBuilder:
        self._spec.environment.update(env)
        return self

    def with_resource_limits(
        self,
        cpu: str,
        memory: str,
        cpu_request: str | None = None,
        memory_request: str | None = None,
    ) -> ContainerSpecBuilder:
        limits = self._spec.resource_limits
        limits.cpu = cpu
        limits.memory = memory
        if cpu_request is not None:
            limits.cpu_request = cpu_request
        if memory_request is not None:
            limits.memory_request = memory_request
        return self

    def with_health_endpoint(self, endpoint: str) -> ContainerSpecBuilder:
        self._spec.health_endpoint = endpoint
        return self

    def with_command(self, command: list[str]) -> ContainerSpecBuilder:
        self._spec.command = list(command)
        return self

    def with_volume_mount(
        self, host_path: str, container_path: str, read_only: bool = False
    ) -> ContainerSpecBuilder:
        self._spec.volumes.append(VolumeMount(host_path, container_path, read_only))
        return self

    def with_local_config(self, config: LocalEngineConfig) -> ContainerSpecBuilder:
        self._spec.extension = copy.deepcopy(config)
        return self

    def with_cloud_config(self, config: CloudConfig) -> ContainerSpecBuilder:
        self._spec.extension = copy.deepcopy(config)
        return self

    def build(self) -> ContainerSpec:
        """Validate and return an independent copy of the spec."""
        self._spec.validate()
        return self._spec.clone()


__all__ = [
    "CloudConfig",
    "ContainerSpec",
    "ContainerSpecBuilder",
    "HealthCheckConfig",
    "LocalEngineConfig",
    "ResourceLimits",
    "VolumeMount",
    "new_spec",
    "parse_cpu",
    "parse_memory_mib",
]
