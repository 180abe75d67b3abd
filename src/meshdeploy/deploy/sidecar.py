"""Sidecar (Dapr) configuration and injection.

Computes each service's sidecar settings deterministically from its app ID,
app port and the target environment, validates that a spec may carry a
sidecar, enriches the spec with the sidecar's ports and settings, and
renders the sidecar launch command.

Key Concepts:
    SidecarConfig: Frozen value derived from ``(app_id, app_port,
        environment)``. Recomputed whenever needed, never cached.
    sidecar_http_port: Port-range mapping that keeps sidecar ports of
        neighbouring services apart. gRPC is always HTTP + 10000.
    SidecarManager: ``build_default_config``, ``validate_eligibility``,
        ``enrich_spec``, ``config_for``, ``build_launch_command``,
        ``sidecar_endpoint``.

Port Mapping (checked in this order):
    ::

        3100-3199  ->  50020 + (port - 3100)
        3200-3299  ->  50030 + (port - 3200)
        3000-3999  ->  50010 + (port - 3000)
        9000-9999  ->  50000 + (port - 9000)
        otherwise  ->  50100 + (port % 100)

    Ranges overlap on the output side: 3010 and 3100 both map to 50020,
    3020 and 3200 to 50030, 9010 and 3000 to 50010. Within one range the
    mapping is one-to-one. The declared services sit on ports that do not
    collide; a new service port must be checked against the table.

Environment Defaults:
    ::

        environment   log    profiling  concurrency  cpu    memory
        development   debug  yes        unlimited    200m   128Mi
        staging       info   no         100          500m   256Mi
        production    warn   no         1000         1000m  512Mi

Related Modules:
    - :mod:`meshdeploy.deploy.spec` - specs being enriched
    - :mod:`meshdeploy.deploy.providers.local` - launches the sidecar process

Tags:
    sidecar, dapr, ports, enrichment, launch-command
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from meshdeploy.core.errors import InvalidAppIDError, InvalidSidecarTargetError
from meshdeploy.core.logging import get_logger
from meshdeploy.deploy.config import Environment
from meshdeploy.deploy.spec import ContainerSpec, ResourceLimits

logger = get_logger(__name__)

METRICS_PORT = 9090
PROFILE_PORT = 7777
GRPC_PORT_OFFSET = 10000
MAX_APP_ID_LENGTH = 60
SIDECAR_BINARY = "./daprd"
DEFAULT_COMPONENTS_PATH = "/tmp/dapr-components"
LISTEN_ADDRESSES = "0.0.0.0"
UNLIMITED_CONCURRENCY = -1

_PLACEMENT_ADDRESSES = {
    Environment.DEVELOPMENT: "localhost:50005",
    Environment.STAGING: "dapr-control-plane-staging.azurecontainerapp.io:50005",
    Environment.PRODUCTION: "dapr-control-plane-production.azurecontainerapp.io:50005",
}
_LOG_LEVELS = {
    Environment.DEVELOPMENT: "debug",
    Environment.STAGING: "info",
    Environment.PRODUCTION: "warn",
}
_MAX_CONCURRENCY = {
    Environment.DEVELOPMENT: UNLIMITED_CONCURRENCY,
    Environment.STAGING: 100,
    Environment.PRODUCTION: 1000,
}
_RESOURCES = {
    Environment.DEVELOPMENT: ("200m", "128Mi"),
    Environment.STAGING: ("500m", "256Mi"),
    Environment.PRODUCTION: ("1000m", "512Mi"),
}

# (low, high, base): first match wins, so 3100-3299 shadow part of 3000-3999
_PORT_RANGES = (
    (3100, 3199, 50020),
    (3200, 3299, 50030),
    (3000, 3999, 50010),
    (9000, 9999, 50000),
)


def sidecar_http_port(app_port: int) -> int:
    """Sidecar HTTP port for an application port."""
    for low, high, base in _PORT_RANGES:
        if low <= app_port <= high:
            return base + (app_port - low)
    return 50100 + app_port % 100


def sidecar_grpc_port(http_port: int) -> int:
    return http_port + GRPC_PORT_OFFSET


def validate_app_id(app_id: str) -> None:
    """Raise ``InvalidAppIDError`` unless ``app_id`` is 1-60 of [A-Za-z0-9-]
    with no leading or trailing hyphen."""
    if not app_id:
        raise InvalidAppIDError(app_id, "app ID cannot be empty")
    if len(app_id) > MAX_APP_ID_LENGTH:
        raise InvalidAppIDError(
            app_id, f"app ID cannot exceed {MAX_APP_ID_LENGTH} characters (got {len(app_id)})"
        )
    for position, char in enumerate(app_id):
        if not (char.isascii() and (char.isalnum() or char == "-")):
            raise InvalidAppIDError(app_id, character=char, position=position)
    if app_id.startswith("-") or app_id.endswith("-"):
        raise InvalidAppIDError(app_id, "app ID cannot start or end with a hyphen")


@dataclass(frozen=True)
class SidecarConfig:
    """Sidecar settings for one service in one environment."""

    app_id: str
    app_port: int
    http_port: int
    grpc_port: int
    placement_address: str
    log_level: str
    enable_profiling: bool
    enable_metrics: bool = True
    metrics_port: int = METRICS_PORT
    profile_port: int = PROFILE_PORT
    max_concurrency: int = 100
    resource_limits: ResourceLimits = dataclasses.field(default_factory=ResourceLimits)

    def as_spec_config(self) -> dict[str, Any]:
        """Keys merged into ``ContainerSpec.dapr_config``."""
        return {
            "app_port": self.app_port,
            "http_port": self.http_port,
            "grpc_port": self.grpc_port,
            "placement_host_address": self.placement_address,
            "log_level": self.log_level,
            "enable_profiling": self.enable_profiling,
            "enable_metrics": self.enable_metrics,
            "metrics_port": self.metrics_port,
            "max_concurrency": self.max_concurrency,
        }


class SidecarManager:
    """Builds, validates and renders sidecar configuration for one environment."""

    def __init__(
        self,
        environment: Environment | str = Environment.DEVELOPMENT,
        components_path: str = DEFAULT_COMPONENTS_PATH,
    ) -> None:
        self.environment = Environment.parse(environment)
        self.components_path = components_path

    def build_default_config(self, app_id: str, app_port: int) -> SidecarConfig:
        http_port = sidecar_http_port(app_port)
        cpu, memory = _RESOURCES[self.environment]
        return SidecarConfig(
            app_id=app_id,
            app_port=app_port,
            http_port=http_port,
            grpc_port=sidecar_grpc_port(http_port),
            placement_address=_PLACEMENT_ADDRESSES[self.environment],
            log_level=_LOG_LEVELS[self.environment],
            enable_profiling=self.environment is Environment.DEVELOPMENT,
            max_concurrency=_MAX_CONCURRENCY[self.environment],
            resource_limits=ResourceLimits(
                cpu=cpu, memory=memory, cpu_request=cpu, memory_request=memory
            ),
        )

    def validate_eligibility(self, spec: ContainerSpec) -> None:
        """Raise ``InvalidSidecarTargetError`` unless ``spec`` may carry a sidecar."""
        if not spec.name:
            raise InvalidSidecarTargetError("container name is required for sidecar injection")
        if not spec.dapr_enabled:
            raise InvalidSidecarTargetError(f"sidecar is not enabled for {spec.name}")
        if not spec.dapr_app_id:
            raise InvalidSidecarTargetError(f"Dapr app ID is required for {spec.name}")
        if spec.port <= 0:
            raise InvalidSidecarTargetError(f"valid app port is required for {spec.name}")
        validate_app_id(spec.dapr_app_id)

    def config_for(self, spec: ContainerSpec) -> SidecarConfig:
        """Effective config: defaults, then the spec's port and caller overrides."""
        config = self.build_default_config(spec.dapr_app_id, spec.port)
        changes: dict[str, Any] = {}
        if spec.dapr_port:
            changes["http_port"] = spec.dapr_port
            changes["grpc_port"] = sidecar_grpc_port(spec.dapr_port)
        overrides = spec.dapr_config
        for key, attr in (
            ("log_level", "log_level"),
            ("max_concurrency", "max_concurrency"),
            ("placement_host_address", "placement_address"),
            ("enable_profiling", "enable_profiling"),
            ("enable_metrics", "enable_metrics"),
            ("metrics_port", "metrics_port"),
        ):
            if key in overrides:
                changes[attr] = overrides[key]
        return dataclasses.replace(config, **changes) if changes else config

    def enrich_spec(self, spec: ContainerSpec) -> ContainerSpec:
        """Return a new spec carrying sidecar ports and settings.

        Specs without a sidecar come back as an unchanged clone. Keys the
        caller already set in ``dapr_config`` are kept.
        """
        enriched = spec.clone()
        if not spec.dapr_enabled:
            return enriched
        self.validate_eligibility(spec)
        config = self.config_for(spec)
        for key, value in config.as_spec_config().items():
            enriched.dapr_config.setdefault(key, value)
        if not enriched.dapr_port:
            enriched.dapr_port = config.http_port
        enriched.environment["DAPR_HTTP_PORT"] = str(config.http_port)
        enriched.environment["DAPR_GRPC_PORT"] = str(config.grpc_port)
        logger.debug(
            "sidecar.enriched",
            unit=spec.name,
            app_id=spec.dapr_app_id,
            http_port=config.http_port,
            grpc_port=config.grpc_port,
        )
        return enriched

    def build_launch_command(self, config: SidecarConfig) -> list[str]:
        """Render the sidecar argv in a fixed order."""
        command = [
            SIDECAR_BINARY,
            f"--app-id={config.app_id}",
            f"--app-port={config.app_port}",
            f"--dapr-http-port={config.http_port}",
            f"--dapr-grpc-port={config.grpc_port}",
            f"--log-level={config.log_level}",
            f"--app-max-concurrency={config.max_concurrency}",
            f"--placement-host-address={config.placement_address}",
            f"--dapr-listen-addresses={LISTEN_ADDRESSES}",
            f"--components-path={self.components_path}",
        ]
        if config.enable_profiling:
            command.extend(["--enable-profiling", f"--profile-port={config.profile_port}"])
        if config.enable_metrics:
            command.extend(["--enable-metrics", f"--metrics-port={config.metrics_port}"])
        return command

    def sidecar_endpoint(self, app_id: str, http_port: int) -> str:
        """Where callers reach the sidecar of ``app_id``."""
        if self.environment is Environment.DEVELOPMENT:
            return f"http://localhost:{http_port}"
        return f"https://{app_id}-{self.environment.value}.azurecontainerapp.io"


__all__ = [
    "SidecarConfig",
    "SidecarManager",
    "sidecar_grpc_port",
    "sidecar_http_port",
    "validate_app_id",
]
