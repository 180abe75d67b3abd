"""Configuration models for meshdeploy.

Pydantic v2 configuration for an orchestrator run. Every field can be
overridden from ``MESHDEPLOY_*`` environment variables through
``OrchestratorConfig.from_env()``, so CI pipelines select the target
environment and tune timeouts without touching code.

Key Concepts:
    Environment: development / staging / production. Drives provider
        selection, sidecar defaults, cloud scaling and whether
        post-deployment validation is advisory or fatal.
    OrchestratorConfig: One run's settings. ``run_id`` is generated when
        not supplied so every run is traceable in logs and reports.

Architecture Decisions:
    - from_env() classmethod: explicit env-var parsing rather than
      ``pydantic-settings``.
    - Override precedence: kwargs > env vars > field defaults.
    - Unknown environments fail validation with
      ``UnsupportedEnvironmentError`` instead of silently falling back.

Related Modules:
    - :mod:`meshdeploy.deploy.providers` - ``create_provider(config)``
    - :mod:`meshdeploy.deploy.orchestrator` - consumes the config

Tags:
    config, settings, pydantic, environment
"""

from __future__ import annotations

import os
import uuid
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from meshdeploy.core.errors import UnsupportedEnvironmentError


class Environment(str, Enum):
    """Target deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: str | Environment) -> Environment:
        """Parse an environment name, raising ``UnsupportedEnvironmentError``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedEnvironmentError(str(value)) from None

    @property
    def is_local(self) -> bool:
        return self is Environment.DEVELOPMENT


class OrchestratorConfig(BaseModel):
    """Configuration for a single orchestrator run."""

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Target environment",
    )
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    # Local engine
    engine_binary: str = Field(
        default="podman",
        description="Container engine CLI (podman or docker)",
    )
    network_name: str = Field(
        default="meshdeploy-dev",
        description="Bridge network shared by local containers",
    )
    network_subnet: str = Field(default="172.20.0.0/16")
    network_gateway: str = Field(default="172.20.0.1")

    # Sidecar
    sidecar_image: str = Field(default="daprio/dapr:latest")
    components_path: str = Field(
        default="/tmp/dapr-components",
        description="Component definitions directory passed to the sidecar",
    )

    # Health
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    local_health_timeout_seconds: float = Field(default=60.0, gt=0)
    cloud_health_timeout_seconds: float = Field(default=180.0, gt=0)

    # Managed cloud
    cloud_cli: str = Field(default="az")
    resource_group: str = Field(default="meshdeploy-rg")
    container_environment: str = Field(default="meshdeploy-env")

    # Inputs
    outputs_file: Path | None = Field(
        default=None,
        description="JSON/YAML file with provisioning outputs",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _parse_environment(cls, value: Any) -> Environment:
        return Environment.parse(value)

    @model_validator(mode="after")
    def _set_defaults(self) -> OrchestratorConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def health_timeout_seconds(self) -> float:
        """Per-unit readiness timeout for the environment's backend."""
        if self.environment.is_local:
            return self.local_health_timeout_seconds
        return self.cloud_health_timeout_seconds

    @property
    def validation_is_fatal(self) -> bool:
        """Whether unhealthy units after deployment fail the run."""
        return not self.environment.is_local

    @classmethod
    def from_env(cls, **overrides: Any) -> OrchestratorConfig:
        """Create config from MESHDEPLOY_* environment variables."""
        env_map = {
            "environment": "MESHDEPLOY_ENVIRONMENT",
            "run_id": "MESHDEPLOY_RUN_ID",
            "engine_binary": "MESHDEPLOY_ENGINE",
            "network_name": "MESHDEPLOY_NETWORK",
            "sidecar_image": "MESHDEPLOY_SIDECAR_IMAGE",
            "poll_interval_seconds": "MESHDEPLOY_POLL_INTERVAL",
            "probe_timeout_seconds": "MESHDEPLOY_PROBE_TIMEOUT",
            "local_health_timeout_seconds": "MESHDEPLOY_LOCAL_HEALTH_TIMEOUT",
            "cloud_health_timeout_seconds": "MESHDEPLOY_CLOUD_HEALTH_TIMEOUT",
            "resource_group": "MESHDEPLOY_RESOURCE_GROUP",
            "container_environment": "MESHDEPLOY_CONTAINER_ENVIRONMENT",
            "outputs_file": "MESHDEPLOY_OUTPUTS_FILE",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name.endswith("_seconds"):
                values[field_name] = float(env_val)
            elif field_name == "outputs_file":
                values[field_name] = Path(env_val)
            else:
                values[field_name] = env_val
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
