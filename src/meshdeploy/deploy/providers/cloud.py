"""Managed cloud container platform provider.

Deploys units as container apps through the ``az containerapp`` CLI. Used
for staging and production.

Key Concepts:
    App document: ``render_app(spec)`` builds the container-app definition
        (ingress, sidecar capability block, resources, env, scale rules),
        written as YAML and passed to ``az containerapp create --yaml``.
    Provisioning state: ``status`` is the lower-cased
        ``properties.provisioningState`` (``succeeded``, ``failed``,
        ``inprogress``...), or ``not_found``.
    Endpoints: the ingress FQDN is resolved after a deploy, or on first
        use for apps deployed by an earlier run, and cached once known.
        ``dapr-*`` platform units are checked on ``/v1.0/healthz``, other
        units on their declared health path.
    Components: ``publish_components`` registers each sidecar component
        on the managed environment with ``env dapr-component set``.
    Sidecars: the platform runs the sidecar itself. ``inject_sidecar``
        only validates; the capability flags are already part of the app
        document.
    Revisions: ``wait_for_revision_ready`` polls a revision's provisioning
        state until ``Succeeded``; ``deactivate_revision`` retires one.
    Traffic: ``split_traffic`` moves a percentage to a new revision and
        spreads the rest over the other active revisions.

Scaling Defaults:
    ::

        environment   replicas  concurrent requests  cpu %
        development   1-3       10                   70
        staging       1-10      10                   70
        production    3-50      100                  80

Tags:
    cloud, container-apps, az-cli, yaml, scaling, traffic-splitting
"""

from __future__ import annotations

import json
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from meshdeploy.core.errors import MeshDeployError, ProviderError, ValidationError
from meshdeploy.core.logging import get_logger
from meshdeploy.deploy.components import MeshComponent
from meshdeploy.deploy.config import Environment
from meshdeploy.deploy.health import SIDECAR_HEALTH_PATH, HealthCheckResult
from meshdeploy.deploy.providers._base import BaseContainerProvider
from meshdeploy.deploy.spec import CloudConfig, ContainerSpec, parse_cpu, parse_memory_mib

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScalingProfile:
    """Replica bounds and scale-rule thresholds for one environment."""

    min_replicas: int
    max_replicas: int
    concurrent_requests: int
    cpu_utilization: int


SCALING_PROFILES = {
    Environment.DEVELOPMENT: ScalingProfile(1, 3, 10, 70),
    Environment.STAGING: ScalingProfile(1, 10, 10, 70),
    Environment.PRODUCTION: ScalingProfile(3, 50, 100, 80),
}


def traffic_weights(
    new_revision: str, percentage: int, active_revisions: list[str]
) -> dict[str, int]:
    """Weights sending ``percentage`` to ``new_revision``, the rest spread
    evenly (earlier revisions absorb the remainder) over the others."""
    if not 0 <= percentage <= 100:
        raise ValidationError(
            f"traffic percentage must be between 0 and 100, got {percentage}",
            field="percentage",
            value=percentage,
        )
    others = [rev for rev in dict.fromkeys(active_revisions) if rev != new_revision]
    if not others:
        return {new_revision: 100}
    weights = {new_revision: percentage}
    share, extra = divmod(100 - percentage, len(others))
    for index, revision in enumerate(others):
        weights[revision] = share + (1 if index < extra else 0)
    return weights


def _health_path(name: str, health_endpoint: str) -> str:
    if name.startswith("dapr-"):
        return SIDECAR_HEALTH_PATH
    return urlparse(health_endpoint).path or "/health"


class _RevisionStatus:
    """Status source over the revisions of one app."""

    def __init__(self, provider: ManagedCloudProvider, app: str) -> None:
        self._provider = provider
        self._app = app

    async def status(self, name: str) -> str:
        return await self._provider.revision_status(self._app, name)

    async def endpoint(self, name: str) -> str:
        return ""


class ManagedCloudProvider(BaseContainerProvider):
    """Provider backed by the ``az containerapp`` CLI."""

    provider_name = "managed-cloud"
    sidecar_suffix = "--dapr"

    @property
    def cli_binary(self) -> str:
        return self.config.cloud_cli

    @property
    def scaling(self) -> ScalingProfile:
        return SCALING_PROFILES[self.config.environment]

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def _do_initialize(self) -> None:
        await self._exec(
            "containerapp", "env", "show",
            "--name", self.config.container_environment,
            "--resource-group", self.config.resource_group,
            "--output", "json",
        )

    async def _do_pull_image(self, image: str) -> None:
        logger.debug("image.pull_skipped", image=image, provider=self.provider_name)

    async def _do_deploy(self, spec: ContainerSpec) -> None:
        cloud = spec.cloud_config or CloudConfig()
        document = self.render_app(spec)
        with tempfile.TemporaryDirectory(prefix="meshdeploy-") as tmp:
            path = Path(tmp) / f"{spec.name}.yaml"
            path.write_text(yaml.safe_dump(document, sort_keys=False))
            await self._exec(
                "containerapp", "create",
                "--name", spec.name,
                "--resource-group", cloud.resource_group or self.config.resource_group,
                "--environment", cloud.container_environment or self.config.container_environment,
                "--yaml", str(path),
                "--output", "json",
                unit=spec.name,
            )
        url = await self._ingress_url(
            spec.name,
            _health_path(spec.name, spec.health_endpoint),
            cloud.resource_group or self.config.resource_group,
        )
        if url:
            self._endpoints[spec.name] = url
        else:
            logger.warning("unit.no_ingress_fqdn", unit=spec.name)

    async def _do_endpoint(self, name: str) -> str:
        declared = ""
        if name in self.catalog:
            declared = self.catalog.get(name).health_endpoint or ""
        return await self._ingress_url(
            name, _health_path(name, declared), self.config.resource_group
        )

    async def _ingress_url(self, name: str, path: str, resource_group: str) -> str:
        """``https://<ingress fqdn><path>``, or ``""`` when the app has none."""
        fqdn = await self._exec(
            "containerapp", "show",
            "--name", name,
            "--resource-group", resource_group,
            "--query", "properties.configuration.ingress.fqdn",
            "--output", "tsv",
            check=False,
            unit=name,
        )
        host = fqdn.stdout.strip() if fqdn.ok else ""
        return f"https://{host}{path}" if host else ""

    async def _do_publish_components(self, components: Sequence[MeshComponent]) -> None:
        with tempfile.TemporaryDirectory(prefix="meshdeploy-") as tmp:
            for component in components:
                path = Path(tmp) / component.filename
                path.write_text(yaml.safe_dump(component.to_cloud_document(), sort_keys=False))
                await self._exec(
                    "containerapp", "env", "dapr-component", "set",
                    "--name", self.config.container_environment,
                    "--resource-group", self.config.resource_group,
                    "--dapr-component-name", component.name,
                    "--yaml", str(path),
                    "--output", "json",
                )

    async def _do_inject_sidecar(self, spec: ContainerSpec) -> str | None:
        self.sidecars.validate_eligibility(spec)
        logger.debug("sidecar.platform_managed", unit=spec.name, app_id=spec.dapr_app_id)
        return None

    async def _do_stop(self, name: str) -> None:
        await self._exec(
            "containerapp", "update",
            "--name", name,
            "--resource-group", self.config.resource_group,
            "--min-replicas", "0",
            "--max-replicas", "0",
            unit=name,
        )

    async def _do_status(self, name: str) -> str:
        result = await self._exec(
            "containerapp", "show",
            "--name", name,
            "--resource-group", self.config.resource_group,
            "--query", "properties.provisioningState",
            "--output", "tsv",
            check=False,
        )
        if not result.ok:
            return "not_found"
        return result.stdout.strip().lower() or "unknown"

    async def _do_logs(self, name: str, lines: int) -> str:
        result = await self._exec(
            "containerapp", "logs", "show",
            "--name", name,
            "--resource-group", self.config.resource_group,
            "--tail", str(lines),
            unit=name,
        )
        return result.stdout

    async def _do_list_units(self) -> list[str]:
        result = await self._exec(
            "containerapp", "list",
            "--resource-group", self.config.resource_group,
            "--output", "json",
        )
        try:
            records = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise ProviderError(f"unparseable container app listing: {exc}", cause=exc) from exc
        names: list[str] = []
        for record in records if isinstance(records, list) else []:
            name = record.get("name") if isinstance(record, dict) else None
            if not isinstance(name, str) or not name:
                logger.warning("list.malformed_record", provider=self.provider_name, record=record)
                continue
            names.append(name)
        return names

    # ------------------------------------------------------------------
    # Revisions and traffic
    # ------------------------------------------------------------------

    async def active_revisions(self, app: str) -> list[str]:
        result = await self._exec(
            "containerapp", "revision", "list",
            "--name", app,
            "--resource-group", self.config.resource_group,
            "--query", "[?properties.active].name",
            "--output", "json",
            unit=app,
        )
        revisions = json.loads(result.stdout or "[]")
        return [rev for rev in revisions if isinstance(rev, str)]

    async def revision_status(self, app: str, revision: str) -> str:
        """Lower-cased provisioning state of one revision, or ``not_found``."""
        result = await self._exec(
            "containerapp", "revision", "show",
            "--name", app,
            "--resource-group", self.config.resource_group,
            "--revision", revision,
            "--query", "properties.provisioningState",
            "--output", "tsv",
            check=False,
            unit=app,
        )
        if not result.ok:
            return "not_found"
        return result.stdout.strip().lower() or "unknown"

    async def wait_for_revision_ready(
        self, app: str, revision: str, timeout: float | None = None
    ) -> HealthCheckResult:
        """Poll until ``revision`` of ``app`` has provisioned.

        Raises
        ------
        HealthFailedError
            The revision's provisioning state is ``Failed``.
        HealthTimeoutError
            It did not reach ``Succeeded`` within ``timeout`` seconds.
        """
        try:
            result = await self.verifier.wait_until_healthy(
                revision,
                _RevisionStatus(self, app),
                timeout if timeout is not None else self.default_health_timeout,
            )
        except MeshDeployError as exc:
            raise exc.with_context(
                unit=app, step="revision", provider=self.provider_name, revision=revision
            )
        logger.info("revision.ready", app=app, revision=revision)
        return result

    async def deactivate_revision(self, app: str, revision: str) -> None:
        """Take ``revision`` out of service."""
        try:
            await self._exec(
                "containerapp", "revision", "deactivate",
                "--name", app,
                "--resource-group", self.config.resource_group,
                "--revision", revision,
                unit=app,
            )
        except MeshDeployError as exc:
            raise exc.with_context(
                step="deactivate", provider=self.provider_name, revision=revision
            )
        logger.info("revision.deactivated", app=app, revision=revision)

    async def split_traffic(
        self, app: str, new_revision: str, percentage: int, wait_ready: bool = False
    ) -> dict[str, int]:
        """Route ``percentage`` of ``app``'s traffic to ``new_revision``,
        optionally waiting for it to provision first."""
        if wait_ready:
            await self.wait_for_revision_ready(app, new_revision)
        weights = traffic_weights(new_revision, percentage, await self.active_revisions(app))
        await self._exec(
            "containerapp", "ingress", "traffic", "set",
            "--name", app,
            "--resource-group", self.config.resource_group,
            "--revision-weight", *[f"{rev}={weight}" for rev, weight in weights.items()],
            unit=app,
        )
        logger.info("traffic.split", app=app, weights=weights)
        return weights

    # ------------------------------------------------------------------
    # Document rendering
    # ------------------------------------------------------------------

    def render_app(self, spec: ContainerSpec) -> dict[str, Any]:
        """Container-app definition for ``spec``."""
        cloud = spec.cloud_config or CloudConfig()
        scaling = self.scaling

        if cloud.traffic_splitting:
            traffic = [
                {"revisionName": rev, "weight": weight}
                for rev, weight in cloud.traffic_splitting.items()
            ]
        else:
            traffic = [{"latestRevision": True, "weight": 100}]
        ingress: dict[str, Any] = {
            "external": True,
            "targetPort": spec.port,
            "transport": "auto",
            "traffic": traffic,
        }
        ingress.update(cloud.ingress)

        configuration: dict[str, Any] = {"activeRevisionsMode": "Multiple", "ingress": ingress}
        if spec.dapr_enabled:
            configuration["dapr"] = {
                "enabled": True,
                "appId": spec.dapr_app_id,
                "appPort": spec.port,
                "appProtocol": "http",
                "logLevel": spec.dapr_config.get("log_level", "info"),
            }

        limits = spec.resource_limits
        container: dict[str, Any] = {
            "name": spec.name,
            "image": spec.image,
            "resources": {
                "cpu": parse_cpu(limits.cpu),
                "memory": f"{parse_memory_mib(limits.memory) / 1024:g}Gi",
            },
            "env": [{"name": key, "value": spec.environment[key]} for key in sorted(spec.environment)],
        }
        if spec.command:
            container["command"] = list(spec.command)
        if spec.health_endpoint.startswith(("http://", "https://")):
            container["probes"] = [
                {
                    "type": "Readiness",
                    "httpGet": {"path": _health_path(spec.name, spec.health_endpoint), "port": spec.port},
                }
            ]

        rules = [
            {
                "name": "http-scale-rule",
                "http": {"metadata": {"concurrentRequests": str(scaling.concurrent_requests)}},
            },
            {
                "name": "cpu-scale-rule",
                "custom": {
                    "type": "cpu",
                    "metadata": {"type": "Utilization", "value": str(scaling.cpu_utilization)},
                },
            },
        ]
        rules.extend({"name": name, **rule} for name, rule in cloud.scaling_rules.items())

        template: dict[str, Any] = {
            "containers": [container],
            "scale": {
                "minReplicas": cloud.min_replicas if cloud.min_replicas is not None else scaling.min_replicas,
                "maxReplicas": cloud.max_replicas if cloud.max_replicas is not None else scaling.max_replicas,
                "rules": rules,
            },
        }
        if cloud.revision_suffix:
            template["revisionSuffix"] = cloud.revision_suffix

        return {"properties": {"configuration": configuration, "template": template}}


__all__ = ["SCALING_PROFILES", "ManagedCloudProvider", "ScalingProfile", "traffic_weights"]
