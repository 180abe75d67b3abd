"""Local container engine provider.

Runs units as containers through a podman/docker-compatible CLI, invoked
with ``asyncio`` subprocesses. Used for the development environment.

Key Concepts:
    Shared network: every unit joins one bridge network (created on first
        use) so units resolve each other by container name.
    Labels: every container carries ``meshdeploy.unit`` and
        ``meshdeploy.run_id`` labels; ``list_units`` and ``cleanup`` find
        containers by label.
    Sidecars: the sidecar runs as ``{app_id}-dapr`` inside the main
        container's network namespace (``--network container:<unit>``), so
        the app is reachable on localhost and the sidecar HTTP port is
        published by the main container.
    Status: engine states are mapped onto the shared vocabulary
        (``exited``/``dead`` -> ``failed``, ``created``/``restarting`` ->
        ``starting``, missing container -> ``not_found``).

Related Modules:
    - :mod:`meshdeploy.deploy.providers._base` - lifecycle wrapper and ``_exec``
    - :mod:`meshdeploy.deploy.sidecar` - sidecar config and launch command

Tags:
    container, podman, docker, subprocess, network, sidecar
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Sequence
from pathlib import Path

import yaml

from meshdeploy.core.errors import InvalidSidecarTargetError, ProviderError
from meshdeploy.core.logging import get_logger
from meshdeploy.deploy.components import MeshComponent
from meshdeploy.deploy.health import sidecar_health_url
from meshdeploy.deploy.providers._base import BaseContainerProvider
from meshdeploy.deploy.sidecar import SidecarConfig, validate_app_id
from meshdeploy.deploy.spec import ContainerSpec, HealthCheckConfig, parse_cpu, parse_memory_mib

logger = get_logger(__name__)

LABEL_PREFIX = "meshdeploy"

_STATE_MAP = {
    "exited": "failed",
    "dead": "failed",
    "created": "starting",
    "configured": "starting",
    "initialized": "starting",
    "restarting": "starting",
    "paused": "stopped",
    "stopped": "stopped",
}


def _engine_cpus(quantity: str) -> str:
    return f"{parse_cpu(quantity):g}"


def _engine_memory(quantity: str) -> str:
    return f"{parse_memory_mib(quantity):g}m"


class LocalEngineProvider(BaseContainerProvider):
    """Provider backed by a local podman/docker CLI.

    Example::

        provider = LocalEngineProvider(OrchestratorConfig(engine_binary="docker"))
        await provider.initialize()
        await provider.pull_image(spec.image)
        await provider.deploy(spec)
        await provider.wait_healthy(spec.name)
    """

    provider_name = "local-engine"
    sidecar_suffix = "-dapr"

    @property
    def cli_binary(self) -> str:
        return self.config.engine_binary

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    async def ensure_network(self, network: str | None = None) -> str:
        """Create the bridge network unless it already exists."""
        network = network or self.config.network_name
        inspect = await self._exec("network", "inspect", network, check=False)
        if inspect.ok:
            return network
        await self._exec(
            "network", "create",
            "--driver", "bridge",
            "--subnet", self.config.network_subnet,
            "--gateway", self.config.network_gateway,
            network,
        )
        logger.info("network.created", network=network)
        return network

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def _do_initialize(self) -> None:
        if shutil.which(self.cli_binary) is None:
            raise ProviderError(f"{self.cli_binary} CLI not found on PATH")
        await self.ensure_network()

    async def _do_pull_image(self, image: str) -> None:
        present = await self._exec("image", "inspect", image, check=False)
        if present.ok:
            logger.debug("image.present", image=image)
            return
        logger.info("image.pulling", image=image)
        await self._exec("pull", image)

    async def _do_deploy(self, spec: ContainerSpec) -> None:
        network = self._network_for(spec)
        await self.ensure_network(network)
        await self._remove(spec.name)
        await self._exec(*self.run_args(spec), unit=spec.name)
        self._endpoints[spec.name] = spec.health_endpoint

    async def _do_inject_sidecar(self, spec: ContainerSpec) -> str | None:
        self.sidecars.validate_eligibility(spec)
        config = self.sidecars.config_for(spec)
        self.validate_sidecar_config(config)
        name = self.sidecar_name(spec.dapr_app_id)
        await self._remove(name)
        await self._exec(*self.sidecar_run_args(spec, config), unit=spec.name)
        self._endpoints[name] = sidecar_health_url(
            self.sidecars.sidecar_endpoint(spec.dapr_app_id, config.http_port)
        )
        return name

    async def _do_endpoint(self, name: str) -> str:
        return self.catalog.health_endpoints(self.sidecar_suffix).get(name, "")

    async def _do_publish_components(self, components: Sequence[MeshComponent]) -> None:
        directory = Path(self.config.components_path)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            for component in components:
                (directory / component.filename).write_text(
                    yaml.safe_dump(component.to_document(), sort_keys=False)
                )
        except OSError as exc:
            raise ProviderError(
                f"cannot write components to {directory}: {exc}", cause=exc
            ) from exc
        logger.info("components.written", path=str(directory), count=len(components))

    async def _do_stop(self, name: str) -> None:
        await self._remove(name)

    async def _do_status(self, name: str) -> str:
        result = await self._exec(
            "inspect", "--format", "{{.State.Status}}", name, check=False
        )
        if not result.ok:
            return "not_found"
        state = result.stdout.strip().lower()
        return _STATE_MAP.get(state, state or "unknown")

    async def _do_logs(self, name: str, lines: int) -> str:
        result = await self._exec("logs", "--tail", str(lines), name, unit=name)
        return result.stdout + result.stderr

    async def _do_list_units(self) -> list[str]:
        result = await self._exec(
            "ps", "--all",
            "--filter", f"label={LABEL_PREFIX}.unit",
            "--format", "{{json .}}",
        )
        names: list[str] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("list.malformed_record", provider=self.provider_name, record=line)
                continue
            name = _record_name(record)
            if name is None:
                logger.warning("list.malformed_record", provider=self.provider_name, record=line)
                continue
            names.append(name)
        return names

    async def _do_cleanup(self) -> None:
        await super()._do_cleanup()
        await self._exec("network", "rm", self.config.network_name, check=False)

    # ------------------------------------------------------------------
    # Command rendering
    # ------------------------------------------------------------------

    def run_args(self, spec: ContainerSpec) -> list[str]:
        """Engine arguments for starting ``spec`` (without the binary)."""
        args = [
            "run", "-d",
            "--name", spec.name,
            "--network", self._network_for(spec),
            "--label", f"{LABEL_PREFIX}.unit={spec.name}",
            "--label", f"{LABEL_PREFIX}.run_id={self.config.run_id}",
            "-p", f"{spec.port}:{spec.port}",
        ]
        if spec.dapr_enabled and spec.dapr_port:
            args.extend(["-p", f"{spec.dapr_port}:{spec.dapr_port}"])
        for key in sorted(spec.environment):
            args.extend(["-e", f"{key}={spec.environment[key]}"])
        limits = spec.resource_limits
        args.extend(["--cpus", _engine_cpus(limits.cpu), "--memory", _engine_memory(limits.memory)])
        for volume in spec.volumes:
            args.extend(["-v", volume.as_engine_arg()])

        local = spec.local_config
        if local is not None:
            if local.restart_policy:
                args.extend(["--restart", local.restart_policy])
            for opt in local.security_opts:
                args.extend(["--security-opt", opt])
        args.extend(self._health_args(spec))

        args.append(spec.image)
        args.extend(spec.command)
        return args

    def sidecar_run_args(self, spec: ContainerSpec, config: SidecarConfig) -> list[str]:
        """Engine arguments for the sidecar of ``spec``."""
        name = self.sidecar_name(spec.dapr_app_id)
        limits = config.resource_limits
        return [
            "run", "-d",
            "--name", name,
            "--network", f"container:{spec.name}",
            "--label", f"{LABEL_PREFIX}.unit={name}",
            "--label", f"{LABEL_PREFIX}.run_id={self.config.run_id}",
            "--label", f"{LABEL_PREFIX}.sidecar_of={spec.name}",
            "--cpus", _engine_cpus(limits.cpu),
            "--memory", _engine_memory(limits.memory),
            "-v", f"{self.sidecars.components_path}:{self.sidecars.components_path}:ro",
            self.config.sidecar_image,
            *self.sidecars.build_launch_command(config),
        ]

    @staticmethod
    def validate_sidecar_config(config: SidecarConfig) -> None:
        validate_app_id(config.app_id)
        if config.app_port <= 0:
            raise InvalidSidecarTargetError(f"app port must be positive, got {config.app_port}")
        if config.http_port <= 0:
            raise InvalidSidecarTargetError(f"HTTP port must be positive, got {config.http_port}")
        if config.grpc_port <= 0:
            raise InvalidSidecarTargetError(f"gRPC port must be positive, got {config.grpc_port}")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _network_for(self, spec: ContainerSpec) -> str:
        local = spec.local_config
        if local is not None and local.network_name:
            return local.network_name
        return self.config.network_name

    def _health_args(self, spec: ContainerSpec) -> list[str]:
        local = spec.local_config
        check = local.health_check if local is not None else None
        if check is None or not check.command:
            if not spec.health_endpoint.startswith(("http://", "https://")):
                return []
            check = HealthCheckConfig(command=f"curl -f {spec.health_endpoint} || exit 1")
        return [
            "--health-cmd", check.command,
            "--health-interval", check.interval,
            "--health-timeout", check.timeout,
            "--health-retries", str(check.retries),
            "--health-start-period", check.start_period,
        ]

    async def _remove(self, name: str) -> None:
        await self._exec("stop", name, check=False)
        await self._exec("rm", name, check=False)


def _record_name(record: object) -> str | None:
    if not isinstance(record, dict):
        return None
    names = record.get("Names")
    if isinstance(names, list) and names and isinstance(names[0], str):
        return names[0]
    if isinstance(names, str) and names:
        return names.split(",")[0]
    return None


__all__ = ["LABEL_PREFIX", "LocalEngineProvider"]
