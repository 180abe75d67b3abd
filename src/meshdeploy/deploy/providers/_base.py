"""Base container provider with shared lifecycle logic.

Provides ``BaseContainerProvider``: public methods add logging and error
context, then delegate to ``_do_*`` hooks implemented per backend. CLI
backends share ``_exec``, an ``asyncio`` subprocess runner that turns
non-zero exits into ``ProviderError``.

Architecture:

    .. code-block:: text

        BaseContainerProvider
        ├── initialize()      → logging + context → _do_initialize()
        ├── pull_image()      → logging + context → _do_pull_image()
        ├── deploy()          → validate + logging → _do_deploy()
        ├── inject_sidecar()  → logging + context → _do_inject_sidecar()
        ├── stop()            → logging           → _do_stop()
        ├── status()          →                     _do_status()
        ├── logs()            →                     _do_logs()
        ├── endpoint()        → cache             → _do_endpoint()
        ├── publish_components()
        │                     → logging + context → _do_publish_components()
        ├── list_units()      →                     _do_list_units()
        ├── cleanup()         → logging           → _do_cleanup()
        └── wait_healthy()    → HealthVerifier.wait_until_healthy(name, self)
              │
        ┌─────┴──────────────┬─────────────────────┐
        ▼                    ▼                     ▼
    LocalEngineProvider  ManagedCloudProvider  StubContainerProvider

Cancellation:
    ``_exec`` kills the child process when the awaiting task is cancelled
    and re-raises ``CancelledError``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence

from meshdeploy.core.errors import MeshDeployError, ProviderError
from meshdeploy.core.logging import get_logger
from meshdeploy.deploy.components import MeshComponent
from meshdeploy.deploy.config import OrchestratorConfig
from meshdeploy.deploy.health import RUNNING_STATES, HealthCheckResult, HealthVerifier
from meshdeploy.deploy.providers._types import CommandResult
from meshdeploy.deploy.sidecar import SidecarManager
from meshdeploy.deploy.spec import ContainerSpec
from meshdeploy.deploy.units import UnitCatalog

logger = get_logger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0


class BaseContainerProvider:
    """Base class for providers with shared lifecycle logic.

    Parameters
    ----------
    config
        Run configuration (environment, CLI binaries, timeouts).
    verifier
        Health verifier used by ``wait_healthy``; built from ``config``
        when omitted.
    sidecars
        Sidecar manager for the config's environment; built when omitted.
    catalog
        Unit declarations used to resolve endpoints of units this instance
        did not deploy; the built-in table when omitted.
    """

    provider_name = "base"
    sidecar_suffix = "-dapr"

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        verifier: HealthVerifier | None = None,
        sidecars: SidecarManager | None = None,
        catalog: UnitCatalog | None = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self.verifier = verifier or HealthVerifier(
            poll_interval=self.config.poll_interval_seconds,
            probe_timeout=self.config.probe_timeout_seconds,
        )
        self.sidecars = sidecars or SidecarManager(
            self.config.environment, self.config.components_path
        )
        self.catalog = catalog if catalog is not None else UnitCatalog()
        self._endpoints: dict[str, str] = {}

    @property
    def cli_binary(self) -> str:
        raise NotImplementedError

    @property
    def default_health_timeout(self) -> float:
        return self.config.health_timeout_seconds

    def sidecar_name(self, app_id: str) -> str:
        return f"{app_id}{self.sidecar_suffix}"

    # --- Public lifecycle ---

    async def initialize(self) -> None:
        logger.info("provider.initializing", provider=self.provider_name)
        try:
            await self._do_initialize()
        except MeshDeployError as exc:
            raise exc.with_context(step="initialize", provider=self.provider_name)

    async def pull_image(self, image: str) -> None:
        try:
            await self._do_pull_image(image)
        except MeshDeployError as exc:
            raise exc.with_context(step="pull", provider=self.provider_name)

    async def deploy(self, spec: ContainerSpec) -> None:
        """Validate and (re)start one unit."""
        spec.validate()
        logger.info(
            "unit.deploying", unit=spec.name, image=spec.image, provider=self.provider_name
        )
        try:
            await self._do_deploy(spec)
        except MeshDeployError as exc:
            raise exc.with_context(unit=spec.name, step="deploy", provider=self.provider_name)
        logger.info("unit.deployed", unit=spec.name, provider=self.provider_name)

    async def inject_sidecar(self, spec: ContainerSpec) -> str | None:
        """Attach the unit's sidecar; returns the sidecar's unit name if it
        runs as a separately addressable container."""
        try:
            name = await self._do_inject_sidecar(spec)
        except MeshDeployError as exc:
            raise exc.with_context(unit=spec.name, step="sidecar", provider=self.provider_name)
        logger.info(
            "sidecar.injected", unit=spec.name, app_id=spec.dapr_app_id, sidecar=name
        )
        return name

    async def stop(self, name: str) -> None:
        logger.info("unit.stopping", unit=name, provider=self.provider_name)
        await self._do_stop(name)

    async def status(self, name: str) -> str:
        return await self._do_status(name)

    async def is_running(self, name: str) -> bool:
        return (await self.status(name)) in RUNNING_STATES

    async def endpoint(self, name: str) -> str:
        """Health URL of ``name`` (``""`` when it has none).

        Endpoints recorded by this instance win; anything else is resolved
        through ``_do_endpoint`` and cached once non-empty.
        """
        if name in self._endpoints:
            return self._endpoints[name]
        resolved = await self._do_endpoint(name)
        if resolved:
            self._endpoints[name] = resolved
        return resolved

    async def publish_components(self, components: Sequence[MeshComponent]) -> None:
        """Make ``components`` loadable by sidecars started after this call."""
        logger.info(
            "components.publishing",
            provider=self.provider_name,
            components=[component.name for component in components],
        )
        try:
            await self._do_publish_components(components)
        except MeshDeployError as exc:
            raise exc.with_context(step="components", provider=self.provider_name)

    async def logs(self, name: str, lines: int = 100) -> str:
        return await self._do_logs(name, lines)

    async def list_units(self) -> list[str]:
        return await self._do_list_units()

    async def cleanup(self) -> None:
        logger.info("provider.cleanup", provider=self.provider_name)
        await self._do_cleanup()
        logger.info("provider.cleanup_complete", provider=self.provider_name)

    async def wait_healthy(self, name: str, timeout: float | None = None) -> HealthCheckResult:
        """Wait until ``name`` is healthy, using this provider as status source."""
        try:
            return await self.verifier.wait_until_healthy(
                name, self, timeout if timeout is not None else self.default_health_timeout
            )
        except MeshDeployError as exc:
            raise exc.with_context(unit=name, step="health", provider=self.provider_name)

    # --- Hooks for subclasses ---

    async def _do_initialize(self) -> None:
        """Override in subclass. Default: nothing to prepare."""

    async def _do_pull_image(self, image: str) -> None:
        raise NotImplementedError

    async def _do_deploy(self, spec: ContainerSpec) -> None:
        raise NotImplementedError

    async def _do_inject_sidecar(self, spec: ContainerSpec) -> str | None:
        raise NotImplementedError

    async def _do_stop(self, name: str) -> None:
        raise NotImplementedError

    async def _do_status(self, name: str) -> str:
        raise NotImplementedError

    async def _do_logs(self, name: str, lines: int) -> str:
        raise NotImplementedError

    async def _do_endpoint(self, name: str) -> str:
        """Override in subclass. Default: no HTTP endpoint."""
        return ""

    async def _do_publish_components(self, components: Sequence[MeshComponent]) -> None:
        raise NotImplementedError

    async def _do_list_units(self) -> list[str]:
        raise NotImplementedError

    async def _do_cleanup(self) -> None:
        for name in await self.list_units():
            await self.stop(name)

    # --- CLI execution ---

    async def _exec(
        self,
        *args: str,
        check: bool = True,
        unit: str | None = None,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> CommandResult:
        """Run ``cli_binary`` with ``args``.

        Raises
        ------
        ProviderError
            The binary is missing, timed out, or exited non-zero with
            ``check=True``.
        """
        cmd = [self.cli_binary, *args]
        logger.debug("provider.exec", provider=self.provider_name, cmd=" ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ProviderError(
                f"{self.cli_binary} not found on PATH", unit=unit, cause=exc
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as exc:
            await _kill(process)
            raise ProviderError(
                f"{self.cli_binary} {' '.join(args)} timed out after {timeout:g}s",
                unit=unit,
                cause=exc,
            ) from exc
        except asyncio.CancelledError:
            await _kill(process)
            raise

        result = CommandResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if check and not result.ok:
            raise ProviderError(
                f"{self.cli_binary} {args[0] if args else ''} failed "
                f"(exit {result.returncode}): {result.stderr.strip()}",
                unit=unit,
                stderr=result.stderr,
            )
        return result


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


__all__ = ["BaseContainerProvider"]
