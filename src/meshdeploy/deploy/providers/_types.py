"""Container provider protocol and shared value types.

Every runtime backend (local container engine, managed cloud platform,
in-memory stub) implements ``ContainerProvider``. The orchestrator and the
health verifier interact with backends exclusively through it.

.. code-block:: text

    ContainerProvider
    ┌──────────────────────────────────────────────────────────────┐
    │  initialize()               verify CLI / platform, network   │
    │  pull_image(image)          make the image available         │
    │  deploy(spec)               (re)start one unit               │
    │  inject_sidecar(spec)       start or flag the unit's sidecar │
    │  stop(name)                 stop one unit                    │
    │  status(name) -> str        normalized state                 │
    │  is_running(name) -> bool                                    │
    │  endpoint(name) -> str      health URL ("" when none)        │
    │  logs(name, lines) -> str                                    │
    │  list_units() -> list[str]                                   │
    │  publish_components(cs)     make sidecar components loadable │
    │  cleanup()                  stop everything this run owns    │
    │  wait_healthy(name, timeout)                                 │
    └──────────────────────────────────────────────────────────────┘

Status strings use the vocabulary in :mod:`meshdeploy.deploy.health`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from meshdeploy.deploy.components import MeshComponent
from meshdeploy.deploy.health import HealthCheckResult
from meshdeploy.deploy.spec import ContainerSpec


@dataclass(frozen=True)
class CommandResult:
    """Completed CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class ContainerProvider(Protocol):
    """Protocol for container runtime backends."""

    @property
    def provider_name(self) -> str: ...

    @property
    def default_health_timeout(self) -> float: ...

    async def initialize(self) -> None: ...

    async def pull_image(self, image: str) -> None: ...

    async def deploy(self, spec: ContainerSpec) -> None: ...

    async def inject_sidecar(self, spec: ContainerSpec) -> str | None: ...

    async def stop(self, name: str) -> None: ...

    async def status(self, name: str) -> str: ...

    async def is_running(self, name: str) -> bool: ...

    async def endpoint(self, name: str) -> str: ...

    async def logs(self, name: str, lines: int = 100) -> str: ...

    async def list_units(self) -> list[str]: ...

    async def publish_components(self, components: Sequence[MeshComponent]) -> None: ...

    async def cleanup(self) -> None: ...

    async def wait_healthy(self, name: str, timeout: float | None = None) -> HealthCheckResult: ...

    def sidecar_name(self, app_id: str) -> str: ...


__all__ = ["CommandResult", "ContainerProvider"]
