"""In-memory provider for tests and dry runs.

No containers are created. Units become ``running`` when deployed unless a
status script says otherwise.

.. code-block:: text

    StubContainerProvider behavior:

    deploy(spec)          → records spec, unit status "running"
    status(name)          → next scripted status (last one repeats),
                            else "running" if deployed, else "not_found"

    Inject failures:
      provider.fail_pull   = {"vault"}   → pull_image() raises ProviderError
      provider.fail_deploy = {"vault"}   → deploy() raises ProviderError
      provider.fail_sidecar = {"vault"}  → inject_sidecar() raises ProviderError
      provider.fail_components = True    → publish_components() raises ProviderError

    Track usage:
      provider.calls       → [("deploy", "vault"), ...] in call order
      provider.deployed    → name → deployed spec
      provider.published   → components passed to publish_components()
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from meshdeploy.core.errors import ProviderError
from meshdeploy.deploy.components import MeshComponent
from meshdeploy.deploy.providers._base import BaseContainerProvider
from meshdeploy.deploy.spec import ContainerSpec


class StubContainerProvider(BaseContainerProvider):
    """In-memory provider for unit tests."""

    provider_name = "stub"

    def __init__(
        self,
        *args,
        statuses: dict[str, str | Iterable[str]] | None = None,
        endpoints: dict[str, str] | None = None,
        sidecar_containers: bool = False,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._scripts: dict[str, list[str]] = {
            name: [value] if isinstance(value, str) else list(value)
            for name, value in (statuses or {}).items()
        }
        self._endpoints = dict(endpoints or {})
        self.sidecar_containers = sidecar_containers
        self.deployed: dict[str, ContainerSpec] = {}
        self.stopped: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.fail_pull: set[str] = set()
        self.fail_deploy: set[str] = set()
        self.fail_sidecar: set[str] = set()
        self.fail_components = False
        self.published: list[MeshComponent] = []
        self.initialized = False

    @property
    def cli_binary(self) -> str:
        return "true"

    def set_status(self, name: str, *statuses: str) -> None:
        self._scripts[name] = list(statuses)

    async def _do_initialize(self) -> None:
        self.calls.append(("initialize", ""))
        self.initialized = True

    async def _do_pull_image(self, image: str) -> None:
        self.calls.append(("pull", image))
        if image in self.fail_pull:
            raise ProviderError(f"stub pull failure for {image}")

    async def _do_deploy(self, spec: ContainerSpec) -> None:
        self.calls.append(("deploy", spec.name))
        if spec.name in self.fail_deploy:
            raise ProviderError(f"stub deploy failure for {spec.name}", unit=spec.name)
        self.deployed[spec.name] = spec.clone()

    async def _do_inject_sidecar(self, spec: ContainerSpec) -> str | None:
        self.calls.append(("sidecar", spec.name))
        self.sidecars.validate_eligibility(spec)
        if spec.name in self.fail_sidecar:
            raise ProviderError(f"stub sidecar failure for {spec.name}", unit=spec.name)
        if not self.sidecar_containers:
            return None
        name = self.sidecar_name(spec.dapr_app_id)
        self.deployed[name] = spec.clone()
        return name

    async def _do_stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        self.stopped.append(name)
        self.deployed.pop(name, None)

    async def _do_status(self, name: str) -> str:
        self.calls.append(("status", name))
        script = self._scripts.get(name)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return "running" if name in self.deployed else "not_found"

    async def _do_logs(self, name: str, lines: int) -> str:
        if name not in self.deployed:
            raise ProviderError(f"no such unit: {name}", unit=name)
        return f"stub logs for {name}\n"

    async def _do_publish_components(self, components: Sequence[MeshComponent]) -> None:
        self.calls.append(("components", ",".join(c.name for c in components)))
        if self.fail_components:
            raise ProviderError("stub component publishing failure")
        self.published.extend(components)

    async def _do_list_units(self) -> list[str]:
        return list(self.deployed)


__all__ = ["StubContainerProvider"]
