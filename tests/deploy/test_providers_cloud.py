"""Tests for the managed cloud platform provider (``az`` calls mocked)."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from meshdeploy.core.errors import (
    HealthFailedError,
    HealthTimeoutError,
    InvalidAppIDError,
    ProviderError,
    ValidationError,
)
from meshdeploy.deploy.components import default_components
from meshdeploy.deploy.config import OrchestratorConfig
from meshdeploy.deploy.providers import CommandResult, ManagedCloudProvider, traffic_weights
from meshdeploy.deploy.sidecar import SidecarManager
from meshdeploy.deploy.spec import CloudConfig, ContainerSpec, ContainerSpecBuilder
from meshdeploy.deploy.units import ProvisioningOutputs


def fake_az(responses: dict[tuple[str, ...], tuple[int, str]] | None = None, documents=None):
    """Async stand-in for ``_exec``; copies any ``--yaml`` document it sees."""
    responses = responses or {}

    async def _exec(*args, check=True, unit=None, timeout=300):
        if documents is not None and "--yaml" in args:
            documents.append(yaml.safe_load(Path(args[args.index("--yaml") + 1]).read_text()))
        returncode, stdout = 0, ""
        for prefix, response in responses.items():
            if args[: len(prefix)] == prefix:
                returncode, stdout = response
                break
        result = CommandResult(args=("az", *args), returncode=returncode, stdout=stdout)
        if check and not result.ok:
            raise ProviderError(f"az {args[0]} failed", unit=unit)
        return result

    return AsyncMock(side_effect=_exec)


@pytest.fixture
def provider(prod_config) -> ManagedCloudProvider:
    return ManagedCloudProvider(prod_config)


@pytest.fixture
def content_api() -> ContainerSpec:
    spec = (
        ContainerSpecBuilder("content-api", "registry.example/content-api:1.2", 3001)
        .with_dapr("content-api")
        .with_environment({"B": "2", "A": "1"})
        .build()
    )
    return SidecarManager("production").enrich_spec(spec)


class TestTrafficWeights:
    def test_remaining_split_evenly(self):
        assert traffic_weights("v3", 20, ["v1", "v2", "v3"]) == {"v3": 20, "v1": 40, "v2": 40}

    def test_remainder_goes_to_earlier_revisions(self):
        assert traffic_weights("new", 0, ["a", "b", "c"]) == {"new": 0, "a": 34, "b": 33, "c": 33}

    def test_only_revision_gets_everything(self):
        assert traffic_weights("v1", 30, ["v1"]) == {"v1": 100}
        assert traffic_weights("v1", 30, []) == {"v1": 100}

    def test_weights_sum_to_100(self):
        weights = traffic_weights("n", 7, ["a", "b", "c", "d"])
        assert sum(weights.values()) == 100

    @pytest.mark.parametrize("percentage", [-1, 101])
    def test_out_of_range(self, percentage):
        with pytest.raises(ValidationError):
            traffic_weights("n", percentage, ["a"])


class TestRenderApp:
    def test_production_document(self, provider, content_api):
        doc = provider.render_app(content_api)["properties"]
        config = doc["configuration"]
        assert config["activeRevisionsMode"] == "Multiple"
        assert config["ingress"]["targetPort"] == 3001
        assert config["ingress"]["traffic"] == [{"latestRevision": True, "weight": 100}]
        assert config["dapr"] == {
            "enabled": True,
            "appId": "content-api",
            "appPort": 3001,
            "appProtocol": "http",
            "logLevel": "warn",
        }

        container = doc["template"]["containers"][0]
        assert container["resources"] == {"cpu": 0.5, "memory": "0.25Gi"}
        names = [e["name"] for e in container["env"]]
        assert names == sorted(names)
        assert container["probes"][0]["httpGet"] == {"path": "/health", "port": 3001}

        scale = doc["template"]["scale"]
        assert (scale["minReplicas"], scale["maxReplicas"]) == (3, 50)
        http_rule, cpu_rule = scale["rules"]
        assert http_rule["http"]["metadata"]["concurrentRequests"] == "100"
        assert cpu_rule["custom"]["metadata"]["value"] == "80"

    def test_staging_scaling(self, content_api):
        staging = ManagedCloudProvider(OrchestratorConfig(environment="staging"))
        scale = staging.render_app(content_api)["properties"]["template"]["scale"]
        assert (scale["minReplicas"], scale["maxReplicas"]) == (1, 10)

    def test_cloud_extension_overrides(self, provider):
        spec = (
            ContainerSpecBuilder("content-api", "img", 3001)
            .with_cloud_config(
                CloudConfig(
                    min_replicas=0,
                    max_replicas=5,
                    scaling_rules={"queue-rule": {"custom": {"type": "rabbitmq"}}},
                    ingress={"external": False},
                    traffic_splitting={"content-api--v1": 80, "content-api--v2": 20},
                    revision_suffix="v2",
                )
            )
            .build()
        )
        doc = provider.render_app(spec)["properties"]
        ingress = doc["configuration"]["ingress"]
        assert ingress["external"] is False
        assert ingress["traffic"] == [
            {"revisionName": "content-api--v1", "weight": 80},
            {"revisionName": "content-api--v2", "weight": 20},
        ]
        assert "dapr" not in doc["configuration"]
        scale = doc["template"]["scale"]
        assert (scale["minReplicas"], scale["maxReplicas"]) == (0, 5)
        assert scale["rules"][-1] == {"name": "queue-rule", "custom": {"type": "rabbitmq"}}
        assert doc["template"]["revisionSuffix"] == "v2"

    def test_no_health_check_without_http_endpoint(self, provider):
        spec = ContainerSpecBuilder("rabbitmq", "rabbitmq", 5672).with_health_endpoint("").build()
        container = provider.render_app(spec)["properties"]["template"]["containers"][0]
        assert "probes" not in container


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_checks_environment(self, provider):
        az = fake_az()
        with patch.object(provider, "_exec", az):
            await provider.initialize()
        assert az.call_args.args[:3] == ("containerapp", "env", "show")

    @pytest.mark.asyncio
    async def test_initialize_failure(self, provider):
        az = fake_az({("containerapp", "env"): (3, "")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(ProviderError) as exc_info:
                await provider.initialize()
        assert exc_info.value.context.provider == "managed-cloud"

    @pytest.mark.asyncio
    async def test_pull_is_noop(self, provider):
        az = fake_az()
        with patch.object(provider, "_exec", az):
            await provider.pull_image("anything")
        az.assert_not_called()

    @pytest.mark.asyncio
    async def test_deploy_writes_document_and_caches_endpoint(self, provider, content_api):
        documents: list[dict] = []
        az = fake_az(
            {("containerapp", "show"): (0, "content-api.prod.example.io\n")},
            documents=documents,
        )
        with patch.object(provider, "_exec", az):
            await provider.deploy(content_api)

        create = az.call_args_list[0].args
        assert create[:2] == ("containerapp", "create")
        assert create[create.index("--resource-group") + 1] == "meshdeploy-rg"
        assert documents[0] == provider.render_app(content_api)
        assert await provider.endpoint("content-api") == "https://content-api.prod.example.io/health"

    @pytest.mark.asyncio
    async def test_platform_unit_uses_sidecar_health_path(self, provider):
        spec = ContainerSpecBuilder("dapr-control-plane", "daprio/dapr", 3500).build()
        az = fake_az({("containerapp", "show"): (0, "cp.example.io\n")})
        with patch.object(provider, "_exec", az):
            await provider.deploy(spec)
        assert await provider.endpoint("dapr-control-plane") == "https://cp.example.io/v1.0/healthz"

    @pytest.mark.asyncio
    async def test_deploy_without_fqdn_leaves_no_endpoint(self, provider, content_api):
        az = fake_az({("containerapp", "show"): (1, "")})
        with patch.object(provider, "_exec", az):
            await provider.deploy(content_api)
        assert await provider.endpoint("content-api") == ""

    @pytest.mark.asyncio
    async def test_inject_sidecar_validates_only(self, provider, content_api):
        az = fake_az()
        with patch.object(provider, "_exec", az):
            assert await provider.inject_sidecar(content_api) is None
        az.assert_not_called()

    @pytest.mark.asyncio
    async def test_inject_sidecar_rejects_bad_app_id(self, provider):
        spec = ContainerSpec(name="x", image="img", port=80, dapr_enabled=True, dapr_app_id="x_y")
        with pytest.raises(InvalidAppIDError):
            await provider.inject_sidecar(spec)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "status"),
        [((0, "Succeeded\n"), "succeeded"), ((0, "Failed"), "failed"), ((3, ""), "not_found")],
    )
    async def test_status(self, provider, response, status):
        az = fake_az({("containerapp", "show"): response})
        with patch.object(provider, "_exec", az):
            assert await provider.status("content-api") == status

    @pytest.mark.asyncio
    async def test_stop_scales_to_zero(self, provider):
        az = fake_az()
        with patch.object(provider, "_exec", az):
            await provider.stop("content-api")
        args = az.call_args.args
        assert args[:2] == ("containerapp", "update")
        assert args[args.index("--max-replicas") + 1] == "0"

    @pytest.mark.asyncio
    async def test_list_units_skips_malformed(self, provider):
        listing = json.dumps([{"name": "vault"}, {"id": "no-name"}, "junk", {"name": "content-api"}])
        az = fake_az({("containerapp", "list"): (0, listing)})
        with patch.object(provider, "_exec", az):
            assert await provider.list_units() == ["vault", "content-api"]

    @pytest.mark.asyncio
    async def test_list_units_unparseable(self, provider):
        az = fake_az({("containerapp", "list"): (0, "{oops")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(ProviderError):
                await provider.list_units()

    @pytest.mark.asyncio
    async def test_logs(self, provider):
        az = fake_az({("containerapp", "logs"): (0, "hello\n")})
        with patch.object(provider, "_exec", az):
            assert await provider.logs("content-api", 5) == "hello\n"
        args = az.call_args.args
        assert args[args.index("--tail") + 1] == "5"


class TestSplitTraffic:
    @pytest.mark.asyncio
    async def test_split(self, provider):
        az = fake_az({("containerapp", "revision"): (0, json.dumps(["app--v1", "app--v2"]))})
        with patch.object(provider, "_exec", az):
            weights = await provider.split_traffic("app", "app--v2", 25)
        assert weights == {"app--v2": 25, "app--v1": 75}
        args = az.call_args.args
        assert args[:4] == ("containerapp", "ingress", "traffic", "set")
        assert args[-2:] == ("app--v2=25", "app--v1=75")

    @pytest.mark.asyncio
    async def test_invalid_percentage_makes_no_change(self, provider):
        az = fake_az({("containerapp", "revision"): (0, "[]")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(ValidationError):
                await provider.split_traffic("app", "app--v2", 150)
        assert all(c.args[1] != "ingress" for c in az.call_args_list)

    @pytest.mark.asyncio
    async def test_split_waits_for_revision_when_asked(self, provider):
        az = fake_az({
            ("containerapp", "revision", "show"): (0, "Succeeded\n"),
            ("containerapp", "revision", "list"): (0, json.dumps(["app--v1", "app--v2"])),
        })
        with patch.object(provider, "_exec", az):
            await provider.split_traffic("app", "app--v2", 50, wait_ready=True)
        assert [c.args[:3] for c in az.call_args_list][0] == ("containerapp", "revision", "show")


class TestEndpointLookup:
    @pytest.mark.asyncio
    async def test_fresh_provider_looks_up_ingress(self, provider):
        az = fake_az({("containerapp", "show"): (0, "content-api.prod.example.io\n")})
        with patch.object(provider, "_exec", az):
            assert await provider.endpoint("content-api") == "https://content-api.prod.example.io/health"
            assert await provider.endpoint("content-api") == "https://content-api.prod.example.io/health"
        assert az.call_count == 1
        args = az.call_args.args
        assert args[args.index("--query") + 1] == "properties.configuration.ingress.fqdn"

    @pytest.mark.asyncio
    async def test_declared_path_and_platform_path(self, provider):
        az = fake_az({("containerapp", "show"): (0, "host.example.io")})
        with patch.object(provider, "_exec", az):
            assert await provider.endpoint("vault") == "https://host.example.io/v1/sys/health"
            assert await provider.endpoint("dapr-control-plane") == "https://host.example.io/v1.0/healthz"

    @pytest.mark.asyncio
    async def test_missing_ingress_retried(self, provider):
        az = fake_az({("containerapp", "show"): (3, "")})
        with patch.object(provider, "_exec", az):
            assert await provider.endpoint("content-api") == ""
            assert await provider.endpoint("content-api") == ""
        assert az.call_count == 2


class TestPublishComponents:
    @pytest.mark.asyncio
    async def test_sets_each_component_on_environment(self, provider):
        documents: list[dict] = []
        az = fake_az(documents=documents)
        components = default_components(ProvisioningOutputs.development_defaults())
        with patch.object(provider, "_exec", az):
            await provider.publish_components(components)

        calls = [c.args for c in az.call_args_list]
        assert len(calls) == 4
        assert all(c[:4] == ("containerapp", "env", "dapr-component", "set") for c in calls)
        assert [c[c.index("--dapr-component-name") + 1] for c in calls] == [
            "statestore", "pubsub", "secretstore", "blobstore",
        ]
        assert calls[0][calls[0].index("--name") + 1] == "meshdeploy-env"
        assert documents[0]["componentType"] == "state.postgresql"

    @pytest.mark.asyncio
    async def test_failure_tagged(self, provider):
        az = fake_az({("containerapp", "env", "dapr-component"): (1, "")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(ProviderError) as exc_info:
                await provider.publish_components(
                    default_components(ProvisioningOutputs.development_defaults())
                )
        assert exc_info.value.context.step == "components"


class TestRevisions:
    @pytest.mark.asyncio
    async def test_ready_after_provisioning(self, provider):
        states = iter(["InProgress", "InProgress", "Succeeded"])

        async def _exec(*args, check=True, unit=None, timeout=300):
            return CommandResult(args=("az", *args), returncode=0, stdout=next(states))

        with patch.object(provider, "_exec", AsyncMock(side_effect=_exec)) as az:
            result = await provider.wait_for_revision_ready("app", "app--v2", timeout=1)
        assert result.healthy
        assert result.status == "succeeded"
        args = az.call_args.args
        assert args[:3] == ("containerapp", "revision", "show")
        assert args[args.index("--revision") + 1] == "app--v2"

    @pytest.mark.asyncio
    async def test_failed_revision(self, provider):
        az = fake_az({("containerapp", "revision", "show"): (0, "Failed\n")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(HealthFailedError) as exc_info:
                await provider.wait_for_revision_ready("app", "app--v2", timeout=1)
        context = exc_info.value.context
        assert context.unit == "app"
        assert context.step == "revision"
        assert context.metadata["revision"] == "app--v2"

    @pytest.mark.asyncio
    async def test_lookup_errors_keep_waiting_until_timeout(self, provider):
        az = fake_az({("containerapp", "revision", "show"): (1, "")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(HealthTimeoutError):
                await provider.wait_for_revision_ready("app", "app--v2", timeout=0.05)
        assert az.call_count >= 2

    @pytest.mark.asyncio
    async def test_deactivate(self, provider):
        az = fake_az()
        with patch.object(provider, "_exec", az):
            await provider.deactivate_revision("app", "app--v1")
        args = az.call_args.args
        assert args[:3] == ("containerapp", "revision", "deactivate")
        assert args[args.index("--revision") + 1] == "app--v1"
        assert args[args.index("--resource-group") + 1] == "meshdeploy-rg"

    @pytest.mark.asyncio
    async def test_deactivate_failure_tagged(self, provider):
        az = fake_az({("containerapp", "revision", "deactivate"): (1, "")})
        with patch.object(provider, "_exec", az):
            with pytest.raises(ProviderError) as exc_info:
                await provider.deactivate_revision("app", "app--v1")
        assert exc_info.value.context.step == "deactivate"
        assert exc_info.value.context.metadata["revision"] == "app--v1"
