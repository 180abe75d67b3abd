"""Tests for container specs and the fluent builder."""

from __future__ import annotations

import pytest

from meshdeploy.core.errors import InvalidSpecError
from meshdeploy.deploy.spec import (
    CloudConfig,
    ContainerSpec,
    ContainerSpecBuilder,
    LocalEngineConfig,
    VolumeMount,
    new_spec,
    parse_cpu,
    parse_memory_mib,
)


class TestQuantities:
    @pytest.mark.parametrize(
        ("quantity", "cores"), [("500m", 0.5), ("2", 2.0), ("0.25", 0.25), ("1000m", 1.0)]
    )
    def test_parse_cpu(self, quantity, cores):
        assert parse_cpu(quantity) == cores

    @pytest.mark.parametrize(
        ("quantity", "mib"), [("256Mi", 256), ("1Gi", 1024), ("512m", 512), ("2048Ki", 2)]
    )
    def test_parse_memory(self, quantity, mib):
        assert parse_memory_mib(quantity) == mib

    @pytest.mark.parametrize("quantity", ["", "lots", "5x"])
    def test_invalid_quantities(self, quantity):
        with pytest.raises(InvalidSpecError):
            parse_cpu(quantity)
        with pytest.raises(InvalidSpecError):
            parse_memory_mib(quantity)


class TestNewSpec:
    def test_defaults(self):
        spec = new_spec("content-api", "content-api:latest", 3001)
        assert spec.health_endpoint == "http://localhost:3001/health"
        assert spec.resource_limits.cpu == "500m"
        assert spec.resource_limits.memory == "256Mi"
        assert spec.resource_limits.cpu_request == "100m"
        assert spec.resource_limits.memory_request == "128Mi"
        assert spec.dapr_enabled is False
        assert spec.extension is None


class TestValidate:
    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"name": "", "image": "img", "port": 1}, "container name is required"),
            ({"name": "a", "image": "", "port": 1}, "container image is required"),
            ({"name": "a", "image": "img", "port": 0}, "valid port number is required"),
            ({"name": "a", "image": "img", "port": -5}, "valid port number is required"),
        ],
    )
    def test_required_fields(self, kwargs, message):
        with pytest.raises(InvalidSpecError, match=message):
            ContainerSpec(**kwargs).validate()

    def test_name_checked_before_image(self):
        with pytest.raises(InvalidSpecError, match="name"):
            ContainerSpec(name="", image="", port=0).validate()

    def test_sidecar_requires_app_id(self):
        spec = ContainerSpec(name="a", image="img", port=80, dapr_enabled=True)
        with pytest.raises(InvalidSpecError, match="Dapr app ID is required"):
            spec.validate()


class TestBuilder:
    def test_chained_build(self):
        spec = (
            ContainerSpecBuilder("content-api", "content-api:latest", 3001)
            .with_dapr("content-api", 50011, {"log_level": "debug"})
            .with_environment({"LOG_LEVEL": "debug"})
            .with_resource_limits("250m", "512Mi", cpu_request="50m")
            .with_health_endpoint("http://localhost:3001/ready")
            .with_command(["python", "-m", "app"])
            .with_volume_mount("/data", "/var/data", read_only=True)
            .build()
        )
        assert spec.dapr_enabled and spec.dapr_app_id == "content-api"
        assert spec.dapr_port == 50011
        assert spec.dapr_config == {"log_level": "debug"}
        assert spec.environment == {"LOG_LEVEL": "debug"}
        assert spec.resource_limits.cpu == "250m"
        assert spec.resource_limits.cpu_request == "50m"
        assert spec.resource_limits.memory_request == "128Mi"
        assert spec.health_endpoint == "http://localhost:3001/ready"
        assert spec.command == ["python", "-m", "app"]
        assert spec.volumes == [VolumeMount("/data", "/var/data", True)]

    def test_with_calls_never_raise_build_does(self):
        builder = ContainerSpecBuilder("", "", 0).with_dapr("").with_environment({"A": "1"})
        with pytest.raises(InvalidSpecError):
            builder.build()

    def test_build_returns_independent_copies(self):
        builder = ContainerSpecBuilder("a", "img", 80).with_environment({"A": "1"})
        first = builder.build()
        first.environment["B"] = "2"
        second = builder.build()
        assert second.environment == {"A": "1"}

    def test_environment_map_is_copied_on_build(self):
        env = {"A": "1"}
        spec = ContainerSpecBuilder("a", "img", 80).with_environment(env).build()
        env["A"] = "changed"
        assert spec.environment == {"A": "1"}

    def test_last_extension_wins(self):
        spec = (
            ContainerSpecBuilder("a", "img", 80)
            .with_local_config(LocalEngineConfig(restart_policy="always"))
            .with_cloud_config(CloudConfig(min_replicas=2))
            .build()
        )
        assert spec.local_config is None
        assert spec.cloud_config == CloudConfig(min_replicas=2)


class TestClone:
    def test_clone_is_deep(self):
        spec = (
            ContainerSpecBuilder("a", "img", 80)
            .with_dapr("a", config={"scopes": ["x"]})
            .with_environment({"A": "1"})
            .with_volume_mount("/h", "/c")
            .with_local_config(LocalEngineConfig(security_opts=["label=disable"]))
            .build()
        )
        copy = spec.clone()
        copy.environment["A"] = "2"
        copy.dapr_config["scopes"].append("y")
        copy.volumes.append(VolumeMount("/x", "/y"))
        copy.resource_limits.cpu = "2"
        copy.local_config.security_opts.append("no-new-privileges")

        assert spec.environment == {"A": "1"}
        assert spec.dapr_config == {"scopes": ["x"]}
        assert len(spec.volumes) == 1
        assert spec.resource_limits.cpu == "500m"
        assert spec.local_config.security_opts == ["label=disable"]


class TestVolumeMount:
    def test_engine_arg(self):
        assert VolumeMount("/h", "/c").as_engine_arg() == "/h:/c"
        assert VolumeMount("/h", "/c", read_only=True).as_engine_arg() == "/h:/c:ro"
