"""Tests for meshdeploy.core.errors."""

from __future__ import annotations

import asyncio

import pytest

from meshdeploy.core.errors import (
    CircularDependencyError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    HealthFailedError,
    HealthTimeoutError,
    HealthValidationError,
    InvalidAppIDError,
    InvalidSidecarTargetError,
    InvalidSpecError,
    MeshDeployError,
    ProviderError,
    UnknownDependencyError,
    UnknownUnitError,
    UnsupportedEnvironmentError,
    ValidationError,
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    def test_to_dict_drops_unset_fields(self):
        ctx = ErrorContext(unit="vault", step="pull")
        assert ctx.to_dict() == {"unit": "vault", "step": "pull"}

    def test_metadata_is_merged(self):
        ctx = ErrorContext(run_id="r1", metadata={"attempt": 2})
        assert ctx.to_dict() == {"run_id": "r1", "attempt": 2}


class TestMeshDeployError:
    def test_defaults(self):
        err = MeshDeployError("boom")
        assert err.message == "boom"
        assert str(err) == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False

    def test_with_context_sets_typed_fields_and_metadata(self):
        err = MeshDeployError("boom").with_context(unit="vault", attempt=3)
        assert err.context.unit == "vault"
        assert err.context.metadata == {"attempt": 3}

    def test_with_context_returns_self(self):
        err = ProviderError("x")
        assert err.with_context(step="deploy") is err

    def test_to_dict(self):
        cause = OSError("disk")
        err = ProviderError("pull failed", unit="vault", cause=cause)
        data = err.to_dict()
        assert data["error_type"] == "ProviderError"
        assert data["category"] == "PROVIDER"
        assert data["retryable"] is True
        assert data["context"] == {"unit": "vault"}
        assert data["cause"] == "disk"
        assert err.__cause__ is cause

    def test_explicit_category_overrides_default(self):
        err = ProviderError("x", category=ErrorCategory.NETWORK, retryable=False)
        assert err.category == ErrorCategory.NETWORK
        assert err.retryable is False


class TestValidationErrors:
    def test_invalid_spec_is_validation(self):
        err = InvalidSpecError("container image is required", field="image")
        assert isinstance(err, ValidationError)
        assert err.category == ErrorCategory.VALIDATION
        assert err.field == "image"

    def test_app_id_error_names_character_and_position(self):
        err = InvalidAppIDError("bad_id", character="_", position=3)
        assert isinstance(err, InvalidSidecarTargetError)
        assert "'_'" in err.message
        assert "position 3" in err.message
        assert err.value == "bad_id"

    def test_app_id_error_with_message(self):
        err = InvalidAppIDError("", "app ID cannot be empty")
        assert err.message == "app ID cannot be empty"


class TestConfigErrors:
    def test_unsupported_environment(self):
        err = UnsupportedEnvironmentError("qa")
        assert isinstance(err, ConfigError)
        assert err.environment == "qa"
        assert "'qa'" in str(err)

    def test_unknown_unit(self):
        assert "'ghost'" in str(UnknownUnitError("ghost"))

    def test_unknown_dependency(self):
        err = UnknownDependencyError("content-api", "ghost")
        assert err.unit == "content-api"
        assert err.dependency == "ghost"


class TestOrchestrationErrors:
    def test_circular_dependency_path(self):
        err = CircularDependencyError("a", ["a", "b", "a"])
        assert err.unit == "a"
        assert "a -> b -> a" in str(err)
        assert err.category == ErrorCategory.ORCHESTRATION

    def test_health_validation_counts_issues(self):
        err = HealthValidationError(["vault: down", "rabbitmq: down"])
        assert err.issues == ["vault: down", "rabbitmq: down"]
        assert "2 unhealthy" in str(err)


class TestHealthErrors:
    def test_timeout(self):
        err = HealthTimeoutError("vault", 60, "not ready: status 'starting'")
        assert err.context.unit == "vault"
        assert "within 60s" in str(err)
        assert err.category == ErrorCategory.HEALTH

    def test_failed(self):
        err = HealthFailedError("vault", "failed")
        assert err.status == "failed"
        assert "terminal state 'failed'" in str(err)


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(ProviderError("x"))
        assert not is_retryable(InvalidSpecError("x"))
        assert is_retryable(ConnectionError())
        assert is_retryable(asyncio.TimeoutError())
        assert not is_retryable(KeyError("x"))

    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (HealthFailedError("u", "failed"), ErrorCategory.HEALTH),
            (ConnectionError(), ErrorCategory.NETWORK),
            (ValueError(), ErrorCategory.VALIDATION),
            (KeyError(), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categorize_error(self, error, category):
        assert categorize_error(error) == category
