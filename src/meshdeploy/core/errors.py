"""
Structured error types for meshdeploy.

Every failure the orchestrator can surface is a ``MeshDeployError`` subclass
carrying a category, an explicit retry flag, structured context (which unit,
which step, which provider) and the chained underlying exception.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      MeshDeployError                             │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ValidationError          ConfigError          ProviderError     │
        │  (VALIDATION)             (CONFIG)             (PROVIDER,        │
        │       │                        │                retryable)       │
        │  InvalidSpecError         UnsupportedEnvironmentError            │
        │  InvalidSidecarTargetError UnknownUnitError                      │
        │       │                   UnknownDependencyError                 │
        │  InvalidAppIDError                                               │
        │                                                                  │
        │  OrchestrationError       HealthError                            │
        │  (ORCHESTRATION)          (HEALTH)                               │
        │       │                        │                                 │
        │  CircularDependencyError  HealthTimeoutError                     │
        │  HealthValidationError    HealthFailedError                      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Wrapping an engine failure with unit and step context:

    >>> err = ProviderError("run failed", unit="content-api")
    >>> err.with_context(step="deploy").context.step
    'deploy'

    App-ID violations name the offending character:

    >>> InvalidAppIDError("bad_id", character="_", position=3).message
    "app ID contains invalid character '_' at position 3"

Guardrails:
    ❌ DON'T: Raise plain RuntimeError from a provider
    ✅ DO: Raise ProviderError with ``unit=`` and ``cause=``

    ❌ DON'T: Drop the original exception when wrapping
    ✅ DO: Pass it as ``cause=`` for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    VALIDATION = "VALIDATION"  # Spec / sidecar target violations
    CONFIG = "CONFIG"  # Declaration table, environment, settings
    ORCHESTRATION = "ORCHESTRATION"  # Plan building, post-deploy validation
    PROVIDER = "PROVIDER"  # Container engine / cloud platform calls
    HEALTH = "HEALTH"  # Readiness timeouts and terminal states
    NETWORK = "NETWORK"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what the orchestrator knows at the failure site;
    anything else lands in ``metadata``. ``to_dict()`` drops unset fields
    so log lines stay short.

    Attributes:
        unit: Deployment unit being processed
        step: Step within the unit (pull, deploy, sidecar, health)
        environment: Target environment name
        provider: Provider backend name
        run_id: Orchestrator run identifier
        endpoint: Health or sidecar endpoint involved
        metadata: Additional key-value pairs
    """

    unit: str | None = None
    step: str | None = None
    environment: str | None = None
    provider: str | None = None
    run_id: str | None = None
    endpoint: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["unit", "step", "environment", "provider", "run_id", "endpoint"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MeshDeployError(Exception):
    """
    Base exception for all meshdeploy errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the domain default.

    Examples:
        >>> error = MeshDeployError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = MeshDeployError("Deploy failed").with_context(unit="vault")
        >>> error.to_dict()["context"]
        {'unit': 'vault'}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MeshDeployError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ProviderError("pull failed").with_context(
                unit="vault",
                step="pull",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(MeshDeployError):
    """
    Declaration or input validation error.

    Never retryable - the declaration must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidSpecError(ValidationError):
    """A container spec violates a required invariant."""

    pass


class InvalidSidecarTargetError(ValidationError):
    """A spec is not eligible for sidecar injection."""

    pass


class InvalidAppIDError(InvalidSidecarTargetError):
    """A sidecar app ID breaks the naming rules."""

    def __init__(
        self,
        app_id: str,
        message: str | None = None,
        *,
        character: str | None = None,
        position: int | None = None,
    ):
        self.app_id = app_id
        self.character = character
        self.position = position
        if message is None and character is not None:
            message = f"app ID contains invalid character {character!r} at position {position}"
        super().__init__(message or f"invalid app ID: {app_id!r}", field="app_id", value=app_id)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(MeshDeployError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class UnsupportedEnvironmentError(ConfigError):
    """No provider or defaults exist for the requested environment."""

    def __init__(self, environment: str):
        self.environment = environment
        super().__init__(f"unsupported environment: {environment!r}")


class UnknownUnitError(ConfigError):
    """A unit name is not present in the declaration table."""

    def __init__(self, unit: str):
        self.unit = unit
        super().__init__(f"unknown deployment unit: {unit!r}")


class UnknownDependencyError(ConfigError):
    """A unit depends on a unit that is not declared."""

    def __init__(self, unit: str, dependency: str):
        self.unit = unit
        self.dependency = dependency
        super().__init__(f"unit {unit!r} depends on undeclared unit {dependency!r}")


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(MeshDeployError):
    """Plan building or run-level failure."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class CircularDependencyError(OrchestrationError):
    """The dependency graph contains a cycle through ``unit``."""

    def __init__(self, unit: str, path: list[str] | None = None):
        self.unit = unit
        self.path = path or []
        detail = f" ({' -> '.join(self.path)})" if self.path else ""
        super().__init__(f"circular dependency detected involving {unit!r}{detail}")


class HealthValidationError(OrchestrationError):
    """Post-deployment validation found unhealthy units."""

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__(
            f"post-deployment health validation failed: {len(self.issues)} unhealthy unit(s)"
        )


# =============================================================================
# PROVIDER ERRORS
# =============================================================================


class ProviderError(MeshDeployError):
    """An engine or platform call failed."""

    default_category = ErrorCategory.PROVIDER
    default_retryable = True

    def __init__(self, message: str, *, unit: str | None = None, stderr: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.unit = unit
        self.stderr = stderr
        if unit is not None:
            self.context.unit = unit


# =============================================================================
# HEALTH ERRORS
# =============================================================================


class HealthError(MeshDeployError):
    """A unit did not become healthy."""

    default_category = ErrorCategory.HEALTH
    default_retryable = False


class HealthTimeoutError(HealthError):
    """Readiness wait exceeded its deadline."""

    def __init__(self, unit: str, timeout: float, last_message: str = ""):
        self.unit = unit
        self.timeout = timeout
        self.last_message = last_message
        suffix = f": {last_message}" if last_message else ""
        super().__init__(f"{unit} did not become healthy within {timeout:g}s{suffix}")
        self.context.unit = unit


class HealthFailedError(HealthError):
    """A unit reached a terminal failure state."""

    def __init__(self, unit: str, status: str, message: str = ""):
        self.unit = unit
        self.status = status
        suffix = f": {message}" if message else ""
        super().__init__(f"{unit} reached terminal state {status!r}{suffix}")
        self.context.unit = unit


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, MeshDeployError):
        return error.retryable
    return isinstance(error, (ConnectionError, asyncio.TimeoutError, OSError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, MeshDeployError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MeshDeployError",
    # Validation
    "ValidationError",
    "InvalidSpecError",
    "InvalidSidecarTargetError",
    "InvalidAppIDError",
    # Config
    "ConfigError",
    "UnsupportedEnvironmentError",
    "UnknownUnitError",
    "UnknownDependencyError",
    # Orchestration
    "OrchestrationError",
    "CircularDependencyError",
    "HealthValidationError",
    # Provider
    "ProviderError",
    # Health
    "HealthError",
    "HealthTimeoutError",
    "HealthFailedError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
