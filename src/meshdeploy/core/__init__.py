"""Core primitives shared across meshdeploy: typed errors and structured logging."""

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
)
from meshdeploy.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "CircularDependencyError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "HealthFailedError",
    "HealthTimeoutError",
    "HealthValidationError",
    "InvalidAppIDError",
    "InvalidSidecarTargetError",
    "InvalidSpecError",
    "LogContext",
    "MeshDeployError",
    "ProviderError",
    "configure_logging",
    "get_logger",
]
