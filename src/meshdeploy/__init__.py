"""
meshdeploy - ordered multi-service container deployment with sidecar injection.

- meshdeploy.core: errors and structured logging
- meshdeploy.deploy: specs, health, sidecars, providers, orchestrator
- meshdeploy.cli: ``meshdeploy`` command line
"""

__version__ = "0.1.0"
