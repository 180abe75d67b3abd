"""meshdeploy command line interface."""

from meshdeploy.cli.app import app

__all__ = ["app"]
