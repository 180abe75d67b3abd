"""
Root Typer application for the ``meshdeploy`` CLI.

Usage::

    meshdeploy plan --env development          # Show the execution plan
    meshdeploy deploy --env staging            # Deploy everything, validate health
    meshdeploy deploy --dry-run --json         # Run against the in-memory provider
    meshdeploy status --env development        # Health snapshot of every unit
    meshdeploy logs content-api --lines 50     # Recent logs of one unit
    meshdeploy cleanup --env development       # Stop everything
    meshdeploy sidecar-command content-api 3001 --env production
    meshdeploy traffic content-api content-api--v2 20 --env production --wait
    meshdeploy deactivate-revision content-api content-api--v1 --env production
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from meshdeploy.core.errors import MeshDeployError
from meshdeploy.core.logging import configure_logging

T = TypeVar("T")

app = typer.Typer(
    name="meshdeploy",
    help="meshdeploy: ordered container deployment with sidecar injection.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)

_ENV_OPTION = typer.Option(
    None, "--env", "-e", help="Target environment: development, staging, production."
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _config(env: str | None, **overrides: Any):
    from meshdeploy.deploy.config import OrchestratorConfig

    try:
        return OrchestratorConfig.from_env(environment=env, **overrides)
    except MeshDeployError as exc:
        raise _fail(exc) from exc


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except MeshDeployError as exc:
        err_console.print(f"[bold red]✗ {type(exc).__name__}:[/] {escape(exc.message)}")
        context = exc.context.to_dict()
        if context:
            err_console.print(f"  context: {escape(str(context))}")
        raise typer.Exit(code=1) from exc


def _fail(exc: MeshDeployError) -> typer.Exit:
    err_console.print(f"[bold red]✗ {type(exc).__name__}:[/] {escape(exc.message)}")
    return typer.Exit(code=1)


# ── Version / logging callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from meshdeploy import __version__

        typer.echo(f"meshdeploy {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Show version and exit.",
        callback=_version_callback, is_eager=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", help="Force JSON or console log output."
    ),
) -> None:
    """Plan, deploy, inspect and tear down meshdeploy environments."""
    configure_logging(level=log_level, json_format=json_logs)


# ── Plan ─────────────────────────────────────────────────────────────────


@app.command()
def plan(env: str | None = _ENV_OPTION) -> None:
    """Show the dependency-ordered execution plan."""
    from meshdeploy.deploy.orchestrator import RuntimeOrchestrator
    from meshdeploy.deploy.providers import StubContainerProvider

    try:
        config = _config(env)
        orchestrator = RuntimeOrchestrator(config, provider=StubContainerProvider(config))
        execution_plan = orchestrator.build_plan()
    except MeshDeployError as exc:
        raise _fail(exc) from exc

    table = Table(title=f"Execution plan ({config.environment.value})")
    table.add_column("#", justify="right")
    table.add_column("Unit", style="cyan")
    table.add_column("Tier")
    table.add_column("Image")
    table.add_column("Port", justify="right")
    table.add_column("Sidecar")
    for index, name in enumerate(execution_plan.order, start=1):
        spec = orchestrator.specs[name]
        sidecar = ""
        if spec.dapr_enabled:
            sidecar = f"{spec.dapr_app_id} :{spec.dapr_config.get('http_port')}/{spec.dapr_config.get('grpc_port')}"
        table.add_row(
            str(index), name, execution_plan.tier_of(name) or "", spec.image, str(spec.port), sidecar
        )
    console.print(table)


# ── Deploy ───────────────────────────────────────────────────────────────


@app.command()
def deploy(
    env: str | None = _ENV_OPTION,
    outputs: Path | None = typer.Option(
        None, "--outputs", "-o", help="Provisioning outputs file (JSON or YAML)."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use the in-memory provider."),
    json_out: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Deploy every unit in dependency order and validate health."""
    from meshdeploy.deploy.orchestrator import RuntimeOrchestrator
    from meshdeploy.deploy.providers import StubContainerProvider

    try:
        config = _config(env, outputs_file=outputs)
        provider = StubContainerProvider(config) if dry_run else None
        orchestrator = RuntimeOrchestrator(config, provider=provider)
    except MeshDeployError as exc:
        raise _fail(exc) from exc

    if not json_out:
        console.print(
            f"[bold green]▲ deploy[/] environment={config.environment.value} "
            f"provider={orchestrator.provider.provider_name} run_id={config.run_id}"
        )
    try:
        report = asyncio.run(orchestrator.run())
    except MeshDeployError as exc:
        report = orchestrator.report
        if json_out:
            typer.echo(report.model_dump_json(indent=2))
        else:
            _print_report(report)
        raise _fail(exc) from exc

    if json_out:
        typer.echo(report.model_dump_json(indent=2))
    else:
        _print_report(report)


def _print_report(report) -> None:
    table = Table(title=f"Deployment {report.run_id}")
    table.add_column("Unit", style="cyan")
    table.add_column("Tier")
    table.add_column("Status")
    table.add_column("Sidecar")
    table.add_column("Detail")
    for unit in report.units:
        style = {"healthy": "green", "failed": "red"}.get(unit.status, "yellow")
        detail = unit.error or ""
        if unit.failed_step:
            detail = f"[{unit.failed_step}] {detail}"
        table.add_row(unit.name, unit.tier or "", f"[{style}]{unit.status}[/]", unit.sidecar or "", escape(detail))
    console.print(table)
    for issue in report.issues:
        console.print(f"  [yellow]![/] {escape(issue)}")
    for issue in report.component_issues:
        console.print(f"  [yellow]![/] components: {escape(issue)}")
    console.print(f"[bold]{report.summary or report.overall_status.value}[/]")


# ── Status / logs / cleanup ──────────────────────────────────────────────


@app.command()
def status(env: str | None = _ENV_OPTION) -> None:
    """Health snapshot of every declared unit."""
    from meshdeploy.deploy.health import HealthVerifier
    from meshdeploy.deploy.providers import create_provider
    from meshdeploy.deploy.units import UnitCatalog

    config = _config(env)
    provider = create_provider(config)
    verifier = HealthVerifier(config.poll_interval_seconds, config.probe_timeout_seconds)
    results = _run(verifier.check_many(UnitCatalog().names, provider))

    table = Table(title=f"Unit health ({config.environment.value})")
    table.add_column("Unit", style="cyan")
    table.add_column("Status")
    table.add_column("Healthy")
    table.add_column("Message")
    for name, result in results.items():
        mark = "[green]✓[/]" if result.healthy else "[red]✗[/]"
        table.add_row(name, result.status, mark, escape(result.message))
    console.print(table)
    healthy, unhealthy, _ = verifier.summarize(results)
    console.print(f"{healthy} healthy, {unhealthy} unhealthy")
    if unhealthy:
        raise typer.Exit(code=1)


@app.command()
def logs(
    unit: str = typer.Argument(..., help="Unit name."),
    env: str | None = _ENV_OPTION,
    lines: int = typer.Option(100, "--lines", "-n", help="Number of trailing lines."),
) -> None:
    """Print recent logs of one unit."""
    from meshdeploy.deploy.providers import create_provider

    provider = create_provider(_config(env))
    typer.echo(_run(provider.logs(unit, lines)), nl=False)


@app.command()
def cleanup(env: str | None = _ENV_OPTION) -> None:
    """Stop every unit the provider manages."""
    from meshdeploy.deploy.providers import create_provider

    provider = create_provider(_config(env))
    _run(provider.cleanup())
    console.print("[bold]cleanup complete[/]")


# ── Sidecar / traffic ────────────────────────────────────────────────────


@app.command("sidecar-command")
def sidecar_command(
    app_id: str = typer.Argument(..., help="Sidecar app ID."),
    app_port: int = typer.Argument(..., help="Application port."),
    env: str | None = _ENV_OPTION,
) -> None:
    """Print the sidecar configuration and launch command for a service."""
    from meshdeploy.deploy.sidecar import SidecarManager, validate_app_id

    config = _config(env)
    manager = SidecarManager(config.environment, config.components_path)
    try:
        validate_app_id(app_id)
    except MeshDeployError as exc:
        raise _fail(exc) from exc
    sidecar = manager.build_default_config(app_id, app_port)
    console.print(f"HTTP port:  {sidecar.http_port}")
    console.print(f"gRPC port:  {sidecar.grpc_port}")
    console.print(f"endpoint:   {manager.sidecar_endpoint(app_id, sidecar.http_port)}")
    typer.echo(" ".join(manager.build_launch_command(sidecar)))


def _cloud_provider(env: str | None, action: str):
    from meshdeploy.deploy.providers import ManagedCloudProvider, create_provider

    provider = create_provider(_config(env))
    if not isinstance(provider, ManagedCloudProvider):
        err_console.print(f"[red]{action} requires a managed cloud environment[/]")
        raise typer.Exit(code=2)
    return provider


@app.command()
def traffic(
    app_name: str = typer.Argument(..., help="Container app name."),
    revision: str = typer.Argument(..., help="Revision receiving the new share."),
    percentage: int = typer.Argument(..., help="Percent of traffic for the revision."),
    wait: bool = typer.Option(
        False, "--wait/--no-wait", help="Wait for the revision to provision first."
    ),
    env: str | None = _ENV_OPTION,
) -> None:
    """Split traffic between revisions on the managed cloud platform."""
    provider = _cloud_provider(env, "traffic splitting")
    weights = _run(provider.split_traffic(app_name, revision, percentage, wait_ready=wait))
    for name, weight in weights.items():
        console.print(f"  {name}: {weight}%")


@app.command("deactivate-revision")
def deactivate_revision(
    app_name: str = typer.Argument(..., help="Container app name."),
    revision: str = typer.Argument(..., help="Revision to take out of service."),
    env: str | None = _ENV_OPTION,
) -> None:
    """Deactivate one revision on the managed cloud platform."""
    provider = _cloud_provider(env, "revision deactivation")
    _run(provider.deactivate_revision(app_name, revision))
    console.print(f"[green]✓[/] deactivated {escape(revision)}")


if __name__ == "__main__":
    app()
