"""
CLI: ``sitespine provision`` — site provisioning and stack commands.

Provides sub-commands for:
- Running the full provisioning workflow for one site
- Probing for a site and reconciling its configuration
- Writing the stack's ``.env`` file
- Starting, stopping, and inspecting the compose stack

Usage::

    sitespine provision run --site crm.example.com        # wait, probe, create or reconcile, verify
    sitespine provision probe --site crm.example.com      # exists / absent / probe_failed
    sitespine provision reconcile --site crm.example.com  # set differing keys only
    sitespine provision show-config --site crm.example.com

    sitespine provision env --site crm.example.com -o frappe_docker/.env
    sitespine provision up --build                         # docker compose up -d --build
    sitespine provision down
    sitespine provision status
    sitespine provision services                           # list the service registry

Endpoints, credentials, and compose settings fall back to ``SITESPINE_*``
environment variables. Credentials are never echoed.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from sitespine.core.errors import CommandError

app = typer.Typer(no_args_is_help=True)
console = Console()
err_console = Console(stderr=True)


# ── Helpers ──────────────────────────────────────────────────────────────


def _invalid(exc: ValidationError) -> NoReturn:
    """Report validation errors without echoing input values, then exit 2."""
    err_console.print("[red]✗ Invalid configuration:[/]")
    for error in exc.errors(include_input=False):
        loc = ".".join(str(part) for part in error["loc"]) or "config"
        err_console.print(f"  {loc}: {error['msg']}")
    raise typer.Exit(code=2)


def _check_site(site: str) -> str:
    from sitespine.provision.config import SITE_ID_PATTERN

    if not re.match(SITE_ID_PATTERN, site):
        err_console.print(f"[red]✗ Invalid site name: {site!r}[/]")
        raise typer.Exit(code=2)
    return site


def _client(compose_file: list[str], project: str | None, project_dir: str | None) -> Any:
    from sitespine.provision.bench import BenchClient

    files = compose_file or [
        f.strip() for f in os.environ.get("SITESPINE_COMPOSE_FILES", "").split(",") if f.strip()
    ]
    return BenchClient(compose_files=files, project_name=project, project_dir=project_dir)


def _require_docker() -> None:
    from sitespine.provision.bench import BenchClient

    if not BenchClient.is_docker_available():
        err_console.print("[red]✗ Docker is not available.[/]")
        raise typer.Exit(code=1)


def _settings(**values: Any) -> Any:
    from sitespine.provision.config import SiteSettings

    try:
        return SiteSettings.from_env(**values)
    except ValidationError as exc:
        _invalid(exc)


# ── Run ──────────────────────────────────────────────────────────────────


@app.command("run")
def provision_run(
    site: str | None = typer.Option(None, "--site", "-s", help="Site name (default: $SITESPINE_SITE_NAME)."),
    redis_cache: str | None = typer.Option(None, "--redis-cache", help="Cache endpoint, scheme://host:port."),
    redis_queue: str | None = typer.Option(None, "--redis-queue", help="Queue endpoint, scheme://host:port."),
    redis_socketio: str | None = typer.Option(None, "--redis-socketio", help="Realtime endpoint, scheme://host:port."),
    db_host: str | None = typer.Option(None, "--db-host", help="Database host."),
    db_port: int | None = typer.Option(None, "--db-port", help="Database port."),
    root_password: str | None = typer.Option(
        None, "--db-root-password", help="Database root password (default: $SITESPINE_DB_ROOT_PASSWORD).",
        show_default=False,
    ),
    admin_password: str | None = typer.Option(
        None, "--admin-password", help="New site admin password (default: $SITESPINE_ADMIN_PASSWORD).",
        show_default=False,
    ),
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s). Repeatable."),
    project: str | None = typer.Option(None, "--project-name", help="Docker Compose project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", help="Directory holding the compose files."),
    wait: float | None = typer.Option(None, "--wait", "-w", help="Readiness wait per service in seconds."),
    json_out: bool = typer.Option(False, "--json", help="Output result as JSON."),
) -> None:
    """Bring one site into its desired state.

    Waits for the database, cache, queue, and backend, then creates the site
    if it is absent or reconciles its configuration if it exists, and
    verifies the result by reading the configuration back.
    """
    from sitespine.provision.config import ProvisionConfig, default_readiness_targets
    from sitespine.provision.workflow import SiteOrchestrator

    overrides: dict[str, Any] = {
        "settings": {
            "cache_endpoint": redis_cache,
            "queue_endpoint": redis_queue,
            "realtime_endpoint": redis_socketio,
            "database_host": db_host,
            "database_port": db_port,
        },
        "credentials": {
            k: v
            for k, v in {"root_password": root_password, "admin_password": admin_password}.items()
            if v is not None
        },
    }
    if site:
        overrides["site_id"] = site
    if compose_file:
        overrides["compose_files"] = compose_file
    if project:
        overrides["project_name"] = project
    if project_dir:
        overrides["project_dir"] = project_dir
    if wait is not None:
        overrides["readiness"] = default_readiness_targets(max_wait_seconds=wait)

    try:
        config = ProvisionConfig.from_env(**overrides)
    except ValidationError as exc:
        _invalid(exc)

    _require_docker()

    if not json_out:
        console.print(f"[bold]sitespine provision[/] — site: {config.site_id}, run_id: {config.run_id}")

    result = SiteOrchestrator(config).run()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_run_result(result)

    if not result.done:
        raise typer.Exit(code=1)


# ── Probe / reconcile / show-config ──────────────────────────────────────


@app.command("probe")
def provision_probe(
    site: str = typer.Option(..., "--site", "-s", envvar="SITESPINE_SITE_NAME", help="Site name."),
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Check whether a site exists. Exits 1 when existence cannot be determined."""
    from sitespine.provision.prober import StateProber

    result = StateProber(_client(compose_file, project, project_dir)).probe(_check_site(site))

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    elif result.status == "exists":
        console.print(f"[green]✓ {site} exists[/]")
    elif result.status == "absent":
        console.print(f"[yellow]○ {site} is absent[/]")
    else:
        err_console.print(f"[red]✗ probe failed: {result.reason}[/]")

    if result.status == "probe_failed":
        raise typer.Exit(code=1)


@app.command("reconcile")
def provision_reconcile(
    site: str = typer.Option(..., "--site", "-s", envvar="SITESPINE_SITE_NAME", help="Site name."),
    redis_cache: str | None = typer.Option(None, "--redis-cache", help="Cache endpoint."),
    redis_queue: str | None = typer.Option(None, "--redis-queue", help="Queue endpoint."),
    redis_socketio: str | None = typer.Option(None, "--redis-socketio", help="Realtime endpoint."),
    db_host: str | None = typer.Option(None, "--db-host", help="Database host."),
    db_port: int | None = typer.Option(None, "--db-port", help="Database port."),
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Apply the desired configuration to an existing site (differing keys only)."""
    from sitespine.provision.reconciler import ConfigurationReconciler

    settings = _settings(
        cache_endpoint=redis_cache,
        queue_endpoint=redis_queue,
        realtime_endpoint=redis_socketio,
        database_host=db_host,
        database_port=db_port,
    )
    reconciler = ConfigurationReconciler(_client(compose_file, project, project_dir))
    result = reconciler.reconcile(_check_site(site), settings.as_desired())

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        table = Table(title=f"Reconcile {site}")
        table.add_column("Key", style="bold")
        table.add_column("Outcome")
        table.add_column("Error")
        for key in result.applied_keys:
            table.add_row(key, "[green]applied[/green]", "—")
        for key in result.unchanged_keys:
            table.add_row(key, "[dim]unchanged[/dim]", "—")
        for key in result.failed_keys:
            table.add_row(key, "[red]failed[/red]", result.errors.get(key, "—"))
        console.print(table)

    if not result.applied:
        raise typer.Exit(code=1)


@app.command("show-config")
def show_config(
    site: str = typer.Option(..., "--site", "-s", envvar="SITESPINE_SITE_NAME", help="Site name."),
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show a site's effective endpoint and database settings."""
    from sitespine.provision.reconciler import ConfigurationReconciler
    from sitespine.provision.services import SETTING_KEYS

    reconciler = ConfigurationReconciler(_client(compose_file, project, project_dir))
    try:
        current = reconciler.read_settings(_check_site(site))
    except CommandError as exc:
        err_console.print(f"[red]✗ {exc.message}[/]")
        raise typer.Exit(code=1)

    if json_out:
        typer.echo(json.dumps(current, indent=2))
        return

    table = Table(title=f"{site} configuration")
    table.add_column("Setting", style="bold cyan")
    table.add_column("Config key")
    table.add_column("Value")
    for key, (config_key, _) in SETTING_KEYS.items():
        value = current.get(key)
        table.add_row(key, config_key, "[dim]unset[/dim]" if value is None else str(value))
    console.print(table)


# ── Env file ─────────────────────────────────────────────────────────────


@app.command("env")
def write_env(
    site: str = typer.Option(..., "--site", "-s", envvar="SITESPINE_SITE_NAME", help="Site name."),
    output: Path = typer.Option(Path(".env"), "--output", "-o", help="Path of the .env file."),
    redis_cache: str | None = typer.Option(None, "--redis-cache", help="Cache endpoint."),
    redis_queue: str | None = typer.Option(None, "--redis-queue", help="Queue endpoint."),
    redis_socketio: str | None = typer.Option(None, "--redis-socketio", help="Realtime endpoint."),
    db_host: str | None = typer.Option(None, "--db-host", help="Database host."),
    db_port: int | None = typer.Option(None, "--db-port", help="Database port."),
) -> None:
    """Write the compose stack's .env file from validated endpoints."""
    from sitespine.provision.compose import write_env_file

    settings = _settings(
        cache_endpoint=redis_cache,
        queue_endpoint=redis_queue,
        realtime_endpoint=redis_socketio,
        database_host=db_host,
        database_port=db_port,
    )
    path = write_env_file(output, _check_site(site), settings)
    console.print(f"[green]✓ Wrote {path}[/]")


# ── Stack up / down / status ─────────────────────────────────────────────


@app.command("up")
def stack_up(
    service: list[str] = typer.Option([], "--service", help="Specific service(s) to start."),
    build: bool = typer.Option(False, "--build", help="Build images before starting."),
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Start the compose stack in the background."""
    from sitespine.provision.workflow import StackRunner

    _require_docker()
    if not json_out:
        console.print("[bold green]▲ stack up[/]")
    result = StackRunner(_client(compose_file, project, project_dir)).up(build=build, services=list(service))

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_stack_result(result)

    if result.error:
        raise typer.Exit(code=1)


@app.command("down")
def stack_down(
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Stop the compose stack."""
    from sitespine.provision.workflow import StackRunner

    result = StackRunner(_client(compose_file, project, project_dir)).down()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        console.print("[green]✓ Stack stopped[/]" if not result.error else f"[red]✗ {result.error}[/]")

    if result.error:
        raise typer.Exit(code=1)


@app.command("status")
def stack_status(
    compose_file: list[str] = typer.Option([], "--file", "-f", help="Docker Compose file(s)."),
    project: str | None = typer.Option(None, "--project-name", envvar="SITESPINE_PROJECT_NAME", help="Project name."),
    project_dir: str | None = typer.Option(None, "--project-dir", envvar="SITESPINE_PROJECT_DIR", help="Project directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the status of the stack's services."""
    from sitespine.provision.workflow import StackRunner

    result = StackRunner(_client(compose_file, project, project_dir)).status()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_stack_result(result)


# ── Info ─────────────────────────────────────────────────────────────────


@app.command("services")
def list_services(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the stack's services and how readiness is checked."""
    from sitespine.provision.services import DEPENDENT_SERVICES, SERVICES

    if json_out:
        out = {
            name: {
                "service": spec.name,
                "role": spec.role,
                "url": spec.url,
                "readiness": spec.readiness_kind,
                "awaited": name in DEPENDENT_SERVICES,
            }
            for name, spec in SERVICES.items()
        }
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title="Stack Services")
    table.add_column("Name", style="bold cyan")
    table.add_column("Service")
    table.add_column("Role")
    table.add_column("Endpoint")
    table.add_column("Readiness")
    table.add_column("Awaited")

    for name, spec in SERVICES.items():
        table.add_row(
            name,
            spec.name,
            spec.role,
            spec.url,
            spec.readiness_kind,
            "yes" if name in DEPENDENT_SERVICES else "—",
        )

    console.print(table)


# ── Output formatters ────────────────────────────────────────────────────


def _print_run_result(result: object) -> None:
    """Pretty-print a RunResult."""
    r = result  # type: ignore[attr-defined]

    if r.readiness:
        table = Table(title="Dependencies")
        table.add_column("Service", style="bold")
        table.add_column("Status")
        table.add_column("Attempts")
        table.add_column("Waited")
        table.add_column("Last error")
        for rr in r.readiness:
            style = "green" if rr.ready else "red"
            table.add_row(
                rr.service,
                f"[{style}]{rr.status}[/{style}]",
                str(rr.attempts),
                f"{rr.waited_seconds:.1f}s",
                rr.last_error or "—",
            )
        console.print(table)

    console.print(f"phases: {' → '.join(p.value for p in r.history)}")
    if r.create and r.create.partial_state:
        console.print(f"[yellow]left behind: {', '.join(r.create.partial_state)}[/]")
    if r.verify and r.verify.mismatched:
        for key, values in r.verify.mismatched.items():
            console.print(f"[red]  {key}: desired {values['desired']!r}, actual {values['actual']!r}[/]")

    style = "green" if r.done else "red"
    label = "DONE" if r.done else "FAILED"
    console.print(f"\n[bold {style}]{label}[/] — {r.summary}")
    if r.detail and not r.done:
        err_console.print(f"[red]{r.detail}[/]")


def _print_stack_result(result: object) -> None:
    """Pretty-print a StackResult."""
    table = Table(title="Service Status")
    table.add_column("Service", style="bold")
    table.add_column("Status")
    table.add_column("Container")
    table.add_column("Image")

    for svc in result.services:  # type: ignore[attr-defined]
        status_style = {
            "running": "green",
            "healthy": "green bold",
            "starting": "yellow",
            "unhealthy": "red",
            "exited": "red",
            "not_found": "dim",
        }.get(svc.status, "white")

        table.add_row(
            svc.name,
            f"[{status_style}]{svc.status}[/{status_style}]",
            svc.container_name or "—",
            svc.image or "—",
        )

    console.print(table)

    if result.error:  # type: ignore[attr-defined]
        err_console.print(f"\n[red]Error: {result.error}[/]")  # type: ignore[attr-defined]
