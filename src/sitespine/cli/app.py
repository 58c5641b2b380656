"""
Root Typer application for the site-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from sitespine.core.logging import configure_logging

app = Typer(
    name="sitespine",
    help="sitespine — idempotent site provisioning for compose stacks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from sitespine import __version__

        typer.echo(f"sitespine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", "-l", envvar="SITESPINE_LOG_LEVEL", help="Log level.",
    ),
    log_json: bool | None = typer.Option(
        None, "--log-json/--log-console", help="Log format (default: JSON when not a TTY).",
    ),
) -> None:
    """sitespine CLI — provision sites, reconcile their config, manage the stack."""
    configure_logging(level=log_level, json_format=log_json)


# ── Sub-command registration ─────────────────────────────────────────────

from sitespine.cli.provision import app as provision_app  # noqa: E402

app.add_typer(provision_app, name="provision", help="Site provisioning and stack management.")
