"""
Root Typer application for the batch-spine CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from batchspine.core.config import get_settings
from batchspine.core.logging import bind_context, clear_context, configure_logging

app = Typer(
    name="batch-spine",
    help="batch-spine — chunk-oriented batch jobs with restart and fault tolerance.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("batch-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"batch-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override BATCH_LOG_LEVEL"),
) -> None:
    """batch-spine CLI — run jobs, inspect executions and skips, manage the run database."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
        stream=sys.stderr,
    )
    # drop context bound by an earlier command in this process
    clear_context()
    bind_context(command=ctx.invoked_subcommand)


# ── Sub-command registration ─────────────────────────────────────────────

from batchspine.cli.db import app as db_app  # noqa: E402
from batchspine.cli.executions import abandon, skips  # noqa: E402
from batchspine.cli.executions import app as executions_app  # noqa: E402
from batchspine.cli.jobs import app as jobs_app  # noqa: E402
from batchspine.cli.run import run, schedule  # noqa: E402

app.add_typer(db_app, name="db", help="Run database operations.")
app.add_typer(jobs_app, name="jobs", help="Registered job definitions.")
app.add_typer(executions_app, name="executions", help="Job execution history.")

app.command("run")(run)
app.command("schedule")(schedule)
app.command("skips")(skips)
app.command("abandon")(abandon)
