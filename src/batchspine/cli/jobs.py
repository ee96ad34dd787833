"""
CLI: ``batch-spine jobs`` — registered job definitions.
"""

from __future__ import annotations

import typer

from batchspine.cli.utils import fail, load_registry, open_repository, output_rows
from batchspine.core.errors import ConfigError

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_jobs(
    jobs: str | None = typer.Option(None, "--jobs", "-j", help="Registry as module:attr"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List registered jobs and their steps."""
    repository = open_repository(database)
    try:
        registry = load_registry(jobs, repository)
    except ConfigError as e:
        raise fail(e.message) from e
    finally:
        repository.close()
    rows = [
        {
            "name": job.name,
            "steps": ", ".join(step.name for step in job.steps),
            "restartable": job.restartable,
            "description": job.description,
        }
        for job in registry
    ]
    output_rows(rows, as_json=json_out, title="Jobs")
