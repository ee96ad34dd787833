"""
CLI: ``batch-spine db`` — run database management commands.
"""

from __future__ import annotations

import typer

from batchspine.cli.utils import console, fail, open_repository, output_dict, output_rows
from batchspine.core.errors import BatchError
from batchspine.core.schema import BATCH_TABLES

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Create the run repository tables (idempotent)."""
    try:
        repository = open_repository(database)
    except (BatchError, OSError) as e:
        raise fail(str(e)) from e
    repository.close()
    result = {"database": database or "(default)", "tables": list(BATCH_TABLES.values())}
    if json_out:
        output_dict(result, as_json=True)
    else:
        console.print(f"[green]Initialised[/green] {len(BATCH_TABLES)} tables")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for the run repository tables."""
    repository = open_repository(database)
    try:
        conn = repository.connection
        rows = [
            {"table": name, "rows": conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()[0]}
            for name in BATCH_TABLES.values()
        ]
    finally:
        repository.close()
    output_rows(rows, as_json=json_out, title="Table Counts")
