"""
CLI: ``batch-spine executions`` — job execution history, skips and abandon.
"""

from __future__ import annotations

import typer

from batchspine.cli.utils import console, fail, open_repository, output_dict, output_rows
from batchspine.core.errors import InvalidTransitionError
from batchspine.execution.models import BatchStatus

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_executions(
    job: str | None = typer.Option(None, "--job", help="Filter by job name"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max rows"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List job executions, newest first."""
    try:
        status_filter = BatchStatus(status.upper()) if status else None
    except ValueError as e:
        raise fail(f"Unknown status {status!r}") from e
    repository = open_repository(database)
    try:
        executions = repository.list_executions(job_name=job, status=status_filter, limit=limit)
    finally:
        repository.close()
    rows = [
        {
            "id": e.id,
            "job": e.job_name,
            "instance": e.instance_id,
            "status": e.status.value,
            "read": sum(s.read_count for s in e.step_executions),
            "written": sum(s.write_count for s in e.step_executions),
            "skipped": e.skip_count,
            "started": e.start_time.isoformat() if e.start_time else None,
        }
        for e in executions
    ]
    output_rows(rows, as_json=json_out, title="Executions")


@app.command("show")
def show_execution(
    execution_id: int = typer.Argument(..., help="Job execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one execution with its step executions."""
    repository = open_repository(database)
    try:
        execution = repository.get_execution(execution_id)
    finally:
        repository.close()
    if execution is None:
        raise fail(f"Execution {execution_id} not found")
    data = execution.to_dict()
    if json_out:
        output_dict(data, as_json=True)
        return
    steps = data.pop("steps")
    output_dict(data, title=f"Execution {execution_id}")
    output_rows(
        [
            {
                "id": s["id"],
                "step": s["step_name"],
                "status": s["status"],
                "read": s["read_count"],
                "written": s["write_count"],
                "filtered": s["filter_count"],
                "skipped": s["skip_count"],
                "commits": s["commit_count"],
                "rollbacks": s["rollback_count"],
            }
            for s in steps
        ],
        title="Steps",
    )


def skips(
    step_execution_id: int = typer.Argument(..., help="Step execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the items skipped by a step execution."""
    repository = open_repository(database)
    try:
        records = repository.get_skips(step_execution_id)
    finally:
        repository.close()
    output_rows([r.to_dict() for r in records], as_json=json_out, title="Skipped Items")


def abandon(
    execution_id: int = typer.Argument(..., help="Job execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Mark a dead execution ABANDONED so its instance can be restarted."""
    repository = open_repository(database)
    try:
        execution = repository.mark_abandoned(execution_id)
    except KeyError as e:
        raise fail(f"Execution {execution_id} not found") from e
    except InvalidTransitionError as e:
        raise fail(e.message) from e
    finally:
        repository.close()
    console.print(f"[yellow]Abandoned[/yellow] execution {execution.id} ({execution.job_name})")
