"""
CLI: ``batch-spine run`` / ``batch-spine schedule`` — launch registered jobs.

Parameters are given as ``--param name=value`` (string) or
``--param name(long)=value``; see :func:`batchspine.cli.utils.parse_params`.

Exit codes for ``run``: 0 when the job completed (with or without skips),
1 when it failed or stopped, 2 when the launch was rejected.
"""

from __future__ import annotations

import threading

import typer

from batchspine.cli.utils import (
    console,
    fail,
    load_registry,
    open_repository,
    output_dict,
    output_rows,
    parse_params,
)
from batchspine.core.errors import ConfigError
from batchspine.execution.launcher import JobLauncher
from batchspine.execution.trigger import JobTrigger, RunReport
from batchspine.scheduling.trigger import OverlapPolicy, ScheduledTrigger, rolling_window

_OUTCOME_STYLE = {
    "CLEAN": "green",
    "COMPLETED_WITH_SKIPS": "yellow",
    "FAILED": "red",
    "STOPPED": "yellow",
}


def _exit_code(report: RunReport) -> int:
    if report.succeeded:
        return 0
    return 2 if report.outcome.is_rejection else 1


def _print_report(report: RunReport, as_json: bool) -> None:
    data = report.to_dict()
    if as_json:
        output_dict(data, as_json=True)
        return
    style = _OUTCOME_STYLE.get(report.outcome.value, "red")
    console.print(f"[bold {style}]{report.outcome.value}[/bold {style}] {report.job_name}")
    steps = data.pop("steps")
    errors = data.pop("errors")
    data.pop("outcome")
    output_dict(data)
    if steps:
        output_rows(steps, title="Steps")
    for error in errors:
        console.print(f"  [red]{error.get('error_type')}[/red]: {error.get('message')}")


def run(
    job_name: str = typer.Argument(..., help="Registered job name"),
    param: list[str] | None = typer.Option(  # noqa: UP007
        None, "--param", "-p", help="Job parameter name=value or name(type)=value (repeatable)"
    ),
    unique: bool = typer.Option(False, "--unique", help="Add run.timestamp so this is a new instance"),
    next_instance: bool = typer.Option(False, "--next", help="Increment run.id from the last instance"),
    jobs: str | None = typer.Option(None, "--jobs", "-j", help="Registry as module:attr"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a job synchronously and report the outcome."""
    params = parse_params(param)
    repository = open_repository(database)
    try:
        try:
            registry = load_registry(jobs, repository)
            job = registry.get(job_name)
        except ConfigError as e:
            raise fail(e.message) from e
        with JobLauncher(repository) as launcher:
            if next_instance:
                params = launcher.next_parameters(job, params)
            report = JobTrigger(launcher, registry).fire(job_name, params, unique=unique)
    finally:
        repository.close()
    _print_report(report, json_out)
    raise typer.Exit(code=_exit_code(report))


def schedule(
    job_name: str = typer.Argument(..., help="Registered job name"),
    every: float | None = typer.Option(None, "--every", help="Fixed rate in seconds"),
    cron: str | None = typer.Option(None, "--cron", help="Cron expression"),
    window_days: int | None = typer.Option(
        None, "--window-days", help="Supply startDate/endDate covering the last N days"
    ),
    param: list[str] | None = typer.Option(None, "--param", "-p"),  # noqa: UP007
    allow_overlap: bool = typer.Option(False, "--allow-overlap", help="Fire even while the job runs"),
    duration: float | None = typer.Option(None, "--duration", help="Stop after N seconds"),
    jobs: str | None = typer.Option(None, "--jobs", "-j", help="Registry as module:attr"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Fire a job on a schedule until interrupted."""
    extra = parse_params(param).parameters()
    if window_days is not None:
        supplier = rolling_window(days=window_days, extra=extra)
    else:
        supplier = lambda _now: extra  # noqa: E731
    repository = open_repository(database)
    launcher = JobLauncher(repository)
    done = threading.Event()
    try:
        try:
            registry = load_registry(jobs, repository)
            registry.get(job_name)
            scheduled = ScheduledTrigger(
                JobTrigger(launcher, registry),
                job_name,
                interval_seconds=every,
                cron=cron,
                params_supplier=supplier,
                overlap=OverlapPolicy.RUN_CONCURRENTLY if allow_overlap else OverlapPolicy.SKIP_IF_RUNNING,
            )
        except ConfigError as e:
            raise fail(e.message) from e
        console.print(f"[green]Scheduling[/green] {job_name} (next run {scheduled.next_run.isoformat()})")
        scheduled.start()
        try:
            done.wait(duration)
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted[/yellow]")
        finally:
            scheduled.stop()
        stats = scheduled.stats
        console.print(
            f"fired={stats.fired} skipped_overlap={stats.skipped_overlap} rejected={stats.rejected}"
        )
    finally:
        launcher.shutdown()
        repository.close()
