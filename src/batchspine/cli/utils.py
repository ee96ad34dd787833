"""
CLI utility helpers — output formatting, repository and job loading.
"""

from __future__ import annotations

import importlib
import json
import re
from datetime import date, datetime
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from batchspine.core.config import get_settings
from batchspine.core.errors import ConfigError
from batchspine.execution.parameters import JobParameters, JobParametersBuilder, ParameterType
from batchspine.execution.registry import JobRegistry
from batchspine.repository.sqlite import SqliteJobRepository

console = Console()
err_console = Console(stderr=True)


# ── Repository / registry helpers ────────────────────────────────────────


def open_repository(database: str | None = None) -> SqliteJobRepository:
    """Open the run repository.  Defaults to ``BATCH_DATABASE_PATH``."""
    return SqliteJobRepository.connect(database or get_settings().database_path)


def load_registry(location: str | None, repository: SqliteJobRepository) -> JobRegistry:
    """Resolve ``module:attr`` to a JobRegistry.

    ``attr`` may be a JobRegistry or a callable taking the repository and
    returning one.
    """
    location = location or get_settings().jobs
    module_name, _, attr = location.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Jobs must be given as 'module:attr', got {location!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import jobs module {module_name!r}: {e}", cause=e) from e
    target = getattr(module, attr, None)
    if target is None:
        raise ConfigError(f"Module {module_name!r} has no attribute {attr!r}")
    registry = target if isinstance(target, JobRegistry) else target(repository)
    if not isinstance(registry, JobRegistry):
        raise ConfigError(f"{location} did not produce a JobRegistry")
    return registry


_PARAM_RE = re.compile(r"^(?P<name>[^=(]+)(?:\((?P<type>\w+)\))?=(?P<value>.*)$")


def parse_params(pairs: list[str] | None) -> JobParameters:
    """Parse ``name=value`` / ``name(long)=value`` pairs into JobParameters.

    Types: string (default), long, double, date.  A leading ``-`` on the
    name marks the parameter non-identifying.
    """
    builder = JobParametersBuilder()
    for pair in pairs or []:
        match = _PARAM_RE.match(pair)
        if match is None:
            raise typer.BadParameter(f"Expected name=value or name(type)=value, got {pair!r}")
        name = match["name"].strip()
        identifying = not name.startswith("-")
        name = name.lstrip("-")
        raw = match["value"]
        try:
            kind = ParameterType((match["type"] or "string").upper())
        except ValueError as e:
            raise typer.BadParameter(f"Unknown parameter type in {pair!r}") from e
        try:
            if kind == ParameterType.LONG:
                builder.add_long(name, int(raw), identifying)
            elif kind == ParameterType.DOUBLE:
                builder.add_double(name, float(raw), identifying)
            elif kind == ParameterType.DATE:
                value = datetime.fromisoformat(raw) if "T" in raw else date.fromisoformat(raw)
                builder.add_date(name, value, identifying)
            else:
                builder.add_string(name, raw, identifying)
        except ValueError as e:
            raise typer.BadParameter(f"Bad {kind.value} value in {pair!r}: {e}") from e
    return builder.to_job_parameters()


# ── Output helpers ───────────────────────────────────────────────────────


def fail(message: str, code: int = 1) -> typer.Exit:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    return typer.Exit(code=code)


def output_rows(rows: list[dict[str, Any]], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of dicts as a Rich table (or JSON)."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a single dict as key-value pairs (or JSON)."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        console.print(f"  [cyan]{key}[/cyan]: {value}")
