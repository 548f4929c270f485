"""
CLI utility helpers: settings, wiring and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any, NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from indexsync.core.errors import ConfigError
from indexsync.core.settings import IndexSyncSettings, get_settings
from indexsync.execution.models import Partition

console = Console()
err_console = Console(stderr=True)


# ── Settings and wiring ──────────────────────────────────────────────────


def load_settings() -> IndexSyncSettings:
    """Load settings, exiting with a readable message when they are invalid."""
    try:
        return get_settings()
    except ValidationError as e:
        err_console.print(f"[bold red]Invalid configuration[/bold red]\n{e}")
        raise typer.Exit(code=2) from e


def resolve_partitions(
    settings: IndexSyncSettings,
    workflows: Sequence[str] | None,
) -> list[Partition]:
    """Partitions from ``--workflow`` options, else from settings.

    Raises:
        ConfigError: No partitions are configured at all.
    """
    if workflows:
        configured = {p.workflow_id: p for p in settings.partitions()}
        partitions = []
        for value in workflows:
            partition = Partition.parse(value)
            # A bare id picks up its configured source key.
            if "=" not in value and partition.workflow_id in configured:
                partition = configured[partition.workflow_id]
            partitions.append(partition)
        return partitions

    partitions = settings.partitions()
    if not partitions:
        raise ConfigError(
            "No workflows configured. Set INDEXSYNC_WORKFLOWS or pass --workflow."
        )
    return partitions


def make_index(settings: IndexSyncSettings) -> Any:
    from indexsync.index.client import ElasticsearchClient

    return ElasticsearchClient(
        settings.elasticsearch_url, timeout=settings.elasticsearch_timeout_seconds
    )


def make_lease_store(settings: IndexSyncSettings) -> Any:
    from indexsync.core.scheduling.lock_manager import SqliteLeaseStore

    return SqliteLeaseStore.open(settings.lock_database)


def make_cycle(settings: IndexSyncSettings) -> Any:
    from indexsync.execution.cycle import SyncCycle

    return SyncCycle.from_settings(
        settings,
        index=make_index(settings),
        lease_store=make_lease_store(settings),
    )


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def fail(message: str, *, code: int = 1) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
