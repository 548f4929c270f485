"""
CLI: ``indexsync sync`` - run sync cycles.
"""

from __future__ import annotations

import typer

from indexsync.cli.utils import (
    console,
    fail,
    load_settings,
    make_cycle,
    print_json,
    print_table,
    resolve_partitions,
)
from indexsync.core.errors import ConfigError, IndexSyncError

app = typer.Typer(no_args_is_help=True)


def _render(result, *, as_json: bool) -> None:
    if as_json:
        print_json(result.to_dict())
        return

    colour = {"SUCCEEDED": "green", "SKIPPED": "yellow"}.get(result.status.value, "red")
    console.print(f"[bold {colour}]{result.status.value}[/bold {colour}]  cycle {result.cycle_id}")
    if result.busy is not None:
        console.print(f"  lease held by {result.busy.holder_id} until {result.busy.expires_at}")
        return
    print_table([o.to_dict() for o in result.outcomes], title="Partitions")
    console.print(
        f"  watermark: {result.watermark_before} → {result.watermark_after}"
        f" ({'advanced' if result.watermark_advanced else 'unchanged'})"
    )


@app.command("run")
def run_cycle(
    workflows: list[str] | None = typer.Option(
        None,
        "--workflow",
        "-w",
        help="Workflow to sync as ID or ID=SOURCE_KEY (repeatable). Defaults to configured workflows.",
    ),
    max_records: int | None = typer.Option(
        None, "--max-records", min=1, help="Per-partition record cap."
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one sync cycle. Exits 1 on partial or failed cycles."""
    settings = load_settings()
    try:
        partitions = resolve_partitions(settings, workflows)
    except ConfigError as e:
        fail(e.message, code=2)

    cycle = make_cycle(settings)
    try:
        result = cycle.run_sync_cycle(
            partitions, max_records or settings.max_records_per_partition
        )
    except IndexSyncError as e:
        if json_out:
            print_json({"status": "ERROR", "error": e.to_dict()})
            raise typer.Exit(code=1) from e
        fail(f"{e.message} ({e.category.value})")
    finally:
        cycle.close()

    _render(result, as_json=json_out)
    # A skipped cycle is an ordinary outcome, not a failure.
    if not result.ok and result.busy is None:
        raise typer.Exit(code=1)


@app.command("schedule")
def schedule(
    interval: float | None = typer.Option(
        None, "--interval", "-i", min=0.1, help="Seconds between cycles."
    ),
    workflows: list[str] | None = typer.Option(None, "--workflow", "-w"),
    max_records: int | None = typer.Option(None, "--max-records", min=1),
) -> None:
    """Run sync cycles periodically until interrupted."""
    from indexsync.core.logging import get_logger
    from indexsync.core.scheduling.thread_backend import ThreadSchedulerBackend

    logger = get_logger(__name__)
    settings = load_settings()
    try:
        partitions = resolve_partitions(settings, workflows)
    except ConfigError as e:
        fail(e.message, code=2)

    cycle = make_cycle(settings)
    limit = max_records or settings.max_records_per_partition
    every = interval or settings.schedule_interval_seconds

    def tick() -> None:
        result = cycle.run_sync_cycle(partitions, limit)
        logger.info("scheduled_cycle_finished", **result.to_dict())

    backend = ThreadSchedulerBackend(run_immediately=True)
    backend.start(tick, every)
    console.print(f"[bold]Scheduling sync every {every:g}s[/bold] (Ctrl+C to stop)")
    try:
        backend.wait()
    except KeyboardInterrupt:
        console.print("Stopping...")
    finally:
        backend.stop()
        cycle.close()
