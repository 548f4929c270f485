"""
CLI: ``indexsync locks`` - inspect and release sync leases.
"""

from __future__ import annotations

import typer

from indexsync.cli.utils import console, load_settings, make_lease_store, print_json, print_table

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_locks(json_out: bool = typer.Option(False, "--json")) -> None:
    """List active (unexpired) leases."""
    store = make_lease_store(load_settings())
    try:
        leases = [lease.to_dict() for lease in store.list_active()]
    finally:
        store.close()
    if json_out:
        print_json(leases)
    else:
        print_table(leases, title="Active leases")


@app.command("release")
def release(
    key: str = typer.Argument(..., help="Lease key, e.g. execution-indexer"),
) -> None:
    """Force-release a lease whoever holds it."""
    store = make_lease_store(load_settings())
    try:
        released = store.force_release(key)
    finally:
        store.close()
    if released:
        console.print(f"Released [cyan]{key}[/cyan]")
    else:
        console.print(f"[dim]No lease on {key}[/dim]")
        raise typer.Exit(code=1)
