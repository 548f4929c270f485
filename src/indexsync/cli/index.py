"""
CLI: ``indexsync index`` - index provisioning.
"""

from __future__ import annotations

import typer

from indexsync.cli.utils import console, fail, load_settings, make_index, print_json
from indexsync.core.errors import IndexProvisioningError

app = typer.Typer(no_args_is_help=True)


@app.command("ensure")
def ensure(json_out: bool = typer.Option(False, "--json")) -> None:
    """Create the executions and meta indexes, or update their mappings."""
    from indexsync.index.schema import (
        EXECUTIONS_INDEX,
        EXECUTIONS_META_INDEX,
        IndexSchemaManager,
    )

    settings = load_settings()
    specs = (
        EXECUTIONS_INDEX.named(settings.executions_index),
        EXECUTIONS_META_INDEX.named(settings.executions_meta_index),
    )
    index = make_index(settings)
    try:
        created = IndexSchemaManager(index).ensure_all(*specs)
    except IndexProvisioningError as e:
        fail(e.message)
    finally:
        index.close()

    if json_out:
        print_json({spec.name: spec.name in created for spec in specs})
        return
    for spec in specs:
        state = "created" if spec.name in created else "mapping updated"
        console.print(f"  [cyan]{spec.name}[/cyan]: {state}")
