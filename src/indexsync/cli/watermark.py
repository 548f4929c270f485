"""
CLI: ``indexsync watermark`` - inspect the sync watermark.
"""

from __future__ import annotations

import typer

from indexsync.cli.utils import console, fail, load_settings, make_index, print_dict, print_json
from indexsync.core.errors import WatermarkError

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(json_out: bool = typer.Option(False, "--json")) -> None:
    """Show the last indexed date."""
    from indexsync.core.watermarks import WatermarkStore

    settings = load_settings()
    index = make_index(settings)
    store = WatermarkStore(
        index,
        meta_index=settings.executions_meta_index,
        stream=settings.executions_index,
    )
    try:
        wm = store.get()
    except WatermarkError as e:
        fail(e.message)
    finally:
        index.close()

    if wm is None:
        if json_out:
            print_json(None)
        else:
            console.print("[dim]No watermark yet; the next cycle indexes up to the record cap.[/dim]")
        return

    if json_out:
        print_json(wm.to_dict())
    else:
        print_dict(wm.to_dict(), title="Watermark")
