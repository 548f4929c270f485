"""
Root Typer application for the indexsync CLI.

Sub-commands import the engine lazily so that ``--help`` stays fast.
"""

from __future__ import annotations

import typer
from typer import Typer

from indexsync.core.logging import configure_logging

app = Typer(
    name="indexsync",
    help="indexsync: incremental search-index sync for workflow executions.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from indexsync import __version__

        try:
            v = pkg_version("indexsync")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"indexsync {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Override INDEXSYNC_LOG_LEVEL."
    ),
) -> None:
    """indexsync CLI: run sync cycles, provision indexes, inspect state."""
    from indexsync.cli.utils import load_settings

    settings = load_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from indexsync.cli.index import app as index_app  # noqa: E402
from indexsync.cli.locks import app as locks_app  # noqa: E402
from indexsync.cli.sync import app as sync_app  # noqa: E402
from indexsync.cli.watermark import app as watermark_app  # noqa: E402

app.add_typer(sync_app, name="sync", help="Run sync cycles once or on a schedule.")
app.add_typer(index_app, name="index", help="Search index provisioning.")
app.add_typer(watermark_app, name="watermark", help="Inspect the sync watermark.")
app.add_typer(locks_app, name="locks", help="Inspect and release sync leases.")
