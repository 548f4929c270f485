"""indexsync command-line interface."""

from indexsync.cli.app import app


def main() -> None:
    app()


__all__ = ["app", "main"]
