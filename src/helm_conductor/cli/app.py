"""Root Typer application, mounts sub-commands."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

app = typer.Typer(
    name="hcon",
    help="Helm Conductor - Sync chart repositories and drive Helm releases.",
    no_args_is_help=True,
)


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
    )


def _register_commands() -> None:
    from helm_conductor.cli.commands.repo_cmd import app as repo_app
    from helm_conductor.cli.commands.release_cmd import app as release_app

    app.add_typer(repo_app, name="repo", help="Synchronize and inspect chart repositories")
    app.add_typer(release_app, name="release", help="Install, upgrade and remove Helm releases")


_register_commands()


def main() -> None:
    app()
