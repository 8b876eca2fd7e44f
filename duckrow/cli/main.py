"""CLI entry point for duckrow."""

import logging
from typing import Annotated

import typer

from duckrow import __version__
from duckrow.cli import registry
from duckrow.cli.env import env
from duckrow.cli.install import add, install
from duckrow.cli.remove import uninstall
from duckrow.cli.show import list_assets, systems
from duckrow.cli.sync import sync
from duckrow.cli.update import outdated, update

app = typer.Typer(
    name="duckrow",
    help="Install skills, MCP servers and agents for AI coding tools.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"duckrow {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Print debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit.",
        ),
    ] = False,
) -> None:
    """duckrow - a package manager for AI agent assets."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="[DEBUG %(name)s:%(lineno)d] %(message)s",
        )


app.command("install")(install)
app.command("add")(add)
app.command("uninstall")(uninstall)
app.command("list")(list_assets)
app.command("sync")(sync)
app.command("outdated")(outdated)
app.command("update")(update)
app.command("systems")(systems)
app.command("env")(env)
app.add_typer(registry.app, name="registry")


if __name__ == "__main__":
    app()
