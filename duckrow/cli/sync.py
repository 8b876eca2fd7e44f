"""Sync command - restore a project from its lock file."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from duckrow.cli.common import (
    build_install_options,
    console,
    fetch_spinner,
    handle_error,
    load_services,
    print_missing_env,
    resolve_project_dir,
)
from duckrow.constants import LOCK_FILE_NAME
from duckrow.env import required_env_by_name
from duckrow.exceptions import DuckrowError
from duckrow.lockfile import read_lock_file


def sync(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Reinstall assets that already look installed"),
    ] = False,
    systems: Annotated[
        Optional[str],
        typer.Option("--systems", "-s", help="Comma-separated target systems"),
    ] = None,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Install every locked asset at its locked commit.

    Exits with status 1 if any asset failed; the others are still installed.
    """
    services = load_services()
    target = resolve_project_dir(project_dir)

    try:
        lock_file = read_lock_file(target)
    except DuckrowError as e:
        handle_error(e)
    if lock_file is None:
        typer.echo(f"Error: {LOCK_FILE_NAME} not found in {target}", err=True)
        raise typer.Exit(1)

    options = build_install_options(services, target, systems=systems, force=force)
    with fetch_spinner("Syncing..."):
        result = services.orchestrator.sync_from_lock(
            lock_file, options, services.config.registries
        )

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    for error in result.errors:
        typer.echo(f"Error: {error}", err=True)

    console.print(
        f"[green]Installed {result.installed}[/green], "
        f"[dim]skipped {result.skipped} already present[/dim]"
    )
    print_missing_env(target, required_env_by_name(lock_file))
    if result.errors:
        raise typer.Exit(1)
