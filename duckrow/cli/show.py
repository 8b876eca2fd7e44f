"""List and systems commands - show installed assets and known systems."""

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from duckrow.cli.common import console, handle_error, load_services, resolve_project_dir
from duckrow.exceptions import DuckrowError
from duckrow.lockfile import read_lock_file
from duckrow.source import truncate_commit


def list_assets(
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Show the assets installed in a project.

    Assets are found by scanning every system detected in the folder; the
    locked commit is shown where the lock file knows the asset.
    """
    services = load_services()
    target = resolve_project_dir(project_dir)

    try:
        found = services.orchestrator.scan_folder(target)
        lock_file = read_lock_file(target)
    except DuckrowError as e:
        handle_error(e)

    if not found:
        console.print(f"[yellow]No assets installed in {target}[/yellow]")
        return

    for kind, assets in found.items():
        handler = services.handlers.require(kind)
        table = Table(title=f"{handler.display_name}s ({len(assets)})", title_justify="left")
        table.add_column("Name", style="cyan")
        table.add_column("Description")
        table.add_column("System", style="dim")
        table.add_column("Commit", style="dim")
        for installed in assets:
            locked = lock_file.find(kind, installed.name) if lock_file else None
            table.add_row(
                installed.name,
                installed.description,
                installed.system_name,
                truncate_commit(locked.commit) if locked else "",
            )
        console.print(table)


def systems(
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Show the systems duckrow can install into."""
    services = load_services()
    target = resolve_project_dir(project_dir)

    table = Table()
    table.add_column("Name", style="cyan")
    table.add_column("Display name")
    table.add_column("Kinds")
    table.add_column("Universal")
    table.add_column("Status")
    for system in services.catalog.all():
        if system.is_active_in_folder(target):
            status = "[green]active here[/green]"
        elif system.is_installed():
            status = "installed"
        else:
            status = "[dim]-[/dim]"
        table.add_row(
            system.name,
            system.display_name,
            ", ".join(kind.value for kind in system.supported_kinds()),
            "yes" if system.is_universal() else "no",
            status,
        )
    console.print(table)
