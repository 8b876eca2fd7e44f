"""Uninstall command - remove an asset from a project."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from duckrow.cli.common import (
    console,
    handle_error,
    load_services,
    parse_kind,
    parse_systems,
    resolve_project_dir,
)
from duckrow.exceptions import DuckrowError
from duckrow.lockfile import remove_lock_entry


def uninstall(
    kind: Annotated[str, typer.Argument(help="Asset kind: skill, mcp or agent")],
    name: Annotated[str, typer.Argument(help="Name of the asset to remove")],
    systems: Annotated[
        Optional[str],
        typer.Option("--systems", "-s", help="Only remove from these systems"),
    ] = None,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Remove an asset from every system and from the lock file.

    Examples:
      duckrow uninstall skill lint
      duckrow uninstall mcp github --systems cursor
    """
    asset_kind = parse_kind(kind)
    services = load_services()
    target = resolve_project_dir(project_dir)
    target_systems = parse_systems(services.catalog, systems)

    try:
        services.orchestrator.remove_asset(asset_kind, name, target, target_systems or None)
        # Partial removals keep the lock entry
        removed = False if target_systems else remove_lock_entry(target, asset_kind, name)
    except DuckrowError as e:
        handle_error(e)

    console.print(f"[green]Removed {asset_kind.value} '{name}'[/green]")
    if removed:
        console.print("[dim]Lock entry removed[/dim]")
