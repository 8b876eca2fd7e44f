"""Outdated and update commands - check locked assets against their sources."""

import dataclasses
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from duckrow.assets import AssetKind
from duckrow.cli.common import (
    Services,
    build_install_options,
    console,
    fetch_spinner,
    handle_error,
    load_services,
    parse_kind,
    print_install_results,
    resolve_project_dir,
)
from duckrow.constants import LOCK_FILE_NAME
from duckrow.exceptions import DuckrowError
from duckrow.lockfile import LockFile, read_lock_file
from duckrow.source import parse_source, truncate_commit
from duckrow.updates import UpdateInfo, check_for_updates

# MCP servers are locked by config hash, not by commit
COMMIT_TRACKED_KINDS = (AssetKind.SKILL, AssetKind.AGENT)


def _load_lock(target: Path) -> LockFile:
    try:
        lock_file = read_lock_file(target)
    except DuckrowError as e:
        handle_error(e)
    if lock_file is None:
        typer.echo(f"Error: {LOCK_FILE_NAME} not found in {target}", err=True)
        raise typer.Exit(1)
    return lock_file


def _collect_updates(
    services: Services, lock_file: LockFile, kinds: list[AssetKind]
) -> list[UpdateInfo]:
    registries = services.config.registries
    overrides = services.config.settings.clone_url_overrides
    commits = services.registry_manager.build_commit_map(registries)

    infos: list[UpdateInfo] = []
    with fetch_spinner("Checking for updates..."):
        for kind in kinds:
            infos.extend(
                check_for_updates(lock_file, kind, services.git, overrides, commits)
            )
    return infos


def _kinds(kind: str | None) -> list[AssetKind]:
    return [parse_kind(kind)] if kind else list(COMMIT_TRACKED_KINDS)


def outdated(
    kind: Annotated[
        Optional[str],
        typer.Option("--kind", "-k", help="Only check this asset kind"),
    ] = None,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Show locked assets that have newer commits available."""
    services = load_services()
    target = resolve_project_dir(project_dir)
    lock_file = _load_lock(target)

    infos = [info for info in _collect_updates(services, lock_file, _kinds(kind)) if info.has_update]
    if not infos:
        console.print("[green]Everything is up to date[/green]")
        return

    table = Table()
    table.add_column("Kind", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Installed")
    table.add_column("Available", style="green")
    table.add_column("Source", style="dim")
    for info in infos:
        table.add_row(
            info.kind,
            info.name,
            truncate_commit(info.installed_commit),
            truncate_commit(info.available_commit),
            info.source,
        )
    console.print(table)


def update(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Only update the asset with this name"),
    ] = None,
    kind: Annotated[
        Optional[str],
        typer.Option("--kind", "-k", help="Only update this asset kind"),
    ] = None,
    systems: Annotated[
        Optional[str],
        typer.Option("--systems", "-s", help="Comma-separated target systems"),
    ] = None,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Reinstall outdated assets at their newest commit and update the lock file.

    Examples:
      duckrow update
      duckrow update lint --kind skill
    """
    services = load_services()
    target = resolve_project_dir(project_dir)
    lock_file = _load_lock(target)

    infos = [
        info
        for info in _collect_updates(services, lock_file, _kinds(kind))
        if info.has_update and (not name or info.name == name)
    ]
    if not infos:
        console.print("[green]Everything is up to date[/green]")
        return

    options = build_install_options(services, target, systems=systems, force=True)
    for info in infos:
        entry = lock_file.find(info.kind, info.name)
        if entry is None:
            continue
        try:
            with fetch_spinner(f"Updating {info.name}..."):
                results = services.orchestrator.install_from_source(
                    parse_source(entry.source),
                    info.kind,
                    dataclasses.replace(
                        options, commit=info.available_commit, name_filter=info.name
                    ),
                )
            for result in results:
                result.ref = entry.ref
                result.registry = str(entry.data.get("registry") or "")
            services.orchestrator.record_results(target, results)
        except DuckrowError as e:
            handle_error(e)

        print_install_results(results)
        console.print(
            f"[dim]  {truncate_commit(info.installed_commit)} -> "
            f"{truncate_commit(info.available_commit)}[/dim]"
        )
