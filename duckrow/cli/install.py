"""Install and add commands - install assets from a source or a registry."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from duckrow.assets.mcp import McpMeta, required_env
from duckrow.cli.common import (
    build_install_options,
    console,
    fetch_spinner,
    handle_error,
    load_services,
    parse_kind,
    print_install_results,
    print_missing_env,
    resolve_project_dir,
    track_folder,
)
from duckrow.exceptions import DuckrowError
from duckrow.source import parse_source


def install(
    source: Annotated[
        str,
        typer.Argument(help="Source: owner/repo, owner/repo/path, a git URL, or a local path"),
    ],
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help="Asset kind to install: skill or agent"),
    ] = "skill",
    name: Annotated[
        Optional[str],
        typer.Option("--name", "-n", help="Install only the asset with this name"),
    ] = None,
    systems: Annotated[
        Optional[str],
        typer.Option("--systems", "-s", help="Comma-separated target systems"),
    ] = None,
    internal: Annotated[
        bool,
        typer.Option("--internal", help="Include skills marked internal"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite entries systems already have"),
    ] = False,
    allow_local: Annotated[
        bool,
        typer.Option("--allow-local", help="Accept a local directory as the source"),
    ] = False,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Install skills or agents from a git repository.

    Examples:
      duckrow install acme/skills
      duckrow install acme/skills@lint
      duckrow install https://github.com/acme/skills/tree/main/review --systems cursor
      duckrow install ./my-skills --allow-local
    """
    asset_kind = parse_kind(kind)
    services = load_services()
    target = resolve_project_dir(project_dir)

    try:
        descriptor = parse_source(source, allow_local=allow_local)
        options = build_install_options(
            services, target, systems=systems, include_internal=internal, force=force
        )
        options.name_filter = name or ""
        with fetch_spinner(f"Fetching {source}..."):
            results = services.orchestrator.install_from_source(descriptor, asset_kind, options)
        # Local installs have no source or commit to pin
        if not descriptor.is_local:
            services.orchestrator.record_results(target, results)
    except DuckrowError as e:
        handle_error(e)

    print_install_results(results)
    if descriptor.is_local:
        console.print("[dim]Local source: not recorded in the lock file[/dim]")
    track_folder(services, target)


def add(
    kind: Annotated[str, typer.Argument(help="Asset kind: skill, mcp or agent")],
    name: Annotated[str, typer.Argument(help="Asset name as listed in a registry")],
    registry: Annotated[
        Optional[str],
        typer.Option("--registry", "-r", help="Registry name or repo URL to pick from"),
    ] = None,
    systems: Annotated[
        Optional[str],
        typer.Option("--systems", "-s", help="Comma-separated target systems"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite entries systems already have"),
    ] = False,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Install an asset listed in a configured registry.

    Examples:
      duckrow add skill lint
      duckrow add mcp github --registry acme
    """
    asset_kind = parse_kind(kind)
    services = load_services()
    target = resolve_project_dir(project_dir)

    if not services.config.registries:
        typer.echo("Error: No registries configured. Run 'duckrow registry add <url>'.", err=True)
        raise typer.Exit(1)

    try:
        options = build_install_options(services, target, systems=systems, force=force)
        with fetch_spinner(f"Installing {name}..."):
            results = services.orchestrator.install_from_registry(
                name,
                asset_kind,
                services.config.registries,
                options,
                registry_filter=registry or "",
            )
        services.orchestrator.record_results(target, results)
    except DuckrowError as e:
        handle_error(e)

    print_install_results(results)
    needed: dict[str, list[str]] = {}
    for result in results:
        if isinstance(result.asset.meta, McpMeta):
            for var in required_env(result.asset.meta.env):
                needed.setdefault(var, []).append(result.asset.name)
    print_missing_env(target, needed)
    track_folder(services, target)
