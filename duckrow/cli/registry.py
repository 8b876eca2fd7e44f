"""Registry subcommands - manage the registries assets are installed from."""

from typing import Annotated, Optional

import typer
from rich.table import Table

from duckrow.cli.common import console, fetch_spinner, handle_error, load_services
from duckrow.exceptions import DuckrowError
from duckrow.registry import ParsedManifest

app = typer.Typer(
    help="Add, remove, list and refresh registries.",
    no_args_is_help=True,
)


def _print_warnings(manifest: ParsedManifest) -> None:
    for warning in manifest.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


@app.command("add")
def add_registry(
    repo: Annotated[str, typer.Argument(help="Git URL of the registry repository")],
) -> None:
    """Clone a registry and add it to the config.

    Examples:
      duckrow registry add git@github.com:acme/duckrow-registry.git
    """
    services = load_services()
    try:
        with fetch_spinner(f"Cloning {repo}..."):
            manifest = services.registry_manager.add(repo)
        services.config.add_registry(manifest.name, repo.strip())
        services.save_config()
    except DuckrowError as e:
        handle_error(e)

    _print_warnings(manifest)
    with fetch_spinner("Resolving commits..."):
        services.registry_manager.hydrate_commits(
            [services.config.registries[-1]], services.config.settings.clone_url_overrides
        )
    console.print(f"[green]Added registry '{manifest.name}'[/green]")


@app.command("remove")
def remove_registry(
    name: Annotated[str, typer.Argument(help="Registry name or repo URL")],
) -> None:
    """Remove a registry and delete its clone."""
    services = load_services()
    registry = services.config.find_registry(name)
    if registry is None:
        typer.echo(f"Error: Registry '{name}' is not configured", err=True)
        raise typer.Exit(1)

    try:
        services.registry_manager.remove(registry.repo)
    except DuckrowError as e:
        # A missing clone should not keep the registry in the config
        console.print(f"[yellow]Warning: {e}[/yellow]")
    services.config.remove_registry(registry.repo)
    try:
        services.save_config()
    except DuckrowError as e:
        handle_error(e)
    console.print(f"[green]Removed registry '{registry.name}'[/green]")


@app.command("list")
def list_registries() -> None:
    """Show configured registries and how many assets each lists."""
    services = load_services()
    if not services.config.registries:
        console.print("[yellow]No registries configured[/yellow]")
        console.print("[dim]Run 'duckrow registry add <url>' to add one[/dim]")
        return

    kinds = services.handlers.kinds()
    table = Table()
    table.add_column("Name", style="cyan")
    table.add_column("Repository", style="dim")
    for kind in kinds:
        table.add_column(f"{services.handlers.require(kind).display_name}s", justify="right")

    for registry in services.config.registries:
        try:
            manifest = services.registry_manager.load_manifest(registry.repo)
        except DuckrowError:
            table.add_row(registry.name, registry.repo, *["?" for _ in kinds])
            continue
        table.add_row(
            registry.name,
            registry.repo,
            *[str(len(manifest.entries_of(kind))) for kind in kinds],
        )
    console.print(table)


@app.command("refresh")
def refresh_registries(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Registry name or repo URL; all registries when omitted"),
    ] = None,
) -> None:
    """Pull the latest registry manifests and re-resolve skill commits."""
    services = load_services()
    registries = services.config.registries
    if name:
        registry = services.config.find_registry(name)
        if registry is None:
            typer.echo(f"Error: Registry '{name}' is not configured", err=True)
            raise typer.Exit(1)
        registries = [registry]

    with fetch_spinner("Refreshing registries..."):
        manifests = services.registry_manager.refresh_all(registries)
        services.registry_manager.hydrate_commits(
            registries, services.config.settings.clone_url_overrides
        )

    for registry in registries:
        manifest = manifests.get(registry.repo)
        if manifest is None:
            console.print(f"[red]Failed to refresh '{registry.name}'[/red]")
            continue
        _print_warnings(manifest)
        console.print(f"[green]Refreshed '{registry.name}'[/green]")

    if len(manifests) < len(registries):
        raise typer.Exit(1)
