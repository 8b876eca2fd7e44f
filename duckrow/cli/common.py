"""Shared CLI utilities for duckrow commands."""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner

from duckrow.assets import AssetKind, HandlerRegistry, default_handler_registry
from duckrow.assets.registry import coerce_kind
from duckrow.config import Config, ConfigManager
from duckrow.constants import ENV_FILE_NAME
from duckrow.env import EnvResolver
from duckrow.exceptions import DuckrowError
from duckrow.git import CloneError, GitClient
from duckrow.orchestrator import InstallOptions, InstallResult, Orchestrator
from duckrow.registry import RegistryManager
from duckrow.systems import System, SystemCatalog, default_catalog

console = Console()


@dataclass
class Services:
    """Everything a command needs, built once per invocation."""

    config_manager: ConfigManager
    config: Config
    handlers: HandlerRegistry
    catalog: SystemCatalog
    git: GitClient
    registry_manager: RegistryManager
    orchestrator: Orchestrator

    def save_config(self) -> None:
        self.config_manager.save(self.config)


def load_services(config_dir: Path | None = None) -> Services:
    """Load the user config and wire up the core objects.

    Exits with status 1 if the config cannot be read.
    """
    manager = ConfigManager(config_dir)
    try:
        config = manager.load()
    except DuckrowError as e:
        handle_error(e)

    handlers = default_handler_registry()
    catalog = default_catalog()
    git = GitClient()
    registry_manager = RegistryManager(manager.registries_dir, handlers, git)
    orchestrator = Orchestrator(handlers, catalog, git, registry_manager)
    return Services(manager, config, handlers, catalog, git, registry_manager, orchestrator)


def handle_error(error: DuckrowError) -> NoReturn:
    """Print an error (plus clone hints) and exit with status 1."""
    typer.echo(f"Error: {error}", err=True)
    if isinstance(error, CloneError):
        for hint in error.hints:
            typer.echo(f"  hint: {hint}", err=True)
        typer.echo(f"  command: {error.command}", err=True)
    raise typer.Exit(1)


@contextmanager
def fetch_spinner(text: str = "Fetching..."):
    """Show spinner during a clone or fetch."""
    with Live(Spinner("dots", text=text), console=console, transient=True):
        yield


def resolve_project_dir(project_dir: Path | None) -> Path:
    return (project_dir or Path.cwd()).resolve()


def parse_kind(value: str) -> AssetKind:
    """Parse a --kind value into an AssetKind."""
    kind = coerce_kind(value)
    if kind is None:
        valid = ", ".join(k.value for k in AssetKind)
        raise typer.BadParameter(f"Unknown kind '{value}'. Expected one of: {valid}")
    return kind


def parse_systems(catalog: SystemCatalog, value: str | None) -> list[System]:
    """Parse a comma-separated --systems value; empty means the defaults."""
    if not value:
        return []
    names = [name.strip() for name in value.split(",") if name.strip()]
    try:
        return catalog.by_names(names)
    except DuckrowError as e:
        handle_error(e)


def build_install_options(
    services: Services,
    project_dir: Path,
    *,
    systems: str | None = None,
    include_internal: bool = False,
    force: bool = False,
) -> InstallOptions:
    return InstallOptions(
        target_dir=project_dir,
        target_systems=parse_systems(services.catalog, systems),
        include_internal=include_internal,
        force=force,
        clone_url_overrides=dict(services.config.settings.clone_url_overrides),
    )


def track_folder(services: Services, project_dir: Path) -> None:
    """Remember the project folder when the user setting asks for it."""
    if services.config.settings.auto_add_current_dir and services.config.add_folder(project_dir):
        try:
            services.save_config()
        except DuckrowError as e:
            console.print(f"[yellow]Warning: {e}[/yellow]")


def print_install_results(results: list[InstallResult]) -> None:
    for result in results:
        asset = result.asset
        label = asset.kind.value
        if result.systems:
            console.print(
                f"[green]Installed {label} '{asset.name}'[/green] "
                f"[dim]({', '.join(result.systems)})[/dim]"
            )
        else:
            console.print(f"[green]Installed {label} '{asset.name}'[/green]")
        if result.skipped_systems:
            console.print(
                f"[yellow]  already present in: {', '.join(result.skipped_systems)} "
                "(use --force to overwrite)[/yellow]"
            )


def print_missing_env(project_dir: Path, needed: dict[str, list[str]]) -> None:
    """Warn about variables MCP servers need that no env source provides.

    Args:
        project_dir: Project whose .env.duckrow is consulted
        needed: Variable name to the MCP servers that need it
    """
    if not needed:
        return
    missing = EnvResolver(project_dir).resolve(list(needed)).missing
    if not missing:
        return

    console.print("\n[yellow]! The following environment variables are required:[/yellow]")
    for var in missing:
        console.print(f"  {var}  [dim](used by {', '.join(needed[var])})[/dim]")
    console.print(
        f"\n  Add values to {ENV_FILE_NAME} or ~/.duckrow/{ENV_FILE_NAME} "
        "with 'duckrow env --set NAME=VALUE'"
    )
