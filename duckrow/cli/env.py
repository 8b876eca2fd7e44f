"""Env command - launch MCP servers with their variables and manage values."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.table import Table

from duckrow.cli.common import console, handle_error, resolve_project_dir
from duckrow.constants import ENV_FILE_NAME
from duckrow.env import (
    EnvResolver,
    ensure_gitignore,
    required_env_by_name,
    required_env_for,
    set_env_value,
)
from duckrow.exceptions import DuckrowError
from duckrow.lockfile import read_lock_file


def env(
    command: Annotated[
        Optional[List[str]],
        typer.Argument(help="Command to run, given after --"),
    ] = None,
    mcp: Annotated[
        Optional[str],
        typer.Option("--mcp", help="MCP server whose locked variables are injected"),
    ] = None,
    set_values: Annotated[
        Optional[List[str]],
        typer.Option("--set", help="Store NAME=VALUE in .env.duckrow (repeatable)"),
    ] = None,
    global_scope: Annotated[
        bool,
        typer.Option("--global", "-g", help="With --set, write the global .env.duckrow"),
    ] = False,
    project_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Project directory (defaults to the current one)"),
    ] = None,
) -> None:
    """Run an MCP server with its variables, store values, or show what is missing.

    Installed stdio MCP servers are launched through this command. It reads the
    variables the lock file lists for the server, looks them up in the process
    environment, the project's .env.duckrow and ~/.duckrow/.env.duckrow, and
    runs the real command with them set.

    Examples:
      duckrow env
      duckrow env --set GITHUB_TOKEN=ghp_xxx
      duckrow env --mcp github -- npx -y @modelcontextprotocol/server-github
    """
    resolver = EnvResolver(resolve_project_dir(project_dir))

    if mcp:
        _run(resolver, mcp, command or [])
    elif set_values:
        _store(resolver, set_values, global_scope)
    else:
        _show(resolver)


def _run(resolver: EnvResolver, name: str, command: list[str]) -> None:
    # stdout belongs to the server's protocol stream, so everything here goes to stderr
    if not command:
        typer.echo("Error: No command given after --", err=True)
        raise typer.Exit(2)

    try:
        required = required_env_for(resolver.project_dir, name)
    except DuckrowError as e:
        handle_error(e)

    resolved = resolver.resolve(required)
    for var in resolved.missing:
        typer.echo(f'Warning: env var {var} required by MCP "{name}" not found', err=True)

    if shutil.which(command[0]) is None:
        typer.echo(f"Error: Command not found: {command[0]}", err=True)
        raise typer.Exit(127)

    completed = subprocess.run(command, env={**os.environ, **resolved.values}, check=False)
    raise typer.Exit(completed.returncode)


def _parse_assignment(value: str) -> tuple[str, str]:
    name, sep, rest = value.partition("=")
    name = name.strip()
    if not sep or not name:
        raise typer.BadParameter(f"Expected NAME=VALUE, got '{value}'", param_hint="--set")
    return name, rest


def _store(resolver: EnvResolver, assignments: list[str], global_scope: bool) -> None:
    pairs = [_parse_assignment(a) for a in assignments]
    path = resolver.global_file if global_scope else resolver.project_file

    try:
        for name, value in pairs:
            set_env_value(path, name, value)
            console.print(f"[green]Set {name}[/green] [dim]in {path}[/dim]")
        if not global_scope and ensure_gitignore(resolver.project_dir):
            console.print(f"[dim]Added {ENV_FILE_NAME} to .gitignore[/dim]")
    except DuckrowError as e:
        handle_error(e)


def _show(resolver: EnvResolver) -> None:
    try:
        lock_file = read_lock_file(resolver.project_dir)
    except DuckrowError as e:
        handle_error(e)

    needed = required_env_by_name(lock_file) if lock_file else {}
    if not needed:
        console.print("[yellow]No locked MCP servers need environment variables[/yellow]")
        return

    resolved = resolver.resolve(list(needed))
    table = Table(title="Environment variables", title_justify="left")
    table.add_column("Name", style="cyan")
    table.add_column("Used by")
    table.add_column("Status")
    for var, servers in needed.items():
        status = "[green]set[/green]" if var in resolved.values else "[red]missing[/red]"
        table.add_row(var, ", ".join(servers), status)
    console.print(table)

    if resolved.missing:
        console.print(
            f"\n  Add values with 'duckrow env --set NAME=VALUE' "
            f"({ENV_FILE_NAME} here, or --global for ~/.duckrow/{ENV_FILE_NAME})"
        )
