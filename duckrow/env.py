"""Environment variables for MCP servers.

Stdio servers are written into system configs as
``duckrow env --mcp <name> -- <command> [args...]``. When a tool launches
the server, that wrapper looks up the variables the lock file says the
server needs and runs the real command with them set.

Values are looked up in order: the process environment, the project's
``.env.duckrow``, then ``.env.duckrow`` in the duckrow config directory.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values, set_key

from duckrow.assets.base import AssetKind, LockedAsset
from duckrow.config import default_config_dir
from duckrow.constants import ENV_FILE_NAME, LOCK_FILE_NAME
from duckrow.exceptions import AssetNotFoundError, DuckrowError, LockFileError
from duckrow.lockfile import LockFile, read_lock_file
from duckrow.utils import atomic_write_text

logger = logging.getLogger(__name__)


def wrapper_args(name: str, command: str, args: "tuple[str, ...] | list[str]") -> list[str]:
    """Arguments that make ``duckrow`` launch an MCP server with its variables.

    Examples:
        >>> wrapper_args("github", "npx", ["-y", "gh"])
        ['env', '--mcp', 'github', '--', 'npx', '-y', 'gh']
    """
    return ["env", "--mcp", name, "--", command, *args]


@dataclass
class ResolvedEnv:
    """Variable values that were found, plus the names that were not."""

    values: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)


class EnvResolver:
    """Resolve variable values for MCP servers.

    Args:
        project_dir: Project whose ``.env.duckrow`` is consulted
        global_dir: Directory holding the global ``.env.duckrow``;
            the duckrow config directory by default
        environ: Process environment; ``os.environ`` by default
    """

    def __init__(
        self,
        project_dir: Path,
        global_dir: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.global_dir = global_dir or default_config_dir()
        self.environ = os.environ if environ is None else environ

    @property
    def project_file(self) -> Path:
        return self.project_dir / ENV_FILE_NAME

    @property
    def global_file(self) -> Path:
        return self.global_dir / ENV_FILE_NAME

    def resolve(self, names: list[str]) -> ResolvedEnv:
        """Look up each name, process environment first.

        An empty value still counts as found; a name without ``=`` in an env
        file does not.
        """
        result = ResolvedEnv()
        if not names:
            return result

        sources = (self.environ, read_env_file(self.project_file), read_env_file(self.global_file))
        for name in names:
            for source in sources:
                value = source.get(name)
                if value is not None:
                    result.values[name] = value
                    break
            else:
                result.missing.append(name)

        logger.debug("Resolved %d of %d variables", len(result.values), len(names))
        return result


def read_env_file(path: Path) -> dict[str, str | None]:
    """Parse a dotenv file literally, without ``${VAR}`` expansion.

    Returns:
        Key/value pairs, or an empty dict if the file does not exist
    """
    if not path.is_file():
        return {}
    return dict(dotenv_values(path, interpolate=False))


def set_env_value(path: Path, name: str, value: str) -> None:
    """Store one variable in a dotenv file, creating it if needed.

    Raises:
        DuckrowError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        set_key(path, name, value, quote_mode="always")
    except OSError as e:
        raise DuckrowError(f"Failed to write {path}: {e}") from e


def ensure_gitignore(project_dir: Path) -> bool:
    """Add ``.env.duckrow`` to the project's ``.gitignore``.

    Returns:
        True if the entry was added, False if it was already there

    Raises:
        DuckrowError: If ``.gitignore`` cannot be read or written
    """
    gitignore = project_dir / ".gitignore"
    try:
        content = gitignore.read_text(encoding="utf-8")
    except FileNotFoundError:
        content = ""
    except OSError as e:
        raise DuckrowError(f"Failed to read {gitignore}: {e}") from e

    if any(line.strip() == ENV_FILE_NAME for line in content.splitlines()):
        return False
    if content and not content.endswith("\n"):
        content += "\n"
    try:
        atomic_write_text(gitignore, content + ENV_FILE_NAME + "\n")
    except OSError as e:
        raise DuckrowError(f"Failed to write {gitignore}: {e}") from e
    return True


def locked_required_env(entry: LockedAsset) -> list[str]:
    """Variable names a locked MCP server needs."""
    names = entry.data.get("requiredEnv") or []
    if not isinstance(names, list):
        return []
    return [name for name in names if isinstance(name, str) and name]


def required_env_for(project_dir: Path, name: str) -> list[str]:
    """Variable names the project's lock file records for an MCP server.

    Raises:
        LockFileError: If the project has no lock file or it is unreadable
        AssetNotFoundError: If the lock file has no MCP server of that name
    """
    lock_file = read_lock_file(project_dir)
    if lock_file is None:
        raise LockFileError(f"{LOCK_FILE_NAME} not found in {project_dir}")
    entry = lock_file.find(AssetKind.MCP, name)
    if entry is None:
        raise AssetNotFoundError(f"MCP '{name}' not found in {LOCK_FILE_NAME}")
    return locked_required_env(entry)


def required_env_by_name(lock_file: LockFile) -> dict[str, list[str]]:
    """Map each required variable to the locked MCP servers that need it."""
    needed: dict[str, list[str]] = {}
    for entry in lock_file.of_kind(AssetKind.MCP):
        for var in locked_required_env(entry):
            needed.setdefault(var, []).append(entry.name)
    return dict(sorted(needed.items()))
