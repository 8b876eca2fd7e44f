"""Configuration management for ~/.duckrow/config.json."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from duckrow.constants import CONFIG_DIR_NAME, CONFIG_FILE_NAME, CONFIG_HOME_ENV, REGISTRIES_SUBDIR
from duckrow.exceptions import ConfigParseError, DuckrowError
from duckrow.utils import atomic_write_text


@dataclass
class TrackedFolder:
    """A project folder the user works with."""

    path: str
    added_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackedFolder":
        return cls(path=data.get("path", ""), added_at=data.get("addedAt", ""))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"path": self.path}
        if self.added_at:
            result["addedAt"] = self.added_at
        return result


@dataclass
class RegistryRef:
    """A configured registry.

    Example:
        {"name": "acme", "repo": "git@github.com:acme/duckrow-registry.git"}
    """

    name: str
    repo: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryRef":
        return cls(name=data.get("name", ""), repo=data.get("repo", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "repo": self.repo}


@dataclass
class Settings:
    """User settings.

    Attributes:
        auto_add_current_dir: Track the working directory automatically
        disable_all_telemetry: Opt out of any telemetry
        clone_url_overrides: Clone URL per lowercased "owner/repo", e.g. to
            route a repository through an SSH host alias
    """

    auto_add_current_dir: bool = True
    disable_all_telemetry: bool = False
    clone_url_overrides: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        overrides = data.get("cloneURLOverrides") or {}
        if not isinstance(overrides, dict):
            raise ConfigParseError("settings.cloneURLOverrides must be an object")
        return cls(
            auto_add_current_dir=data.get("autoAddCurrentDir", True),
            disable_all_telemetry=data.get("disableAllTelemetry", False),
            clone_url_overrides={k.lower(): v for k, v in overrides.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "autoAddCurrentDir": self.auto_add_current_dir,
            "disableAllTelemetry": self.disable_all_telemetry,
        }
        if self.clone_url_overrides:
            result["cloneURLOverrides"] = dict(self.clone_url_overrides)
        return result


@dataclass
class Config:
    """The whole user configuration."""

    folders: list[TrackedFolder] = field(default_factory=list)
    registries: list[RegistryRef] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        try:
            return cls(
                folders=[TrackedFolder.from_dict(f) for f in data.get("folders") or []],
                registries=[RegistryRef.from_dict(r) for r in data.get("registries") or []],
                settings=Settings.from_dict(data.get("settings") or {}),
            )
        except (AttributeError, TypeError) as e:
            raise ConfigParseError(f"Invalid config structure: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "folders": [f.to_dict() for f in self.folders],
            "registries": [r.to_dict() for r in self.registries],
            "settings": self.settings.to_dict(),
        }

    def find_registry(self, name_or_repo: str) -> RegistryRef | None:
        for registry in self.registries:
            if name_or_repo in (registry.name, registry.repo):
                return registry
        return None

    def add_registry(self, name: str, repo: str) -> None:
        """Add a registry, replacing an existing entry for the same repo."""
        self.registries = [r for r in self.registries if r.repo != repo]
        self.registries.append(RegistryRef(name=name, repo=repo))

    def remove_registry(self, name_or_repo: str) -> RegistryRef | None:
        """Remove a registry by name or repo URL.

        Returns:
            The removed entry, or None if nothing matched
        """
        registry = self.find_registry(name_or_repo)
        if registry is not None:
            self.registries.remove(registry)
        return registry

    def add_folder(self, path: Path) -> bool:
        """Track a folder.

        Returns:
            False if the folder was already tracked
        """
        resolved = str(path.resolve())
        if any(f.path == resolved for f in self.folders):
            return False
        added_at = datetime.now(timezone.utc).isoformat()
        self.folders.append(TrackedFolder(path=resolved, added_at=added_at))
        return True


def default_config_dir() -> Path:
    """Return ``$DUCKROW_HOME`` or ``~/.duckrow``."""
    override = os.environ.get(CONFIG_HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_DIR_NAME


class ConfigManager:
    """Loads and saves the user configuration.

    Args:
        config_dir: Configuration directory; defaults to :func:`default_config_dir`
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = config_dir or default_config_dir()

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def registries_dir(self) -> Path:
        return self.config_dir / REGISTRIES_SUBDIR

    def load(self) -> Config:
        """Load the configuration, falling back to defaults if the file is missing.

        Raises:
            ConfigParseError: If the file exists but cannot be parsed
        """
        try:
            content = self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Config()
        except OSError as e:
            raise ConfigParseError(f"Failed to read {self.config_path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigParseError(f"Failed to parse {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigParseError(f"Expected a JSON object in {self.config_path}")
        return Config.from_dict(data)

    def save(self, config: Config) -> None:
        """Write the configuration atomically."""
        content = json.dumps(config.to_dict(), indent=2) + "\n"
        try:
            atomic_write_text(self.config_path, content)
        except OSError as e:
            raise DuckrowError(f"Failed to save config: {e}") from e
