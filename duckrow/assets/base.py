"""Base types and protocol for asset handlers.

An asset is a system-agnostic installable unit (a skill directory, an MCP
server config, an agent prompt file). Each kind has a handler that knows how
to discover, validate and record assets of that kind. Handlers know nothing
about the coding tools assets are installed into.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from duckrow.exceptions import ManifestError


class AssetKind(Enum):
    """Asset kinds known to duckrow."""

    SKILL = "skill"
    MCP = "mcp"
    AGENT = "agent"


@dataclass
class Asset:
    """A kind-tagged unit discovered in a clone or built from a registry entry.

    Attributes:
        kind: Asset kind
        name: Unique within an install batch; the join key for lock entries,
            symlinks and per-system file names
        description: Human-readable description
        source: Canonical origin; filled in by the orchestrator when blank
        prepared_path: Local location of the asset's content, for file-based kinds
        meta: Kind-specific payload, opaque to the orchestrator
    """

    kind: AssetKind
    name: str
    description: str = ""
    source: str = ""
    prepared_path: Path | None = None
    meta: Any = None


@dataclass(frozen=True)
class DiscoverOptions:
    """Controls discovery inside a cloned tree."""

    sub_path: str = ""
    include_internal: bool = False
    name_filter: str = ""


@dataclass
class RegistryEntry:
    """An asset listed in a registry manifest."""

    name: str
    description: str = ""
    source: str = ""
    commit: str = ""
    meta: Any = None


@dataclass
class InstallInfo:
    """Install context a handler needs to produce a lock record."""

    commit: str = ""
    ref: str = ""
    registry: str = ""
    systems: list[str] = field(default_factory=list)


@dataclass
class LockedAsset:
    """The persisted record of one installed asset.

    ``kind`` stays a plain string so that lock files written by newer
    versions with unknown kinds still round-trip.
    """

    kind: str
    name: str
    source: str = ""
    commit: str = ""
    ref: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockedAsset":
        """Create a LockedAsset from a lock file entry."""
        return cls(
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            source=data.get("source", ""),
            commit=data.get("commit", ""),
            ref=data.get("ref", ""),
            data=dict(data.get("data") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict, omitting empty fields."""
        result: dict[str, Any] = {"kind": self.kind, "name": self.name}
        if self.source:
            result["source"] = self.source
        if self.commit:
            result["commit"] = self.commit
        if self.ref:
            result["ref"] = self.ref
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class InstalledAsset:
    """An asset found on disk in a project folder."""

    kind: AssetKind
    name: str
    path: Path
    description: str = ""
    author: str = ""
    system_name: str = ""


def manifest_entries(raw: Any, label: str) -> list[dict[str, Any]]:
    """Check that a manifest section is a list of objects.

    Raises:
        ManifestError: If it is not
    """
    if not isinstance(raw, list) or not all(isinstance(e, dict) for e in raw):
        raise ManifestError(f"Expected a list of {label} entries in manifest")
    return raw


@runtime_checkable
class AssetHandler(Protocol):
    """Protocol for asset kind handlers."""

    @property
    def kind(self) -> AssetKind:
        """The kind this handler manages."""
        ...

    @property
    def display_name(self) -> str:
        """Human-readable kind name, e.g. "Skill" or "MCP Server"."""
        ...

    @property
    def file_based(self) -> bool:
        """True when assets are copied into a canonical location before fan-out."""
        ...

    def discover(self, base_path: Path, options: DiscoverOptions) -> list[Asset]:
        """Find assets of this kind under ``base_path``.

        Returns an empty list, not an error, when nothing is found.
        """
        ...

    def validate(self, asset: Asset) -> None:
        """Raise AssetValidationError if the asset is malformed."""
        ...

    def parse_manifest_entries(self, raw: Any) -> list[RegistryEntry]:
        """Decode a manifest's per-kind array into registry entries.

        Raises:
            ManifestError: If the array has the wrong shape
        """
        ...

    def lock_data(self, asset: Asset, info: InstallInfo) -> LockedAsset:
        """Produce the lock record for an installed asset."""
        ...
