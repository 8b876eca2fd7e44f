"""Lock file store for duckrow.lock.json.

The lock file pins every installed asset to the exact commit it was
installed from. It is rewritten in full on every change: entries are sorted
by ``(kind, name)`` and the write goes through a temp file plus rename so a
reader never observes a partial file.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from duckrow.assets.base import AssetKind, LockedAsset
from duckrow.constants import LOCK_FILE_NAME, LOCK_VERSION
from duckrow.exceptions import LockFileError
from duckrow.utils import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass
class LockFile:
    """The aggregate root: schema version plus the locked assets."""

    lock_version: int = LOCK_VERSION
    assets: list[LockedAsset] = field(default_factory=list)

    def find(self, kind: "AssetKind | str", name: str) -> LockedAsset | None:
        """Find an entry by ``(kind, name)``."""
        key = (_kind_tag(kind), name)
        for entry in self.assets:
            if entry.key == key:
                return entry
        return None

    def of_kind(self, kind: "AssetKind | str") -> list[LockedAsset]:
        tag = _kind_tag(kind)
        return [entry for entry in self.assets if entry.kind == tag]

    def upsert(self, entry: LockedAsset) -> None:
        """Replace the entry with the same ``(kind, name)`` in place, else append."""
        for i, existing in enumerate(self.assets):
            if existing.key == entry.key:
                self.assets[i] = entry
                return
        self.assets.append(entry)

    def remove(self, kind: "AssetKind | str", name: str) -> bool:
        """Remove the entry with ``(kind, name)``.

        Returns:
            True if an entry was removed
        """
        key = (_kind_tag(kind), name)
        before = len(self.assets)
        self.assets = [entry for entry in self.assets if entry.key != key]
        return len(self.assets) != before

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockFile":
        """Create a LockFile from parsed JSON, migrating the flat legacy shape.

        Raises:
            LockFileError: If the document has neither shape
        """
        version = data.get("lockVersion", LOCK_VERSION)
        if not isinstance(version, int):
            raise LockFileError(f"Invalid lockVersion: {version!r}")

        if "assets" in data:
            raw_assets = data["assets"] or []
            if not isinstance(raw_assets, list) or not all(isinstance(a, dict) for a in raw_assets):
                raise LockFileError("Expected 'assets' to be a list of objects")
            return cls(lock_version=version, assets=[LockedAsset.from_dict(a) for a in raw_assets])

        if "skills" in data or "mcps" in data:
            logger.debug("Migrating legacy lock file (version %s) in memory", version)
            return cls(lock_version=version, assets=_migrate_legacy(data))

        raise LockFileError("Unrecognized lock file format")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the current on-disk shape with sorted entries."""
        ordered = sorted(self.assets, key=lambda a: a.key)
        return {
            "lockVersion": LOCK_VERSION,
            "assets": [entry.to_dict() for entry in ordered],
        }


def _kind_tag(kind: "AssetKind | str") -> str:
    return kind.value if isinstance(kind, AssetKind) else kind


def _legacy_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    items = data.get(key) or []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise LockFileError(f"Expected '{key}' to be a list of objects")
    return items


def _migrate_legacy(data: dict[str, Any]) -> list[LockedAsset]:
    assets = []
    for skill in _legacy_list(data, "skills"):
        assets.append(
            LockedAsset(
                kind=AssetKind.SKILL.value,
                name=skill.get("name", ""),
                source=skill.get("source", ""),
                commit=skill.get("commit", ""),
                ref=skill.get("ref", ""),
            )
        )
    for mcp in _legacy_list(data, "mcps"):
        extra: dict[str, Any] = {}
        for key in ("registry", "configHash", "requiredEnv"):
            if mcp.get(key):
                extra[key] = mcp[key]
        assets.append(LockedAsset(kind=AssetKind.MCP.value, name=mcp.get("name", ""), data=extra))
    return assets


def lock_file_path(project_dir: Path) -> Path:
    return project_dir / LOCK_FILE_NAME


def read_lock_file(project_dir: Path) -> LockFile | None:
    """Read the project's lock file.

    Reading never rewrites the file, even when the legacy shape was migrated.

    Args:
        project_dir: Project root

    Returns:
        The lock file, or None if the project has none

    Raises:
        LockFileError: If the file cannot be read or parsed
    """
    path = lock_file_path(project_dir)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise LockFileError(f"Failed to read lock file: {e}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise LockFileError(f"Failed to parse lock file: {e}") from e
    if not isinstance(data, dict):
        raise LockFileError("Failed to parse lock file: expected a JSON object")
    return LockFile.from_dict(data)


def write_lock_file(project_dir: Path, lock_file: LockFile) -> None:
    """Write the lock file atomically at the current schema version.

    Raises:
        LockFileError: If the file cannot be written
    """
    path = lock_file_path(project_dir)
    content = json.dumps(lock_file.to_dict(), indent=2) + "\n"
    try:
        atomic_write_text(path, content)
    except OSError as e:
        raise LockFileError(f"Failed to write lock file: {e}") from e
    lock_file.lock_version = LOCK_VERSION
    logger.debug("Wrote %d lock entries to %s", len(lock_file.assets), path)


def upsert_lock_entry(project_dir: Path, entry: LockedAsset) -> None:
    """Add or replace one entry, creating the lock file if needed."""
    lock_file = read_lock_file(project_dir) or LockFile()
    lock_file.upsert(entry)
    write_lock_file(project_dir, lock_file)


def remove_lock_entry(project_dir: Path, kind: "AssetKind | str", name: str) -> bool:
    """Remove one entry.

    Returns:
        True if the entry existed; the file is left untouched otherwise
    """
    lock_file = read_lock_file(project_dir)
    if lock_file is None or not lock_file.remove(kind, name):
        return False
    write_lock_file(project_dir, lock_file)
    return True
