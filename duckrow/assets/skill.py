"""Skill assets: directories marked by a SKILL.md file."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from duckrow.assets.base import (
    Asset,
    AssetKind,
    DiscoverOptions,
    InstallInfo,
    LockedAsset,
    RegistryEntry,
    manifest_entries,
)
from duckrow.constants import DEPENDENCY_DIRS, SKILL_MARKER
from duckrow.exceptions import AssetValidationError
from duckrow.utils import parse_frontmatter


@dataclass(frozen=True)
class SkillMeta:
    """Metadata from a SKILL.md frontmatter."""

    author: str = ""
    version: str = ""
    internal: bool = False
    argument_hint: str = ""
    license: str = ""


@dataclass(frozen=True)
class SkillDocument:
    """Name, description and metadata read from one SKILL.md."""

    name: str
    description: str
    meta: SkillMeta


def read_skill_md(path: Path) -> SkillDocument | None:
    """Parse a SKILL.md file.

    Args:
        path: Path to the SKILL.md file

    Returns:
        The parsed document, or None if the file is unreadable or has no
        YAML frontmatter
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None

    parsed = parse_frontmatter(content)
    if parsed is None:
        return None
    frontmatter, _body = parsed

    metadata = frontmatter.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    meta = SkillMeta(
        author=str(metadata.get("author") or ""),
        version=str(metadata.get("version") or ""),
        internal=metadata.get("internal") is True,
        argument_hint=str(metadata.get("argument-hint") or ""),
        license=str(frontmatter.get("license") or ""),
    )
    return SkillDocument(
        name=str(frontmatter.get("name") or ""),
        description=str(frontmatter.get("description") or ""),
        meta=meta,
    )


def _skip_dir(name: str) -> bool:
    # .agents is a known skills location; every other hidden dir is skipped
    if name.startswith(".") and name != ".agents":
        return True
    return name in DEPENDENCY_DIRS


class SkillHandler:
    """Discovers and validates skill directories."""

    kind = AssetKind.SKILL
    display_name = "Skill"
    file_based = True

    def discover(self, base_path: Path, options: DiscoverOptions) -> list[Asset]:
        """Walk a tree for SKILL.md files.

        Hidden directories (except ``.agents``) and dependency directories
        are skipped. The first skill seen with a given name wins.

        Args:
            base_path: Root of the cloned repository or local directory
            options: Sub-path scope, internal visibility and name filter

        Returns:
            Discovered skills in walk order
        """
        search_path = base_path / options.sub_path if options.sub_path else base_path
        assets: list[Asset] = []
        seen_names: set[str] = set()

        for dirpath, dirnames, filenames in os.walk(search_path):
            dirnames[:] = sorted(d for d in dirnames if not _skip_dir(d))
            if SKILL_MARKER not in filenames:
                continue

            skill_dir = Path(dirpath)
            doc = read_skill_md(skill_dir / SKILL_MARKER)
            if doc is None:
                continue
            if doc.meta.internal and not options.include_internal:
                continue
            if options.name_filter and doc.name != options.name_filter:
                continue
            if doc.name in seen_names:
                continue
            seen_names.add(doc.name)

            assets.append(
                Asset(
                    kind=AssetKind.SKILL,
                    name=doc.name,
                    description=doc.description,
                    prepared_path=skill_dir,
                    meta=doc.meta,
                )
            )

        return assets

    def validate(self, asset: Asset) -> None:
        if not asset.name:
            raise AssetValidationError("Skill name is required")
        if not isinstance(asset.meta, SkillMeta):
            raise AssetValidationError(
                f"Expected SkillMeta for skill '{asset.name}', got {type(asset.meta).__name__}"
            )

    def parse_manifest_entries(self, raw: Any) -> list[RegistryEntry]:
        return [
            RegistryEntry(
                name=entry.get("name", ""),
                description=entry.get("description", ""),
                source=entry.get("source", ""),
                commit=entry.get("commit", ""),
                meta=SkillMeta(),
            )
            for entry in manifest_entries(raw, "skill")
        ]

    def lock_data(self, asset: Asset, info: InstallInfo) -> LockedAsset:
        return LockedAsset(
            kind=AssetKind.SKILL.value,
            name=asset.name,
            source=asset.source,
            commit=info.commit,
            ref=info.ref,
        )
