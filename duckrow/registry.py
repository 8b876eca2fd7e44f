"""Registries: git repositories carrying a duckrow.json manifest.

A registry lists installable assets by kind. Each configured registry is
cloned once under ``~/.duckrow/registries/<dir-key>`` and refreshed with a
fast-forward pull. Registries may pin skill commits; unpinned skills can be
hydrated into a ``duckrow.commits.json`` cache so update checks avoid
cloning every source repository.
"""

import hashlib
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from duckrow.assets.base import AssetKind, RegistryEntry
from duckrow.assets.mcp import McpMeta
from duckrow.assets.registry import HandlerRegistry
from duckrow.constants import CACHED_COMMITS_FILE, REGISTRY_MANIFEST_FILE
from duckrow.exceptions import AssetNotFoundError, DuckrowError, ManifestError, RegistryError
from duckrow.git import GitBackend, remove_clone
from duckrow.source import (
    is_canonical_source,
    normalize_source,
    parse_lock_source,
    source_repo_key,
    source_sub_path,
)
from duckrow.utils import atomic_write_text

logger = logging.getLogger(__name__)


class RegistryLike(Protocol):
    """Anything with a registry name and repo URL (config entries, tests)."""

    name: str
    repo: str


@dataclass
class ParsedManifest:
    """A registry manifest decoded through the asset handlers.

    Attributes:
        name: Registry display name
        description: Registry description
        entries: Registry entries keyed by asset kind, in manifest order
        warnings: Problems worth surfacing that do not stop the registry loading
    """

    name: str
    description: str = ""
    entries: dict[AssetKind, list[RegistryEntry]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def entries_of(self, kind: AssetKind) -> list[RegistryEntry]:
        return self.entries.get(kind, [])


@dataclass
class RegistryAssetInfo:
    """One registry entry together with the registry it came from."""

    registry_name: str
    registry_repo: str
    kind: AssetKind
    entry: RegistryEntry


def registry_dir_key(repo_url: str) -> str:
    """Derive a stable, readable directory name for a registry clone.

    The readable part is the repository path with slashes turned into
    hyphens; a short hash of the exact URL keeps different URLs apart.

    Examples:
        >>> registry_dir_key("https://github.com/acme/skills.git")[:12]
        'acme-skills-'
        >>> registry_dir_key("git@github.com:acme/skills.git")[:12]
        'acme-skills-'
    """
    normalized = repo_url.rstrip("/").lower()
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]

    readable = normalized
    if "://" in readable:
        readable = readable.split("://", 1)[1]
        readable = readable.split("/", 1)[1] if "/" in readable else ""
    elif ":" in readable:
        readable = readable.rsplit(":", 1)[1]
    readable = readable.replace("/", "-").replace("\\", "-")

    short_hash = hashlib.sha256(repo_url.encode("utf-8")).hexdigest()[:8]
    return f"{readable}-{short_hash}" if readable else short_hash


def read_manifest(registry_dir: Path) -> dict[str, Any]:
    """Load the raw duckrow.json of a registry checkout.

    Raises:
        ManifestError: If the manifest is missing or not a JSON object
    """
    path = registry_dir / REGISTRY_MANIFEST_FILE
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ManifestError(f"{REGISTRY_MANIFEST_FILE} not found in repository") from None
    except OSError as e:
        raise ManifestError(f"Failed to read {REGISTRY_MANIFEST_FILE}: {e}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Failed to parse {REGISTRY_MANIFEST_FILE}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"{REGISTRY_MANIFEST_FILE} must contain a JSON object")
    return data


def parse_manifest(raw: dict[str, Any], handlers: HandlerRegistry) -> ParsedManifest:
    """Decode a manifest into per-kind registry entries.

    Accepts both the current ``{"assets": {kind: [...]}}`` shape and the
    older ``{"skills": [...], "mcps": [...]}`` shape.

    Raises:
        ManifestError: If a known kind's entries are malformed
    """
    parsed = ParsedManifest(
        name=str(raw.get("name") or ""),
        description=str(raw.get("description") or ""),
    )

    sections = raw.get("assets")
    if not sections:
        sections = {}
        if raw.get("skills"):
            sections[AssetKind.SKILL.value] = raw["skills"]
        if raw.get("mcps"):
            sections[AssetKind.MCP.value] = raw["mcps"]
    if not isinstance(sections, dict):
        raise ManifestError("Expected 'assets' to be an object keyed by asset kind")

    for tag, section in sections.items():
        handler = handlers.get(tag)
        if handler is None:
            parsed.warnings.append(f"unknown asset kind '{tag}' in manifest; skipping")
            continue
        try:
            parsed.entries[handler.kind] = handler.parse_manifest_entries(section)
        except ManifestError as e:
            raise ManifestError(f"Failed to parse {tag} entries: {e}") from e

    for entry in parsed.entries_of(AssetKind.SKILL):
        if entry.source and not is_canonical_source(entry.source):
            parsed.warnings.append(
                f"skill '{entry.name}' has non-canonical source '{entry.source}' "
                "(expected host/owner/repo/path format)"
            )

    for entry in parsed.entries_of(AssetKind.MCP):
        if not entry.name:
            parsed.warnings.append("MCP entry missing required 'name' field")
            continue
        meta = entry.meta
        if not isinstance(meta, McpMeta):
            continue
        if not meta.is_stdio and not meta.is_remote:
            parsed.warnings.append(
                f"MCP '{entry.name}' missing both 'command' and 'url' (one is required)"
            )
        if meta.is_stdio and meta.is_remote:
            parsed.warnings.append(
                f"MCP '{entry.name}' has both 'command' and 'url' (only one allowed)"
            )

    return parsed


def load_cached_commits(registry_dir: Path) -> dict[str, str]:
    """Read the hydration cache; a missing or corrupt cache reads as empty."""
    path = registry_dir / CACHED_COMMITS_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    commits = data.get("commits") if isinstance(data, dict) else None
    if not isinstance(commits, dict):
        return {}
    return {str(k): str(v) for k, v in commits.items()}


def write_cached_commits(registry_dir: Path, commits: dict[str, str]) -> None:
    """Write the hydration cache with a generation timestamp."""
    payload = {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "commits": commits,
    }
    atomic_write_text(registry_dir / CACHED_COMMITS_FILE, json.dumps(payload, indent=2) + "\n")


class RegistryManager:
    """Clones, refreshes and queries configured registries.

    Args:
        registries_dir: Directory holding one clone per registry
        handlers: Asset handlers used to decode manifests
        git: Git collaborator
    """

    def __init__(self, registries_dir: Path, handlers: HandlerRegistry, git: GitBackend) -> None:
        self.registries_dir = registries_dir
        self.handlers = handlers
        self.git = git

    def registry_dir(self, repo_url: str) -> Path:
        return self.registries_dir / registry_dir_key(repo_url)

    def _existing_dir(self, repo_url: str) -> Path:
        path = self.registry_dir(repo_url)
        if not path.is_dir():
            raise RegistryError(f"Registry clone for '{repo_url}' not found")
        return path

    # --- Lifecycle ---

    def add(self, repo_url: str) -> ParsedManifest:
        """Clone a registry and validate its manifest.

        An existing clone of the same URL is replaced.

        Returns:
            The parsed manifest, warnings included

        Raises:
            RegistryError: If the URL is empty or the manifest has no name
            CloneError: If the clone fails
            ManifestError: If the manifest is missing or malformed
        """
        repo_url = repo_url.strip()
        if not repo_url:
            raise RegistryError("Repository URL is required")

        clone_dir = self.git.clone(repo_url)
        try:
            parsed = parse_manifest(read_manifest(clone_dir), self.handlers)
            if not parsed.name:
                raise RegistryError("Registry manifest missing required 'name' field")

            dest = self.registry_dir(repo_url)
            if dest.exists():
                shutil.rmtree(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(clone_dir), str(dest))
        finally:
            remove_clone(clone_dir)

        logger.debug("Added registry %s at %s", parsed.name, dest)
        return parsed

    def remove(self, repo_url: str) -> None:
        """Delete a registry's clone.

        Raises:
            RegistryError: If no clone exists for the URL
        """
        path = self._existing_dir(repo_url.strip())
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise RegistryError(f"Failed to remove registry '{repo_url}': {e}") from e

    def refresh(self, repo_url: str) -> ParsedManifest:
        """Fast-forward a registry clone and reload its manifest.

        Raises:
            RegistryError: If no clone exists for the URL
            CloneError: If the pull fails
        """
        path = self._existing_dir(repo_url.strip())
        self.git.pull(path)
        return parse_manifest(read_manifest(path), self.handlers)

    def refresh_all(self, registries: list[RegistryLike]) -> dict[str, ParsedManifest]:
        """Refresh every registry, continuing past failures.

        Returns:
            Parsed manifests keyed by repo URL, for the registries that refreshed
        """
        results = {}
        for registry in registries:
            try:
                results[registry.repo] = self.refresh(registry.repo)
            except DuckrowError as e:
                logger.warning("Failed to refresh registry %s: %s", registry.repo, e)
        return results

    # --- Queries ---

    def load_manifest(self, repo_url: str) -> ParsedManifest:
        """Parse the manifest of an existing clone.

        Raises:
            RegistryError: If no clone exists
            ManifestError: If the manifest is missing or malformed
        """
        return parse_manifest(read_manifest(self._existing_dir(repo_url)), self.handlers)

    def _loaded(self, registries: list[RegistryLike]) -> list[tuple[RegistryLike, ParsedManifest]]:
        loaded = []
        for registry in registries:
            try:
                loaded.append((registry, self.load_manifest(registry.repo)))
            except DuckrowError as e:
                logger.debug("Skipping registry %s: %s", registry.repo, e)
        return loaded

    def list_assets(self, registries: list[RegistryLike], kind: AssetKind) -> list[RegistryAssetInfo]:
        """All entries of one kind across registries, in configuration order."""
        return [
            RegistryAssetInfo(
                registry_name=parsed.name,
                registry_repo=registry.repo,
                kind=kind,
                entry=entry,
            )
            for registry, parsed in self._loaded(registries)
            for entry in parsed.entries_of(kind)
        ]

    def list_all_assets(self, registries: list[RegistryLike]) -> list[RegistryAssetInfo]:
        """All entries of every registered kind."""
        result = []
        for kind in self.handlers.kinds():
            result.extend(self.list_assets(registries, kind))
        return result

    def find_asset(
        self,
        registries: list[RegistryLike],
        kind: "AssetKind | str",
        name: str,
        registry_filter: str = "",
    ) -> RegistryAssetInfo:
        """Find exactly one registry entry by kind and name.

        Args:
            registries: Configured registries
            kind: Asset kind
            name: Entry name
            registry_filter: Registry name or repo URL to restrict the search to

        Raises:
            AssetNotFoundError: If no registry lists the asset
            RegistryError: If the filter matches nothing or the name is ambiguous
            UnknownAssetKindError: If the kind has no handler
        """
        handler = self.handlers.require(kind)
        if not name:
            raise RegistryError(f"{handler.display_name} name is required")

        search = registries
        if registry_filter:
            search = [r for r in registries if registry_filter in (r.name, r.repo)]
            if not search:
                raise RegistryError(f"Registry '{registry_filter}' not found")

        available = self.list_assets(search, handler.kind)
        matches = [info for info in available if info.entry.name == name]

        if len(matches) == 1:
            return matches[0]

        display = handler.display_name
        if not matches:
            if not available:
                raise AssetNotFoundError(
                    f"{display} '{name}' not found "
                    f"(no {display.lower()}s available in configured registries)"
                )
            names = ", ".join(info.entry.name for info in available)
            raise AssetNotFoundError(f"{display} '{name}' not found in registries. Available: {names}")

        choices = "\n  ".join(f"{m.registry_name} ({m.registry_repo})" for m in matches)
        raise RegistryError(
            f"{display} '{name}' found in multiple registries; "
            f"use --registry to disambiguate:\n  {choices}"
        )

    # --- Commit resolution ---

    def build_commit_map(self, registries: list[RegistryLike]) -> dict[str, str]:
        """Map canonical skill sources to their newest known commit.

        Every registry's hydration cache is layered first and every
        manifest pin on top, so a pin in any registry beats any cache.
        """
        commits: dict[str, str] = {}
        for registry in registries:
            commits.update(load_cached_commits(self.registry_dir(registry.repo)))

        for registry in registries:
            try:
                parsed = self.load_manifest(registry.repo)
            except DuckrowError as e:
                logger.debug("No manifest for %s: %s", registry.repo, e)
                continue
            for entry in parsed.entries_of(AssetKind.SKILL):
                if entry.commit and entry.source:
                    commits[entry.source] = entry.commit
        return commits

    def hydrate_commits(
        self,
        registries: list[RegistryLike],
        overrides: dict[str, str] | None = None,
    ) -> None:
        """Resolve commits for unpinned registry skills and cache them.

        Skills are grouped by repository so each repository is cloned once.
        Every failure is logged and skipped.

        Args:
            registries: Configured registries
            overrides: Clone URL overrides keyed by lowercased "owner/repo"
        """
        overrides = overrides or {}
        for registry in registries:
            try:
                parsed = self.load_manifest(registry.repo)
            except DuckrowError as e:
                logger.debug("Skipping hydration for %s: %s", registry.repo, e)
                continue

            groups: dict[str, list[RegistryEntry]] = {}
            for entry in parsed.entries_of(AssetKind.SKILL):
                if entry.source and not entry.commit:
                    groups.setdefault(source_repo_key(entry.source), []).append(entry)
            if not groups:
                continue

            resolved = self._resolve_groups(groups, overrides)
            if resolved:
                try:
                    write_cached_commits(self.registry_dir(registry.repo), resolved)
                except OSError as e:
                    logger.warning("Could not write commit cache for %s: %s", registry.repo, e)

    def _resolve_groups(
        self, groups: dict[str, list[RegistryEntry]], overrides: dict[str, str]
    ) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for entries in groups.values():
            try:
                host, owner, repo, _ = parse_lock_source(entries[0].source)
            except DuckrowError as e:
                logger.debug("Unparseable registry source %s: %s", entries[0].source, e)
                continue

            clone_url = overrides.get(f"{owner.lower()}/{repo.lower()}") or (
                f"https://{normalize_source(host, owner, repo)}.git"
            )
            try:
                clone_dir = self.git.clone(clone_url, shallow=False)
            except DuckrowError as e:
                logger.debug("Hydration clone of %s failed: %s", clone_url, e)
                continue

            try:
                for entry in entries:
                    try:
                        resolved[entry.source] = self.git.last_commit(
                            clone_dir, source_sub_path(entry.source)
                        )
                    except DuckrowError as e:
                        logger.debug("No commit for %s: %s", entry.source, e)
            finally:
                remove_clone(clone_dir)
        return resolved
