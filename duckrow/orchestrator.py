"""Orchestrator for the install, remove, scan and sync pipelines.

The orchestrator is handler-agnostic and system-agnostic: it resolves a
source into a checkout, asks the kind's handler to discover and validate
assets, copies file-based assets to the canonical ``.agents/skills``
location and fans each asset out to every compatible target system.

A single install is all-or-nothing: if any target system rejects an asset,
every path this call touched is put back the way it was, including copies
and links that existed before the call. Sync is the opposite:
it works through every locked asset and collects failures.
"""

import dataclasses
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from duckrow.assets.base import (
    Asset,
    AssetHandler,
    AssetKind,
    DiscoverOptions,
    InstallInfo,
    InstalledAsset,
    LockedAsset,
)
from duckrow.assets.mcp import compute_config_hash
from duckrow.assets.registry import HandlerRegistry, coerce_kind
from duckrow.constants import CANONICAL_SKILLS_DIR
from duckrow.exceptions import (
    AlreadyInstalledError,
    AssetNotFoundError,
    AssetValidationError,
    CanonicalCopyError,
    DuckrowError,
    RegistryError,
    SystemInstallError,
)
from duckrow.git import GitBackend, remove_clone
from duckrow.lockfile import LockFile, upsert_lock_entry
from duckrow.registry import RegistryLike, RegistryManager
from duckrow.source import SourceDescriptor, normalize_source, parse_source
from duckrow.systems.base import System
from duckrow.systems.catalog import SystemCatalog
from duckrow.utils import cleanup_empty_dir, copy_directory, remove_path, sanitize_name

logger = logging.getLogger(__name__)


@dataclass
class InstallOptions:
    """Options for installing assets into a project.

    Attributes:
        target_dir: Project root
        target_systems: Explicit targets; the catalog's universal systems when empty
        include_internal: Also install skills marked ``metadata.internal``
        name_filter: Install only the asset with this name
        commit: Pin the checkout to this commit (used by sync and update)
        force: Overwrite entries that systems already have
        clone_url_overrides: Clone URL overrides keyed by lowercased "owner/repo"
    """

    target_dir: Path
    target_systems: list[System] = field(default_factory=list)
    include_internal: bool = False
    name_filter: str = ""
    commit: str = ""
    force: bool = False
    clone_url_overrides: dict[str, str] = field(default_factory=dict)


@dataclass
class InstallResult:
    """One asset installed by the orchestrator.

    Attributes:
        asset: The installed asset, with its canonical source filled in
        systems: Names of the systems that now have the asset
        skipped_systems: Systems that already had the asset and were left alone
        commit: Commit the asset was installed from
        ref: Branch or tag from the source, if any
        registry: Registry the asset came from, if any
    """

    asset: Asset
    systems: list[str] = field(default_factory=list)
    skipped_systems: list[str] = field(default_factory=list)
    commit: str = ""
    ref: str = ""
    registry: str = ""


@dataclass
class SyncResult:
    """Outcome of restoring a project from its lock file."""

    installed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class _Snapshot:
    path: Path
    backup: Path | None = None


@dataclass
class _Applied:
    asset: Asset
    written: list[System] = field(default_factory=list)
    snapshots: list[_Snapshot] = field(default_factory=list)


class Orchestrator:
    """Coordinates handlers, systems, git and registries.

    Args:
        handlers: Asset handlers by kind
        catalog: Known systems
        git: Git collaborator
        registry_manager: Needed for registry installs and MCP sync
    """

    def __init__(
        self,
        handlers: HandlerRegistry,
        catalog: SystemCatalog,
        git: GitBackend,
        registry_manager: RegistryManager | None = None,
    ) -> None:
        self.handlers = handlers
        self.catalog = catalog
        self.git = git
        self.registry_manager = registry_manager

    # --- Install ---

    def install_from_source(
        self,
        source: SourceDescriptor,
        kind: "AssetKind | str",
        options: InstallOptions,
    ) -> list[InstallResult]:
        """Install every matching asset of a kind from a source.

        Args:
            source: Parsed source
            kind: Asset kind to discover
            options: Install options

        Returns:
            One result per installed asset, in discovery order

        Raises:
            UnknownAssetKindError: If the kind has no handler
            CloneError: If the source cannot be cloned
            AssetNotFoundError: If the source has no assets of the kind
            AssetValidationError: If any discovered asset is malformed
            SystemInstallError: If a target system rejects an asset
        """
        handler = self.handlers.require(kind)

        if source.is_local:
            if source.local_path is None:
                raise AssetNotFoundError("Local source has no path")
            return self._install_discovered(handler, source, source.local_path, None, options)

        source = dataclasses.replace(source)
        if source.apply_clone_url_override(options.clone_url_overrides):
            logger.debug("Using clone URL override for %s: %s", source.repo_key, source.clone_url)

        if options.commit:
            clone_dir = self.git.clone_pinned(source.clone_url, options.commit)
        else:
            clone_dir = self.git.clone(source.clone_url, source.ref, shallow=False)
        try:
            return self._install_discovered(handler, source, clone_dir, clone_dir, options)
        finally:
            remove_clone(clone_dir)

    def _install_discovered(
        self,
        handler: AssetHandler,
        source: SourceDescriptor,
        base_path: Path,
        clone_dir: Path | None,
        options: InstallOptions,
    ) -> list[InstallResult]:
        discovered = handler.discover(
            base_path,
            DiscoverOptions(
                sub_path=source.sub_path,
                include_internal=options.include_internal,
                name_filter=options.name_filter or source.name_filter,
            ),
        )
        if not discovered:
            raise AssetNotFoundError(f"no {handler.display_name} assets found in source")

        for asset in discovered:
            try:
                handler.validate(asset)
            except AssetValidationError as e:
                raise AssetValidationError(
                    f"invalid {handler.display_name} '{asset.name}': {e}"
                ) from e

        results = self._fan_out(handler, discovered, options)

        for result in results:
            asset = result.asset
            result.ref = source.ref
            if clone_dir is None:
                continue
            rel_path = _relative_path(asset.prepared_path, clone_dir)
            if not asset.source:
                asset.source = normalize_source(source.host, source.owner, source.repo, rel_path)
            result.commit = options.commit or self._resolve_commit(clone_dir, rel_path)
        return results

    def _resolve_commit(self, clone_dir: Path, rel_path: str) -> str:
        try:
            return self.git.last_commit(clone_dir, rel_path)
        except DuckrowError as e:
            logger.warning("Could not resolve commit for %s: %s", rel_path or ".", e)
            return ""

    def _targets(self, kind: AssetKind, options: InstallOptions) -> list[System]:
        targets = options.target_systems or self.catalog.universal()
        return [s for s in targets if s.supports(kind)]

    def _fan_out(
        self, handler: AssetHandler, assets: list[Asset], options: InstallOptions
    ) -> list[InstallResult]:
        targets = self._targets(handler.kind, options)
        applied: list[_Applied] = []
        results = []
        backup_root = Path(tempfile.mkdtemp(prefix="duckrow-backup-"))

        try:
            for asset in assets:
                record = _Applied(asset)
                applied.append(record)
                if handler.file_based:
                    canonical = _canonical_path(options.target_dir, asset.name)
                    record.snapshots.append(_take_snapshot(canonical, backup_root))
                    self._copy_to_canonical(asset, canonical)

                result = InstallResult(asset=asset)
                for system in targets:
                    artifact = system.artifact_path(asset.kind, asset.name, options.target_dir)
                    if artifact is not None:
                        record.snapshots.append(_take_snapshot(artifact, backup_root))
                    try:
                        system.install(asset, options.target_dir, force=options.force)
                    except AlreadyInstalledError as e:
                        logger.debug("Skipping %s: %s", system.name, e)
                        if artifact is not None:
                            record.snapshots.pop()
                        result.skipped_systems.append(system.name)
                        continue
                    if artifact is None:
                        record.written.append(system)
                    result.systems.append(system.name)
                results.append(result)
        except DuckrowError:
            self._roll_back(applied, options.target_dir)
            raise
        except OSError as e:
            self._roll_back(applied, options.target_dir)
            raise SystemInstallError(f"Install failed: {e}") from e
        finally:
            shutil.rmtree(backup_root, ignore_errors=True)

        return results

    def _copy_to_canonical(self, asset: Asset, canonical: Path) -> None:
        if asset.prepared_path is None:
            raise AssetValidationError(f"'{asset.name}' has no content to copy")
        try:
            remove_path(canonical)
            canonical.mkdir(parents=True, exist_ok=True)
            copy_directory(asset.prepared_path, canonical)
        except OSError as e:
            raise CanonicalCopyError(f"Failed to copy '{asset.name}' to {canonical}: {e}") from e

    def _roll_back(self, applied: list[_Applied], target_dir: Path) -> None:
        for record in reversed(applied):
            for system in reversed(record.written):
                try:
                    system.remove(record.asset.kind, record.asset.name, target_dir)
                except (DuckrowError, OSError) as e:
                    logger.warning(
                        "Rollback of %s for %s failed: %s", record.asset.name, system.name, e
                    )
            for snapshot in reversed(record.snapshots):
                try:
                    _restore_snapshot(snapshot, target_dir)
                except OSError as e:
                    logger.warning("Could not restore %s: %s", snapshot.path, e)

    def install_from_registry(
        self,
        name: str,
        kind: "AssetKind | str",
        registries: list[RegistryLike],
        options: InstallOptions,
        registry_filter: str = "",
    ) -> list[InstallResult]:
        """Install a skill or agent listed in a registry.

        MCP servers go through :meth:`install_mcp_from_registry`.

        Raises:
            AssetNotFoundError: If no registry lists the asset
            RegistryError: If the name is ambiguous or no registry manager is set
            SourceParseError: If the registry entry's source is invalid
        """
        handler = self.handlers.require(kind)
        if handler.kind == AssetKind.MCP:
            return [self.install_mcp_from_registry(name, registries, options, registry_filter)]

        info = self._registry_manager().find_asset(registries, handler.kind, name, registry_filter)
        source = parse_source(info.entry.source)

        results = self.install_from_source(
            source, handler.kind, dataclasses.replace(options, name_filter=name)
        )
        for result in results:
            result.asset.source = info.entry.source
            result.registry = info.registry_name
        return results

    def install_mcp_from_registry(
        self,
        name: str,
        registries: list[RegistryLike],
        options: InstallOptions,
        registry_filter: str = "",
    ) -> InstallResult:
        """Write a registry-listed MCP server into every compatible target's config.

        Systems that already have an entry of that name are skipped unless
        ``options.force`` is set.
        """
        handler = self.handlers.require(AssetKind.MCP)
        info = self._registry_manager().find_asset(registries, AssetKind.MCP, name, registry_filter)

        asset = Asset(
            kind=AssetKind.MCP,
            name=info.entry.name,
            description=info.entry.description,
            meta=info.entry.meta,
        )
        handler.validate(asset)

        result = self._fan_out(handler, [asset], options)[0]
        result.registry = info.registry_name
        return result

    def _registry_manager(self) -> RegistryManager:
        if self.registry_manager is None:
            raise RegistryError("No registry manager configured")
        return self.registry_manager

    # --- Lock bookkeeping ---

    def lock_entry(self, result: InstallResult) -> LockedAsset:
        """Build the lock record for an install result."""
        handler = self.handlers.require(result.asset.kind)
        info = InstallInfo(
            commit=result.commit,
            ref=result.ref,
            registry=result.registry,
            systems=list(result.systems),
        )
        return handler.lock_data(result.asset, info)

    def record_results(self, project_dir: Path, results: list[InstallResult]) -> None:
        """Upsert lock entries for install results."""
        for result in results:
            upsert_lock_entry(project_dir, self.lock_entry(result))

    # --- Remove & scan ---

    def remove_asset(
        self,
        kind: "AssetKind | str",
        name: str,
        project_dir: Path,
        target_systems: list[System] | None = None,
    ) -> None:
        """Remove an asset from every system that supports its kind.

        Raises:
            AssetNotFoundError: If a skill has no canonical copy in the project
            SystemInstallError: If a system cannot release the asset
        """
        handler = self.handlers.require(kind)
        canonical = _canonical_path(project_dir, name)

        if handler.kind == AssetKind.SKILL and not canonical.is_dir():
            raise AssetNotFoundError(f"Skill '{name}' not found in {project_dir}")

        for system in target_systems or self.catalog.all():
            if system.supports(handler.kind):
                system.remove(handler.kind, name, project_dir)

        if handler.kind == AssetKind.SKILL:
            remove_path(canonical)
            cleanup_empty_dir(canonical.parent)
            cleanup_empty_dir(canonical.parent.parent)

    def scan_folder(self, project_dir: Path) -> dict[AssetKind, list[InstalledAsset]]:
        """Find installed assets by kind, first system to report a name wins."""
        systems = self.catalog.detect_in_folder(project_dir)
        found: dict[AssetKind, list[InstalledAsset]] = {}

        for kind in self.handlers.kinds():
            seen: set[str] = set()
            assets: list[InstalledAsset] = []
            for system in systems:
                if not system.supports(kind):
                    continue
                for installed in system.scan(kind, project_dir):
                    if installed.name not in seen:
                        seen.add(installed.name)
                        assets.append(installed)
            if assets:
                found[kind] = assets
        return found

    # --- Sync ---

    def is_present(self, entry: LockedAsset, project_dir: Path) -> bool:
        """Whether a locked asset already appears installed.

        MCP servers are never considered present, so sync always rewrites them.
        """
        kind = coerce_kind(entry.kind)
        if kind == AssetKind.SKILL:
            return _canonical_path(project_dir, entry.name).is_dir()
        if kind == AssetKind.AGENT:
            filename = f"{sanitize_name(entry.name)}.md"
            for system in self.catalog.supporting(AssetKind.AGENT):
                agents_dir = system.asset_dir(AssetKind.AGENT, project_dir)
                if agents_dir is not None and (agents_dir / filename).exists():
                    return True
        return False

    def sync_from_lock(
        self,
        lock_file: LockFile,
        options: InstallOptions,
        registries: list[RegistryLike] | None = None,
    ) -> SyncResult:
        """Reinstall locked assets at their locked commits.

        Never raises for a single asset: unknown kinds become warnings and
        per-asset failures become errors in the result.

        Args:
            lock_file: The project's lock file
            options: Install options; ``commit`` and ``name_filter`` are set per asset
            registries: Registries used to restore MCP servers
        """
        result = SyncResult()

        for entry in lock_file.assets:
            handler = self.handlers.get(entry.kind)
            if handler is None:
                result.warnings.append(f"skipping unknown kind '{entry.kind}' for '{entry.name}'")
                continue

            if not options.force and self.is_present(entry, options.target_dir):
                result.skipped += 1
                continue

            try:
                if handler.kind == AssetKind.MCP:
                    self._sync_mcp(entry, options, registries or [], result)
                else:
                    source = parse_source(entry.source)
                    self.install_from_source(
                        source,
                        handler.kind,
                        dataclasses.replace(options, commit=entry.commit, name_filter=entry.name),
                    )
            except (DuckrowError, OSError) as e:
                result.errors.append(f"{handler.display_name} '{entry.name}': {e}")
                continue
            result.installed += 1

        return result

    def _sync_mcp(
        self,
        entry: LockedAsset,
        options: InstallOptions,
        registries: list[RegistryLike],
        result: SyncResult,
    ) -> None:
        registry_name = str(entry.data.get("registry") or "")
        installed = self.install_mcp_from_registry(
            entry.name, registries, options, registry_filter=registry_name
        )
        locked_hash = entry.data.get("configHash")
        current_hash = compute_config_hash(installed.asset.meta)
        if locked_hash and locked_hash != current_hash:
            result.warnings.append(
                f"MCP '{entry.name}' config changed in registry since it was locked"
            )


def _relative_path(path: Path | None, base: Path) -> str:
    if path is None:
        return ""
    try:
        rel = path.relative_to(base).as_posix()
    except ValueError:
        return ""
    return "" if rel == "." else rel


def _canonical_path(project_dir: Path, name: str) -> Path:
    return project_dir / CANONICAL_SKILLS_DIR / sanitize_name(name)


def _take_snapshot(path: Path, backup_root: Path) -> _Snapshot:
    """Save whatever is at ``path`` so a failed install can put it back."""
    if not os.path.lexists(path):
        return _Snapshot(path)
    backup = Path(tempfile.mkdtemp(dir=backup_root)) / path.name
    if path.is_symlink():
        backup.symlink_to(os.readlink(path))
    elif path.is_dir():
        shutil.copytree(path, backup, symlinks=True)
    else:
        shutil.copy2(path, backup)
    return _Snapshot(path, backup)


def _restore_snapshot(snapshot: _Snapshot, project_dir: Path) -> None:
    remove_path(snapshot.path)
    if snapshot.backup is not None:
        snapshot.path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(snapshot.backup), str(snapshot.path))
        return

    # Nothing was there before: drop directories the install created.
    parent = snapshot.path.parent
    while parent != project_dir and project_dir in parent.parents:
        cleanup_empty_dir(parent)
        parent = parent.parent
