"""Update checking for locked assets.

Each locked asset is resolved against the newest commit that touches its
source path. Registry commit maps answer most lookups without any network
access; the rest are grouped by repository and ref so every repository is
cloned at most once per check.
"""

import logging
from dataclasses import dataclass

from duckrow.assets.base import AssetKind, LockedAsset
from duckrow.exceptions import DuckrowError
from duckrow.git import GitBackend, remove_clone
from duckrow.lockfile import LockFile
from duckrow.source import (
    normalize_source,
    parse_lock_source,
    source_path_key,
    source_repo_key,
    source_sub_path,
)

logger = logging.getLogger(__name__)


@dataclass
class UpdateInfo:
    """Update status of one locked asset."""

    kind: str
    name: str
    source: str
    installed_commit: str
    available_commit: str
    has_update: bool

    @classmethod
    def resolved(cls, entry: LockedAsset, available: str) -> "UpdateInfo":
        return cls(
            kind=entry.kind,
            name=entry.name,
            source=entry.source,
            installed_commit=entry.commit,
            available_commit=available,
            has_update=entry.commit != available,
        )

    @classmethod
    def unknown(cls, entry: LockedAsset) -> "UpdateInfo":
        """No newer commit could be determined; report the asset as current."""
        return cls.resolved(entry, entry.commit)


def build_path_index(registry_commits: dict[str, str]) -> dict[str, str]:
    """Re-key a commit map by host-less source path.

    Examples:
        >>> build_path_index({"github.com-work/acme/skills/lint": "abc"})
        {'acme/skills/lint': 'abc'}
    """
    return {source_path_key(source): commit for source, commit in registry_commits.items()}


def lookup_registry_commit(
    source: str, registry_commits: dict[str, str], path_index: dict[str, str]
) -> str:
    """Find a registry commit for a source: exact key first, then host-agnostic.

    Returns:
        The commit, or "" if no registry knows the source
    """
    commit = registry_commits.get(source)
    if commit:
        return commit
    return path_index.get(source_path_key(source), "")


def check_for_updates(
    lock_file: LockFile,
    kind: "AssetKind | str",
    git: GitBackend,
    overrides: dict[str, str] | None = None,
    registry_commits: dict[str, str] | None = None,
) -> list[UpdateInfo]:
    """Report the available commit for every locked asset of one kind.

    Args:
        lock_file: The project's lock file
        kind: Asset kind to check
        git: Git collaborator used for the slow path
        overrides: Clone URL overrides keyed by lowercased "owner/repo"
        registry_commits: Canonical source to commit, from the registries

    Returns:
        One UpdateInfo per locked asset of the kind, registry hits first,
        then the cloned groups in first-seen order
    """
    overrides = overrides or {}
    registry_commits = registry_commits or {}
    path_index = build_path_index(registry_commits)

    results: list[UpdateInfo] = []
    groups: dict[tuple[str, str], list[LockedAsset]] = {}

    for entry in lock_file.of_kind(kind):
        if not entry.source:
            results.append(UpdateInfo.unknown(entry))
            continue

        commit = lookup_registry_commit(entry.source, registry_commits, path_index)
        if commit:
            results.append(UpdateInfo.resolved(entry, commit))
            continue

        groups.setdefault((source_repo_key(entry.source), entry.ref), []).append(entry)

    for (_repo_key, ref), entries in groups.items():
        results.extend(_check_group(entries, ref, git, overrides))

    return results


def _check_group(
    entries: list[LockedAsset], ref: str, git: GitBackend, overrides: dict[str, str]
) -> list[UpdateInfo]:
    try:
        host, owner, repo, _ = parse_lock_source(entries[0].source)
    except DuckrowError as e:
        logger.debug("Cannot check %s: %s", entries[0].source, e)
        return [UpdateInfo.unknown(entry) for entry in entries]

    clone_url = overrides.get(f"{owner.lower()}/{repo.lower()}") or (
        f"https://{normalize_source(host, owner, repo)}.git"
    )
    try:
        clone_dir = git.clone(clone_url, ref, shallow=False)
    except DuckrowError as e:
        logger.warning("Could not check %s for updates: %s", clone_url, e)
        return [UpdateInfo.unknown(entry) for entry in entries]

    results = []
    try:
        for entry in entries:
            try:
                available = git.last_commit(clone_dir, source_sub_path(entry.source))
            except DuckrowError as e:
                logger.debug("No commit for %s: %s", entry.source, e)
                available = entry.commit
            results.append(UpdateInfo.resolved(entry, available))
    finally:
        remove_clone(clone_dir)
    return results
