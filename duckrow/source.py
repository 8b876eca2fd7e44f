"""Source string parsing.

A source tells duckrow where an asset lives. Users type sources in several
shapes; everything is parsed into a :class:`SourceDescriptor` carrying the
host, owner, repository, optional ref and sub-path, and a clone URL.

Lock files and registry manifests store sources in the canonical
``host/owner/repo[/sub/path]`` form; the helpers at the bottom of this
module build and pick apart that form.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from duckrow.constants import DEFAULT_HOST
from duckrow.exceptions import SourceParseError
from duckrow.utils import expand_path


# A single owner/repo token pair; used to tell "owner/repo@name" apart from
# SSH- or email-like strings.
OWNER_REPO_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+$")
OWNER_REPO_PATH_PATTERN = re.compile(r"^([a-zA-Z0-9_.-]+)/([a-zA-Z0-9_.-]+)/(.+)$")
HOST_OWNER_REPO_PATTERN = re.compile(
    r"^([^/\s]*\.[^/\s]*)/([a-zA-Z0-9_.-]+)/([a-zA-Z0-9_.-]+)(?:/(.+))?$"
)

LOCAL_PREFIXES = ("./", "../", "/", "~/")


class SourceKind(Enum):
    """Where a source's content comes from."""

    GIT = "git"
    LOCAL = "local"


@dataclass
class SourceDescriptor:
    """Parsed form of a user-supplied source string.

    Attributes:
        kind: Git or local source
        host: Git host, e.g. "github.com" or an SSH alias such as "github.com-work"
        owner: Repository owner
        repo: Repository name (without ".git")
        clone_url: URL handed to git; None for local sources
        ref: Branch or tag to check out, if the source named one
        sub_path: Path inside the repository that scopes discovery
        name_filter: Single asset selector from "owner/repo@name" syntax
        local_path: Directory of a local source
    """

    kind: SourceKind
    host: str = ""
    owner: str = ""
    repo: str = ""
    clone_url: str | None = None
    ref: str = ""
    sub_path: str = ""
    name_filter: str = ""
    local_path: Path | None = None

    @property
    def is_local(self) -> bool:
        return self.kind == SourceKind.LOCAL

    @property
    def repo_key(self) -> str:
        """Lowercased "owner/repo", or "" when either part is unknown."""
        if not self.owner or not self.repo:
            return ""
        return f"{self.owner.lower()}/{self.repo.lower()}"

    def apply_clone_url_override(self, overrides: dict[str, str] | None) -> bool:
        """Swap the clone URL for a configured override.

        Args:
            overrides: Map of lowercased "owner/repo" to clone URL

        Returns:
            True if the clone URL was replaced
        """
        key = self.repo_key
        if not overrides or not key:
            return False
        override = overrides.get(key)
        if not override:
            return False
        self.clone_url = override
        return True

    def canonical(self, sub_path: str = "") -> str:
        """Build the canonical lock-file source for a path in this repository."""
        return normalize_source(self.host, self.owner, self.repo, sub_path)


def _github(owner: str, repo: str, **kwargs) -> SourceDescriptor:
    return SourceDescriptor(
        kind=SourceKind.GIT,
        host=DEFAULT_HOST,
        owner=owner,
        repo=repo,
        clone_url=f"https://{DEFAULT_HOST}/{owner}/{repo}.git",
        **kwargs,
    )


def _parse_local(value: str) -> SourceDescriptor:
    path = expand_path(value).resolve()
    if not path.exists():
        raise SourceParseError(f"Local path not found: {path}")
    if not path.is_dir():
        raise SourceParseError(f"Local path is not a directory: {path}")
    return SourceDescriptor(kind=SourceKind.LOCAL, local_path=path)


def _parse_ssh(value: str) -> SourceDescriptor:
    # git@host:owner/repo.git; the URL is kept verbatim so SSH host aliases survive
    host_part, sep, repo_path = value.partition(":")
    if not sep or not repo_path:
        raise SourceParseError(f"Invalid SSH URL: '{value}'")

    descriptor = SourceDescriptor(
        kind=SourceKind.GIT,
        host=host_part.removeprefix("git@"),
        clone_url=value,
    )
    owner, slash, repo = repo_path.removesuffix(".git").partition("/")
    if slash and owner and repo:
        descriptor.owner = owner
        descriptor.repo = repo
    return descriptor


def _parse_http(value: str) -> SourceDescriptor:
    parsed = urlparse(value)
    if not parsed.netloc:
        raise SourceParseError(f"Invalid URL: '{value}'")

    segments = [s for s in parsed.path.strip("/").split("/") if s]
    if len(segments) < 2:
        return SourceDescriptor(kind=SourceKind.GIT, host=parsed.netloc, clone_url=value)

    owner = segments[0]
    repo = segments[1].removesuffix(".git")
    descriptor = SourceDescriptor(
        kind=SourceKind.GIT,
        host=parsed.netloc,
        owner=owner,
        repo=repo,
        clone_url=f"https://{parsed.netloc}/{owner}/{repo}.git",
    )
    # /owner/repo/tree/<ref>/<sub/path>
    if len(segments) >= 4 and segments[2] == "tree":
        descriptor.ref = segments[3]
        descriptor.sub_path = "/".join(segments[4:])
    return descriptor


def parse_source(value: str, *, allow_local: bool = False) -> SourceDescriptor:
    """Parse a source string into a SourceDescriptor.

    Forms are tried in order and the first match wins:

    1. Local path ("./", "../", "/", "~/"), only when ``allow_local`` is set
    2. SSH URL "git@host:owner/repo.git", passed through verbatim
    3. HTTP(S) URL, with optional "/tree/<ref>/<sub/path>"
    4. "owner/repo@name"
    5. "host.tld/owner/repo[/sub/path]"
    6. "owner/repo/sub/path" on GitHub
    7. "owner/repo" on GitHub

    Args:
        value: Raw source string
        allow_local: Accept local directory sources

    Returns:
        Parsed SourceDescriptor

    Raises:
        SourceParseError: If the string matches none of the forms

    Examples:
        >>> parse_source("acme/widgets").clone_url
        'https://github.com/acme/widgets.git'
        >>> parse_source("acme/widgets@lint").name_filter
        'lint'
        >>> parse_source("gitlab.com/acme/widgets/tools/lint").sub_path
        'tools/lint'
    """
    value = value.strip()
    if not value:
        raise SourceParseError("Empty source")

    if value.startswith(LOCAL_PREFIXES):
        if not allow_local:
            raise SourceParseError(
                f"Local path sources are not supported here: '{value}'"
            )
        return _parse_local(value)

    if value.startswith("git@"):
        return _parse_ssh(value)

    if value.startswith(("https://", "http://")):
        return _parse_http(value)

    if "@" in value:
        prefix, _, name = value.partition("@")
        if name and OWNER_REPO_PATTERN.match(prefix):
            owner, repo = prefix.split("/", 1)
            return _github(owner, repo, name_filter=name)

    match = HOST_OWNER_REPO_PATTERN.match(value)
    if match:
        host, owner, repo, sub_path = match.groups()
        repo = repo.removesuffix(".git")
        return SourceDescriptor(
            kind=SourceKind.GIT,
            host=host,
            owner=owner,
            repo=repo,
            clone_url=f"https://{host}/{owner}/{repo}.git",
            sub_path=(sub_path or "").strip("/"),
        )

    match = OWNER_REPO_PATH_PATTERN.match(value)
    if match:
        owner, repo, sub_path = match.groups()
        return _github(owner, repo, sub_path=sub_path.strip("/"))

    if OWNER_REPO_PATTERN.match(value):
        owner, repo = value.split("/", 1)
        return _github(owner, repo)

    raise SourceParseError(f"Unrecognized source format: '{value}'")


# --- Canonical "host/owner/repo[/path]" sources ---


def normalize_source(host: str, owner: str, repo: str, sub_path: str = "") -> str:
    """Build a canonical source string.

    Examples:
        >>> normalize_source("github.com", "acme", "skills", "tools/lint")
        'github.com/acme/skills/tools/lint'
        >>> normalize_source("github.com", "acme", "skills", "")
        'github.com/acme/skills'
    """
    base = f"{host}/{owner}/{repo}"
    sub_path = sub_path.replace("\\", "/").strip("/")
    if not sub_path or sub_path == ".":
        return base
    return f"{base}/{sub_path}"


def parse_lock_source(source: str) -> tuple[str, str, str, str]:
    """Split a canonical source into (host, owner, repo, sub_path).

    Raises:
        SourceParseError: If the source has fewer than three segments
    """
    parts = source.split("/")
    if len(parts) < 3 or not all(parts[:3]):
        raise SourceParseError(
            f"Invalid lock source '{source}': expected at least host/owner/repo"
        )
    return parts[0], parts[1], parts[2], "/".join(parts[3:])


def is_canonical_source(source: str) -> bool:
    """True when the source has at least host/owner/repo and the host has a dot."""
    parts = source.split("/")
    return len(parts) >= 3 and "." in parts[0]


def source_repo_key(source: str) -> str:
    """Return the "host/owner/repo" prefix of a canonical source."""
    parts = source.split("/")
    if len(parts) < 3:
        return source
    return "/".join(parts[:3])


def source_sub_path(source: str) -> str:
    """Return the path after "host/owner/repo", or "" if there is none."""
    parts = source.split("/")
    return "/".join(parts[3:])


def source_path_key(source: str) -> str:
    """Strip the host segment, leaving "owner/repo/path".

    Two clone aliases of one host (github.com and github.com-work) map to
    the same key.

    Examples:
        >>> source_path_key("github.com-work/org/repo/skill-a")
        'org/repo/skill-a'
    """
    _, sep, rest = source.partition("/")
    return rest if sep else source


def truncate_commit(commit: str) -> str:
    """Shorten a commit SHA to seven characters for display."""
    return commit[:7]
