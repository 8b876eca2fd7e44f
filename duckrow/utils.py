"""Utility functions for duckrow."""

import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

import yaml

from duckrow.constants import COPY_EXCLUDED


_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")
MAX_NAME_LENGTH = 255
FALLBACK_NAME = "unnamed-skill"


def sanitize_name(name: str) -> str:
    """Normalize an asset name for use as a file or directory name.

    Lowercases the name, replaces anything outside ``[a-z0-9-]`` with a
    hyphen, trims leading/trailing hyphens and dots and caps the length.

    Args:
        name: Raw asset name

    Returns:
        Filesystem-safe name, never empty

    Examples:
        >>> sanitize_name("My Skill")
        'my-skill'
        >>> sanitize_name("tools/lint.v2")
        'tools-lint-v2'
        >>> sanitize_name("___")
        'unnamed-skill'
    """
    cleaned = _UNSAFE_NAME_CHARS.sub("-", name.lower()).strip("-.")
    cleaned = cleaned[:MAX_NAME_LENGTH]
    return cleaned or FALLBACK_NAME


def _is_copy_excluded(name: str) -> bool:
    return name in COPY_EXCLUDED or name.startswith("_")


def copy_directory(src: Path, dst: Path) -> None:
    """Copy an asset directory, leaving out repository noise.

    ``README.md``, ``metadata.json``, ``.git`` and anything starting with
    an underscore are skipped at every level.

    Args:
        src: Directory to copy from
        dst: Destination directory (created if missing)
    """
    shutil.copytree(
        src,
        dst,
        ignore=lambda _dir, names: [n for n in names if _is_copy_excluded(n)],
        dirs_exist_ok=True,
    )


def cleanup_empty_dir(path: Path) -> None:
    """Remove a directory if it exists and is empty."""
    try:
        if path.is_dir() and not any(path.iterdir()):
            path.rmdir()
    except OSError:
        pass


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree if present."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def atomic_write_text(path: Path, content: str) -> None:
    """Write a text file through a unique temp file and ``os.replace``.

    The temp file lives beside ``path`` so the rename stays on one
    filesystem; concurrent writers never share a temp path.

    Raises:
        OSError: If the file cannot be written; the temp file is removed
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def expand_path(value: str) -> Path:
    """Expand ``~``, ``$XDG_CONFIG`` and other environment variables.

    ``$XDG_CONFIG`` resolves to ``$XDG_CONFIG_HOME``, falling back to
    ``~/.config`` when unset.
    """
    if "$XDG_CONFIG" in value:
        xdg = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        value = value.replace("$XDG_CONFIG", xdg)
    return Path(os.path.expanduser(os.path.expandvars(value)))


def split_frontmatter(content: str) -> tuple[str, str] | None:
    """Split Markdown content into its YAML frontmatter and body.

    Args:
        content: Full file content

    Returns:
        Tuple of (frontmatter, body), or None if the content has no
        complete ``---`` delimited frontmatter block

    Examples:
        >>> split_frontmatter("---\\nname: x\\n---\\n\\nBody\\n")
        ('name: x', '\\nBody\\n')
        >>> split_frontmatter("# Title") is None
        True
    """
    if not content.lstrip().startswith("---"):
        return None

    start = content.index("---")
    rest = content[start + 3:]
    if rest.startswith("\r\n"):
        rest = rest[2:]
    elif rest.startswith("\n"):
        rest = rest[1:]

    end = rest.find("\n---")
    if end < 0:
        return None

    frontmatter = rest[:end]
    body = rest[end + 4:]
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    return frontmatter, body


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str] | None:
    """Parse Markdown frontmatter as YAML.

    Args:
        content: Full file content

    Returns:
        Tuple of (frontmatter mapping, body), or None if the content has no
        frontmatter or the frontmatter is not a YAML mapping
    """
    parts = split_frontmatter(content)
    if parts is None:
        return None

    raw, body = parts
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError:
        return None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None
    return data, body
