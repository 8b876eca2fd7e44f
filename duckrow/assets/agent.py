"""Agent assets: single Markdown files with YAML frontmatter.

The frontmatter is carried through opaquely. Each system receives a rendered
copy where its own override block (e.g. a ``claude-code:`` mapping) has been
merged over the shared fields.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import yaml

from duckrow.assets.base import (
    Asset,
    AssetKind,
    DiscoverOptions,
    InstallInfo,
    LockedAsset,
    RegistryEntry,
    manifest_entries,
)
from duckrow.constants import DEPENDENCY_DIRS
from duckrow.exceptions import AssetValidationError
from duckrow.utils import parse_frontmatter

# Markdown files that are never agents
EXCLUDED_AGENT_FILES = frozenset(
    {"SKILL.md", "AGENTS.md", "README.md", "CLAUDE.md", "GEMINI.md", "codex.md"}
)

# Hidden directories that may hold agents
AGENT_HIDDEN_DIRS = frozenset({".agents", ".claude", ".opencode", ".github", ".gemini"})

# Per-system override blocks recognized in agent frontmatter
SYSTEM_OVERRIDE_KEYS = ("claude-code", "opencode", "github-copilot", "gemini-cli")

# Only this system keeps the ``name`` field; the others derive it from the file name
NAME_KEEPING_SYSTEM = "gemini-cli"

_PRIORITY_FIELDS = ("name", "description", "model", "tools")


@dataclass
class AgentData:
    """Parsed agent file: the frontmatter mapping and the Markdown body."""

    frontmatter: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @property
    def name(self) -> str:
        value = self.frontmatter.get("name")
        return value if isinstance(value, str) else ""

    @property
    def description(self) -> str:
        value = self.frontmatter.get("description")
        return value if isinstance(value, str) else ""


def parse_agent_content(content: str) -> AgentData | None:
    """Parse agent Markdown content.

    Returns:
        AgentData, or None if the content has no valid YAML frontmatter
    """
    parsed = parse_frontmatter(content)
    if parsed is None:
        return None
    frontmatter, body = parsed
    return AgentData(frontmatter=frontmatter, body=body)


def parse_agent_file(path: Path) -> AgentData | None:
    """Read and parse an agent Markdown file.

    Returns:
        AgentData, or None if the file is unreadable or not an agent file
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    return parse_agent_content(content)


def _ordered(frontmatter: dict[str, Any]) -> dict[str, Any]:
    ordered = {key: frontmatter[key] for key in _PRIORITY_FIELDS if key in frontmatter}
    for key in sorted(k for k in frontmatter if k not in _PRIORITY_FIELDS):
        ordered[key] = frontmatter[key]
    return ordered


def render_for_system(data: AgentData, system_key: str) -> str:
    """Render agent content for one system.

    The system's override block replaces top-level fields, every override
    block is stripped, and ``name`` is dropped unless the target is Gemini
    CLI. Fields are written as name, description, model, tools, then the
    rest alphabetically.

    Args:
        data: Parsed agent
        system_key: Target system name, e.g. "claude-code"

    Returns:
        Complete file content: frontmatter, blank line, body

    Examples:
        >>> agent = AgentData(
        ...     frontmatter={"name": "rev", "description": "Reviews", "claude-code": {"model": "opus"}},
        ...     body="Review code.",
        ... )
        >>> print(render_for_system(agent, "claude-code"), end="")
        ---
        description: Reviews
        model: opus
        ---
        <BLANKLINE>
        Review code.
    """
    merged = dict(data.frontmatter)
    override = merged.get(system_key)
    for key in SYSTEM_OVERRIDE_KEYS:
        merged.pop(key, None)
    if isinstance(override, dict):
        merged.update(override)
    if system_key != NAME_KEEPING_SYSTEM:
        merged.pop("name", None)

    parts = ["---\n"]
    if merged:
        parts.append(
            yaml.safe_dump(
                _ordered(merged),
                sort_keys=False,
                default_flow_style=False,
                allow_unicode=True,
                indent=2,
            )
        )
    parts.append("---\n")
    body = data.body.lstrip("\n")
    if body:
        parts.append("\n")
        parts.append(body)
        if not body.endswith("\n"):
            parts.append("\n")
    return "".join(parts)


def _skip_dir(name: str) -> bool:
    if name.startswith(".") and name not in AGENT_HIDDEN_DIRS:
        return True
    return name in DEPENDENCY_DIRS


def _candidate_files(search_path: Path) -> Iterator[Path]:
    # Lock sources of agents point at the file itself
    if search_path.is_file():
        yield search_path
        return
    for dirpath, dirnames, filenames in os.walk(search_path):
        dirnames[:] = sorted(d for d in dirnames if not _skip_dir(d))
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


class AgentHandler:
    """Discovers and validates agent Markdown files."""

    kind = AssetKind.AGENT
    display_name = "Agent"
    file_based = False

    def discover(self, base_path: Path, options: DiscoverOptions) -> list[Asset]:
        """Walk a tree for Markdown files whose frontmatter has a name and description.

        ``sub_path`` may name a directory or a single agent file.
        ``internal`` has no meaning for agents and is ignored.
        """
        search_path = base_path / options.sub_path if options.sub_path else base_path
        assets: list[Asset] = []
        seen_names: set[str] = set()

        for path in _candidate_files(search_path):
            if path.suffix != ".md" or path.name in EXCLUDED_AGENT_FILES:
                continue
            data = parse_agent_file(path)
            if data is None or not data.name or not data.description:
                continue
            if data.name in seen_names:
                continue
            seen_names.add(data.name)
            if options.name_filter and data.name != options.name_filter:
                continue

            assets.append(
                Asset(
                    kind=AssetKind.AGENT,
                    name=data.name,
                    description=data.description,
                    prepared_path=path,
                    meta=data,
                )
            )

        return assets

    def validate(self, asset: Asset) -> None:
        if not asset.name:
            raise AssetValidationError("Agent name is required")
        if not isinstance(asset.meta, AgentData):
            raise AssetValidationError(
                f"Expected AgentData for agent '{asset.name}', got {type(asset.meta).__name__}"
            )
        if not asset.meta.description:
            raise AssetValidationError(f"Agent '{asset.name}' missing description in frontmatter")
        if not asset.meta.body.strip():
            raise AssetValidationError(f"Agent '{asset.name}' has empty body (no system prompt)")

    def parse_manifest_entries(self, raw: Any) -> list[RegistryEntry]:
        return [
            RegistryEntry(
                name=entry.get("name", ""),
                description=entry.get("description", ""),
                source=entry.get("source", ""),
                commit=entry.get("commit", ""),
            )
            for entry in manifest_entries(raw, "agent")
        ]

    def lock_data(self, asset: Asset, info: InstallInfo) -> LockedAsset:
        return LockedAsset(
            kind=AssetKind.AGENT.value,
            name=asset.name,
            source=asset.source,
            commit=info.commit,
            ref=info.ref,
        )
