"""Built-in coding-tool systems and the catalog that looks them up."""

from pathlib import Path
from typing import Any

from duckrow.assets.base import AssetKind
from duckrow.assets.mcp import McpMeta
from duckrow.constants import CANONICAL_SKILLS_DIR, ENV_WRAPPER_COMMAND
from duckrow.env import wrapper_args
from duckrow.exceptions import UnknownSystemError
from duckrow.systems.base import BaseSystem, System, SystemLayout


class OpenCodeSystem(BaseSystem):
    """OpenCode keeps the whole command line, wrapper included, in one array."""

    def build_mcp_entry(self, name: str, meta: McpMeta) -> dict[str, Any]:
        if meta.is_stdio:
            return {
                "type": "local",
                "command": [ENV_WRAPPER_COMMAND, *wrapper_args(name, meta.command, meta.args)],
            }
        return {"type": "remote", "url": meta.url}


class GitHubCopilotSystem(BaseSystem):
    """GitHub Copilot (VS Code) needs an explicit stdio type."""

    def build_mcp_entry(self, name: str, meta: McpMeta) -> dict[str, Any]:
        if meta.is_stdio:
            return {
                "type": "stdio",
                "command": ENV_WRAPPER_COMMAND,
                "args": wrapper_args(name, meta.command, meta.args),
            }
        return super().build_mcp_entry(name, meta)


OPENCODE = SystemLayout(
    name="opencode",
    display_name="OpenCode",
    universal=True,
    skills_dir=CANONICAL_SKILLS_DIR,
    alt_skills_dirs=(".opencode/skills",),
    agents_dir=".opencode/agents",
    detect_paths=("$XDG_CONFIG/opencode",),
    config_signals=("opencode.json", "opencode.jsonc"),
    kinds=(AssetKind.SKILL, AssetKind.MCP, AssetKind.AGENT),
    mcp_config_path="opencode.json",
    mcp_config_path_alt="opencode.jsonc",
    mcp_config_key="mcp",
)

CODEX = SystemLayout(
    name="codex",
    display_name="Codex",
    universal=True,
    skills_dir=CANONICAL_SKILLS_DIR,
    detect_paths=("$CODEX_HOME", "/etc/codex"),
    config_signals=("codex.md",),
    kinds=(AssetKind.SKILL,),
)

GITHUB_COPILOT = SystemLayout(
    name="github-copilot",
    display_name="GitHub Copilot",
    universal=True,
    skills_dir=CANONICAL_SKILLS_DIR,
    alt_skills_dirs=(".github/skills",),
    detect_paths=("~/.copilot",),
    config_signals=(".github/copilot-instructions.md",),
    kinds=(AssetKind.SKILL, AssetKind.MCP),
    mcp_config_path=".vscode/mcp.json",
    mcp_config_key="servers",
)

GEMINI_CLI = SystemLayout(
    name="gemini-cli",
    display_name="Gemini CLI",
    universal=True,
    skills_dir=CANONICAL_SKILLS_DIR,
    agents_dir=".gemini/agents",
    detect_paths=("~/.gemini",),
    config_signals=("GEMINI.md",),
    kinds=(AssetKind.SKILL, AssetKind.AGENT),
)

CLAUDE_CODE = SystemLayout(
    name="claude-code",
    display_name="Claude Code",
    universal=False,
    skills_dir=".claude/skills",
    agents_dir=".claude/agents",
    detect_paths=("~/.claude",),
    config_signals=("CLAUDE.md", ".claude", ".mcp.json"),
    kinds=(AssetKind.SKILL, AssetKind.MCP, AssetKind.AGENT),
    mcp_config_path=".mcp.json",
    mcp_config_key="mcpServers",
)

CURSOR = SystemLayout(
    name="cursor",
    display_name="Cursor",
    universal=False,
    skills_dir=".cursor/skills",
    detect_paths=("~/.cursor",),
    config_signals=(".cursor",),
    kinds=(AssetKind.SKILL, AssetKind.MCP),
    mcp_config_path=".cursor/mcp.json",
    mcp_config_key="mcpServers",
)

GOOSE = SystemLayout(
    name="goose",
    display_name="Goose",
    universal=False,
    skills_dir=".goose/skills",
    detect_paths=("$XDG_CONFIG/goose",),
    config_signals=(".goose",),
    kinds=(AssetKind.SKILL,),
)


class SystemCatalog:
    """An ordered, immutable set of systems.

    Built once at startup and handed to the orchestrator, so tests can
    substitute catalogs of fake systems.
    """

    def __init__(self, systems: list[System]) -> None:
        self._systems = list(systems)

    def all(self) -> list[System]:
        return list(self._systems)

    def names(self) -> list[str]:
        return [s.name for s in self._systems]

    def by_name(self, name: str) -> System | None:
        for system in self._systems:
            if system.name == name:
                return system
        return None

    def by_names(self, names: list[str]) -> list[System]:
        """Resolve system names, preserving order.

        Raises:
            UnknownSystemError: If any name is not in the catalog
        """
        resolved = []
        for name in names:
            system = self.by_name(name)
            if system is None:
                raise UnknownSystemError(
                    f"Unknown system '{name}'; available: {', '.join(self.names())}"
                )
            resolved.append(system)
        return resolved

    def universal(self) -> list[System]:
        return [s for s in self._systems if s.is_universal()]

    def supporting(self, kind: AssetKind) -> list[System]:
        return [s for s in self._systems if s.supports(kind)]

    def detect_in_folder(self, folder: Path) -> list[System]:
        """Systems that are active in the folder or installed globally."""
        return [s for s in self._systems if s.is_active_in_folder(folder) or s.is_installed()]


def default_catalog() -> SystemCatalog:
    """Build the catalog of built-in systems, universal ones first."""
    return SystemCatalog(
        [
            OpenCodeSystem(OPENCODE),
            BaseSystem(CODEX),
            GitHubCopilotSystem(GITHUB_COPILOT),
            BaseSystem(GEMINI_CLI),
            BaseSystem(CLAUDE_CODE),
            BaseSystem(CURSOR),
            BaseSystem(GOOSE),
        ]
    )
