"""Base classes and protocols for coding-tool systems.

A system is an AI coding tool (OpenCode, Cursor, Claude Code, ...). Each
system knows its own directory layout, how to detect itself, and how to
accept or release an asset of a kind it supports.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from duckrow.assets.agent import AgentData, parse_agent_file, render_for_system
from duckrow.assets.base import Asset, AssetKind, InstalledAsset
from duckrow.assets.mcp import McpMeta
from duckrow.assets.skill import read_skill_md
from duckrow.constants import CANONICAL_SKILLS_DIR, ENV_WRAPPER_COMMAND, SKILL_MARKER
from duckrow.env import wrapper_args
from duckrow.exceptions import AlreadyInstalledError, SystemInstallError
from duckrow.systems import mcp_config
from duckrow.utils import cleanup_empty_dir, copy_directory, expand_path, remove_path, sanitize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemLayout:
    """Static description of a coding tool's conventions.

    Attributes:
        name: Machine name (e.g., "claude-code")
        display_name: Human-readable name (e.g., "Claude Code")
        universal: True if the tool reads ``.agents/skills`` directly
        skills_dir: Project-relative skill directory
        alt_skills_dirs: Other native skill directories, scanned but never written
        agents_dir: Project-relative agent directory, empty if agents are unsupported
        detect_paths: Global paths whose presence means the tool is installed
        config_signals: Project files or dirs that mean the tool is used there
        kinds: Asset kinds the tool accepts
        mcp_config_path: Project-relative MCP config file
        mcp_config_path_alt: Alternative MCP config file, preferred when it exists
        mcp_config_key: Top-level key holding the server entries
    """

    name: str
    display_name: str
    universal: bool
    skills_dir: str
    alt_skills_dirs: tuple[str, ...] = ()
    agents_dir: str = ""
    detect_paths: tuple[str, ...] = ()
    config_signals: tuple[str, ...] = ()
    kinds: tuple[AssetKind, ...] = (AssetKind.SKILL,)
    mcp_config_path: str = ""
    mcp_config_path_alt: str = ""
    mcp_config_key: str = ""


@runtime_checkable
class System(Protocol):
    """Protocol for coding-tool systems.

    The orchestrator depends only on this interface, so tests can supply
    fake systems.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def display_name(self) -> str:
        ...

    def is_universal(self) -> bool:
        """True if the system reads skills from ``.agents/skills`` directly."""
        ...

    def supports(self, kind: AssetKind) -> bool:
        ...

    def supported_kinds(self) -> list[AssetKind]:
        ...

    def is_installed(self) -> bool:
        """True if the tool is installed globally on this machine."""
        ...

    def is_active_in_folder(self, folder: Path) -> bool:
        """True if the folder has config artifacts for this tool."""
        ...

    def install(self, asset: Asset, project_dir: Path, *, force: bool = False) -> None:
        """Make an asset visible to this tool.

        Raises:
            AlreadyInstalledError: If the asset is present and force is not set
            SystemInstallError: If the asset cannot be installed
        """
        ...

    def remove(self, kind: AssetKind, name: str, project_dir: Path) -> None:
        """Remove an asset. Missing artifacts are not an error."""
        ...

    def scan(self, kind: AssetKind, project_dir: Path) -> list[InstalledAsset]:
        """Find installed assets of a kind in a project."""
        ...

    def asset_dir(self, kind: AssetKind, project_dir: Path) -> Path | None:
        """Where this tool keeps assets of a kind, if anywhere."""
        ...

    def artifact_path(self, kind: AssetKind, name: str, project_dir: Path) -> Path | None:
        """The single file or link an install of this asset writes, if any."""
        ...


class BaseSystem:
    """Default system behavior driven by a :class:`SystemLayout`.

    Skills: universal systems need nothing beyond the canonical copy the
    orchestrator writes; other systems get a relative symlink (or a copy
    where symlinks fail) from their own skill dir to the canonical copy.
    MCP servers are written into the system's JSON config. Agents are
    rendered into ``<agents_dir>/<name>.md``.
    """

    def __init__(self, layout: SystemLayout) -> None:
        self.layout = layout

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.layout.name!r})"

    @property
    def name(self) -> str:
        return self.layout.name

    @property
    def display_name(self) -> str:
        return self.layout.display_name

    def is_universal(self) -> bool:
        return self.layout.universal

    def supports(self, kind: AssetKind) -> bool:
        return kind in self.layout.kinds

    def supported_kinds(self) -> list[AssetKind]:
        return list(self.layout.kinds)

    def is_installed(self) -> bool:
        return any(expand_path(p).is_dir() for p in self.layout.detect_paths)

    def is_active_in_folder(self, folder: Path) -> bool:
        for signal in self.layout.config_signals:
            if os.path.lexists(folder / signal):
                return True
        if (folder / self.layout.skills_dir).is_dir():
            return True
        return any((folder / alt).is_dir() for alt in self.layout.alt_skills_dirs)

    def asset_dir(self, kind: AssetKind, project_dir: Path) -> Path | None:
        if kind == AssetKind.SKILL:
            return project_dir / self.layout.skills_dir
        if kind == AssetKind.AGENT and self.layout.agents_dir:
            return project_dir / self.layout.agents_dir
        return None

    def mcp_config_file(self, project_dir: Path) -> Path | None:
        """Resolve the MCP config file, preferring the alternative path when present."""
        if not self.layout.mcp_config_path:
            return None
        if self.layout.mcp_config_path_alt:
            alt = project_dir / self.layout.mcp_config_path_alt
            if alt.exists():
                return alt
        return project_dir / self.layout.mcp_config_path

    def agent_file(self, name: str, project_dir: Path) -> Path | None:
        """Path of the rendered agent file, or None if agents are unsupported."""
        agents_dir = self.asset_dir(AssetKind.AGENT, project_dir)
        if agents_dir is None:
            return None
        return agents_dir / f"{sanitize_name(name)}.md"

    def artifact_path(self, kind: AssetKind, name: str, project_dir: Path) -> Path | None:
        if not self.supports(kind):
            return None
        if kind == AssetKind.SKILL:
            if self.layout.universal:
                return None
            return project_dir / self.layout.skills_dir / sanitize_name(name)
        if kind == AssetKind.MCP:
            return self.mcp_config_file(project_dir)
        if kind == AssetKind.AGENT:
            return self.agent_file(name, project_dir)
        return None

    # --- Lifecycle ---

    def install(self, asset: Asset, project_dir: Path, *, force: bool = False) -> None:
        if not self.supports(asset.kind):
            raise SystemInstallError(
                f"System {self.name} does not support asset kind {asset.kind.value}"
            )
        if asset.kind == AssetKind.SKILL:
            self._install_skill(asset, project_dir)
        elif asset.kind == AssetKind.MCP:
            self._install_mcp(asset, project_dir, force)
        elif asset.kind == AssetKind.AGENT:
            self._install_agent(asset, project_dir)

    def remove(self, kind: AssetKind, name: str, project_dir: Path) -> None:
        if kind == AssetKind.SKILL:
            self._remove_skill(name, project_dir)
        elif kind == AssetKind.MCP:
            self._remove_mcp(name, project_dir)
        elif kind == AssetKind.AGENT:
            self._remove_agent(name, project_dir)

    def scan(self, kind: AssetKind, project_dir: Path) -> list[InstalledAsset]:
        if kind == AssetKind.SKILL:
            return self._scan_skills(project_dir)
        if kind == AssetKind.AGENT:
            return self._scan_agents(project_dir)
        if kind == AssetKind.MCP and self.supports(AssetKind.MCP):
            return self._scan_mcps(project_dir)
        return []

    # --- Skills ---

    def _install_skill(self, asset: Asset, project_dir: Path) -> None:
        if self.layout.universal:
            return

        dir_name = sanitize_name(asset.name)
        canonical_dir = project_dir / CANONICAL_SKILLS_DIR / dir_name
        skills_dir = project_dir / self.layout.skills_dir
        link_path = skills_dir / dir_name

        try:
            skills_dir.mkdir(parents=True, exist_ok=True)
            remove_path(link_path)
        except OSError as e:
            raise SystemInstallError(
                f"Failed to prepare skill dir for {self.display_name}: {e}"
            ) from e

        target = os.path.relpath(canonical_dir, skills_dir)
        try:
            link_path.symlink_to(target, target_is_directory=True)
        except OSError as link_error:
            logger.debug("Symlink failed for %s, copying instead: %s", link_path, link_error)
            try:
                copy_directory(canonical_dir, link_path)
            except OSError as copy_error:
                raise SystemInstallError(
                    f"Symlink and copy both failed for {self.display_name}: "
                    f"symlink: {link_error}, copy: {copy_error}"
                ) from copy_error

    def _remove_skill(self, name: str, project_dir: Path) -> None:
        if self.layout.universal:
            return

        skills_dir = project_dir / self.layout.skills_dir
        link_path = skills_dir / sanitize_name(name)
        if not os.path.lexists(link_path):
            return
        try:
            remove_path(link_path)
        except OSError as e:
            raise SystemInstallError(
                f"Failed to remove {name} skill for {self.display_name}: {e}"
            ) from e
        cleanup_empty_dir(skills_dir)
        cleanup_empty_dir(skills_dir.parent)

    def _scan_skills(self, project_dir: Path) -> list[InstalledAsset]:
        seen: set[str] = set()
        found: list[InstalledAsset] = []

        for rel_dir in (self.layout.skills_dir, *self.layout.alt_skills_dirs):
            base = project_dir / rel_dir
            if not base.is_dir():
                continue
            for entry in sorted(base.iterdir()):
                if not entry.is_dir():
                    continue
                doc = read_skill_md(entry / SKILL_MARKER)
                if doc is None or not doc.name or doc.name in seen:
                    continue
                seen.add(doc.name)
                found.append(
                    InstalledAsset(
                        kind=AssetKind.SKILL,
                        name=doc.name,
                        path=entry,
                        description=doc.description,
                        author=doc.meta.author,
                        system_name=self.name,
                    )
                )

        return sorted(found, key=lambda a: a.name)

    # --- MCP servers ---

    def build_mcp_entry(self, name: str, meta: McpMeta) -> dict[str, Any]:
        """Build the config value for one server.

        Stdio servers run through ``duckrow env`` so their variables are
        injected at launch: ``{"command": "duckrow", "args": [...]}``. Remote
        servers become ``{"type", "url"}`` with the transport defaulting to ``http``.
        """
        if meta.is_stdio:
            return {"command": ENV_WRAPPER_COMMAND, "args": wrapper_args(name, meta.command, meta.args)}
        return {"type": meta.transport or "http", "url": meta.url}

    def _install_mcp(self, asset: Asset, project_dir: Path, force: bool) -> None:
        config_path = self.mcp_config_file(project_dir)
        if config_path is None:
            raise SystemInstallError(f"System {self.display_name} has no MCP configuration")
        if not isinstance(asset.meta, McpMeta):
            raise SystemInstallError(f"Expected McpMeta, got {type(asset.meta).__name__}")

        key = self.layout.mcp_config_key
        if not force and mcp_config.has_entry(config_path, key, asset.name):
            raise AlreadyInstalledError(
                f"MCP '{asset.name}' already exists in {config_path.name} for {self.display_name}"
            )
        mcp_config.set_entry(config_path, key, asset.name, self.build_mcp_entry(asset.name, asset.meta))

    def _remove_mcp(self, name: str, project_dir: Path) -> None:
        config_path = self.mcp_config_file(project_dir)
        if config_path is None:
            return
        mcp_config.remove_entry(config_path, self.layout.mcp_config_key, name)

    def _scan_mcps(self, project_dir: Path) -> list[InstalledAsset]:
        config_path = self.mcp_config_file(project_dir)
        if config_path is None:
            return []
        return [
            InstalledAsset(kind=AssetKind.MCP, name=name, path=config_path, system_name=self.name)
            for name in mcp_config.list_entries(config_path, self.layout.mcp_config_key)
        ]

    # --- Agents ---

    def _install_agent(self, asset: Asset, project_dir: Path) -> None:
        agent_path = self.agent_file(asset.name, project_dir)
        if agent_path is None:
            raise SystemInstallError(f"System {self.display_name} has no agent directory")
        if not isinstance(asset.meta, AgentData):
            raise SystemInstallError(f"Expected AgentData, got {type(asset.meta).__name__}")

        try:
            agent_path.parent.mkdir(parents=True, exist_ok=True)
            agent_path.write_text(render_for_system(asset.meta, self.name), encoding="utf-8")
        except OSError as e:
            raise SystemInstallError(
                f"Failed to write agent {asset.name} for {self.display_name}: {e}"
            ) from e

    def _remove_agent(self, name: str, project_dir: Path) -> None:
        agent_path = self.agent_file(name, project_dir)
        if agent_path is None or not agent_path.exists():
            return
        try:
            agent_path.unlink()
        except OSError as e:
            raise SystemInstallError(
                f"Failed to remove agent {name} for {self.display_name}: {e}"
            ) from e
        cleanup_empty_dir(agent_path.parent)

    def _scan_agents(self, project_dir: Path) -> list[InstalledAsset]:
        agents_dir = self.asset_dir(AssetKind.AGENT, project_dir)
        if agents_dir is None or not agents_dir.is_dir():
            return []

        found = []
        for path in sorted(agents_dir.glob("*.md")):
            data = parse_agent_file(path)
            found.append(
                InstalledAsset(
                    kind=AssetKind.AGENT,
                    name=data.name if data and data.name else path.stem,
                    path=path,
                    description=data.description if data else "",
                    system_name=self.name,
                )
            )
        return found
