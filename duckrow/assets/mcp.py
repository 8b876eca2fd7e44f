"""MCP server assets.

MCP servers are config-only: there is nothing to discover in a cloned tree,
they come exclusively from registry manifests and are written into each
system's MCP config file.
"""

import hashlib
import json
from dataclasses import dataclass, field
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
from duckrow.exceptions import AssetValidationError, ManifestError


@dataclass(frozen=True)
class McpMeta:
    """How to launch or reach an MCP server.

    Attributes:
        command: Executable for a stdio server
        args: Arguments for the command
        env: Names of environment variables the server needs
        url: Endpoint for a remote server
        transport: Remote transport type ("http", "sse", "streamable-http")
    """

    command: str = ""
    args: tuple[str, ...] = field(default_factory=tuple)
    env: tuple[str, ...] = field(default_factory=tuple)
    url: str = ""
    transport: str = ""

    @property
    def is_stdio(self) -> bool:
        return bool(self.command)

    @property
    def is_remote(self) -> bool:
        return bool(self.url)


def compute_config_hash(meta: McpMeta) -> str:
    """Hash the functional part of an MCP config.

    Only command, args, env, url and type participate, so renaming or
    re-describing a server does not change the hash. Empty fields are
    omitted and keys are sorted.

    Returns:
        "sha256:<hex>"
    """
    canonical: dict[str, Any] = {}
    if meta.command:
        canonical["command"] = meta.command
    if meta.args:
        canonical["args"] = list(meta.args)
    if meta.env:
        canonical["env"] = list(meta.env)
    if meta.url:
        canonical["url"] = meta.url
    if meta.transport:
        canonical["type"] = meta.transport
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def required_env(env: tuple[str, ...] | list[str]) -> list[str]:
    """Sorted, de-duplicated environment variable names."""
    return sorted(set(env))


def _string_list(value: Any, field_name: str, entry_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ManifestError(f"MCP '{entry_name}': '{field_name}' must be a list")
    return tuple(str(v) for v in value)


class McpHandler:
    """Validates and records MCP server configs."""

    kind = AssetKind.MCP
    display_name = "MCP Server"
    file_based = False

    def discover(self, base_path: Path, options: DiscoverOptions) -> list[Asset]:
        return []

    def validate(self, asset: Asset) -> None:
        if not isinstance(asset.meta, McpMeta):
            raise AssetValidationError(
                f"Expected McpMeta, got {type(asset.meta).__name__}"
            )
        meta = asset.meta
        if not asset.name:
            raise AssetValidationError("MCP name is required")
        if not meta.command and not meta.url:
            raise AssetValidationError(
                f"MCP '{asset.name}' must have either command (stdio) or url (remote)"
            )
        if meta.command and meta.url:
            raise AssetValidationError(f"MCP '{asset.name}' cannot have both command and url")
        if meta.url and not meta.transport:
            raise AssetValidationError(f"MCP '{asset.name}' with url must specify transport type")

    def parse_manifest_entries(self, raw: Any) -> list[RegistryEntry]:
        entries = []
        for entry in manifest_entries(raw, "MCP"):
            name = entry.get("name", "")
            meta = McpMeta(
                command=entry.get("command", ""),
                args=_string_list(entry.get("args"), "args", name),
                env=_string_list(entry.get("env"), "env", name),
                url=entry.get("url", ""),
                transport=entry.get("type", ""),
            )
            entries.append(
                RegistryEntry(name=name, description=entry.get("description", ""), meta=meta)
            )
        return entries

    def lock_data(self, asset: Asset, info: InstallInfo) -> LockedAsset:
        meta = asset.meta if isinstance(asset.meta, McpMeta) else McpMeta()
        data: dict[str, Any] = {
            "registry": info.registry,
            "configHash": compute_config_hash(meta),
        }
        env_names = required_env(meta.env)
        if env_names:
            data["requiredEnv"] = env_names
        return LockedAsset(kind=AssetKind.MCP.value, name=asset.name, data=data)
