"""Asset kinds and their handlers."""

from duckrow.assets.agent import AgentData, AgentHandler, render_for_system
from duckrow.assets.base import (
    Asset,
    AssetHandler,
    AssetKind,
    DiscoverOptions,
    InstallInfo,
    InstalledAsset,
    LockedAsset,
    RegistryEntry,
)
from duckrow.assets.mcp import McpHandler, McpMeta
from duckrow.assets.registry import HandlerRegistry, coerce_kind, default_handler_registry
from duckrow.assets.skill import SkillHandler, SkillMeta

__all__ = [
    "AgentData",
    "AgentHandler",
    "Asset",
    "AssetHandler",
    "AssetKind",
    "DiscoverOptions",
    "HandlerRegistry",
    "InstallInfo",
    "InstalledAsset",
    "LockedAsset",
    "McpHandler",
    "McpMeta",
    "RegistryEntry",
    "SkillHandler",
    "SkillMeta",
    "coerce_kind",
    "default_handler_registry",
    "render_for_system",
]
