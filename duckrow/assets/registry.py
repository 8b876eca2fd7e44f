"""Registry of asset handlers.

Handlers are registered on an explicit :class:`HandlerRegistry` object that
is built once at startup and handed to the orchestrator, registry manager
and CLI. Tests build their own registries with only the handlers they need.
"""

import threading

from duckrow.assets.base import AssetHandler, AssetKind
from duckrow.exceptions import UnknownAssetKindError

# Primary kinds iterate first; anything else follows in registration order.
_PRIMARY_KINDS = (AssetKind.SKILL, AssetKind.MCP)


def coerce_kind(kind: "AssetKind | str") -> AssetKind | None:
    """Convert a kind tag from a lock file or CLI argument to an AssetKind.

    Returns:
        The AssetKind, or None if the tag is not a known kind
    """
    if isinstance(kind, AssetKind):
        return kind
    try:
        return AssetKind(kind)
    except ValueError:
        return None


class HandlerRegistry:
    """Maps asset kinds to their handlers.

    Thread-safe: registration and lookup are protected by a lock.
    """

    def __init__(self, handlers: list[AssetHandler] | None = None) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[AssetKind, AssetHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: AssetHandler) -> None:
        """Register a handler, replacing any handler for the same kind.

        Args:
            handler: The handler to register
        """
        with self._lock:
            self._handlers[handler.kind] = handler

    def get(self, kind: "AssetKind | str") -> AssetHandler | None:
        """Get the handler for a kind.

        Args:
            kind: AssetKind or its string tag

        Returns:
            The handler, or None if no handler is registered
        """
        resolved = coerce_kind(kind)
        if resolved is None:
            return None
        with self._lock:
            return self._handlers.get(resolved)

    def require(self, kind: "AssetKind | str") -> AssetHandler:
        """Get the handler for a kind.

        Raises:
            UnknownAssetKindError: If no handler is registered
        """
        handler = self.get(kind)
        if handler is None:
            tag = kind.value if isinstance(kind, AssetKind) else kind
            raise UnknownAssetKindError(f"Unknown asset kind: {tag}")
        return handler

    def kinds(self) -> list[AssetKind]:
        """Registered kinds in a stable order: skill, mcp, then the rest."""
        with self._lock:
            registered = list(self._handlers)
        ordered = [k for k in _PRIMARY_KINDS if k in registered]
        ordered += [k for k in registered if k not in _PRIMARY_KINDS]
        return ordered

    def all(self) -> list[AssetHandler]:
        """Registered handlers in ``kinds()`` order."""
        with self._lock:
            handlers = dict(self._handlers)
        return [handlers[k] for k in self.kinds()]


def default_handler_registry() -> HandlerRegistry:
    """Build a registry holding the built-in skill, MCP and agent handlers."""
    from duckrow.assets.agent import AgentHandler
    from duckrow.assets.mcp import McpHandler
    from duckrow.assets.skill import SkillHandler

    return HandlerRegistry([SkillHandler(), McpHandler(), AgentHandler()])
