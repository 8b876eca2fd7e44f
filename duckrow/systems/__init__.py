"""Coding-tool systems that installed assets are fanned out to."""

from duckrow.systems.base import BaseSystem, System, SystemLayout
from duckrow.systems.catalog import SystemCatalog, default_catalog

__all__ = [
    "BaseSystem",
    "System",
    "SystemCatalog",
    "SystemLayout",
    "default_catalog",
]
