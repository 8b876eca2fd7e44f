"""Shared exception classes for duckrow."""


class DuckrowError(Exception):
    """Base exception for duckrow errors."""


class SourceParseError(DuckrowError):
    """Raised when a source string cannot be understood."""


class UnknownAssetKindError(DuckrowError):
    """Raised when no handler is registered for an asset kind."""


class AssetNotFoundError(DuckrowError):
    """Raised when an asset doesn't exist in a source, registry or project."""


class AssetValidationError(DuckrowError):
    """Raised when a discovered asset is malformed."""


class AlreadyInstalledError(DuckrowError):
    """Raised by a system when the asset is already present and force is not set."""


class SystemInstallError(DuckrowError):
    """Raised when a system fails to accept or release an asset."""


class UnknownSystemError(DuckrowError):
    """Raised when a system name is not in the catalog."""


class LockFileError(DuckrowError):
    """Raised when duckrow.lock.json cannot be read or written."""


class ManifestError(DuckrowError):
    """Raised when a registry's duckrow.json is missing or invalid."""


class RegistryError(DuckrowError):
    """Raised when a registry operation fails."""


class ConfigParseError(DuckrowError):
    """Raised when config.json cannot be parsed."""


class McpConfigError(DuckrowError):
    """Raised when a system's MCP config file cannot be edited."""


class CanonicalCopyError(DuckrowError):
    """Raised when an asset cannot be copied to, or backed up from, the canonical location."""
