"""Structured editing of per-system MCP config files.

Config files are JSON objects with the server entries nested under a single
top-level key (``mcpServers``, ``servers`` or ``mcp`` depending on the
system). Every file is read as JSONC, so comments and trailing commas never
break an install. ``.jsonc`` files are patched through json-five's syntax
model, which keeps comments and formatting; ``.json`` files are written back
as plain JSON. Unrelated keys are preserved either way.
"""

import json
import logging
from pathlib import Path
from typing import Any

import json5
from json5.dumper import ModelDumper
from json5.dumper import dumps as dump_model
from json5.loader import ModelLoader
from json5.loader import loads as load_model
from json5.model import Identifier, JSONObject, JSONText, KeyValuePair

from duckrow.exceptions import McpConfigError
from duckrow.utils import atomic_write_text

logger = logging.getLogger(__name__)


def preserves_comments(path: Path) -> bool:
    return path.suffix == ".jsonc"


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except OSError as e:
        raise McpConfigError(f"Failed to read {path}: {e}") from e


def _write_text(path: Path, content: str) -> None:
    try:
        atomic_write_text(path, content)
    except OSError as e:
        raise McpConfigError(f"Failed to write {path}: {e}") from e


def read_config(path: Path) -> dict[str, Any]:
    """Read an MCP config file.

    Args:
        path: Config file path

    Returns:
        The parsed object, or an empty dict if the file does not exist

    Raises:
        McpConfigError: If the file is not a JSON(C) object
    """
    content = _read_text(path)
    if not content.strip():
        return {}
    try:
        data = json5.loads(content)
    except ValueError as e:
        raise McpConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise McpConfigError(f"Expected a JSON object in {path}")
    return data


def write_config(path: Path, data: dict[str, Any]) -> None:
    """Write an MCP config file as plain JSON, creating parent directories."""
    _write_text(path, json.dumps(data, indent=2) + "\n")


def _section(data: dict[str, Any], key: str, path: Path) -> dict[str, Any] | None:
    section = data.get(key)
    if section is None:
        return None
    if not isinstance(section, dict):
        raise McpConfigError(f"Expected '{key}' to be an object in {path}")
    return section


def has_entry(path: Path, key: str, name: str) -> bool:
    """Check whether a server entry exists under ``key``."""
    section = _section(read_config(path), key, path)
    return section is not None and name in section


def list_entries(path: Path, key: str) -> list[str]:
    """Names of the server entries under ``key``, in file order."""
    section = _section(read_config(path), key, path)
    return list(section) if section else []


def set_entry(path: Path, key: str, name: str, value: dict[str, Any]) -> None:
    """Add or replace a server entry, creating the file and section if needed."""
    if preserves_comments(path):
        document = _load_document(path)
        _set_pair(document.value, key, name, value, path)
        _write_text(path, dump_model(document, dumper=ModelDumper()))
    else:
        data = read_config(path)
        section = _section(data, key, path)
        if section is None:
            section = data[key] = {}
        section[name] = value
        write_config(path, data)
    logger.debug("Wrote MCP entry %s to %s", name, path)


def remove_entry(path: Path, key: str, name: str) -> bool:
    """Remove a server entry.

    Returns:
        True if an entry was removed, False if the file or entry was absent
    """
    if not path.exists():
        return False

    if preserves_comments(path):
        document = _load_document(path)
        section = _section_node(document.value, key, path)
        index = _find_pair(section, name) if section is not None else None
        if section is None or index is None:
            return False
        del section.key_value_pairs[index]
        _write_text(path, dump_model(document, dumper=ModelDumper()))
    else:
        data = read_config(path)
        section = _section(data, key, path)
        if section is None or name not in section:
            return False
        del section[name]
        write_config(path, data)

    logger.debug("Removed MCP entry %s from %s", name, path)
    return True


# --- JSONC syntax model ---


def _load_document(path: Path) -> JSONText:
    content = _read_text(path)
    try:
        document = load_model(content if content.strip() else "{}", loader=ModelLoader())
    except ValueError as e:
        raise McpConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(document.value, JSONObject):
        raise McpConfigError(f"Expected a JSON object in {path}")
    return document


def _key_name(pair: KeyValuePair) -> str:
    if isinstance(pair.key, Identifier):
        return pair.key.name
    return pair.key.characters


def _find_pair(obj: JSONObject, name: str) -> int | None:
    """Index of the last pair named ``name``; later duplicates win, as when parsing."""
    found = None
    for i, pair in enumerate(obj.key_value_pairs):
        if _key_name(pair) == name:
            found = i
    return found


def _pair_node(name: str, value: Any) -> KeyValuePair:
    fragment = load_model(json.dumps({name: value}, indent=2), loader=ModelLoader())
    return fragment.value.key_value_pairs[0]


def _section_node(root: JSONObject, key: str, path: Path) -> JSONObject | None:
    index = _find_pair(root, key)
    if index is None:
        return None
    section = root.key_value_pairs[index].value
    if not isinstance(section, JSONObject):
        raise McpConfigError(f"Expected '{key}' to be an object in {path}")
    return section


def _set_pair(root: JSONObject, key: str, name: str, value: dict[str, Any], path: Path) -> None:
    section = _section_node(root, key, path)
    if section is None:
        root.key_value_pairs.append(_pair_node(key, {name: value}))
        return

    entry = _pair_node(name, value)
    index = _find_pair(section, name)
    if index is None:
        section.key_value_pairs.append(entry)
    else:
        section.key_value_pairs[index].value = entry.value
