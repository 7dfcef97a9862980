from __future__ import annotations

"""YAML codec for plugin index files.

An index file holds exactly five top-level mappings (see
:data:`~bundlekit.core.plugins.models.INDEX_KEYS`). Encoding and decoding are
pure functions; the scope store owns the file itself.
"""

import logging
from typing import Any, Dict, Optional

import yaml

from .exceptions import CorruptIndex
from .models import INDEX_KEYS, IndexState

logger = logging.getLogger(__name__)

__all__ = ["encode", "decode"]

_SCALAR_KEYS = {"commands", "plugin_paths", "sources"}
_LIST_KEYS = {"hooks", "load_paths"}


def encode(state: IndexState) -> bytes:
    """Serialize an index state to YAML bytes."""
    text = yaml.safe_dump(
        state.to_dict(),
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )
    return text.encode("utf-8")


def decode(payload: Optional[bytes], source: Optional[str] = None) -> IndexState:
    """Deserialize an index file payload.

    Args:
        payload: Raw file contents; ``None`` or blank means first run
        source: Path of the file, used in error messages

    Returns:
        IndexState (empty for a blank payload)

    Raises:
        CorruptIndex: If the payload is not a valid index document
    """
    if payload is None or not payload.strip():
        return IndexState()

    where = f" {source}" if source else ""
    try:
        data = yaml.safe_load(payload)
    except yaml.YAMLError as e:
        raise CorruptIndex(f"Plugin index{where} is not valid YAML: {e}", path=source, cause=e)

    if data is None:
        return IndexState()
    if not isinstance(data, dict):
        raise CorruptIndex(f"Plugin index{where} must be a mapping", path=source)

    unknown = sorted(str(k) for k in data if k not in INDEX_KEYS)
    if unknown:
        raise CorruptIndex(f"Plugin index{where} has unknown keys: {', '.join(unknown)}", path=source)

    values: Dict[str, Any] = {}
    for key in INDEX_KEYS:
        section = data.get(key)
        if section is None:
            section = {}
        values[key] = _validate_section(key, section, where, source)

    logger.debug("Decoded plugin index%s with %d plugin paths", where, len(values["plugin_paths"]))
    return IndexState(**values)


def _validate_section(key: str, section: Any, where: str, source: Optional[str]) -> Dict[str, Any]:
    if not isinstance(section, dict):
        raise CorruptIndex(f"Plugin index{where}: '{key}' must be a mapping", path=source)

    result: Dict[str, Any] = {}
    for name, value in section.items():
        if not isinstance(name, str):
            raise CorruptIndex(f"Plugin index{where}: '{key}' has a non-string key {name!r}", path=source)
        if key in _SCALAR_KEYS:
            if not isinstance(value, str):
                raise CorruptIndex(
                    f"Plugin index{where}: '{key}.{name}' must be a string", path=source
                )
            result[name] = value
        elif key in _LIST_KEYS:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise CorruptIndex(
                    f"Plugin index{where}: '{key}.{name}' must be a list of strings", path=source
                )
            result[name] = list(value)
    return result
