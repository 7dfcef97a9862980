from __future__ import annotations

"""Plugin metadata schema and validation.

A plugin payload may ship a ``<name>.plugin.json`` file next to its entry
file. When present, the file's name and version are authoritative for the
installed plugin and its ``require_paths`` become the plugin's load paths.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from packaging.version import InvalidVersion, Version

from .exceptions import PluginValidationError
from .models import SourceDescriptor

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".plugin.json"
DEFAULT_REQUIRE_PATHS = ["lib"]

# Plugin metadata JSON Schema
PLUGIN_SCHEMA = {
    "type": "object",
    "required": [
        "name",
        "version"
    ],
    "properties": {
        "name": {
            "type": "string",
            "minLength": 1,
            "maxLength": 100,
            "description": "Plugin name, as used on the command line"
        },
        "version": {
            "type": "string",
            "minLength": 1,
            "description": "Plugin version (e.g., 1.0, 2.1.0rc1)"
        },
        "require_paths": {
            "type": "array",
            "items": {
                "type": "string"
            },
            "description": "Directories, relative to the plugin, added to sys.path"
        },
        "summary": {
            "type": "string",
            "maxLength": 500,
            "description": "One-line plugin description"
        },
        "homepage": {
            "type": "string",
            "description": "Plugin homepage URL"
        }
    },
    "additionalProperties": False
}


def metadata_file_name(name: str) -> str:
    return f"{name}{METADATA_SUFFIX}"


@dataclass
class PluginMetadata:
    """Structured representation of a plugin metadata file.

    ``full_path`` is the directory the plugin is installed in and ``source``
    the location it came from, filled in by whoever reads the file.
    """

    name: str
    version: str
    require_paths: List[str] = field(default_factory=lambda: list(DEFAULT_REQUIRE_PATHS))
    summary: Optional[str] = None
    homepage: Optional[str] = None
    full_path: Optional[str] = None
    source: Optional[SourceDescriptor] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], full_path: Optional[str] = None) -> 'PluginMetadata':
        """Create PluginMetadata from validated dictionary."""
        return cls(
            name=data["name"],
            version=data["version"],
            require_paths=list(data.get("require_paths", DEFAULT_REQUIRE_PATHS)),
            summary=data.get("summary"),
            homepage=data.get("homepage"),
            full_path=full_path
        )

    @property
    def parsed_version(self) -> Version:
        return Version(self.version)

    @property
    def full_name(self) -> str:
        return f"{self.name}-{self.version}"

    def with_source(self, source: Optional[SourceDescriptor]) -> 'PluginMetadata':
        """Copy of this record attributed to ``source``."""
        return replace(self, source=source)

    def full_require_paths(self) -> List[str]:
        """Absolute load paths, relative entries resolved against ``full_path``."""
        base = Path(self.full_path) if self.full_path else Path.cwd()
        return [str((base / p).resolve()) for p in self.require_paths]


def find_metadata_file(plugin_dir: Path, name: str) -> Optional[Path]:
    candidate = Path(plugin_dir) / metadata_file_name(name)
    return candidate if candidate.is_file() else None


def read_plugin_metadata(plugin_dir: Path, name: str) -> Optional[PluginMetadata]:
    """Read and validate ``<name>.plugin.json`` from ``plugin_dir``.

    Returns:
        PluginMetadata, or None when the plugin ships no metadata file

    Raises:
        PluginValidationError: If the file exists but is invalid
    """
    metadata_path = find_metadata_file(plugin_dir, name)
    if metadata_path is None:
        return None
    return validate_plugin_metadata(metadata_path, Path(plugin_dir))


def validate_plugin_metadata(metadata_path: Path, plugin_dir: Path) -> PluginMetadata:
    """Validate plugin metadata from a metadata file.

    Args:
        metadata_path: Path to the ``.plugin.json`` file
        plugin_dir: Path to plugin directory

    Returns:
        PluginMetadata: Validated metadata object

    Raises:
        PluginValidationError: If validation fails
    """
    if not metadata_path.exists():
        raise PluginValidationError(f"Plugin metadata file not found: {metadata_path}")

    try:
        with open(metadata_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise PluginValidationError(f"Invalid JSON in plugin metadata: {e}", cause=e)
    except OSError as e:
        raise PluginValidationError(f"Failed to read plugin metadata: {e}", cause=e)

    if not isinstance(data, dict):
        raise PluginValidationError(
            "Plugin metadata validation failed",
            validation_errors=["Plugin metadata must be a JSON object"]
        )

    validation_errors = _validate_against_schema(data, PLUGIN_SCHEMA)
    if validation_errors:
        raise PluginValidationError(
            "Plugin metadata validation failed: " + "; ".join(validation_errors),
            plugin_id=data.get("name") if isinstance(data.get("name"), str) else None,
            validation_errors=validation_errors
        )

    metadata = PluginMetadata.from_dict(data, full_path=str(Path(plugin_dir).resolve()))
    logger.debug("Plugin metadata validated successfully: %s v%s",
                 metadata.name, metadata.version)
    return metadata


def _validate_against_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
    errors: List[str] = []

    for required in schema.get("required", []):
        if required not in data:
            errors.append(f"Missing required field: {required}")

    properties = schema.get("properties", {})
    for name, value in data.items():
        if name in properties:
            errors.extend(_validate_field(name, value, properties[name]))
        elif not schema.get("additionalProperties", True):
            errors.append(f"Unknown field: {name}")

    version = data.get("version")
    if isinstance(version, str) and version:
        try:
            Version(version)
        except InvalidVersion:
            errors.append(f"Field 'version' is not a valid version: {version}")

    return errors


def _validate_field(field_name: str, value: Any, field_schema: Dict[str, Any]) -> List[str]:
    """Validate individual field against its schema."""
    errors: List[str] = []

    expected_type = field_schema.get("type")
    if expected_type == "string" and not isinstance(value, str):
        errors.append(f"Field '{field_name}' must be a string")
    elif expected_type == "array":
        if not isinstance(value, list):
            errors.append(f"Field '{field_name}' must be an array")
        elif field_schema.get("items", {}).get("type") == "string" \
                and not all(isinstance(item, str) for item in value):
            errors.append(f"Field '{field_name}' must contain only strings")

    if isinstance(value, str):
        if "minLength" in field_schema and len(value) < field_schema["minLength"]:
            errors.append(f"Field '{field_name}' is too short (minimum {field_schema['minLength']} characters)")
        if "maxLength" in field_schema and len(value) > field_schema["maxLength"]:
            errors.append(f"Field '{field_name}' is too long (maximum {field_schema['maxLength']} characters)")

    return errors
