from __future__ import annotations

"""Configuration loading and access helpers.

Loads the YAML files packaged with *bundlekit* and merges them with user
overrides from the user configuration directory.

On Windows: ``%LOCALAPPDATA%\\Bundlekit\\config\\*.yml``
On Unix: ``~/.bundlekit/config/*.yml``

``BUNDLEKIT_CONFIG_DIR`` points the user directory somewhere else.
"""

import logging
import os
from importlib.resources import files
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

__all__ = ["ConfigManager"]

ENV_CONFIG_DIR = "BUNDLEKIT_CONFIG_DIR"
ENV_USER_PLUGIN = "BUNDLEKIT_USER_PLUGIN"
ENV_SOURCE = "BUNDLEKIT_SOURCE"
ENV_PROJECT = "BUNDLEKIT_PROJECT"


def _get_user_config_dir() -> Path:
    """Get the user configuration directory."""
    override = os.environ.get(ENV_CONFIG_DIR)
    if override:
        return Path(override)
    if os.name == 'nt':  # Windows
        local_appdata = os.environ.get('LOCALAPPDATA')
        if local_appdata:
            return Path(local_appdata) / "Bundlekit" / "config"
        return Path.home() / "AppData" / "Local" / "Bundlekit" / "config"
    return Path.home() / ".bundlekit" / "config"


class _Singleton(type):
    _instance: "ConfigManager" | None = None

    def __call__(cls, *args, **kwargs):  # type: ignore[no-self-use]
        if cls._instance is None:
            cls._instance = super().__call__(*args, **kwargs)
        return cls._instance


class ConfigManager(metaclass=_Singleton):
    """Lazy-loads and exposes configuration sections as dictionaries."""

    _DEFAULT_FILENAMES = {
        "settings": "settings.yml",
        "logging": "logging.yml",
    }

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        self._ensure_loaded()

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def get_settings(self) -> Dict[str, Any]:
        """Plugin settings with environment overrides applied."""
        settings = dict(self._data.get("settings", {}))
        if os.environ.get(ENV_USER_PLUGIN):
            settings["global_root"] = os.environ[ENV_USER_PLUGIN]
        if os.environ.get(ENV_SOURCE):
            settings["default_source"] = os.environ[ENV_SOURCE]
        if os.environ.get(ENV_PROJECT):
            settings["project_root"] = os.environ[ENV_PROJECT]
        return settings

    def get_setting(self, key: str, default: Any = None) -> Any:
        value = self.get_settings().get(key)
        return default if value is None else value

    def get_logging_config(self) -> Dict[str, Any]:
        return self._data.get("logging", {})

    # ------------------------------------------------------------------
    # Internal loading logic
    # ------------------------------------------------------------------
    def _ensure_loaded(self) -> None:
        if self._data:
            return  # already loaded

        startup_summary = []
        user_config_dir = _get_user_config_dir()
        package_dir = files(__package__)

        for key, filename in self._DEFAULT_FILENAMES.items():
            merged_cfg: Dict[str, Any] = {}
            status = "missing"

            # 1. load packaged default
            try:
                packaged_data = yaml.safe_load(package_dir.joinpath(filename).read_text(encoding="utf-8")) or {}
                merged_cfg.update(packaged_data)
                status = "loaded"
            except (FileNotFoundError, OSError):
                logger.error("Missing packaged config for %s (%s)", key, filename)
            except yaml.YAMLError as exc:
                logger.error("Invalid packaged config for %s (%s): %s", key, filename, exc)
                status = "invalid"

            # 2. load user overrides
            user_path = user_config_dir / filename
            if user_path.exists():
                try:
                    user_data = yaml.safe_load(user_path.read_text(encoding="utf-8")) or {}
                    if isinstance(user_data, dict):
                        merged_cfg.update(user_data)
                        if status == "loaded":
                            status = "loaded+overrides"
                    else:
                        logger.error("Ignoring user config %s: not a mapping", user_path)
                except (OSError, yaml.YAMLError) as exc:
                    logger.error("Could not parse user config %s: %s", user_path, exc)

            self._data[key] = merged_cfg
            startup_summary.append(f"{key}: {status}")

        logger.info("Config startup: %s", " | ".join(startup_summary))
