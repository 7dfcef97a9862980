from __future__ import annotations

"""Plugin entry file loading.

Executes a plugin's entry file (``plugins.py`` by default) and captures the
commands, source handlers and hooks it declares through
:mod:`bundlekit.core.plugins.api`.
"""

import hashlib
import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Type

from .api import PluginAPI, collecting
from .exceptions import MalformattedPlugin, PluginError

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_FILE = "plugins.py"


@dataclass
class LoadedPlugin:
    """Declarations captured from one plugin entry file."""

    name: str
    path: str
    commands: Dict[str, Type[PluginAPI]] = field(default_factory=dict)
    sources: Dict[str, Type[PluginAPI]] = field(default_factory=dict)
    hooks: Dict[str, List[Callable]] = field(default_factory=dict)

    @property
    def command_names(self) -> List[str]:
        return list(self.commands)

    @property
    def source_types(self) -> List[str]:
        return list(self.sources)

    @property
    def hook_events(self) -> List[str]:
        return list(self.hooks)


def activate_load_paths(load_paths: Sequence[str]) -> None:
    """Put ``load_paths`` at the front of ``sys.path``, keeping their order."""
    for entry in reversed([str(p) for p in load_paths]):
        if entry not in sys.path:
            sys.path.insert(0, entry)


class ManifestLoader:
    """Executes plugin entry files.

    Args:
        entry_file: File name of the entry file inside a plugin directory
    """

    def __init__(self, entry_file: str = DEFAULT_ENTRY_FILE) -> None:
        self.entry_file = entry_file
        self._logger = logging.getLogger(f"{__name__}.ManifestLoader")

    def load(self, name: str, path: str, load_paths: Sequence[str] = (),
             keep_load_paths: bool = False) -> LoadedPlugin:
        """Execute the entry file of the plugin installed at ``path``.

        Args:
            name: Plugin name
            path: Plugin install directory
            load_paths: Directories placed on ``sys.path`` while the entry
                file runs
            keep_load_paths: Leave ``load_paths`` on ``sys.path`` afterwards,
                as runtime dispatch needs them for lazy imports

        Returns:
            LoadedPlugin with the captured declarations

        Raises:
            MalformattedPlugin: If the entry file is missing or raises
        """
        plugin_dir = Path(path)
        entry = plugin_dir / self.entry_file
        if not entry.is_file():
            raise MalformattedPlugin(
                f"{self.entry_file} was not found in the plugin.",
                plugin_id=name
            )

        module_name = self._module_name(name, entry)
        spec = importlib.util.spec_from_file_location(module_name, str(entry))
        if spec is None or spec.loader is None:
            raise MalformattedPlugin(f"Cannot import {entry}", plugin_id=name)
        module = importlib.util.module_from_spec(spec)

        original_path = sys.path.copy()
        activate_load_paths(list(load_paths) + [str(plugin_dir)])
        sys.modules[module_name] = module
        try:
            with collecting() as collector:
                spec.loader.exec_module(module)
        except PluginError:
            sys.modules.pop(module_name, None)
            raise
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise MalformattedPlugin(f"{type(e).__name__}: {e}", plugin_id=name, cause=e)
        finally:
            if not keep_load_paths:
                sys.path[:] = original_path

        loaded = LoadedPlugin(
            name=name,
            path=str(plugin_dir),
            commands=dict(collector.commands),
            sources=dict(collector.sources),
            hooks={event: list(funcs) for event, funcs in collector.hooks.items()}
        )
        self._logger.debug("Loaded plugin %s from %s: commands=%s sources=%s hooks=%s",
                           name, entry, loaded.command_names, loaded.source_types,
                           loaded.hook_events)
        return loaded

    @staticmethod
    def _module_name(name: str, entry: Path) -> str:
        digest = hashlib.sha1(str(entry.resolve()).encode("utf-8")).hexdigest()[:12]
        safe = "".join(c if c.isalnum() else "_" for c in name)
        return f"bundlekit_plugin_{safe}_{digest}"
