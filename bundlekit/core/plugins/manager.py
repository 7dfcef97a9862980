from __future__ import annotations

"""Plugin management facade.

Provides the PluginManager class: one object per invocation that owns the
plugin index and wires it to the install workflow, uninstallation, listing
and runtime dispatch of plugin commands, source handlers and hooks.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type

from bundlekit.config import ConfigManager

from .api import PluginAPI
from .events import validate_event
from .exceptions import (
    ConfigurationError,
    MalformattedPlugin,
    PluginNotFoundError,
    PluginNotInstalledError,
    UndefinedCommandError,
)
from .fetchers import Fetcher, SourceFetcher
from .index import PluginIndex
from .installer import InstallOptions, InstallReport, PluginInstaller
from .loader import DEFAULT_ENTRY_FILE, LoadedPlugin, ManifestLoader
from .models import Dependency, SourceDescriptor, SourceList
from .paths import PluginPaths
from .reporter import ConsoleReporter, StatusReporter

logger = logging.getLogger(__name__)


class PluginManager:
    """Plugin installation, removal and dispatch.

    Args:
        config: Configuration source (the shared ConfigManager by default)
        cwd: Directory used for project detection and relative paths
        paths: Explicit plugin roots; derived from ``config`` when omitted
        force_global: Install into the global root even inside a project
        fetcher: Transport for plugin payloads
        loader: Entry file loader
        reporter: Receiver of user-facing status lines
    """

    def __init__(self, config: Optional[ConfigManager] = None, cwd: Optional[Path] = None,
                 paths: Optional[PluginPaths] = None, force_global: bool = False,
                 fetcher: Optional[Fetcher] = None, loader: Optional[ManifestLoader] = None,
                 reporter: Optional[StatusReporter] = None) -> None:
        self.config = config or ConfigManager()
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.paths = paths or PluginPaths.from_config(self.config, self.cwd, force_global)
        self.index = PluginIndex(self.paths)
        self.loader = loader or ManifestLoader(self.config.get_setting("entry_file", DEFAULT_ENTRY_FILE))
        self.fetcher = fetcher or SourceFetcher(self.cwd)
        self.reporter = reporter or ConsoleReporter()
        self.installer = PluginInstaller(self.index, self.paths, self.fetcher, self.loader, self.reporter)

        self._loaded: Dict[str, LoadedPlugin] = {}
        self._logger = logging.getLogger(f"{__name__}.PluginManager")
        self._logger.debug("Plugin manager ready (installing into %s)", self.paths.root)

    # -------------------------------------------------------------------------
    # Installation
    # -------------------------------------------------------------------------

    def install(self, names: Sequence[str], options: Optional[InstallOptions] = None) -> InstallReport:
        """Install plugins by name.

        Raises:
            ConfigurationError: For invalid flags, or when no name is given
        """
        if not names:
            raise ConfigurationError("Specify at least one plugin to install")
        return self.installer.install(
            names, options or InstallOptions(), self.config.get_setting("default_source")
        )

    def install_declared(self, dependencies: Sequence[Dependency],
                         sources: Optional[SourceList] = None) -> InstallReport:
        """Install declared dependencies, reusing those already satisfied."""
        if sources is None:
            default_source = self.config.get_setting("default_source")
            sources = SourceList(
                default_source=SourceDescriptor.registry(default_source) if default_source else None
            )
        return self.installer.install_declared(dependencies, sources)

    def missing_plugins(self, dependencies: Sequence[Dependency]) -> List[Dependency]:
        """Dependencies with no usable installation.

        A plugin whose install directory disappeared counts as missing.
        """
        missing = []
        for dep in dependencies:
            path = self.index.plugin_path(dep.name)
            if path is None or not Path(path).exists():
                missing.append(dep)
        return missing

    def ensure_installed(self, dependencies: Sequence[Dependency]) -> None:
        """Raise unless every dependency is installed.

        Raises:
            PluginNotInstalledError: Naming each missing plugin
        """
        missing = self.missing_plugins(dependencies)
        if missing:
            raise PluginNotInstalledError(
                "\n".join(f"Plugin {dep} is not installed" for dep in missing),
                missing=[dep.name for dep in missing]
            )

    # -------------------------------------------------------------------------
    # Removal and listing
    # -------------------------------------------------------------------------

    def uninstall(self, names: Sequence[str] = (), all_plugins: bool = False) -> List[str]:
        """Remove plugins from the index and delete their managed directories.

        Returns:
            Names that were uninstalled

        Raises:
            ConfigurationError: If neither names nor ``all_plugins`` are given
        """
        if all_plugins:
            names = self.index.installed_plugins()
            if not names:
                self.reporter.info("No plugins to uninstall")
                return []
        elif not names:
            raise ConfigurationError(
                "No plugins to uninstall. Specify at least 1 plugin to uninstall.\n"
                "Use --all option to uninstall all the installed plugins."
            )

        removed = []
        for name in names:
            if not self.index.installed(name):
                self.reporter.error(f"Plugin {name} is not installed")
                continue

            path = self.index.plugin_path(name)
            managed = self.index.installed_in_plugin_root(name)
            self.index.unregister(name)
            self._loaded.pop(name, None)
            if managed and path and Path(path).exists():
                shutil.rmtree(path)
                self._logger.debug("Removed plugin directory %s", path)

            self.reporter.info(f"Uninstalled plugin {name}")
            removed.append(name)
        return removed

    def list_plugins(self) -> str:
        """Installed plugins and the commands each provides."""
        names = self.index.installed_plugins()
        if not names:
            text = "No plugins installed"
        else:
            blocks = []
            for name in names:
                commands = "".join(f"  {command}\n" for command in self.index.plugin_commands(name))
                blocks.append(f"{name}\n-----\n{commands}\n")
            text = "".join(blocks)
        self.reporter.info(text)
        return text

    def generate_lockfile(self, dependencies: Sequence[Dependency],
                          sources: Optional[SourceList] = None) -> str:
        return self.index.generate_lockfile(sources or SourceList(), dependencies)

    # -------------------------------------------------------------------------
    # Runtime dispatch
    # -------------------------------------------------------------------------

    def command_defined(self, command: str) -> bool:
        return self.index.command_plugin(command) is not None

    def exec_command(self, command: str, args: Sequence[str] = ()) -> Any:
        """Run a plugin-provided command.

        Raises:
            UndefinedCommandError: If no installed plugin provides ``command``
            MalformattedPlugin: If the owning plugin no longer declares it
        """
        owner = self.index.command_plugin(command)
        if owner is None:
            raise UndefinedCommandError(command)

        command_class = self._load(owner).commands.get(command)
        if command_class is None:
            raise MalformattedPlugin(
                f"Plugin {owner} is registered for command '{command}' but does not declare it",
                plugin_id=owner
            )
        return command_class().exec(command, list(args))

    def source_handler(self, source_type: str) -> Type[PluginAPI]:
        """Class handling dependency sources of ``source_type``.

        Raises:
            PluginNotFoundError: If no installed plugin handles the type
        """
        owner = self.index.source_plugin(source_type)
        if owner is None:
            raise PluginNotFoundError(f"No plugin sources available for {source_type}")

        handler = self._load(owner).sources.get(source_type)
        if handler is None:
            raise MalformattedPlugin(
                f"Plugin {owner} is registered for source '{source_type}' but does not declare it",
                plugin_id=owner
            )
        return handler

    def run_hooks(self, event: str, *args: Any, **kwargs: Any) -> None:
        """Call every hook subscribed to ``event``, in registration order."""
        validate_event(event)
        for name in self.index.hook_plugins(event):
            for func in self._load(name).hooks.get(event, []):
                func(*args, **kwargs)

    def _load(self, name: str) -> LoadedPlugin:
        loaded = self._loaded.get(name)
        if loaded is None:
            path = self.index.plugin_path(name)
            if path is None:
                raise PluginNotInstalledError(f"Plugin {name} is not installed", missing=[name])
            loaded = self.loader.load(name, path, self.index.load_paths(name), keep_load_paths=True)
            self._loaded[name] = loaded
        return loaded
