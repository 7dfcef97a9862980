from __future__ import annotations

"""Plugin system for bundlekit.

This package provides:
- The plugin index, persisted per scope (global and project-local)
- The install workflow with version reuse and rollback
- Fetchers for repository, path and git sources
- The plugin authoring API and hook events
- Projection of installed plugins into lockfile specifications
"""

from .api import PluginAPI, hook
from .definition import IndexDefinition, LockfileDefinition, render_lockfile
from .exceptions import (
    PluginError,
    ConfigurationError,
    PluginNotFoundError,
    MalformattedPlugin,
    PluginValidationError,
    CommandConflict,
    SourceConflict,
    CorruptIndex,
    PersistenceError,
    PluginInstallError,
    PluginNotInstalledError,
    UndefinedCommandError,
)
from .fetchers import FetchResult, GitFetcher, PathFetcher, RepositoryFetcher, SourceFetcher
from .index import PluginIndex
from .installer import InstallOptions, InstallReport, InstallState, PluginInstaller, PluginInstallResult
from .loader import LoadedPlugin, ManifestLoader
from .manager import PluginManager
from .metadata import PluginMetadata, validate_plugin_metadata
from .models import (
    Dependency,
    IndexState,
    LazySpecification,
    PluginRecord,
    Scope,
    SourceDescriptor,
    SourceKind,
    SourceList,
)
from .paths import PluginPaths, find_project_root
from .reporter import ConsoleReporter, RecordingReporter, StatusReporter

__all__ = [
    # Core classes
    "PluginManager",
    "PluginIndex",
    "PluginInstaller",
    "ManifestLoader",
    "SourceFetcher",
    "RepositoryFetcher",
    "PathFetcher",
    "GitFetcher",
    "PluginPaths",

    # Plugin authoring
    "PluginAPI",
    "hook",

    # Data models
    "Dependency",
    "FetchResult",
    "IndexDefinition",
    "IndexState",
    "InstallOptions",
    "InstallReport",
    "InstallState",
    "LazySpecification",
    "LoadedPlugin",
    "LockfileDefinition",
    "PluginInstallResult",
    "PluginMetadata",
    "PluginRecord",
    "Scope",
    "SourceDescriptor",
    "SourceKind",
    "SourceList",

    # Reporting
    "StatusReporter",
    "ConsoleReporter",
    "RecordingReporter",

    # Exceptions
    "PluginError",
    "ConfigurationError",
    "PluginNotFoundError",
    "MalformattedPlugin",
    "PluginValidationError",
    "CommandConflict",
    "SourceConflict",
    "CorruptIndex",
    "PersistenceError",
    "PluginInstallError",
    "PluginNotInstalledError",
    "UndefinedCommandError",

    # Utility functions
    "find_project_root",
    "render_lockfile",
    "validate_plugin_metadata",
]
