from __future__ import annotations

"""Plugin system exception classes.

Provides the error taxonomy for plugin index and installation operations.
Every exception carries the offending plugin (when known) so user-visible
failures always name the plugin and the rule that was violated.
"""

from typing import Optional, Sequence


class PluginError(Exception):
    """Base exception for all plugin-related errors.
    
    All plugin exceptions inherit from this base class so callers can
    handle index, fetch and load failures uniformly.
    """
    
    def __init__(self, message: str, plugin_id: Optional[str] = None, 
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.plugin_id = plugin_id
        self.cause = cause
    
    def __str__(self) -> str:
        if self.plugin_id:
            return f"[Plugin: {self.plugin_id}] {self.message}"
        return self.message


class ConfigurationError(PluginError):
    """Raised for conflicting or invalid install options.
    
    Always raised before any fetch or filesystem work takes place.
    """
    pass


class PluginNotFoundError(PluginError):
    """Raised when a requested plugin or version is absent from its source."""
    
    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 source: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.source = source


class MalformattedPlugin(PluginError):
    """Raised when a fetched plugin lacks its entry file or fails to load.
    
    This includes a missing ``plugins.py``, exceptions raised while the
    entry file executes, and invalid hook declarations.
    """
    pass


class PluginValidationError(MalformattedPlugin):
    """Raised when a plugin metadata file is invalid."""
    
    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 validation_errors: Optional[list[str]] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.validation_errors = validation_errors or []


def _quote_all(names: Sequence[str]) -> str:
    return ", ".join(f"`{name}`" for name in names)


class CommandConflict(PluginError):
    """Raised when a plugin declares commands already owned by another plugin."""
    
    def __init__(self, plugin: str, commands: Sequence[str]) -> None:
        self.commands = list(commands)
        super().__init__(
            f"Command(s) {_quote_all(self.commands)} declared by {plugin} are already registered.",
            plugin_id=plugin
        )


class SourceConflict(PluginError):
    """Raised when a plugin declares source types already owned by another plugin."""
    
    def __init__(self, plugin: str, sources: Sequence[str]) -> None:
        self.sources = list(sources)
        super().__init__(
            f"Source(s) {_quote_all(self.sources)} declared by {plugin} are already registered.",
            plugin_id=plugin
        )


class CorruptIndex(PluginError):
    """Raised when a persisted index file is not valid structured data."""
    
    def __init__(self, message: str, path: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path


class PersistenceError(PluginError):
    """Raised when an index file cannot be read or written.
    
    Reads of the global index never raise this; local reads and every
    write do.
    """
    
    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 path: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.path = path


class PluginInstallError(PluginError):
    """Raised when a plugin could not be installed."""
    pass


class PluginNotInstalledError(PluginError):
    """Raised when declared plugins are required but not installed."""
    
    def __init__(self, message: str, missing: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class UndefinedCommandError(PluginError):
    """Raised when no installed plugin handles a command."""
    
    def __init__(self, command: str) -> None:
        super().__init__(f'Could not find command "{command}".')
        self.command = command
