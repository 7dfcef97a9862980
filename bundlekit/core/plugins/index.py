from __future__ import annotations

"""Plugin index.

The index records which plugins are installed, where they live and which
commands, source handlers and hooks each one declares. It merges a global
store (shared by every project) with a local store (present only inside a
project); a plugin name defined locally shadows the global definition.

One :class:`PluginIndex` is built per invocation and handed to whoever needs
it.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from packaging.version import Version

from . import definition
from .exceptions import CommandConflict, SourceConflict
from .models import Dependency, IndexState, PluginRecord, Scope, SourceList
from .paths import PluginPaths
from .scope_store import ScopeStore, merge_state

logger = logging.getLogger(__name__)


def _owned_by_others(keys: Iterable[str], name: str, *maps: Dict[str, str]) -> List[str]:
    conflicts: List[str] = []
    for key in keys:
        for owners in maps:
            owner = owners.get(key)
            if owner is not None and owner != name:
                conflicts.append(key)
                break
    return conflicts


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


class PluginIndex:
    """Merged, queryable view over the global and local plugin stores.

    Args:
        paths: Plugin roots; the local store is used only when
            ``paths.in_project`` is true
    """

    def __init__(self, paths: PluginPaths) -> None:
        self.paths = paths
        self._logger = logging.getLogger(f"{__name__}.PluginIndex")

        self._global = ScopeStore(paths.global_index_file, Scope.GLOBAL, tolerate_read_errors=True)
        self._global.load()

        self._local: Optional[ScopeStore] = None
        if paths.in_project:
            self._local = ScopeStore(paths.local_index_file, Scope.LOCAL)
            self._local.load()

        self._view = self._build_view()

    # ---- Stores and merged view ----

    def _stores(self) -> List[ScopeStore]:
        return [s for s in (self._global, self._local) if s is not None]

    def _owning_store(self) -> ScopeStore:
        if self._local is not None and not self.paths.force_global:
            return self._local
        return self._global

    def _build_view(self, replace: Optional[ScopeStore] = None,
                    replacement: Optional[IndexState] = None) -> IndexState:
        view = IndexState()
        for store in self._stores():
            state = replacement if store is replace else store.state
            include_sources = store.scope is Scope.LOCAL or self._local is None
            merge_state(view, state, include_sources)
        return view

    # ---- Mutation ----

    def register(self, name: str, path: str, load_paths: Sequence[str],
                 commands: Sequence[str], sources: Sequence[str],
                 hooks: Sequence[str]) -> None:
        """Record a plugin and everything it declares.

        The plugin's previous declarations, if any, are replaced. Nothing
        changes, in memory or on disk, unless every check and the write
        succeed.

        Raises:
            CommandConflict: If another plugin owns one of ``commands``
            SourceConflict: If another plugin owns one of ``sources``
            PersistenceError: If the owning index file cannot be written
        """
        store = self._owning_store()
        candidate = store.state.copy()
        candidate.drop_plugin(name)
        view = self._build_view(store, candidate)

        commands = _unique(commands)
        sources = _unique(sources)
        hooks = _unique(hooks)

        common = _owned_by_others(commands, name, view.commands, candidate.commands)
        if common:
            raise CommandConflict(name, common)

        common = _owned_by_others(sources, name, view.sources, candidate.sources)
        if common:
            raise SourceConflict(name, common)

        for command in commands:
            candidate.commands[command] = name
        for source_type in sources:
            candidate.sources[source_type] = name
        for event in hooks:
            subscribers = candidate.hooks.setdefault(event, [])
            if name not in subscribers:
                subscribers.append(name)
        candidate.plugin_paths[name] = str(path)
        candidate.load_paths[name] = [str(p) for p in load_paths]

        store.save(candidate, plugin_id=name)
        self._view = self._build_view()
        self._logger.info("Registered plugin %s in %s index (%d commands, %d sources, %d hooks)",
                          name, store.scope.value, len(commands), len(sources), len(hooks))

    def unregister(self, name: str) -> None:
        """Forget the record of ``name`` that callers currently observe.

        Inside a project a local record is removed and a global record of the
        same name is kept for use outside the project. Unknown names are
        ignored.

        Raises:
            PersistenceError: If the index file cannot be written
        """
        store = self._store_defining(name)
        if store is None:
            return

        candidate = store.state.copy()
        candidate.drop_plugin(name)
        store.save(candidate, plugin_id=name)
        self._view = self._build_view()
        self._logger.info("Unregistered plugin %s from %s index", name, store.scope.value)

    def _store_defining(self, name: str) -> Optional[ScopeStore]:
        for store in reversed(self._stores()):
            if name in store.state.plugin_names():
                return store
        return None

    # ---- Queries ----

    @property
    def commands(self) -> Dict[str, str]:
        """Copy of the merged command map."""
        return dict(self._view.commands)

    def state(self) -> IndexState:
        """Copy of the whole merged view."""
        return self._view.copy()

    def installed(self, name: str) -> bool:
        return name in self._view.plugin_paths

    def installed_plugins(self) -> List[str]:
        return list(self._view.plugin_paths)

    def plugin_path(self, name: str) -> Optional[str]:
        return self._view.plugin_paths.get(name)

    def load_paths(self, name: str) -> List[str]:
        return list(self._view.load_paths.get(name, []))

    def command_plugin(self, command: str) -> Optional[str]:
        return self._view.commands.get(command)

    def source_plugin(self, source_type: str) -> Optional[str]:
        return self._view.sources.get(source_type)

    def hook_plugins(self, event: str) -> List[str]:
        return list(self._view.hooks.get(event, []))

    def plugin_commands(self, name: str) -> List[str]:
        return [command for command, owner in self._view.commands.items() if owner == name]

    def plugin_sources(self, name: str) -> List[str]:
        return [source_type for source_type, owner in self._view.sources.items() if owner == name]

    def plugin_hooks(self, name: str) -> List[str]:
        return [event for event, names in self._view.hooks.items() if name in names]

    def scope_of(self, name: str) -> Optional[Scope]:
        if self._local is not None and name in self._local.state.plugin_paths:
            return Scope.LOCAL
        if name in self._global.state.plugin_paths:
            return Scope.GLOBAL
        return None

    def installed_in_plugin_root(self, name: str) -> bool:
        """Whether ``name`` lives under a root this tool manages.

        Plugins installed from a user-supplied path are used in place and are
        not managed.
        """
        path = self.plugin_path(name)
        if path is None:
            return False
        resolved = Path(path).resolve()
        for root in self.paths.managed_roots():
            root = root.resolve()
            if resolved != root and root in resolved.parents:
                return True
        return False

    def installed_version(self, name: str) -> Optional[Version]:
        path = self.plugin_path(name)
        if path is None:
            return None
        version, _ = definition.infer_version(name, path)
        return version

    def record(self, name: str) -> Optional[PluginRecord]:
        scope = self.scope_of(name)
        if scope is None:
            return None
        return PluginRecord(
            name=name,
            install_path=self._view.plugin_paths[name],
            load_paths=tuple(self.load_paths(name)),
            commands=frozenset(self.plugin_commands(name)),
            source_handlers=frozenset(self.plugin_sources(name)),
            hooks=frozenset(self.plugin_hooks(name)),
            scope=scope
        )

    # ---- Specification projection ----

    def project_specs(self, sources: SourceList, dependencies: Sequence[Dependency],
                      mode: str = definition.LAZY) -> List[definition.Specification]:
        return definition.project_specs(self, sources, dependencies, mode)

    def generate_lockfile(self, sources: SourceList, dependencies: Sequence[Dependency],
                          generator: definition.LockfileGenerator = definition.render_lockfile) -> str:
        """Render a lockfile for the installed plugins matching ``dependencies``."""
        specs = self.project_specs(sources, dependencies, definition.LAZY)
        return generator(definition.IndexDefinition(sources, specs, list(dependencies)))
