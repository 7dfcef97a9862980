from __future__ import annotations

"""Per-scope persistence of the plugin index.

A :class:`ScopeStore` owns one index file (global or project-local) and the
maps decoded from it. Every save rewrites the whole file; there is no
locking, so two processes writing the same scope race and the last writer
wins.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from . import codec
from .exceptions import CorruptIndex, PersistenceError
from .models import IndexState, Scope

logger = logging.getLogger(__name__)


def merge_state(target: IndexState, state: IndexState, include_sources: bool) -> None:
    """Overlay ``state`` onto ``target``.

    Plugins defined by ``state`` shadow any entries ``target`` holds for the
    same names; then ``state``'s entries overwrite ``target``'s.
    """
    for name in state.plugin_names():
        target.drop_plugin(name)

    target.commands.update(state.commands)
    for event, subscribers in state.hooks.items():
        merged = target.hooks.setdefault(event, [])
        for name in subscribers:
            if name not in merged:
                merged.append(name)
    target.load_paths.update({name: list(paths) for name, paths in state.load_paths.items()})
    target.plugin_paths.update(state.plugin_paths)
    if include_sources:
        target.sources.update(state.sources)


class ScopeStore:
    """One index file and the state loaded from it.

    Args:
        index_file: Location of the index file
        scope: Which registry partition this store backs
        tolerate_read_errors: Treat unreadable or corrupt files as empty
            instead of raising (the policy used for the global index)
    """

    def __init__(self, index_file: Path, scope: Scope,
                 tolerate_read_errors: bool = False) -> None:
        self.index_file = Path(index_file)
        self.scope = scope
        self.tolerate_read_errors = tolerate_read_errors
        self._state = IndexState()

    @property
    def state(self) -> IndexState:
        """Committed in-memory state. Callers must not mutate it."""
        return self._state

    def load(self) -> IndexState:
        """Read the index file into memory.

        Raises:
            PersistenceError: On a filesystem failure, unless tolerated
            CorruptIndex: On malformed content, unless tolerated
        """
        try:
            self._state = self._read()
        except (OSError, CorruptIndex) as e:
            if not self.tolerate_read_errors:
                if isinstance(e, OSError):
                    raise PersistenceError(
                        f"Could not read {self.scope.value} plugin index {self.index_file}: {e}",
                        path=str(self.index_file),
                        cause=e
                    )
                raise
            logger.warning("Ignoring unreadable %s plugin index %s: %s",
                           self.scope.value, self.index_file, e)
            self._state = IndexState()

        logger.debug("Loaded %s plugin index from %s (%d plugins)",
                     self.scope.value, self.index_file, len(self._state.plugin_paths))
        return self._state

    def _read(self) -> IndexState:
        if not self.index_file.exists() or self.index_file.stat().st_size == 0:
            return IndexState()
        return codec.decode(self.index_file.read_bytes(), source=str(self.index_file))

    def merge_into(self, target: IndexState, include_sources: Optional[bool] = None) -> None:
        """Merge this store's state into ``target``.

        Global stores leave ``sources`` out unless told otherwise; local
        stores merge all five maps.
        """
        if include_sources is None:
            include_sources = self.scope is Scope.LOCAL
        merge_state(target, self._state, include_sources)

    def save(self, state: IndexState, plugin_id: Optional[str] = None) -> None:
        """Rewrite the index file with ``state`` and adopt it as committed.

        Raises:
            PersistenceError: If the file cannot be written
        """
        payload = codec.encode(state)
        tmp_path: Optional[Path] = None
        try:
            self.index_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.index_file.name}.", suffix=".tmp",
                                            dir=str(self.index_file.parent))
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.index_file)
            tmp_path = None
        except OSError as e:
            raise PersistenceError(
                f"Could not write {self.scope.value} plugin index {self.index_file}: {e}",
                plugin_id=plugin_id,
                path=str(self.index_file),
                cause=e
            )
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()

        self._state = state
        logger.debug("Saved %s plugin index to %s", self.scope.value, self.index_file)
