from __future__ import annotations

"""Plugin roots and project detection.

The global root holds plugins shared by every project of the user; a project
(any directory tree with a ``Kitfile`` at its top) gets its own local root.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_ROOT = "~/.bundlekit/plugin"
DEFAULT_LOCAL_DIR = ".bundlekit/plugin"
DEFAULT_PROJECT_FILE = "Kitfile"
INDEX_FILE_NAME = "index"


def find_project_root(start: Path, marker: str = DEFAULT_PROJECT_FILE) -> Optional[Path]:
    """Walk up from ``start`` to the first directory containing ``marker``."""
    current = Path(start).resolve()
    for candidate in [current] + list(current.parents):
        if (candidate / marker).is_file():
            return candidate
    return None


@dataclass(frozen=True)
class PluginPaths:
    """Locations of the plugin roots and their index files.

    Args:
        global_root: Plugin home shared across projects
        project_root: Root of the current project, None outside a project
        local_dir_name: Local plugin root, relative to ``project_root``
        force_global: Install into the global root even inside a project
    """

    global_root: Path
    project_root: Optional[Path] = None
    local_dir_name: str = DEFAULT_LOCAL_DIR
    force_global: bool = False

    @classmethod
    def from_config(cls, config, cwd: Optional[Path] = None,
                    force_global: bool = False) -> 'PluginPaths':
        """Build paths from a :class:`~bundlekit.config.ConfigManager`."""
        settings = config.get_settings()
        global_root = Path(os.path.expanduser(settings.get("global_root") or DEFAULT_GLOBAL_ROOT))

        explicit_project = settings.get("project_root")
        if explicit_project:
            project_root: Optional[Path] = Path(explicit_project).resolve()
        else:
            project_root = find_project_root(
                cwd or Path.cwd(), settings.get("project_file") or DEFAULT_PROJECT_FILE
            )

        paths = cls(
            global_root=global_root.resolve(),
            project_root=project_root,
            local_dir_name=settings.get("local_dir") or DEFAULT_LOCAL_DIR,
            force_global=force_global
        )
        logger.debug("Plugin roots: global=%s local=%s", paths.global_root, paths.local_root)
        return paths

    @property
    def in_project(self) -> bool:
        return self.project_root is not None

    @property
    def local_root(self) -> Optional[Path]:
        if self.project_root is None:
            return None
        return self.project_root / self.local_dir_name

    @property
    def root(self) -> Path:
        """Root that newly installed plugins go into."""
        if self.in_project and not self.force_global:
            return self.local_root  # type: ignore[return-value]
        return self.global_root

    @property
    def global_index_file(self) -> Path:
        return self.global_root / INDEX_FILE_NAME

    @property
    def local_index_file(self) -> Optional[Path]:
        local_root = self.local_root
        return local_root / INDEX_FILE_NAME if local_root is not None else None

    def managed_roots(self) -> List[Path]:
        roots = [self.global_root]
        if self.local_root is not None:
            roots.append(self.local_root)
        return roots
