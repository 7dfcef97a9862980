"""Test configuration and fixtures for the bundlekit plugin system tests.

This module provides shared fixtures: isolated plugin homes, a builder for
plugin repositories, and factories for managers wired to a recording
reporter. All test files should use the fixtures defined here for
consistency.
"""

import json
import logging
import shutil
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Iterable, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bundlekit.config.manager import ConfigManager
from bundlekit.core.plugins.manager import PluginManager
from bundlekit.core.plugins.paths import PluginPaths
from bundlekit.core.plugins.reporter import RecordingReporter

# Configure test logging
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


ENTRY_TEMPLATE = '''
from bundlekit.core.plugins.api import PluginAPI, hook


class {class_name}(PluginAPI):
    commands = {commands!r}
    sources = {sources!r}

    def exec(self, command, args):
        return "{output}:" + command + ":" + ",".join(args)
'''

HOOK_TEMPLATE = '''

@hook("{event}")
def on_{func}(log_path, *args):
    with open(log_path, "a", encoding="utf-8") as fh:
        fh.write("{name} {event}\\n")
'''


def write_plugin(plugin_dir: Path, name: str, commands: Iterable[str] = (),
                 sources: Iterable[str] = (), hooks: Iterable[str] = (),
                 output: Optional[str] = None, entry: Optional[str] = None,
                 with_entry: bool = True, metadata: Optional[dict] = None) -> Path:
    """Write a plugin payload into ``plugin_dir``.

    ``entry`` replaces the generated entry file; ``with_entry=False`` leaves
    it out entirely.
    """
    plugin_dir.mkdir(parents=True, exist_ok=True)
    if with_entry:
        if entry is None:
            class_name = "".join(part.title() for part in name.replace("_", "-").split("-")) + "Plugin"
            entry = ENTRY_TEMPLATE.format(
                class_name=class_name,
                commands=list(commands),
                sources=list(sources),
                output=output or name,
            )
            for event in hooks:
                entry += HOOK_TEMPLATE.format(event=event, func=event.replace("-", "_"), name=name)
        (plugin_dir / "plugins.py").write_text(entry, encoding="utf-8")
    if metadata is not None:
        (plugin_dir / f"{name}.plugin.json").write_text(json.dumps(metadata), encoding="utf-8")
    return plugin_dir


@pytest.fixture
def temp_dir():
    """Creates a temporary directory for test operations."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def plugin_env(temp_dir, monkeypatch):
    """Points configuration and the global plugin root into ``temp_dir``."""
    monkeypatch.setenv("BUNDLEKIT_CONFIG_DIR", str(temp_dir / "config"))
    monkeypatch.setenv("BUNDLEKIT_USER_PLUGIN", str(temp_dir / "global"))
    monkeypatch.delenv("BUNDLEKIT_SOURCE", raising=False)
    monkeypatch.delenv("BUNDLEKIT_PROJECT", raising=False)
    return temp_dir


@pytest.fixture
def project_dir(temp_dir):
    """A project root marked with a Kitfile."""
    project = temp_dir / "project"
    project.mkdir()
    (project / "Kitfile").write_text("", encoding="utf-8")
    return project


@pytest.fixture
def outside_dir(temp_dir):
    """A directory that belongs to no project."""
    outside = temp_dir / "outside"
    outside.mkdir()
    return outside


@pytest.fixture
def repo_dir(temp_dir):
    """Directory used as a plugin repository."""
    repo = temp_dir / "repo"
    repo.mkdir()
    return repo


@pytest.fixture
def build_plugin(repo_dir):
    """Factory adding ``<name>-<version>`` payloads to a repository.

    Pass ``repo=`` to target another repository and ``archive=True`` to
    publish the payload as a zip file instead of a directory.
    """
    def _build(name: str, version: str = "1.0", repo: Optional[Path] = None,
               archive: bool = False, **kwargs) -> Path:
        repository = repo or repo_dir
        repository.mkdir(parents=True, exist_ok=True)
        plugin_dir = write_plugin(repository / f"{name}-{version}", name, **kwargs)
        if not archive:
            return plugin_dir

        zip_path = repository / f"{name}-{version}.zip"
        with zipfile.ZipFile(zip_path, "w") as zf:
            for item in plugin_dir.rglob("*"):
                zf.write(item, f"{name}-{version}/{item.relative_to(plugin_dir).as_posix()}")
        shutil.rmtree(plugin_dir)
        return zip_path

    return _build


@pytest.fixture
def make_manager(plugin_env, outside_dir):
    """Factory for PluginManager instances with a RecordingReporter."""
    def _make(cwd: Optional[Path] = None, force_global: bool = False, **kwargs) -> PluginManager:
        return PluginManager(
            cwd=cwd or outside_dir,
            force_global=force_global,
            reporter=RecordingReporter(),
            **kwargs
        )

    return _make


@pytest.fixture
def global_paths(temp_dir):
    """Plugin paths outside any project."""
    return PluginPaths(global_root=temp_dir / "global")


@pytest.fixture
def project_paths(temp_dir, project_dir):
    """Plugin paths inside ``project_dir``."""
    return PluginPaths(global_root=temp_dir / "global", project_root=project_dir)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset any singleton instances between tests."""
    yield
    ConfigManager._instance = None
