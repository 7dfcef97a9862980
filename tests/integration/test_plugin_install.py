"""Integration tests for installing, using and removing plugins.

These tests drive PluginManager end to end against plugin repositories on
disk:
- Installing, reusing and upgrading plugins
- Failure reporting and rollback
- Global and project-local plugin roots
- Uninstalling and listing
- Runtime dispatch of commands, sources and hooks
"""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from bundlekit.core.plugins import (
    ConfigurationError,
    InstallOptions,
    MalformattedPlugin,
    PluginManager,
    PluginNotFoundError,
    PluginNotInstalledError,
    UndefinedCommandError,
)
from bundlekit.core.plugins.models import Dependency, SourceDescriptor, SourceList

from conftest import write_plugin


def _gems(manager: PluginManager) -> Path:
    return manager.paths.root / "gems"


@pytest.mark.integration
class TestInstall:
    """Installing from a repository."""

    def test_install_latest_then_reuse(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0", commands=["greet"])
        build_plugin("foo", "1.1", commands=["greet"])

        manager = make_manager()
        report = manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        assert report.success
        assert manager.reporter.messages == ["Installing foo 1.1", "Installed plugin foo"]
        assert (_gems(manager) / "foo-1.1" / "plugins.py").is_file()

        again = make_manager()
        with patch.object(again.fetcher, "fetch", wraps=again.fetcher.fetch) as fetch:
            again.install(["foo"], InstallOptions(source=str(repo_dir)))

        assert again.reporter.messages == ["Using foo 1.1"]
        fetch.assert_not_called()

    def test_exact_pin_of_installed_version_needs_no_source(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0")
        make_manager().install(["foo"], InstallOptions(source=str(repo_dir)))
        shutil.rmtree(repo_dir / "foo-1.0")

        manager = make_manager()
        report = manager.install(["foo"], InstallOptions(source=str(repo_dir), version=["1.0"]))

        assert report.success
        assert manager.reporter.messages == ["Using foo 1.0"]
        assert manager.reporter.errors == []

    def test_version_applies_to_every_name(self, make_manager, build_plugin, repo_dir):
        for name in ("foo", "bar"):
            build_plugin(name, "1.0", commands=[f"{name}-cmd"])
            build_plugin(name, "1.1", commands=[f"{name}-cmd"])

        manager = make_manager()
        manager.install(["foo", "bar"], InstallOptions(source=str(repo_dir), version=["1.0"]))

        assert manager.index.installed_version("foo").public == "1.0"
        assert manager.index.installed_version("bar").public == "1.0"

        # Upgrading one plugin leaves the other where it was
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        assert manager.index.installed_version("foo").public == "1.1"
        assert manager.index.installed_version("bar").public == "1.0"

    def test_default_source_from_environment(self, make_manager, build_plugin, repo_dir, monkeypatch):
        build_plugin("foo", "1.0")
        monkeypatch.setenv("BUNDLEKIT_SOURCE", str(repo_dir))

        manager = make_manager()
        report = manager.install(["foo"])

        assert report.success
        assert manager.index.installed("foo")

    def test_install_from_zip_archive(self, make_manager, build_plugin, repo_dir):
        build_plugin("zippy", "2.0", archive=True, commands=["unzip-me"])

        manager = make_manager()
        manager.install(["zippy"], InstallOptions(source=str(repo_dir)))

        assert (_gems(manager) / "zippy-2.0" / "plugins.py").is_file()
        assert manager.exec_command("unzip-me", ["x"]) == "zippy:unzip-me:x"

    def test_unknown_version_is_reported(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0")

        manager = make_manager()
        report = manager.install(["foo"], InstallOptions(source=str(repo_dir), version=["2.0"]))

        assert not report.success
        assert manager.reporter.errors == [
            f"Failed to install plugin `foo`, due to PluginNotFoundError "
            f"(Could not find plugin 'foo (== 2.0)' in registry source at {repo_dir}.)"
        ]

    def test_install_requires_a_name(self, make_manager):
        with pytest.raises(ConfigurationError):
            make_manager().install([])

    def test_conflicting_flags_fail_before_fetching(self, make_manager, repo_dir):
        manager = make_manager()
        with patch.object(manager.fetcher, "resolve") as resolve:
            with pytest.raises(ConfigurationError) as exc_info:
                manager.install(["foo"], InstallOptions(git="https://example.org/foo.git",
                                                        branch="main", ref="abc123"))

        assert exc_info.value.message == "You cannot specify `--branch` and `--ref` at the same time."
        resolve.assert_not_called()


@pytest.mark.integration
class TestInstallFailures:
    """Failed installs are reported and rolled back."""

    def test_missing_entry_file(self, make_manager, build_plugin, repo_dir):
        build_plugin("charlie", "1.0", with_entry=False)

        manager = make_manager()
        report = manager.install(["charlie"], InstallOptions(source=str(repo_dir)))

        assert not report.success
        assert manager.reporter.errors == [
            "Failed to install plugin `charlie`, due to MalformattedPlugin "
            "(plugins.py was not found in the plugin.)"
        ]
        assert not manager.index.installed("charlie")
        assert not (_gems(manager) / "charlie-1.0").exists()

    def test_entry_file_raising(self, make_manager, build_plugin, repo_dir):
        build_plugin("boom", "1.0", entry="raise ValueError('broken plugin')\n")

        manager = make_manager()
        manager.install(["boom"], InstallOptions(source=str(repo_dir)))

        assert manager.reporter.errors == [
            "Failed to install plugin `boom`, due to MalformattedPlugin (ValueError: broken plugin)"
        ]
        assert not manager.index.installed("boom")

    def test_command_conflict(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0", commands=["greet"])
        build_plugin("bar", "1.0", commands=["greet", "wave"])

        manager = make_manager()
        report = manager.install(["foo", "bar"], InstallOptions(source=str(repo_dir)))

        assert report.installed == ["foo"]
        assert manager.reporter.errors == [
            "Failed to install plugin `bar`, due to CommandConflict "
            "(Command(s) `greet` declared by bar are already registered.)"
        ]
        assert manager.index.command_plugin("wave") is None
        assert not (_gems(manager) / "bar-1.0").exists()

    def test_failed_upgrade_keeps_previous_install(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0", commands=["greet"])
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        build_plugin("foo", "1.1", entry="raise RuntimeError('bad release')\n")
        report = manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        assert not report.success
        assert manager.index.plugin_path("foo") == str(_gems(manager) / "foo-1.0")
        assert (_gems(manager) / "foo-1.0").is_dir()
        assert not (_gems(manager) / "foo-1.1").exists()


@pytest.mark.integration
class TestPathSource:
    """Plugins used in place from a directory."""

    def test_path_plugin_is_not_managed(self, make_manager, temp_dir):
        plugin_dir = write_plugin(temp_dir / "src" / "kitty", "kitty", commands=["meow"])

        manager = make_manager()
        report = manager.install(["kitty"], InstallOptions(path=str(plugin_dir)))

        assert report.success
        assert manager.index.plugin_path("kitty") == str(plugin_dir.resolve())
        assert not manager.index.installed_in_plugin_root("kitty")

        manager.uninstall(["kitty"])
        assert not manager.index.installed("kitty")
        assert (plugin_dir / "plugins.py").is_file()

    def test_path_plugin_with_metadata(self, make_manager, temp_dir):
        plugin_dir = write_plugin(temp_dir / "src" / "kitty", "kitty", commands=["meow"],
                                  metadata={"name": "kitty", "version": "0.4", "require_paths": ["src"]})

        manager = make_manager()
        manager.install(["kitty"], InstallOptions(path=str(plugin_dir)))

        assert manager.reporter.messages[0] == "Installing kitty 0.4"
        assert manager.index.load_paths("kitty") == [str((plugin_dir / "src").resolve())]


@pytest.mark.integration
class TestScopes:
    """Global and project-local installs."""

    def test_local_install_shadows_global(self, make_manager, build_plugin, temp_dir, project_dir):
        build_plugin("scoped", "1.0", repo=temp_dir / "repo-a", commands=["global_one"], output="global")
        build_plugin("scoped", "1.1", repo=temp_dir / "repo-b", commands=["local_one"], output="local")

        outside = make_manager()
        outside.install(["scoped"], InstallOptions(source=str(temp_dir / "repo-a")))

        inside = make_manager(cwd=project_dir)
        inside.install(["scoped"], InstallOptions(source=str(temp_dir / "repo-b")))

        assert inside.paths.root == project_dir.resolve() / ".bundlekit" / "plugin"
        assert inside.exec_command("local_one") == "local:local_one:"
        assert not inside.command_defined("global_one")

        again_outside = make_manager()
        assert again_outside.exec_command("global_one", ["a"]) == "global:global_one:a"
        assert not again_outside.command_defined("local_one")

    def test_uninstall_inside_project_keeps_global_install(self, make_manager, build_plugin, temp_dir,
                                                           project_dir):
        build_plugin("scoped", "1.0", repo=temp_dir / "repo-a", commands=["global_one"], output="global")
        build_plugin("scoped", "1.1", repo=temp_dir / "repo-b", commands=["local_one"], output="local")
        outside = make_manager()
        outside.install(["scoped"], InstallOptions(source=str(temp_dir / "repo-a")))
        inside = make_manager(cwd=project_dir)
        inside.install(["scoped"], InstallOptions(source=str(temp_dir / "repo-b")))

        assert inside.uninstall(["scoped"]) == ["scoped"]

        assert not (inside.paths.root / "gems" / "scoped-1.1").exists()
        assert (outside.paths.global_root / "gems" / "scoped-1.0").is_dir()
        again_outside = make_manager()
        assert again_outside.index.installed("scoped")
        assert again_outside.exec_command("global_one") == "global:global_one:"

    def test_force_global_inside_project(self, make_manager, build_plugin, repo_dir, project_dir):
        build_plugin("foo", "1.0")

        manager = make_manager(cwd=project_dir, force_global=True)
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        assert (manager.paths.global_root / "gems" / "foo-1.0").is_dir()
        assert not (project_dir / ".bundlekit").exists()

    def test_global_plugins_visible_inside_project(self, make_manager, build_plugin, repo_dir, project_dir):
        build_plugin("foo", "1.0", commands=["greet"])
        make_manager().install(["foo"], InstallOptions(source=str(repo_dir)))

        inside = make_manager(cwd=project_dir)
        assert inside.exec_command("greet", ["x", "y"]) == "foo:greet:x,y"


@pytest.mark.integration
class TestUninstallAndList:
    """Removing and listing plugins."""

    def test_list(self, make_manager, build_plugin, repo_dir):
        manager = make_manager()
        assert manager.list_plugins() == "No plugins installed"

        build_plugin("foo", "1.0", commands=["greet", "wave"])
        build_plugin("bar", "1.0")
        manager.install(["foo", "bar"], InstallOptions(source=str(repo_dir)))

        assert manager.list_plugins() == "foo\n-----\n  greet\n  wave\n\nbar\n-----\n\n"

    def test_uninstall_named(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0", commands=["greet"])
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))
        manager.reporter.messages.clear()

        removed = manager.uninstall(["foo", "ghost"])

        assert removed == ["foo"]
        assert manager.reporter.messages == ["Uninstalled plugin foo"]
        assert manager.reporter.errors == ["Plugin ghost is not installed"]
        assert not (_gems(manager) / "foo-1.0").exists()
        assert not manager.command_defined("greet")

    def test_uninstall_all(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0")
        build_plugin("bar", "1.0")
        manager = make_manager()
        manager.install(["foo", "bar"], InstallOptions(source=str(repo_dir)))

        assert manager.uninstall(all_plugins=True) == ["foo", "bar"]
        assert make_manager().index.installed_plugins() == []

        manager.reporter.messages.clear()
        assert manager.uninstall(all_plugins=True) == []
        assert manager.reporter.messages == ["No plugins to uninstall"]

    def test_uninstall_without_names(self, make_manager):
        with pytest.raises(ConfigurationError):
            make_manager().uninstall()


@pytest.mark.integration
class TestDeclaredPlugins:
    """Plugins declared as project dependencies."""

    def test_missing_and_ensure_installed(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0")
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))
        deps = [Dependency.parse("foo"), Dependency.parse("bar", ">= 1.0")]

        assert [dep.name for dep in manager.missing_plugins(deps)] == ["bar"]
        with pytest.raises(PluginNotInstalledError) as exc_info:
            manager.ensure_installed(deps)
        assert exc_info.value.message == "Plugin bar (>= 1.0) is not installed"
        assert exc_info.value.missing == ["bar"]

    def test_vanished_directory_counts_as_missing(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.0")
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))
        shutil.rmtree(manager.index.plugin_path("foo"))

        assert [dep.name for dep in manager.missing_plugins([Dependency.parse("foo")])] == ["foo"]

    def test_install_declared_reuses_satisfied(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.1")
        build_plugin("bar", "2.0")
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))
        manager.reporter.messages.clear()

        sources = SourceList(default_source=SourceDescriptor.registry(str(repo_dir)))
        report = manager.install_declared([Dependency.parse("foo", ">= 1.0"), Dependency.parse("bar")], sources)

        assert report.success
        assert manager.reporter.messages == ["Using foo 1.1", "Installing bar 2.0", "Installed plugin bar"]

    def test_generate_lockfile(self, make_manager, build_plugin, repo_dir):
        build_plugin("foo", "1.1")
        manager = make_manager()
        manager.install(["foo"], InstallOptions(source=str(repo_dir)))

        sources = SourceList(default_source=SourceDescriptor.registry(str(repo_dir)))
        lockfile = manager.generate_lockfile([Dependency.parse("foo")], sources)

        assert f"REGISTRY\n  remote: {repo_dir}\n  specs:\n    foo (1.1)\n" in lockfile
        assert "DEPENDENCIES\n  foo\n" in lockfile


@pytest.mark.integration
class TestDispatch:
    """Runtime use of installed plugins."""

    def test_undefined_command(self, make_manager):
        with pytest.raises(UndefinedCommandError) as exc_info:
            make_manager().exec_command("nope")
        assert exc_info.value.message == 'Could not find command "nope".'

    def test_source_handler(self, make_manager, build_plugin, repo_dir):
        build_plugin("svnplug", "1.0", sources=["svn"])
        manager = make_manager()
        manager.install(["svnplug"], InstallOptions(source=str(repo_dir)))

        handler = manager.source_handler("svn")
        assert handler.__name__ == "SvnplugPlugin"

        with pytest.raises(PluginNotFoundError) as exc_info:
            manager.source_handler("hg")
        assert exc_info.value.message == "No plugin sources available for hg"

    def test_run_hooks_in_registration_order(self, make_manager, build_plugin, repo_dir, temp_dir):
        build_plugin("foo", "1.0", hooks=["after-install"])
        build_plugin("bar", "1.0", hooks=["after-install", "before-install"])
        manager = make_manager()
        manager.install(["foo", "bar"], InstallOptions(source=str(repo_dir)))
        log = temp_dir / "hooks.log"

        make_manager().run_hooks("after-install", str(log))

        assert log.read_text(encoding="utf-8") == "foo after-install\nbar after-install\n"

    def test_run_hooks_rejects_unknown_event(self, make_manager):
        with pytest.raises(MalformattedPlugin) as exc_info:
            make_manager().run_hooks("after-lunch")
        assert "after-lunch" in exc_info.value.message
