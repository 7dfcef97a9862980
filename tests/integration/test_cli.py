"""Integration tests for the bundlekit command line."""

from unittest.mock import patch

import pytest

from bundlekit.cli import build_parser, main


@pytest.fixture
def cli(plugin_env, outside_dir, monkeypatch):
    """Run ``main`` from a directory outside any project."""
    monkeypatch.chdir(outside_dir)
    with patch("bundlekit.cli.setup_logging"):
        yield main


@pytest.mark.integration
class TestPluginCommands:
    """``bundlekit plugin ...``"""

    def test_install_and_list(self, cli, build_plugin, repo_dir, capsys):
        build_plugin("foo", "1.0", commands=["greet"])

        assert cli(["plugin", "install", "foo", "--source", str(repo_dir)]) == 0
        assert cli(["plugin", "list"]) == 0

        out = capsys.readouterr().out
        assert "Installing foo 1.0\nInstalled plugin foo\n" in out
        assert "foo\n-----\n  greet\n" in out

    def test_failed_install_exits_non_zero(self, cli, build_plugin, repo_dir, capsys):
        build_plugin("charlie", "1.0", with_entry=False)

        assert cli(["plugin", "install", "charlie", "--source", str(repo_dir)]) == 1
        assert "Failed to install plugin `charlie`, due to MalformattedPlugin" in capsys.readouterr().err

    def test_invalid_flags(self, cli, capsys):
        code = cli(["plugin", "install", "foo", "--git", "https://example.org/foo.git",
                    "--branch", "main", "--ref", "abc123"])

        assert code == 1
        assert "You cannot specify `--branch` and `--ref` at the same time." in capsys.readouterr().err

    def test_version_flag_is_repeatable(self):
        args = build_parser().parse_args(["plugin", "install", "foo", "bar", "--version", ">= 1.0",
                                          "--version", "< 2"])
        assert args.plugins == ["foo", "bar"]
        assert args.version == [">= 1.0", "< 2"]

    def test_global_flag_inside_project(self, cli, build_plugin, repo_dir, project_dir, temp_dir, monkeypatch):
        build_plugin("foo", "1.0")
        monkeypatch.chdir(project_dir)

        assert cli(["plugin", "install", "foo", "--source", str(repo_dir), "--global"]) == 0
        assert (temp_dir / "global" / "gems" / "foo-1.0").is_dir()
        assert not (project_dir / ".bundlekit").exists()

    def test_uninstall(self, cli, build_plugin, repo_dir, capsys):
        build_plugin("foo", "1.0")
        cli(["plugin", "install", "foo", "--source", str(repo_dir)])

        assert cli(["plugin", "uninstall", "foo"]) == 0
        assert "Uninstalled plugin foo" in capsys.readouterr().out

        assert cli(["plugin", "uninstall", "--all"]) == 0
        assert "No plugins to uninstall" in capsys.readouterr().out

    def test_uninstall_without_names(self, cli, capsys):
        assert cli(["plugin", "uninstall"]) == 1
        assert "Use --all option" in capsys.readouterr().err


@pytest.mark.integration
class TestCommandDispatch:
    """Commands provided by plugins."""

    def test_plugin_command(self, cli, build_plugin, repo_dir, capsys):
        entry = (
            "from bundlekit.core.plugins.api import PluginAPI\n"
            "class Greet(PluginAPI):\n"
            "    commands = ['greet']\n"
            "    def exec(self, command, args):\n"
            "        print('hello', *args)\n"
        )
        build_plugin("foo", "1.0", entry=entry)
        cli(["plugin", "install", "foo", "--source", str(repo_dir)])
        capsys.readouterr()

        assert cli(["greet", "world"]) == 0
        assert capsys.readouterr().out == "hello world\n"

    def test_unknown_command(self, cli, capsys):
        assert cli(["nope"]) == 1
        assert 'Could not find command "nope".' in capsys.readouterr().err

    def test_plugin_error_names_the_plugin(self, cli, build_plugin, repo_dir, temp_dir, capsys):
        build_plugin("foo", "1.0", commands=["greet"])
        cli(["plugin", "install", "foo", "--source", str(repo_dir)])
        entry = temp_dir / "global" / "gems" / "foo-1.0" / "plugins.py"
        entry.write_text("raise RuntimeError('gone')\n", encoding="utf-8")
        capsys.readouterr()

        assert cli(["greet"]) == 1
        assert "[Plugin: foo] RuntimeError: gone" in capsys.readouterr().err
