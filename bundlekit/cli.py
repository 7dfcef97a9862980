"""Command line interface for bundlekit.

``bundlekit plugin install|uninstall|list`` manages plugins; any other
command is dispatched to the installed plugin that provides it.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from bundlekit.core.plugins import InstallOptions, PluginError, PluginManager
from bundlekit.logging_config import setup_logging
from bundlekit.version import get_app_version

PLUGIN_COMMAND = "plugin"


def _manager(args: argparse.Namespace) -> PluginManager:
    return PluginManager(force_global=bool(getattr(args, "global_install", False)))


def cmd_plugin_install(args: argparse.Namespace) -> int:
    options = InstallOptions(
        version=list(args.version or []),
        source=args.source,
        git=args.git,
        local_git=args.local_git,
        path=args.path,
        branch=args.branch,
        ref=args.ref,
    )
    report = _manager(args).install(args.plugins, options)
    return 0 if report.success else 1


def cmd_plugin_uninstall(args: argparse.Namespace) -> int:
    _manager(args).uninstall(args.plugins, all_plugins=args.all)
    return 0


def cmd_plugin_list(args: argparse.Namespace) -> int:
    _manager(args).list_plugins()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bundlekit", description="bundlekit plugin manager")
    parser.add_argument("--version", action="version", version=f"bundlekit {get_app_version()}")
    sub = parser.add_subparsers(dest="command", required=True)

    plugin = sub.add_parser(PLUGIN_COMMAND, help="Manage plugins")
    plugin_sub = plugin.add_subparsers(dest="plugin_command", required=True)

    install = plugin_sub.add_parser("install", help="Install plugins")
    install.add_argument("plugins", nargs="+", metavar="PLUGIN")
    install.add_argument("--version", action="append", metavar="VERSION",
                         help="Version requirement applied to every plugin (repeatable)")
    install.add_argument("--source", metavar="URL", help="Plugin repository")
    install.add_argument("--git", metavar="URL", help="Git repository to install from")
    install.add_argument("--local-git", dest="local_git", metavar="PATH",
                         help="Local git repository to install from")
    install.add_argument("--path", metavar="DIR", help="Directory to use the plugin from")
    install.add_argument("--branch", help="Git branch to check out")
    install.add_argument("--ref", help="Git revision to check out")
    install.add_argument("--global", dest="global_install", action="store_true",
                         help="Install into the global plugin root even inside a project")
    install.set_defaults(func=cmd_plugin_install)

    uninstall = plugin_sub.add_parser("uninstall", help="Uninstall plugins")
    uninstall.add_argument("plugins", nargs="*", metavar="PLUGIN")
    uninstall.add_argument("--all", action="store_true", help="Uninstall every installed plugin")
    uninstall.set_defaults(func=cmd_plugin_uninstall)

    listing = plugin_sub.add_parser("list", help="List installed plugins and their commands")
    listing.set_defaults(func=cmd_plugin_list)

    return parser


def dispatch(argv: List[str]) -> int:
    """Run a plugin-provided command."""
    result = PluginManager().exec_command(argv[0], argv[1:])
    return result if isinstance(result, int) else 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    setup_logging()

    try:
        if argv and not argv[0].startswith("-") and argv[0] != PLUGIN_COMMAND:
            return dispatch(argv)
        args = build_parser().parse_args(argv)
        return args.func(args)
    except PluginError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
