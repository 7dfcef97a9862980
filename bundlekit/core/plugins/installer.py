from __future__ import annotations

"""Plugin installation workflow.

Provides the PluginInstaller class that takes requested plugins from
``NOT_INSTALLED`` through resolving, fetching, loading and registering to
``INSTALLED``, reusing an installed version when it already matches and
rolling back the fetched payload when any later step fails.
"""

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from .definition import LAZY
from .exceptions import ConfigurationError, PluginError
from .fetchers import Fetcher, FetchResult
from .index import PluginIndex
from .loader import ManifestLoader
from .models import Dependency, SourceDescriptor, SourceList, parse_requirement
from .paths import PluginPaths
from .reporter import StatusReporter

logger = logging.getLogger(__name__)


def _pinned_version(requirement: SpecifierSet) -> Optional[Version]:
    """The exact version ``requirement`` pins, or None if it allows a range."""
    specs = list(requirement)
    if len(specs) != 1 or specs[0].operator not in ("==", "===") or "*" in specs[0].version:
        return None
    try:
        return Version(specs[0].version)
    except InvalidVersion:
        return None


class InstallState(Enum):
    """Install workflow states.

    NOT_INSTALLED -> RESOLVING -> FETCHING -> LOADING -> REGISTERING -> INSTALLED

    Any non-terminal state may exit to FAILED.
    """

    NOT_INSTALLED = "not_installed"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    LOADING = "loading"
    REGISTERING = "registering"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass
class InstallOptions:
    """Source and version flags of one install request."""

    version: List[str] = field(default_factory=list)
    source: Optional[str] = None
    git: Optional[str] = None
    local_git: Optional[str] = None
    path: Optional[str] = None
    branch: Optional[str] = None
    ref: Optional[str] = None

    def validate(self, default_source: Optional[str] = None) -> SourceDescriptor:
        """Check flag combinations and work out the source to install from.

        Runs before any fetch or filesystem work.

        Args:
            default_source: Repository used when no source flag is given

        Returns:
            SourceDescriptor for the request

        Raises:
            ConfigurationError: For conflicting or incomplete flags
        """
        if self.branch and self.ref:
            raise ConfigurationError("You cannot specify `--branch` and `--ref` at the same time.")

        git = self.git
        if git and self.local_git:
            raise ConfigurationError("Remote and local plugin git sources can't be both specified")
        if self.local_git:
            git = self.local_git

        if sum(1 for option in (self.source, git, self.path) if option) > 1:
            raise ConfigurationError("Only one of --source, --git, or --path may be specified")

        if not git:
            if self.branch:
                raise ConfigurationError("--branch can only be used with git sources")
            if self.ref:
                raise ConfigurationError("--ref can only be used with git sources")

        if git:
            return SourceDescriptor.git(git, branch=self.branch, ref=self.ref)
        if self.path:
            return SourceDescriptor.path(self.path)
        if self.source:
            return SourceDescriptor.registry(self.source)
        if default_source:
            return SourceDescriptor.registry(default_source)
        raise ConfigurationError(
            "No plugin source configured; pass --source, --git or --path, "
            "or set default_source in settings.yml"
        )


@dataclass
class PluginInstallResult:
    """Outcome of installing one plugin."""

    plugin_id: str
    success: bool
    message: str
    state: InstallState
    version: Optional[str] = None
    install_path: Optional[str] = None
    reused: bool = False
    error: Optional[PluginError] = None

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return f"[{status}] {self.plugin_id}: {self.message}"


@dataclass
class InstallReport:
    """Per-plugin results of one install request."""

    results: List[PluginInstallResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    @property
    def failed(self) -> List[str]:
        return [result.plugin_id for result in self.results if not result.success]

    @property
    def installed(self) -> List[str]:
        return [result.plugin_id for result in self.results if result.success]

    def result(self, plugin_id: str) -> Optional[PluginInstallResult]:
        for result in self.results:
            if result.plugin_id == plugin_id:
                return result
        return None


class PluginInstaller:
    """Plugin installation workflow manager.

    Every requested plugin is processed to completion on its own; one
    plugin's failure is reported and the remaining plugins still install.
    """

    def __init__(self, index: PluginIndex, paths: PluginPaths, fetcher: Fetcher,
                 loader: ManifestLoader, reporter: StatusReporter) -> None:
        self.index = index
        self.paths = paths
        self.fetcher = fetcher
        self.loader = loader
        self.reporter = reporter
        self._logger = logging.getLogger(f"{__name__}.PluginInstaller")

    # -------------------------------------------------------------------------
    # Public Installation API
    # -------------------------------------------------------------------------

    def install(self, names: Sequence[str], options: InstallOptions,
                default_source: Optional[str] = None) -> InstallReport:
        """Install ``names`` from the source described by ``options``.

        A version given in ``options`` applies to every name.

        Raises:
            ConfigurationError: For invalid flags, before anything is fetched
        """
        source = options.validate(default_source)
        requirement = parse_requirement(*options.version)

        report = InstallReport()
        try:
            for name in names:
                report.results.append(self._install_one(name, requirement, source))
        finally:
            self.fetcher.cleanup()
        self._log_report(report)
        return report

    def install_declared(self, dependencies: Sequence[Dependency],
                         sources: SourceList) -> InstallReport:
        """Install declared plugin dependencies that are not yet satisfied.

        Dependencies already satisfied by an installed plugin are reused
        without consulting any source.
        """
        satisfied = {spec.name: spec for spec in self.index.project_specs(sources, dependencies, LAZY)}

        report = InstallReport()
        try:
            for dep in dependencies:
                spec = satisfied.get(dep.name)
                if spec is not None:
                    report.results.append(self._reuse(dep.name, str(spec.version)))
                    continue

                source = dep.source or sources.default_source
                if source is None:
                    error = ConfigurationError(
                        f"No source declared for plugin {dep.name}", plugin_id=dep.name
                    )
                    report.results.append(self._failure(dep.name, InstallState.RESOLVING, error))
                    continue
                report.results.append(self._install_one(dep.name, dep.requirement, source))
        finally:
            self.fetcher.cleanup()
        self._log_report(report)
        return report

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------

    def _install_one(self, name: str, requirement: SpecifierSet,
                     source: SourceDescriptor) -> PluginInstallResult:
        state = InstallState.RESOLVING
        fetched: Optional[FetchResult] = None
        try:
            pinned = _pinned_version(requirement)
            if pinned is not None and self._already_installed(name, pinned):
                return self._reuse(name, str(pinned))

            version = self.fetcher.resolve(name, requirement, source)

            if self._already_installed(name, version):
                return self._reuse(name, str(version))

            state = InstallState.FETCHING
            self.reporter.info(f"Installing {name} {version}")
            fetched = self.fetcher.fetch(name, version, source, self.paths.root)

            state = InstallState.LOADING
            loaded = self.loader.load(name, fetched.install_path, fetched.load_paths)

            state = InstallState.REGISTERING
            self.index.register(
                name,
                fetched.install_path,
                fetched.load_paths,
                loaded.command_names,
                loaded.source_types,
                loaded.hook_events
            )
        except PluginError as e:
            if fetched is not None:
                self._rollback_installation(name, fetched)
            return self._failure(name, state, e)

        self.reporter.info(f"Installed plugin {name}")
        return PluginInstallResult(
            plugin_id=name,
            success=True,
            message=f"Installed plugin {name}",
            state=InstallState.INSTALLED,
            version=str(fetched.version),
            install_path=fetched.install_path
        )

    def _already_installed(self, name: str, version: Version) -> bool:
        if not self.index.installed(name):
            return False
        path = self.index.plugin_path(name)
        if path is None or not Path(path).exists():
            return False
        return self.index.installed_version(name) == version

    def _reuse(self, name: str, version: str) -> PluginInstallResult:
        message = f"Using {name} {version}"
        self.reporter.info(message)
        return PluginInstallResult(
            plugin_id=name,
            success=True,
            message=message,
            state=InstallState.INSTALLED,
            version=version,
            install_path=self.index.plugin_path(name),
            reused=True
        )

    def _failure(self, name: str, state: InstallState, error: PluginError) -> PluginInstallResult:
        message = f"Failed to install plugin `{name}`, due to {type(error).__name__} ({error.message})"
        self.reporter.error(message)
        self._logger.debug("Install of %s failed while %s", name, state.value, exc_info=error)
        return PluginInstallResult(
            plugin_id=name,
            success=False,
            message=message,
            state=InstallState.FAILED,
            error=error
        )

    # -------------------------------------------------------------------------
    # Installation Lifecycle
    # -------------------------------------------------------------------------

    def _rollback_installation(self, name: str, fetched: FetchResult) -> None:
        """Remove a fetched payload that did not make it into the index.

        Directories the user supplied (path sources) are never removed, nor is
        the directory the index still points at.
        """
        if not fetched.managed:
            return
        if self.index.plugin_path(name) == fetched.install_path:
            return
        target = Path(fetched.install_path)
        if target.exists():
            try:
                shutil.rmtree(target)
                self._logger.debug("Removed failed installation: %s", target)
            except OSError as e:
                self._logger.error("Could not remove failed installation %s: %s", target, e)

    def _log_report(self, report: InstallReport) -> None:
        if report.success:
            self._logger.debug("Plugin install finished: %s", ", ".join(report.installed) or "nothing")
        else:
            self._logger.warning("Plugin install failed for: %s", ", ".join(report.failed))
