from __future__ import annotations

"""Projection of installed plugins into specification records.

Installed plugins carry no version in the index itself. The projector infers
one per plugin (metadata file first, then the ``<name>-<version>`` directory
suffix), keeps only plugins that satisfy a declared dependency, and hands the
result to a lockfile generator through :class:`IndexDefinition`.
"""

import logging
import sysconfig
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from packaging.version import InvalidVersion, Version

from bundlekit.version import get_app_version

from .exceptions import ConfigurationError, PluginValidationError
from .metadata import PluginMetadata, read_plugin_metadata
from .models import (
    DEFAULT_REQUIREMENT,
    Dependency,
    LazySpecification,
    SourceDescriptor,
    SourceKind,
    SourceList,
    format_requirement,
)

if TYPE_CHECKING:
    from .index import PluginIndex

logger = logging.getLogger(__name__)

LAZY = "lazy"
EAGER = "eager"

Specification = Union[LazySpecification, PluginMetadata]


def local_platform() -> str:
    return sysconfig.get_platform()


def infer_version(name: str, install_path: Union[str, Path]) -> Tuple[Optional[Version], Optional[PluginMetadata]]:
    """Work out the version of the plugin installed at ``install_path``.

    Returns:
        ``(version, metadata)``; ``version`` is None when neither the metadata
        file nor the directory name carries one, ``metadata`` is None when the
        plugin ships no valid metadata file
    """
    path = Path(install_path)
    try:
        metadata = read_plugin_metadata(path, name)
    except PluginValidationError as e:
        logger.warning("Ignoring invalid metadata of plugin %s: %s", name, e.message)
        metadata = None

    if metadata is not None:
        metadata.full_path = str(path)
        return metadata.parsed_version, metadata

    prefix = f"{name}-"
    segment = path.name
    if not segment.startswith(prefix):
        return None, None
    try:
        return Version(segment[len(prefix):]), None
    except InvalidVersion:
        logger.debug("Plugin %s: directory suffix of %s is not a version", name, path)
        return None, None


def project_specs(index: 'PluginIndex', sources: SourceList,
                  dependencies: Sequence[Dependency], mode: str = LAZY) -> List[Specification]:
    """Build specification records for the installed plugins that were asked for.

    Args:
        index: Plugin index to read installed plugins from
        sources: Declared sources; ``default_source`` applies to
            dependencies without their own source
        dependencies: Declared plugin dependencies
        mode: ``"lazy"`` for :class:`LazySpecification` records, ``"eager"``
            for full :class:`PluginMetadata` records

    Raises:
        ConfigurationError: For an unknown mode
    """
    if mode not in (LAZY, EAGER):
        raise ConfigurationError(f"Unknown specification mode: {mode}")

    by_name: Dict[str, Dependency] = {}
    for dep in dependencies:
        by_name.setdefault(dep.name, dep)

    platform = local_platform()
    specs: List[Specification] = []
    for name in index.installed_plugins():
        path = index.plugin_path(name)
        if path is None:
            continue
        version, metadata = infer_version(name, path)
        if version is None:
            continue

        dep = by_name.get(name)
        if dep is None:
            continue

        source = dep.source or sources.default_source
        lazy_spec = LazySpecification(name, version, platform, source)
        if not lazy_spec.satisfies(dep):
            logger.debug("Installed %s does not satisfy %s", lazy_spec.full_name, dep)
            continue

        if mode == LAZY:
            specs.append(lazy_spec)
        else:
            if metadata is None:
                metadata = PluginMetadata(name=name, version=str(version), full_path=str(path))
            specs.append(metadata.with_source(source))
    return specs


# -------------------------------------------------------------------------
# Lockfile adapter
# -------------------------------------------------------------------------

class LockfileDefinition(Protocol):
    """What a lockfile generator reads from a resolved definition."""

    sources: SourceList
    specs: List[Specification]
    dependencies: List[Dependency]

    @property
    def platforms(self) -> List[str]: ...

    @property
    def locked_runtime_version(self) -> Optional[str]: ...

    @property
    def tool_version_to_lock(self) -> str: ...

    def resolve(self) -> List[Specification]: ...


@dataclass
class IndexDefinition:
    """Pre-resolved definition built from the plugin index."""

    sources: SourceList
    specs: List[Specification]
    dependencies: List[Dependency]

    @property
    def platforms(self) -> List[str]:
        return [local_platform()]

    @property
    def locked_runtime_version(self) -> Optional[str]:
        return None

    @property
    def tool_version_to_lock(self) -> str:
        return get_app_version()

    def resolve(self) -> List[Specification]:
        return self.specs


LockfileGenerator = Callable[[LockfileDefinition], str]

_SECTION_TITLES = {
    SourceKind.GIT: "GIT",
    SourceKind.PATH: "PATH",
    SourceKind.REGISTRY: "REGISTRY",
}


def _source_block(source: Optional[SourceDescriptor], specs: List[Specification]) -> List[str]:
    kind = source.kind if source is not None else SourceKind.REGISTRY
    lines = [_SECTION_TITLES[kind]]
    if source is not None:
        lines.append(f"  remote: {source.uri}")
        if source.branch:
            lines.append(f"  branch: {source.branch}")
        if source.ref:
            lines.append(f"  ref: {source.ref}")
    lines.append("  specs:")
    for spec in sorted(specs, key=lambda s: s.name):
        lines.append(f"    {spec.name} ({spec.version})")
    return lines


def render_lockfile(definition: LockfileDefinition) -> str:
    """Render a lockfile for ``definition``.

    One block per source in kind order (git, path, registry), followed by
    the platforms, the declared dependencies and the tool version.
    """
    grouped: Dict[Optional[SourceDescriptor], List[Specification]] = {}
    for spec in definition.resolve():
        grouped.setdefault(spec.source, []).append(spec)

    order = [SourceKind.GIT, SourceKind.PATH, SourceKind.REGISTRY]
    keys = sorted(
        grouped,
        key=lambda s: (order.index(s.kind) if s is not None else len(order), s.uri if s else "")
    )

    lines: List[str] = []
    for source in keys:
        lines.extend(_source_block(source, grouped[source]))
        lines.append("")

    lines.append("PLATFORMS")
    lines.extend(f"  {platform}" for platform in definition.platforms)
    lines.append("")

    lines.append("DEPENDENCIES")
    for dep in sorted(definition.dependencies, key=lambda d: d.name):
        requirement = format_requirement(dep.requirement)
        entry = dep.name if requirement == DEFAULT_REQUIREMENT else f"{dep.name} ({requirement})"
        lines.append(f"  {entry}{'!' if dep.source is not None else ''}")
    lines.append("")

    if definition.locked_runtime_version:
        lines.append("RUNTIME VERSION")
        lines.append(f"   {definition.locked_runtime_version}")
        lines.append("")

    lines.append("BUNDLED WITH")
    lines.append(f"   {definition.tool_version_to_lock}")
    return "\n".join(lines) + "\n"
