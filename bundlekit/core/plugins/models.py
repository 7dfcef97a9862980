from __future__ import annotations

"""Plugin system data models.

Defines the data structures shared by the plugin index, the spec projector
and the install workflow: the persisted index maps, plugin records, source
descriptors, dependencies and lazy specification records.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import Version

from .exceptions import ConfigurationError


class Scope(Enum):
    """Registry partition owning a plugin record."""

    GLOBAL = "global"
    LOCAL = "local"


class SourceKind(Enum):
    """Kind of location a plugin is fetched from."""

    REGISTRY = "registry"  # Repository of versioned plugin payloads
    GIT = "git"            # Git checkout
    PATH = "path"          # User-managed directory, used in place


@dataclass(frozen=True)
class SourceDescriptor:
    """Where a plugin comes from."""

    kind: SourceKind
    uri: str
    branch: Optional[str] = None
    ref: Optional[str] = None

    @classmethod
    def registry(cls, uri: str) -> 'SourceDescriptor':
        return cls(SourceKind.REGISTRY, uri)

    @classmethod
    def git(cls, uri: str, branch: Optional[str] = None,
            ref: Optional[str] = None) -> 'SourceDescriptor':
        return cls(SourceKind.GIT, uri, branch=branch, ref=ref)

    @classmethod
    def path(cls, path: str) -> 'SourceDescriptor':
        return cls(SourceKind.PATH, path)

    def __str__(self) -> str:
        text = f"{self.kind.value} source at {self.uri}"
        if self.branch:
            text += f" (branch {self.branch})"
        elif self.ref:
            text += f" (ref {self.ref})"
        return text


# -------------------------------------------------------------------------
# Persisted index state
# -------------------------------------------------------------------------

INDEX_KEYS = ("commands", "hooks", "load_paths", "plugin_paths", "sources")


@dataclass
class IndexState:
    """The five maps persisted in an index file.

    ``commands`` and ``sources`` map a command name / source type to the
    owning plugin, ``hooks`` maps an event to its subscribers in
    registration order, ``load_paths`` and ``plugin_paths`` are keyed by
    plugin name.
    """

    commands: Dict[str, str] = field(default_factory=dict)
    hooks: Dict[str, List[str]] = field(default_factory=dict)
    load_paths: Dict[str, List[str]] = field(default_factory=dict)
    plugin_paths: Dict[str, str] = field(default_factory=dict)
    sources: Dict[str, str] = field(default_factory=dict)

    def copy(self) -> 'IndexState':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Dict]:
        return {key: getattr(self, key) for key in INDEX_KEYS}

    def is_empty(self) -> bool:
        return not any(getattr(self, key) for key in INDEX_KEYS)

    def plugin_names(self) -> List[str]:
        """Names of every plugin this state mentions, in first-seen order."""
        names: Dict[str, None] = {}
        for name in self.plugin_paths:
            names[name] = None
        for name in self.load_paths:
            names[name] = None
        for owner in list(self.commands.values()) + list(self.sources.values()):
            names[owner] = None
        for subscribers in self.hooks.values():
            for name in subscribers:
                names[name] = None
        return list(names)

    def drop_plugin(self, name: str) -> None:
        """Remove every trace of ``name``, compacting empty hook lists."""
        self.commands = {c: owner for c, owner in self.commands.items() if owner != name}
        self.sources = {s: owner for s, owner in self.sources.items() if owner != name}
        for event in list(self.hooks):
            subscribers = [n for n in self.hooks[event] if n != name]
            if subscribers:
                self.hooks[event] = subscribers
            else:
                del self.hooks[event]
        self.plugin_paths.pop(name, None)
        self.load_paths.pop(name, None)


@dataclass(frozen=True)
class PluginRecord:
    """Everything the index knows about one plugin."""

    name: str
    install_path: str
    load_paths: Tuple[str, ...]
    commands: FrozenSet[str]
    source_handlers: FrozenSet[str]
    hooks: FrozenSet[str]
    scope: Scope


# -------------------------------------------------------------------------
# Dependencies and specification records
# -------------------------------------------------------------------------

DEFAULT_REQUIREMENT = ">= 0"


def _translate_constraint(constraint: str) -> str:
    text = constraint.strip()
    if not text:
        return ""
    if text.startswith("~>"):
        return "~=" + text[2:].strip()
    if text.startswith("=") and not text.startswith("=="):
        return "==" + text[1:].strip()
    if text[0].isdigit():
        return "==" + text
    return text.replace(" ", "")


def parse_requirement(*constraints: str) -> SpecifierSet:
    """Build a specifier set from package-manager style constraints.

    ``"1.0"`` pins exactly, ``"~> 1.2"`` is the pessimistic operator and
    ``">= 1.0, < 2"`` style lists are accepted. No constraint means any
    version.

    Raises:
        ConfigurationError: If a constraint cannot be parsed
    """
    parts: List[str] = []
    for constraint in constraints:
        if constraint is None:
            continue
        for piece in str(constraint).split(","):
            translated = _translate_constraint(piece)
            if translated:
                parts.append(translated)
    if not parts:
        parts = [_translate_constraint(DEFAULT_REQUIREMENT)]
    try:
        return SpecifierSet(",".join(parts))
    except InvalidSpecifier as e:
        raise ConfigurationError(
            f"Invalid version requirement: {', '.join(str(c) for c in constraints)}",
            cause=e
        )


def format_requirement(requirement: SpecifierSet) -> str:
    specs = sorted(requirement, key=str)
    if not specs:
        return DEFAULT_REQUIREMENT
    return ", ".join(f"{spec.operator} {spec.version}" for spec in specs)


@dataclass(frozen=True)
class Dependency:
    """A plugin requested by name, version requirement and optional source."""

    name: str
    requirement: SpecifierSet = field(default_factory=lambda: parse_requirement())
    source: Optional[SourceDescriptor] = None

    @classmethod
    def parse(cls, name: str, *constraints: str,
              source: Optional[SourceDescriptor] = None) -> 'Dependency':
        return cls(name, parse_requirement(*constraints), source)

    def matches(self, version: Version) -> bool:
        return self.requirement.contains(version, prereleases=True)

    def __str__(self) -> str:
        return f"{self.name} ({format_requirement(self.requirement)})"


@dataclass(frozen=True)
class LazySpecification:
    """Minimal name/version/source record used for constraint checks."""

    name: str
    version: Version
    platform: str
    source: Optional[SourceDescriptor]

    @property
    def full_name(self) -> str:
        return f"{self.name}-{self.version}"

    def satisfies(self, dependency: Dependency) -> bool:
        return dependency.name == self.name and dependency.matches(self.version)


@dataclass
class SourceList:
    """Sources declared alongside a set of dependencies."""

    default_source: Optional[SourceDescriptor] = None
    sources: List[SourceDescriptor] = field(default_factory=list)

    def all_sources(self) -> List[SourceDescriptor]:
        result = list(self.sources)
        if self.default_source and self.default_source not in result:
            result.append(self.default_source)
        return result
