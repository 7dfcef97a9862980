from __future__ import annotations

"""Plugin authoring API.

A plugin's entry file declares what it provides by subclassing
:class:`PluginAPI` and decorating functions with :func:`hook`::

    from bundlekit.core.plugins.api import PluginAPI, hook

    class Greet(PluginAPI):
        commands = ["greet"]

        def exec(self, command, args):
            print("hello", *args)

    @hook("after-install")
    def announce(spec):
        print("installed", spec)

Declarations are captured by the :class:`DeclarationCollector` that is active
while the entry file executes, so merely defining the class or decorating the
function is enough.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Type

from .events import validate_event

logger = logging.getLogger(__name__)

HookFunc = Callable[..., Any]


class DeclarationCollector:
    """Records the commands, source handlers and hooks one entry file declares."""

    def __init__(self) -> None:
        self.commands: Dict[str, Type['PluginAPI']] = {}
        self.sources: Dict[str, Type['PluginAPI']] = {}
        self.hooks: Dict[str, List[HookFunc]] = {}

    def add_class(self, cls: Type['PluginAPI']) -> None:
        for command in _names(cls.commands):
            self.commands[command] = cls
        for source_type in _names(cls.sources):
            self.sources[source_type] = cls

    def add_hook(self, event: str, func: HookFunc) -> None:
        self.hooks.setdefault(event, []).append(func)


_collectors: List[DeclarationCollector] = []


def _names(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def active_collector() -> Optional[DeclarationCollector]:
    return _collectors[-1] if _collectors else None


@contextmanager
def collecting() -> Iterator[DeclarationCollector]:
    """Make a fresh collector active for the duration of the block."""
    collector = DeclarationCollector()
    _collectors.append(collector)
    try:
        yield collector
    finally:
        _collectors.pop()


class PluginAPI:
    """Base class for plugin-provided commands and source handlers.

    Subclasses list the command names they answer in ``commands`` and the
    dependency source types they handle in ``sources``. Defining the subclass
    inside a plugin entry file registers it.
    """

    commands: Sequence[str] = ()
    sources: Sequence[str] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        collector = active_collector()
        if collector is not None:
            collector.add_class(cls)
        else:
            logger.debug("PluginAPI subclass %s defined outside a plugin load", cls.__name__)

    def exec(self, command: str, args: List[str]) -> Any:
        """Run ``command`` with the remaining command-line ``args``."""
        raise NotImplementedError(
            f"{type(self).__name__} declares command '{command}' but does not implement exec()"
        )


def hook(event: str) -> Callable[[HookFunc], HookFunc]:
    """Subscribe the decorated function to a lifecycle ``event``.

    Raises:
        MalformattedPlugin: If ``event`` is not a known hook event
    """
    validate_event(event)

    def decorator(func: HookFunc) -> HookFunc:
        collector = active_collector()
        if collector is not None:
            collector.add_hook(event, func)
        return func

    return decorator
