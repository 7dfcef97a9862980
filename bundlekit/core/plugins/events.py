from __future__ import annotations

"""Hook event names plugins may subscribe to."""

from .exceptions import MalformattedPlugin

BEFORE_INSTALL_ALL = "before-install-all"
BEFORE_INSTALL = "before-install"
AFTER_INSTALL = "after-install"
AFTER_INSTALL_ALL = "after-install-all"
BEFORE_REQUIRE_ALL = "before-require-all"
BEFORE_REQUIRE = "before-require"
AFTER_REQUIRE = "after-require"
AFTER_REQUIRE_ALL = "after-require-all"

EVENTS = (
    BEFORE_INSTALL_ALL,
    BEFORE_INSTALL,
    AFTER_INSTALL,
    AFTER_INSTALL_ALL,
    BEFORE_REQUIRE_ALL,
    BEFORE_REQUIRE,
    AFTER_REQUIRE,
    AFTER_REQUIRE_ALL,
)


def is_defined(event: str) -> bool:
    return event in EVENTS


def validate_event(event: str) -> str:
    """Return ``event`` unchanged if it is a known hook event.

    Raises:
        MalformattedPlugin: For an unknown event name
    """
    if not is_defined(event):
        raise MalformattedPlugin(
            f"Event '{event}' not defined in bundlekit.core.plugins.events"
        )
    return event
