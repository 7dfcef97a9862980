"""bundlekit: plugin registry and installer for the bundlekit package manager."""

from .version import get_app_version

__all__ = ["get_app_version"]
