"""Application version detection utilities.

Provides ``get_app_version()``, which reports the installed distribution's
version, falling back to ``version.txt`` next to the package root for
unpackaged checkouts.
"""

from __future__ import annotations

from importlib import metadata
from pathlib import Path
from typing import Optional

DISTRIBUTION = "bundlekit"

_CACHED_VERSION: Optional[str] = None


def get_app_version() -> str:
    """Return the application version string (e.g., ``1.2.3``).

    Installed: the distribution metadata version.
    Development fallback: ``version.txt`` near the package root, else "dev".
    """
    global _CACHED_VERSION
    if _CACHED_VERSION:
        return _CACHED_VERSION

    try:
        _CACHED_VERSION = metadata.version(DISTRIBUTION)
        return _CACHED_VERSION
    except metadata.PackageNotFoundError:
        pass

    version_file = Path(__file__).resolve().parent.parent / "version.txt"
    if version_file.exists():
        text = version_file.read_text(encoding="ascii", errors="ignore").strip()
        if text:
            _CACHED_VERSION = text[1:] if text.startswith("v") else text
            return _CACHED_VERSION

    _CACHED_VERSION = "dev"
    return _CACHED_VERSION
