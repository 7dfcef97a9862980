from __future__ import annotations

"""User-facing status lines.

Install and uninstall progress ("Installing foo 1.1", "Installed plugin foo")
is part of the command-line contract, so it goes through a reporter rather
than through logging.
"""

import sys
from typing import List, Optional, Protocol, TextIO


class StatusReporter(Protocol):
    """Receives status lines from plugin operations."""

    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class ConsoleReporter:
    """Writes status lines to stdout and errors to stderr."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> None:
        self._out = out
        self._err = err

    def info(self, message: str) -> None:
        print(message, file=self._out or sys.stdout)

    def error(self, message: str) -> None:
        print(message, file=self._err or sys.stderr)


class RecordingReporter:
    """Keeps status lines in memory; used by tests and embedding callers."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.errors: List[str] = []

    def info(self, message: str) -> None:
        self.messages.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    @property
    def output(self) -> str:
        return "\n".join(self.messages + self.errors)
