"""Exception taxonomy for extsync.

Entry-level errors (invalid specifications, fetch and load failures) are
contained by the caller that processes the entry. Store and config-file
errors propagate to the invoking command.
"""

from __future__ import annotations


class ExtsyncError(Exception):
    """Base class for all extsync errors."""

    hint: str = ""

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        if hint:
            self.hint = hint


class InvalidSpecificationError(ExtsyncError):
    """A specification string failed validation."""

    hint = "Use the format owner/name[@version][:subpath]"

    def __init__(self, raw: str, reason: str):
        super().__init__(f"Invalid plugin specification {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


class StateStoreError(ExtsyncError):
    """Reading or writing the state record file failed."""


class RecordNotFoundError(ExtsyncError, KeyError):
    """No state record exists for the requested name."""

    def __init__(self, name: str):
        ExtsyncError.__init__(self, f"Plugin not found in state: {name}")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class ConfigEditError(ExtsyncError):
    """Backing up or rewriting the configuration file failed."""


class FetchError(ExtsyncError):
    """The artifact fetcher could not provide the plugin."""


class LoadError(ExtsyncError):
    """The loader could not activate a fetched plugin."""
