"""Core data models — plugin specifications, state records, and drift."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class LifecycleState(Enum):
    """Whether a plugin is permanent or loaded for the current session only."""

    DECLARED = "declared"  # Listed in the plugins=() array
    EXPERIMENTAL = "experimental"  # Loaded by `try`, dropped on restart


class Origin(Enum):
    """How a state record came to exist."""

    ARRAY = "array"
    TRY_COMMAND = "try_command"
    LEGACY = "legacy"


class ReconcileOutcome(Enum):
    """Terminal decision returned by `sync`."""

    NOOP = "noop"  # Already in sync
    PREVIEW = "preview"  # Dry run, nothing changed
    RESTART = "restart"  # Caller must restart the session


@dataclass(frozen=True)
class ExtensionSpec:
    """A validated plugin specification: ``owner/name[@version][:subpath]``.

    Identity is the raw string; two specs that differ only in version or
    subpath are different specs for the same source.
    """

    raw: str
    owner: str
    name: str
    version: str = ""
    subpath: str = ""

    @property
    def source(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def cache_key(self) -> str:
        """Directory name used for the plugin's install location."""
        return f"{self.owner}__{self.name}"

    def __str__(self) -> str:
        return self.raw


@dataclass
class StateRecord:
    """Persisted record of one plugin known to the engine."""

    name: str
    lifecycle_state: LifecycleState
    specification: str
    created_at: int  # epoch seconds
    install_path: str = ""
    resolved_version: str = ""
    origin: Origin = Origin.ARRAY

    @property
    def is_declared(self) -> bool:
        return self.lifecycle_state == LifecycleState.DECLARED

    @property
    def is_experimental(self) -> bool:
        return self.lifecycle_state == LifecycleState.EXPERIMENTAL


@dataclass
class DriftResult:
    """Difference between the declared array and the current state records."""

    to_install: list[ExtensionSpec] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)  # record names

    @property
    def in_sync(self) -> bool:
        return not self.to_install and not self.to_remove

    def summary(self) -> str:
        if self.in_sync:
            return "in sync with declared configuration"
        return f"{len(self.to_install)} to install, {len(self.to_remove)} to remove"
