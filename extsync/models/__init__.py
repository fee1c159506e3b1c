"""Data models shared by the reconciliation components."""

from extsync.models.extension import (
    DriftResult,
    ExtensionSpec,
    LifecycleState,
    Origin,
    ReconcileOutcome,
    StateRecord,
)

__all__ = [
    "DriftResult",
    "ExtensionSpec",
    "LifecycleState",
    "Origin",
    "ReconcileOutcome",
    "StateRecord",
]
