"""Drift calculation -- declared plugins versus recorded state.

This is a two-way comparison: there is no snapshot of a previously applied
declaration, so a record created outside the engine cannot be told apart
from an experimental one. Specifications are compared as exact strings
after validation; ``a/b@v1`` and ``a/b@v1.0`` are different.
"""

from __future__ import annotations

from extsync.models.extension import DriftResult, ExtensionSpec, StateRecord


def calculate_drift(
    declared: list[ExtensionSpec],
    current: dict[str, StateRecord],
) -> DriftResult:
    """Compare the declared array with the current state records.

    Args:
        declared: Validated specs from the plugins=() array, in load order.
        current: State records keyed by plugin name.

    Returns:
        DriftResult where ``to_remove`` lists every experimental record and
        ``to_install`` lists declared specs that are missing from state,
        not recorded as declared, or recorded with a different spec.
    """
    result = DriftResult()

    for name, record in current.items():
        if record.is_experimental:
            result.to_remove.append(name)

    seen: set[str] = set()
    for spec in declared:
        if spec.source in seen:
            continue
        seen.add(spec.source)

        record = current.get(spec.source)
        if record is None or not record.is_declared or record.specification != spec.raw:
            result.to_install.append(spec)

    return result
