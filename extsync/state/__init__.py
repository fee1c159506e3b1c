"""Persistent plugin state."""

from extsync.state.store import (
    StateMap,
    StateStore,
    add_record,
    list_declared,
    list_experimental,
    remove_record,
    update_record,
)

__all__ = [
    "StateMap",
    "StateStore",
    "add_record",
    "list_declared",
    "list_experimental",
    "remove_record",
    "update_record",
]
