"""State store -- the persisted record of every plugin the engine knows about.

The record file is a YAML mapping from plugin name to a pipe-delimited
record::

    zsh-users/zsh-autosuggestions: declared|zsh-users/zsh-autosuggestions|1718000000|/…/plugins/zsh-users__zsh-autosuggestions|a1b2c3d|array

It is rewritten in full on every save through a temp file and an atomic
rename, so a concurrently starting process sees either the old or the new
file, never a partial one. There is no locking: two processes that load,
mutate and save independently resolve as last-writer-wins.

The in-memory map is passed explicitly; :class:`StateStore` only loads and
saves it, and the module-level helpers mutate it.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path

import yaml

from extsync.errors import RecordNotFoundError, StateStoreError
from extsync.models.extension import LifecycleState, Origin, StateRecord

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"
FIELD_COUNT = 6

StateMap = dict[str, StateRecord]


class CorruptStateError(ValueError):
    """The record file exists but cannot be interpreted."""


def encode_record(record: StateRecord) -> str:
    return FIELD_SEPARATOR.join(
        [
            record.lifecycle_state.value,
            record.specification,
            str(record.created_at),
            record.install_path,
            record.resolved_version,
            record.origin.value,
        ]
    )


def decode_record(name: str, value: str) -> StateRecord:
    """Parse one pipe-delimited record. Raises CorruptStateError."""
    if not isinstance(value, str):
        raise CorruptStateError(f"record for {name!r} is not a string")

    fields = value.split(FIELD_SEPARATOR)
    if len(fields) != FIELD_COUNT:
        raise CorruptStateError(
            f"record for {name!r} has {len(fields)} fields, expected {FIELD_COUNT}"
        )

    state, spec, created_at, path, version, origin = fields
    try:
        return StateRecord(
            name=name,
            lifecycle_state=LifecycleState(state),
            specification=spec,
            created_at=int(created_at),
            install_path=path,
            resolved_version=version,
            origin=Origin(origin),
        )
    except ValueError as e:
        raise CorruptStateError(f"record for {name!r}: {e}") from e


class StateStore:
    """Loads and saves the state record file."""

    FILE_NAME = "state.yaml"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @classmethod
    def in_dir(cls, data_dir: str | Path) -> "StateStore":
        return cls(Path(data_dir) / cls.FILE_NAME)

    def load(self) -> StateMap:
        """Read the record file.

        A missing file is an empty state. A corrupted file is moved aside to
        ``<file>.corrupted.<epoch>`` and an empty state is returned.
        """
        if not self.path.exists():
            return {}

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise StateStoreError(
                f"Failed to read state file {self.path}: {e}",
                hint="Check the file permissions",
            ) from e

        try:
            return self._parse(raw.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError, CorruptStateError) as e:
            quarantined = self._quarantine()
            logger.warning(
                "State file corrupted (%s); moved to %s and starting from empty state",
                e,
                quarantined,
            )
            return {}

    def save(self, records: StateMap) -> None:
        """Serialize the whole map and atomically replace the record file."""
        payload = {name: encode_record(records[name]) for name in records}
        header = (
            "# extsync plugin state\n"
            "# Auto-generated - do not edit manually\n"
            f"# Session: {os.getpid()}\n"
            f"# Last updated: {int(time.time())}\n"
        )
        body = yaml.safe_dump(payload, default_flow_style=False, sort_keys=False, width=4096)
        content = header + (body if payload else "{}\n")

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            Path(tmp_path).replace(self.path)
        except OSError as e:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise StateStoreError(
                f"Failed to write state file {self.path}: {e}",
                hint="Check free disk space and that the data directory is writable",
            ) from e

        logger.debug("Saved %d state record(s) to %s", len(records), self.path)

    def _parse(self, text: str) -> StateMap:
        data = yaml.safe_load(text)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise CorruptStateError("top level is not a mapping")
        return {str(name): decode_record(str(name), value) for name, value in data.items()}

    def _quarantine(self) -> Path | None:
        target = self.path.with_name(f"{self.path.name}.corrupted.{int(time.time())}")
        try:
            self.path.replace(target)
        except OSError as e:
            logger.error("Could not move corrupted state file %s aside: %s", self.path, e)
            return None
        return target


# ── In-memory mutations ─────────────────────────────────────────────


def add_record(
    records: StateMap,
    name: str,
    specification: str,
    lifecycle_state: LifecycleState,
    install_path: str = "",
    resolved_version: str = "",
    origin: Origin = Origin.ARRAY,
) -> StateRecord:
    """Insert or replace the record for ``name``."""
    record = StateRecord(
        name=name,
        lifecycle_state=lifecycle_state,
        specification=specification,
        created_at=int(time.time()),
        install_path=install_path,
        resolved_version=resolved_version,
        origin=origin,
    )
    records[name] = record
    return record


def remove_record(records: StateMap, name: str) -> StateRecord | None:
    return records.pop(name, None)


def update_record(
    records: StateMap,
    name: str,
    lifecycle_state: LifecycleState,
    origin: Origin,
) -> StateRecord:
    """Change state and origin, keeping timestamp, path and version."""
    record = records.get(name)
    if record is None:
        raise RecordNotFoundError(name)
    record.lifecycle_state = lifecycle_state
    record.origin = origin
    return record


def list_declared(records: StateMap) -> list[StateRecord]:
    return [r for r in records.values() if r.is_declared]


def list_experimental(records: StateMap) -> list[StateRecord]:
    return [r for r in records.values() if r.is_experimental]
