"""Reconciliation commands — try, sync, adopt, status, diff, clean, and the startup load.

Per plugin, the lifecycle is::

    undeclared --try--> experimental --adopt--> declared (+ still loaded)
         ^                   |                      |
         +-------sync--------+                      |
         +-------------- removed from array --------+

Every command returns a result object carrying its exit code; rendering is
left to the CLI. ``sync`` never restarts anything itself: it returns
``ReconcileOutcome.RESTART`` and the caller performs the restart as its
last action.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from extsync.config.editor import add_to_config, insert_spec
from extsync.config.extractor import extract_file, read_config
from extsync.errors import FetchError, LoadError
from extsync.models.extension import (
    DriftResult,
    ExtensionSpec,
    LifecycleState,
    Origin,
    ReconcileOutcome,
    StateRecord,
)
from extsync.settings import Settings
from extsync.spec.parser import parse
from extsync.spec.validator import validate
from extsync.state.store import (
    StateMap,
    StateStore,
    add_record,
    list_declared,
    list_experimental,
    remove_record,
    update_record,
)
from extsync.sync.drift import calculate_drift
from extsync.utils.git_ops import Fetcher, FetchResult, GitFetcher
from extsync.utils.loader import EntryPointLoader, Loader

logger = logging.getLogger(__name__)


class TryExit:
    OK = 0
    INVALID_SPEC = 1
    ALREADY_DECLARED = 2
    FETCH_FAILED = 3
    LOAD_FAILED = 4


class TryStatus:
    LOADED = "loaded"
    ALREADY_DECLARED = "already_declared"
    ALREADY_EXPERIMENTAL = "already_experimental"
    DECLARED_DIFFERENTLY = "declared_differently"
    INVALID = "invalid"
    FETCH_FAILED = "fetch_failed"
    LOAD_FAILED = "load_failed"


@dataclass
class EntryFailure:
    """A declared or requested entry that was skipped, and why."""

    specification: str
    reason: str


@dataclass
class TryResult:
    status: str
    exit_code: int
    specification: str
    spec: ExtensionSpec | None = None
    record: StateRecord | None = None
    entry_file: Path | None = None
    reason: str = ""


@dataclass
class AdoptedEntry:
    name: str
    specification: str
    backup: Path | None = None


@dataclass
class AdoptResult:
    exit_code: int = 0
    adopted: list[AdoptedEntry] = field(default_factory=list)
    already_declared: list[str] = field(default_factory=list)
    failures: list[EntryFailure] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)  # specs awaiting confirmation
    cancelled: bool = False
    dry_run: bool = False
    preview: str = ""  # config text that would be written (dry run)
    config_file: Path | None = None


@dataclass
class SyncResult:
    outcome: ReconcileOutcome
    drift: DriftResult
    removed: list[StateRecord] = field(default_factory=list)
    installed: list[StateRecord] = field(default_factory=list)
    failures: list[EntryFailure] = field(default_factory=list)
    invalid: list[EntryFailure] = field(default_factory=list)
    declared: list[StateRecord] = field(default_factory=list)
    exit_code: int = 0


@dataclass
class LoadResult:
    entry_files: list[Path] = field(default_factory=list)
    loaded: list[StateRecord] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)  # experimental records of ended sessions
    failures: list[EntryFailure] = field(default_factory=list)
    invalid: list[EntryFailure] = field(default_factory=list)
    exit_code: int = 0


@dataclass
class StatusResult:
    declared: list[StateRecord]
    experimental: list[StateRecord]
    exit_code: int = 0

    @property
    def in_sync(self) -> bool:
        return not self.experimental

    def to_dict(self) -> dict:
        def entry(record: StateRecord) -> dict:
            return {
                "name": record.name,
                "spec": record.specification,
                "version": record.resolved_version,
                "path": record.install_path,
                "origin": record.origin.value,
                "loaded_at": record.created_at,
            }

        return {
            "declared": [entry(r) for r in self.declared],
            "experimental": [entry(r) for r in self.experimental],
        }


@dataclass
class DiffReport:
    drift: DriftResult
    declared: list[StateRecord]
    experimental: list[StateRecord]
    invalid: list[EntryFailure] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.drift.in_sync else 0


@dataclass
class CacheEntry:
    """One directory under the plugin cache."""

    name: str  # owner__name
    path: Path
    size: int = 0

    @property
    def source(self) -> str:
        return self.name.replace("__", "/", 1)


@dataclass
class CleanResult:
    orphans: list[CacheEntry] = field(default_factory=list)
    removed: list[CacheEntry] = field(default_factory=list)
    failures: list[EntryFailure] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    @property
    def reclaimed(self) -> int:
        return sum(entry.size for entry in self.removed)

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0


class Reconciler:
    """Runs the reconciliation commands against one config file and state store."""

    def __init__(
        self,
        settings: Settings,
        store: StateStore | None = None,
        fetcher: Fetcher | None = None,
        loader: Loader | None = None,
    ):
        self.settings = settings
        self.store = store or StateStore(settings.state_file)
        self.fetcher = fetcher or GitFetcher(settings.plugin_dir, settings.git_host)
        self.loader = loader or EntryPointLoader()

    # ── Declared state ───────────────────────────────────────────────

    def declared_specs(self) -> tuple[list[ExtensionSpec], list[EntryFailure]]:
        """Validate every entry of the plugins=() array.

        Invalid entries are logged and returned separately; they never stop
        the remaining entries from being processed.
        """
        specs: list[ExtensionSpec] = []
        invalid: list[EntryFailure] = []
        for raw in extract_file(self.settings.config_file, self.settings.array_name):
            result = validate(raw)
            if not result.ok:
                logger.warning("Skipping invalid plugin specification %r: %s", raw, result.reason)
                invalid.append(EntryFailure(raw, result.reason))
                continue
            specs.append(parse(raw))
        return specs, invalid

    def _install(self, spec: ExtensionSpec) -> tuple[FetchResult, Path]:
        """Fetch and load one plugin. Raises FetchError or LoadError."""
        fetched = self.fetcher.fetch(spec, self.settings.fetch_timeout)
        return fetched, self.loader.load(spec, fetched.install_path)

    # ── try ──────────────────────────────────────────────────────────

    def try_extension(self, raw: str) -> TryResult:
        """Load a plugin for this session only."""
        validation = validate(raw)
        if not validation.ok:
            return TryResult(TryStatus.INVALID, TryExit.INVALID_SPEC, raw, reason=validation.reason)

        spec = parse(raw)
        records = self.store.load()
        record = records.get(spec.source)

        declared_spec = self._declared_spec_for(spec.source, record)
        if declared_spec is not None:
            if declared_spec == spec.raw:
                return TryResult(
                    TryStatus.ALREADY_DECLARED, TryExit.OK, raw, spec=spec, record=record
                )
            return TryResult(
                TryStatus.DECLARED_DIFFERENTLY,
                TryExit.ALREADY_DECLARED,
                raw,
                spec=spec,
                record=record,
                reason=f"declared as {declared_spec}",
            )

        if record is not None and record.is_experimental and record.specification == spec.raw:
            return TryResult(
                TryStatus.ALREADY_EXPERIMENTAL, TryExit.OK, raw, spec=spec, record=record
            )

        try:
            fetched = self.fetcher.fetch(spec, self.settings.fetch_timeout)
        except FetchError as e:
            logger.error("Failed to download %s: %s", spec.source, e)
            return TryResult(
                TryStatus.FETCH_FAILED, TryExit.FETCH_FAILED, raw, spec=spec, reason=str(e)
            )

        try:
            entry = self.loader.load(spec, fetched.install_path)
        except LoadError as e:
            logger.error("Failed to load %s: %s", spec.source, e)
            return TryResult(
                TryStatus.LOAD_FAILED, TryExit.LOAD_FAILED, raw, spec=spec, reason=str(e)
            )

        record = add_record(
            records,
            spec.source,
            spec.raw,
            LifecycleState.EXPERIMENTAL,
            install_path=str(fetched.install_path),
            resolved_version=fetched.resolved_version or spec.version or "unknown",
            origin=Origin.TRY_COMMAND,
        )
        self.store.save(records)
        logger.info("Loaded %s experimentally", spec.raw)

        return TryResult(
            TryStatus.LOADED, TryExit.OK, raw, spec=spec, record=record, entry_file=entry
        )

    def _declared_spec_for(self, source: str, record: StateRecord | None) -> str | None:
        if record is not None and record.is_declared:
            return record.specification
        specs, _ = self.declared_specs()
        for spec in specs:
            if spec.source == source:
                return spec.raw
        return None

    # ── adopt ────────────────────────────────────────────────────────

    def adopt(
        self,
        name: str | None = None,
        adopt_all: bool = False,
        dry_run: bool = False,
        confirm: Callable[[list[str]], bool] | None = None,
    ) -> AdoptResult:
        """Promote experimental plugins into the plugins=() array.

        ``confirm`` receives the specifications about to be written and
        returns False to cancel; pass None to skip confirmation.
        """
        result = AdoptResult(dry_run=dry_run, config_file=self.settings.config_file)
        records = self.store.load()

        if adopt_all:
            # Adoption shrinks the experimental set, so snapshot it first.
            targets = [(r.name, r.specification) for r in list_experimental(records)]
            if not targets:
                return result
        else:
            target = self._adopt_target(name or "", records, result)
            if target is None:
                return result
            targets = [target]

        result.pending = [spec for _, spec in targets]

        if dry_run:
            text = ""
            if self.settings.config_file.exists():
                text = read_config(self.settings.config_file)
            for _, spec in targets:
                text = insert_spec(text, spec, self.settings.array_name)
            result.preview = text
            return result

        if confirm is not None and not confirm(result.pending):
            result.cancelled = True
            return result

        for plugin_name, spec in targets:
            backup = add_to_config(self.settings.config_file, spec, self.settings.array_name)
            update_record(records, plugin_name, LifecycleState.DECLARED, Origin.ARRAY)
            self.store.save(records)
            logger.info("Adopted %s into %s", spec, self.settings.config_file)
            result.adopted.append(AdoptedEntry(plugin_name, spec, backup))

        return result

    def _adopt_target(
        self, name: str, records: StateMap, result: AdoptResult
    ) -> tuple[str, str] | None:
        validation = validate(name)
        if not validation.ok:
            result.exit_code = 1
            result.failures.append(EntryFailure(name, validation.reason))
            return None

        source = parse(name).source
        record = records.get(source)
        if record is None:
            result.exit_code = 1
            result.failures.append(
                EntryFailure(name, f"{source} is not loaded; run 'extsync try {name}' first")
            )
            return None
        if record.is_declared:
            result.already_declared.append(source)
            return None
        if not record.is_experimental:
            result.exit_code = 1
            result.failures.append(EntryFailure(name, f"{source} is not experimental"))
            return None
        return source, record.specification

    # ── sync ─────────────────────────────────────────────────────────

    def sync(self, dry_run: bool = False) -> SyncResult:
        """Bring recorded state back to the declared array.

        Removes every experimental record, installs declared plugins that
        are missing or recorded with a different spec, and asks the caller
        to restart so the session only runs what is declared.
        """
        records = self.store.load()
        declared, invalid = self.declared_specs()
        drift = calculate_drift(declared, records)

        if drift.in_sync:
            return SyncResult(
                ReconcileOutcome.NOOP, drift, invalid=invalid, declared=list_declared(records)
            )

        removed = [records[name] for name in drift.to_remove]
        if dry_run:
            return SyncResult(
                ReconcileOutcome.PREVIEW,
                drift,
                removed=removed,
                invalid=invalid,
                declared=list_declared(records),
            )

        result = SyncResult(ReconcileOutcome.RESTART, drift, invalid=invalid)
        for name in drift.to_remove:
            result.removed.append(remove_record(records, name))

        for spec in drift.to_install:
            try:
                fetched, _ = self._install(spec)
            except (FetchError, LoadError) as e:
                logger.warning("Skipping %s: %s", spec.raw, e)
                result.failures.append(EntryFailure(spec.raw, str(e)))
                continue
            result.installed.append(
                add_record(
                    records,
                    spec.source,
                    spec.raw,
                    LifecycleState.DECLARED,
                    install_path=str(fetched.install_path),
                    resolved_version=fetched.resolved_version or spec.version or "unknown",
                    origin=Origin.ARRAY,
                )
            )

        self.store.save(records)
        result.declared = list_declared(records)
        logger.info(
            "Sync removed %d experimental plugin(s), installed %d: %s",
            len(result.removed),
            len(result.installed),
            ", ".join(r.name for r in result.removed + result.installed),
        )
        return result

    # ── load ─────────────────────────────────────────────────────────

    def load_declared(self) -> LoadResult:
        """Install and activate every declared plugin, in array order.

        This is what a new session runs on startup. Experimental records do
        not survive a restart, so they are dropped first; declared records
        that are no longer in the array are pruned.
        """
        result = LoadResult()
        declared, result.invalid = self.declared_specs()
        records = self.store.load()

        for record in list_experimental(records):
            remove_record(records, record.name)
            result.dropped.append(record.name)

        wanted: set[str] = set()
        for spec in declared:
            if spec.source in wanted:
                logger.warning("Ignoring duplicate declaration %s", spec.raw)
                continue
            wanted.add(spec.source)

            try:
                fetched, entry = self._install(spec)
            except (FetchError, LoadError) as e:
                logger.warning("Skipping %s: %s", spec.raw, e)
                result.failures.append(EntryFailure(spec.raw, str(e)))
                continue

            result.entry_files.append(entry)
            result.loaded.append(
                add_record(
                    records,
                    spec.source,
                    spec.raw,
                    LifecycleState.DECLARED,
                    install_path=str(fetched.install_path),
                    resolved_version=fetched.resolved_version or spec.version or "unknown",
                    origin=Origin.ARRAY,
                )
            )

        for record in list_declared(records):
            if record.name not in wanted:
                remove_record(records, record.name)
                result.pruned.append(record.name)

        self.store.save(records)
        logger.info(
            "Declarative loading completed: %d loaded, %d failed, %d invalid, %d experimental dropped",
            len(result.loaded),
            len(result.failures),
            len(result.invalid),
            len(result.dropped),
        )
        return result

    # ── clean ────────────────────────────────────────────────────────

    def orphaned_caches(self) -> list[CacheEntry]:
        """Cache directories that no state record or declared entry refers to."""
        plugin_dir = self.settings.plugin_dir
        if not plugin_dir.is_dir():
            return []

        records = self.store.load()
        in_use = {name.replace("/", "__", 1) for name in records}
        in_use.update(Path(r.install_path).name for r in records.values() if r.install_path)
        declared, _ = self.declared_specs()
        in_use.update(spec.cache_key for spec in declared)

        orphans = []
        for path in sorted(plugin_dir.iterdir()):
            if path.is_dir() and path.name not in in_use:
                orphans.append(CacheEntry(path.name, path, _disk_usage(path)))
        return orphans

    def clean(
        self,
        dry_run: bool = False,
        confirm: Callable[[list[CacheEntry]], bool] | None = None,
    ) -> CleanResult:
        """Delete downloaded plugins that nothing refers to any more.

        Experimental records keep their downloads, since another session may
        still be running them.
        """
        result = CleanResult(orphans=self.orphaned_caches(), dry_run=dry_run)
        if not result.orphans or dry_run:
            return result

        if confirm is not None and not confirm(result.orphans):
            result.cancelled = True
            return result

        for entry in result.orphans:
            try:
                shutil.rmtree(entry.path)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", entry.path, e)
                result.failures.append(EntryFailure(entry.source, str(e)))
                continue
            result.removed.append(entry)

        logger.info(
            "Removed %d orphaned plugin cache(s), %d bytes reclaimed",
            len(result.removed),
            result.reclaimed,
        )
        return result

    # ── status / diff ────────────────────────────────────────────────

    def status(self) -> StatusResult:
        records = self.store.load()
        return StatusResult(list_declared(records), list_experimental(records))

    def diff(self) -> DiffReport:
        records = self.store.load()
        declared, invalid = self.declared_specs()
        return DiffReport(
            drift=calculate_drift(declared, records),
            declared=list_declared(records),
            experimental=list_experimental(records),
            invalid=invalid,
        )


def _disk_usage(path: Path) -> int:
    total = 0
    for child in path.rglob("*"):
        if child.is_file() and not child.is_symlink():
            total += child.stat().st_size
    return total
