"""Tests for the reconciliation commands (try, sync, adopt, status, diff, load, clean)."""

from pathlib import Path

from conftest import FakeFetcher, FakeLoader, write_config

from extsync.config.extractor import extract
from extsync.models.extension import LifecycleState, Origin, ReconcileOutcome
from extsync.state.store import StateStore, add_record
from extsync.sync.commands import Reconciler, TryExit, TryStatus


def _records(reconciler):
    return reconciler.store.load()


# --- declared state ---


def test_declared_specs_with_undecodable_config(reconciler, settings):
    settings.config_file.write_bytes(b"# caf\xe9\nplugins=(\n  a/b\n  c/d@v1\n)\n")
    specs, invalid = reconciler.declared_specs()
    assert [s.raw for s in specs] == ["a/b", "c/d@v1"]
    assert invalid == []


# --- try ---


def test_try_loads_experimentally(reconciler, loader):
    result = reconciler.try_extension("x/y@v1")

    assert result.exit_code == TryExit.OK
    assert result.status == TryStatus.LOADED
    assert result.entry_file.name == "y.plugin.zsh"
    record = _records(reconciler)["x/y"]
    assert record.lifecycle_state == LifecycleState.EXPERIMENTAL
    assert record.origin == Origin.TRY_COMMAND
    assert record.specification == "x/y@v1"
    assert record.resolved_version == "v1"
    assert loader.loaded == ["x/y@v1"]


def test_try_invalid_spec_touches_nothing(reconciler, fetcher):
    result = reconciler.try_extension("a/b; rm -rf /")
    assert result.exit_code == TryExit.INVALID_SPEC
    assert result.status == TryStatus.INVALID
    assert fetcher.calls == []
    assert not reconciler.store.path.exists()


def test_try_already_declared_is_noop(reconciler, settings, fetcher):
    write_config(settings.config_file, ["x/y"])
    reconciler.sync()
    before = reconciler.store.path.read_text()
    fetcher.calls.clear()

    result = reconciler.try_extension("x/y")

    assert result.exit_code == TryExit.OK
    assert result.status == TryStatus.ALREADY_DECLARED
    assert fetcher.calls == []
    assert reconciler.store.path.read_text() == before


def test_try_declared_in_config_but_not_yet_recorded(reconciler, settings, fetcher):
    write_config(settings.config_file, ["x/y"])
    result = reconciler.try_extension("x/y")
    assert result.status == TryStatus.ALREADY_DECLARED
    assert fetcher.calls == []


def test_try_declared_with_different_spec(reconciler, settings):
    write_config(settings.config_file, ["x/y@v1"])
    result = reconciler.try_extension("x/y@v2")
    assert result.exit_code == TryExit.ALREADY_DECLARED
    assert result.status == TryStatus.DECLARED_DIFFERENTLY
    assert "x/y@v1" in result.reason


def test_try_twice_is_noop(reconciler, fetcher):
    reconciler.try_extension("x/y")
    result = reconciler.try_extension("x/y")
    assert result.exit_code == TryExit.OK
    assert result.status == TryStatus.ALREADY_EXPERIMENTAL
    assert fetcher.calls == ["x/y"]


def test_try_other_version_replaces_experimental(reconciler):
    reconciler.try_extension("x/y@v1")
    result = reconciler.try_extension("x/y@v2")
    assert result.status == TryStatus.LOADED
    assert _records(reconciler)["x/y"].specification == "x/y@v2"


def test_try_fetch_failure(settings):
    reconciler = Reconciler(
        settings,
        StateStore(settings.state_file),
        FakeFetcher(settings.plugin_dir, failing={"x/y"}),
        FakeLoader(),
    )
    result = reconciler.try_extension("x/y")
    assert result.exit_code == TryExit.FETCH_FAILED
    assert "repository not found" in result.reason
    assert _records(reconciler) == {}


def test_try_load_failure(settings, fetcher):
    reconciler = Reconciler(
        settings, StateStore(settings.state_file), fetcher, FakeLoader(failing={"x/y"})
    )
    result = reconciler.try_extension("x/y")
    assert result.exit_code == TryExit.LOAD_FAILED
    assert _records(reconciler) == {}


# --- sync ---


def test_sync_installs_declared(reconciler, settings):
    write_config(settings.config_file, ["a/b", "c/d@v1.0"])

    result = reconciler.sync()

    assert result.outcome == ReconcileOutcome.RESTART
    assert [r.name for r in result.installed] == ["a/b", "c/d"]
    status = reconciler.status()
    assert len(status.declared) == 2
    assert len(status.experimental) == 0


def test_sync_is_idempotent(reconciler, settings):
    write_config(settings.config_file, ["a/b", "c/d@v1.0"])
    reconciler.try_extension("x/y")

    first = reconciler.sync()
    state_after_first = _records(reconciler)
    second = reconciler.sync()

    assert first.outcome == ReconcileOutcome.RESTART
    assert second.outcome == ReconcileOutcome.NOOP
    assert _records(reconciler) == state_after_first


def test_sync_removes_experimental(reconciler):
    reconciler.try_extension("x/y")

    result = reconciler.sync()

    assert [r.name for r in result.removed] == ["x/y"]
    assert "x/y" not in _records(reconciler)
    assert reconciler.status().experimental == []


def test_sync_in_sync_is_noop(reconciler):
    result = reconciler.sync()
    assert result.outcome == ReconcileOutcome.NOOP
    assert result.exit_code == 0


def test_sync_dry_run_changes_nothing(reconciler, settings, fetcher):
    write_config(settings.config_file, ["a/b"])
    reconciler.try_extension("x/y")
    before = reconciler.store.path.read_text()
    fetcher.calls.clear()

    result = reconciler.sync(dry_run=True)

    assert result.outcome == ReconcileOutcome.PREVIEW
    assert [r.name for r in result.removed] == ["x/y"]
    assert [s.raw for s in result.drift.to_install] == ["a/b"]
    assert reconciler.store.path.read_text() == before
    assert fetcher.calls == []


def test_sync_skips_invalid_and_failing_entries(settings, loader):
    write_config(settings.config_file, ["a/b", "'../../etc/passwd'", "bad/one", "c/d"])
    reconciler = Reconciler(
        settings,
        StateStore(settings.state_file),
        FakeFetcher(settings.plugin_dir, failing={"bad/one"}),
        loader,
    )

    result = reconciler.sync()

    assert [f.specification for f in result.invalid] == ["../../etc/passwd"]
    assert [f.specification for f in result.failures] == ["bad/one"]
    assert sorted(_records(reconciler)) == ["a/b", "c/d"]


# --- adopt ---


def test_try_then_adopt(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    original = settings.config_file.read_bytes()
    reconciler.try_extension("x/y")

    result = reconciler.adopt("x/y")

    assert result.exit_code == 0
    assert [e.name for e in result.adopted] == ["x/y"]
    assert extract(settings.config_file.read_text()) == ["a/b", "x/y"]
    backup = result.adopted[0].backup
    assert backup.read_bytes() == original
    assert _records(reconciler)["x/y"].lifecycle_state == LifecycleState.DECLARED
    assert _records(reconciler)["x/y"].origin == Origin.ARRAY


def test_adopt_then_sync_is_in_sync(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    reconciler.sync()
    reconciler.try_extension("x/y@v2")
    reconciler.adopt("x/y")

    assert reconciler.diff().drift.in_sync
    assert reconciler.sync().outcome == ReconcileOutcome.NOOP


def test_adopt_uses_recorded_spec(reconciler, settings):
    reconciler.try_extension("x/y@v2:sub")
    reconciler.adopt("x/y")
    assert extract(settings.config_file.read_text()) == ["x/y@v2:sub"]


def test_adopt_not_experimental(reconciler, settings):
    result = reconciler.adopt("x/y")
    assert result.exit_code == 1
    assert "not loaded" in result.failures[0].reason
    assert settings.config_file.read_text() == "# empty zshrc\n"


def test_adopt_invalid_name(reconciler):
    result = reconciler.adopt("../x")
    assert result.exit_code == 1


def test_adopt_already_declared(reconciler, settings):
    write_config(settings.config_file, ["x/y"])
    reconciler.sync()
    result = reconciler.adopt("x/y")
    assert result.exit_code == 0
    assert result.already_declared == ["x/y"]
    assert result.adopted == []


def test_adopt_all(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    reconciler.try_extension("x/y")
    reconciler.try_extension("p/q@v3")

    result = reconciler.adopt(adopt_all=True)

    assert [e.specification for e in result.adopted] == ["x/y", "p/q@v3"]
    assert extract(settings.config_file.read_text()) == ["a/b", "x/y", "p/q@v3"]
    assert reconciler.status().experimental == []


def test_adopt_all_nothing_to_do(reconciler):
    result = reconciler.adopt(adopt_all=True)
    assert result.exit_code == 0
    assert result.pending == []


def test_adopt_cancelled(reconciler, settings):
    reconciler.try_extension("x/y")
    seen = []

    def decline(specs):
        seen.extend(specs)
        return False

    result = reconciler.adopt("x/y", confirm=decline)

    assert result.cancelled
    assert seen == ["x/y"]
    assert settings.config_file.read_text() == "# empty zshrc\n"
    assert _records(reconciler)["x/y"].is_experimental


def test_adopt_dry_run(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    before = settings.config_file.read_text()
    reconciler.try_extension("x/y")

    result = reconciler.adopt("x/y", dry_run=True)

    assert result.dry_run
    assert extract(result.preview) == ["a/b", "x/y"]
    assert settings.config_file.read_text() == before
    assert list(Path(settings.config_file.parent).glob(".zshrc.backup-*")) == []
    assert _records(reconciler)["x/y"].is_experimental


# --- status / diff ---


def test_status_is_read_only(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    reconciler.status()
    assert not reconciler.store.path.exists()


def test_status_to_dict(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    reconciler.sync()
    reconciler.try_extension("x/y")

    data = reconciler.status().to_dict()

    assert [e["name"] for e in data["declared"]] == ["a/b"]
    assert [e["spec"] for e in data["experimental"]] == ["x/y"]
    assert data["experimental"][0]["origin"] == "try_command"


def test_diff_exit_codes(reconciler, settings):
    assert reconciler.diff().exit_code == 1
    reconciler.try_extension("x/y")
    report = reconciler.diff()
    assert report.exit_code == 0
    assert report.drift.to_remove == ["x/y"]


def test_diff_reports_invalid_entries(reconciler, settings):
    write_config(settings.config_file, ["'a/b|c'"])
    report = reconciler.diff()
    assert [f.specification for f in report.invalid] == ["a/b|c"]


# --- load ---


def test_load_declared_in_order(reconciler, settings):
    write_config(settings.config_file, ["c/d", "a/b@v1"])

    result = reconciler.load_declared()

    assert [p.name for p in result.entry_files] == ["d.plugin.zsh", "b.plugin.zsh"]
    assert all(r.is_declared for r in _records(reconciler).values())


def test_load_drops_experimental_and_prunes_undeclared(reconciler, settings):
    records = {}
    add_record(records, "old/one", "old/one", LifecycleState.DECLARED)
    add_record(records, "x/y", "x/y", LifecycleState.EXPERIMENTAL, origin=Origin.TRY_COMMAND)
    reconciler.store.save(records)
    write_config(settings.config_file, ["a/b"])

    result = reconciler.load_declared()

    assert result.pruned == ["old/one"]
    assert result.dropped == ["x/y"]
    assert sorted(_records(reconciler)) == ["a/b"]
    assert reconciler.status().experimental == []


def test_load_continues_past_failures(settings, fetcher):
    write_config(settings.config_file, ["a/b", "broken/one", "c/d"])
    reconciler = Reconciler(
        settings, StateStore(settings.state_file), fetcher, FakeLoader(failing={"broken/one"})
    )

    result = reconciler.load_declared()

    assert [r.name for r in result.loaded] == ["a/b", "c/d"]
    assert [f.specification for f in result.failures] == ["broken/one"]


# --- clean ---


def _cache(settings, name, payload=b"x" * 10):
    path = settings.plugin_dir / name
    path.mkdir(parents=True)
    (path / "init.zsh").write_bytes(payload)
    return path


def test_clean_removes_unreferenced_caches(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    reconciler.load_declared()
    reconciler.try_extension("x/y")
    orphan = _cache(settings, "old__plugin")

    result = reconciler.clean()

    assert [e.source for e in result.removed] == ["old/plugin"]
    assert result.reclaimed == 10
    assert result.exit_code == 0
    assert not orphan.exists()
    assert (settings.plugin_dir / "a__b").is_dir()
    assert (settings.plugin_dir / "x__y").is_dir()


def test_clean_keeps_declared_entries_without_records(reconciler, settings):
    write_config(settings.config_file, ["a/b"])
    _cache(settings, "a__b")
    assert reconciler.orphaned_caches() == []


def test_clean_dry_run_and_cancel(reconciler, settings):
    orphan = _cache(settings, "old__plugin")

    preview = reconciler.clean(dry_run=True)
    assert [e.name for e in preview.orphans] == ["old__plugin"]
    assert preview.removed == []

    seen = []
    cancelled = reconciler.clean(confirm=lambda entries: seen.extend(entries) or False)
    assert cancelled.cancelled
    assert [e.name for e in seen] == ["old__plugin"]
    assert orphan.exists()


def test_clean_without_plugin_dir(reconciler):
    result = reconciler.clean()
    assert result.orphans == []
    assert result.exit_code == 0
