"""extsync CLI — declarative plugin management for the shell.

Declare plugins once in a ``plugins=( ... )`` array in your .zshrc, then
let extsync keep the session in line with it.
"""

from __future__ import annotations

import functools
import json
import os
import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from extsync import __version__
from extsync.errors import ExtsyncError
from extsync.log import configure_logging
from extsync.models.extension import ReconcileOutcome, StateRecord
from extsync.settings import load_settings
from extsync.sync.commands import Reconciler, TryStatus
from extsync.utils.loader import activation_script

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)


def handle_errors(f):
    """Render ExtsyncError as a message with a hint and exit 1."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ExtsyncError as e:
            err_console.print(f"[red]Error:[/] {escape(str(e))}")
            if e.hint:
                err_console.print(f"  {escape(e.hint)}")
            sys.exit(1)

    return wrapper


def _loaded_at(timestamp: int) -> str:
    if not timestamp:
        return "unknown"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _print_details(record: StateRecord, with_path: bool = True) -> None:
    console.print(f"      spec: {escape(record.specification)}")
    if with_path:
        console.print(f"      path: {escape(record.install_path)}")
    console.print(f"      loaded: {_loaded_at(record.created_at)}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Shell configuration file holding the plugins=() array",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for plugin state and downloads",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
@handle_errors
def main(ctx: click.Context, config_file: Path | None, data_dir: Path | None, log_level: str):
    """extsync — declarative plugin management.

    Declare plugins in your .zshrc, experiment with 'try', keep what you
    like with 'adopt', and return to the declared state with 'sync'.
    """
    settings = load_settings(config_file=config_file, data_dir=data_dir)
    configure_logging(log_level, settings.state_log)
    ctx.obj = Reconciler(settings)


def _reconciler(ctx: click.Context) -> Reconciler:
    return ctx.obj


# ── Try ──────────────────────────────────────────────────────────────


@main.command(name="try")
@click.argument("spec")
@click.option("--verbose", is_flag=True, help="Show each step")
@click.pass_context
@handle_errors
def try_cmd(ctx: click.Context, spec: str, verbose: bool):
    """Load a plugin for this session without declaring it.

    SPEC is owner/name[@version][:subpath], e.g. zsh-users/zsh-autosuggestions.
    Messages go to stderr and the activation script to stdout, so run it as:

        eval "$(extsync try SPEC)"
    """
    result = _reconciler(ctx).try_extension(spec)
    shown = escape(spec)

    if result.status == TryStatus.INVALID:
        err_console.print(f"[red]Error:[/] Invalid plugin specification: {shown}")
        err_console.print(f"  {escape(result.reason)}")
    elif result.status == TryStatus.ALREADY_DECLARED:
        err_console.print(f"Plugin '{escape(result.spec.source)}' is already declared in your configuration.")
        err_console.print("It will be loaded automatically on every shell startup.")
    elif result.status == TryStatus.DECLARED_DIFFERENTLY:
        err_console.print(
            f"[yellow]Plugin '{escape(result.spec.source)}' is already declared[/] "
            f"({escape(result.reason)})."
        )
        err_console.print("Edit the plugins=() array to change its version or path.")
    elif result.status == TryStatus.ALREADY_EXPERIMENTAL:
        err_console.print(
            f"Plugin '{escape(result.spec.source)}' is already loaded experimentally in this session."
        )
    elif result.status in (TryStatus.FETCH_FAILED, TryStatus.LOAD_FAILED):
        action = "download" if result.status == TryStatus.FETCH_FAILED else "load"
        err_console.print(f"[red]Error:[/] Failed to {action} plugin: {shown}")
        err_console.print(f"  {escape(result.reason)}")
    else:
        record = result.record
        err_console.print(f"[green]✓[/] Loaded {escape(record.name)} experimentally")
        if verbose:
            err_console.print(f"  Specification: {escape(record.specification)}")
            err_console.print(f"  Cache directory: {escape(record.install_path)}")
            err_console.print(f"  Version: {escape(record.resolved_version)}")
            err_console.print(f"  Entry file: {escape(str(result.entry_file))}")
        err_console.print("  This plugin will NOT be reloaded on shell restart.")
        err_console.print(f"  To make it permanent, run: extsync adopt {escape(record.name)}")
        err_console.print("  To return to declared state, run: extsync sync")
        click.echo(activation_script([result.entry_file]), nl=False)

    sys.exit(result.exit_code)


# ── Sync ─────────────────────────────────────────────────────────────


def restart_session(command: list[str]) -> None:
    """Replace this process with a fresh session. Does not return."""
    sys.stdout.flush()
    sys.stderr.flush()
    os.execvp(command[0], command)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would change without applying it")
@click.option("--verbose", is_flag=True, help="Show spec, version and load time per plugin")
@click.pass_context
@handle_errors
def sync(ctx: click.Context, dry_run: bool, verbose: bool):
    """Reconcile the session to the declared plugins=() array."""
    reconciler = _reconciler(ctx)
    result = reconciler.sync(dry_run=dry_run)

    if result.outcome == ReconcileOutcome.NOOP:
        console.print("[green]✓[/] Already in sync - no experimental plugins loaded")
        if verbose:
            console.print(f"\nDeclared plugins ({len(result.declared)}):")
            for record in result.declared:
                console.print(f"  [green]✓[/] {escape(record.name)}")
        return

    console.print("Synchronizing to declared state...\n")
    if result.removed:
        console.print(f"Experimental plugins to be removed ({len(result.removed)}):")
        for record in result.removed:
            console.print(f"  [red]-[/] {escape(record.name)}")
            if verbose:
                console.print(f"      spec: {escape(record.specification)}")
                console.print(f"      version: {escape(record.resolved_version)}")
                console.print(f"      loaded: {_loaded_at(record.created_at)}")
        console.print()
    if result.drift.to_install:
        console.print(f"Declared plugins to be installed ({len(result.drift.to_install)}):")
        for spec in result.drift.to_install:
            console.print(f"  [green]+[/] {escape(spec.raw)}")
        console.print()

    if result.outcome == ReconcileOutcome.PREVIEW:
        console.print(f"[DRY RUN] Would remove {len(result.removed)} experimental plugin(s)", markup=False)
        console.print(f"[DRY RUN] Would install {len(result.drift.to_install)} declared plugin(s)", markup=False)
        console.print("[DRY RUN] Would reload shell to apply changes", markup=False)
        console.print("\nRun 'extsync sync' without --dry-run to apply these changes")
        return

    console.print(f"[green]✓[/] Removed {len(result.removed)} experimental plugin(s) from state")
    if result.installed:
        console.print(f"[green]✓[/] Installed {len(result.installed)} declared plugin(s)")
    for failure in result.failures:
        err_console.print(f"[yellow]![/] Skipped {escape(failure.specification)}: {escape(failure.reason)}")

    console.print("\nReloading shell to apply changes...")
    restart_session(reconciler.settings.restart_command)


# ── Adopt ────────────────────────────────────────────────────────────


@main.command()
@click.argument("name", required=False)
@click.option("--all", "adopt_all", is_flag=True, help="Adopt every experimental plugin")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Show the resulting config without writing it")
@click.option("--verbose", is_flag=True, help="Show each step")
@click.pass_context
@handle_errors
def adopt(ctx: click.Context, name: str | None, adopt_all: bool, yes: bool, dry_run: bool, verbose: bool):
    """Add an experimental plugin to the plugins=() array permanently."""
    if not name and not adopt_all:
        err_console.print("Usage: extsync adopt [--verbose] [--yes] <plugin-name>")
        err_console.print("       extsync adopt --all [--yes] [--verbose]")
        sys.exit(1)

    def confirm(specs: list[str]) -> bool:
        console.print(f"Adopting {len(specs)} experimental plugin(s):")
        for spec in specs:
            console.print(f"  - {escape(spec)}")
        return click.confirm("Continue?", default=False)

    reconciler = _reconciler(ctx)
    result = reconciler.adopt(
        name=name,
        adopt_all=adopt_all,
        dry_run=dry_run,
        confirm=None if yes else confirm,
    )

    for failure in result.failures:
        err_console.print(f"[red]Error:[/] {escape(failure.reason)}")
    for source in result.already_declared:
        err_console.print(f"Plugin '{escape(source)}' is already declared in your configuration")

    if adopt_all and not result.pending:
        console.print("No experimental plugins to adopt")
    elif result.dry_run and result.pending:
        console.print(f"[DRY RUN] Would add to {result.config_file}:", markup=False)
        for spec in result.pending:
            console.print(f"  + {escape(spec)}")
        if verbose:
            console.print("\nResulting configuration:\n")
            click.echo(result.preview.encode("utf-8", "surrogateescape").decode("utf-8", "replace"), nl=False)
    elif result.cancelled:
        console.print("Adoption cancelled")
    else:
        for entry in result.adopted:
            console.print(f"[green]✓[/] Adopted {escape(entry.name)} to your configuration")
            if verbose:
                console.print(f"  Specification: {escape(entry.specification)}")
            if entry.backup:
                console.print(f"  Backup saved: {escape(str(entry.backup))}")
        if result.adopted:
            console.print(f"  Added to: {escape(str(result.config_file))}")
            console.print("  Plugins will now load automatically on shell startup")

    sys.exit(result.exit_code)


# ── Status / Diff ────────────────────────────────────────────────────


@main.command()
@click.option("--verbose", is_flag=True, help="Show specs, paths and load times")
@click.option("--machine-readable", "--json", "machine_readable", is_flag=True, help="Emit JSON")
@click.pass_context
@handle_errors
def status(ctx: click.Context, verbose: bool, machine_readable: bool):
    """Show declared and experimental plugins."""
    result = _reconciler(ctx).status()

    if machine_readable:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    console.print("[bold]=== Plugin Status ===[/]\n")

    if result.declared:
        console.print(f"Declared plugins ({len(result.declared)}):")
        for record in result.declared:
            console.print(f"  [green]✓[/] {escape(record.name)} \\[{escape(record.resolved_version)}]")
            if verbose:
                _print_details(record)
    else:
        console.print("Declared plugins: (none)")
    console.print()

    if result.experimental:
        console.print(f"Experimental plugins ({len(result.experimental)}):")
        for record in result.experimental:
            console.print(f"  [yellow]⚡[/] {escape(record.name)} \\[{escape(record.resolved_version)}]")
            if verbose:
                _print_details(record)
        console.print("\nRun 'extsync sync' to remove experimental plugins")
    else:
        console.print("Experimental plugins: (none)\n")
        console.print("[green]✓[/] In sync with declared configuration")


@main.command()
@click.option("--verbose", is_flag=True, help="Show spec and version per plugin")
@click.pass_context
@handle_errors
def diff(ctx: click.Context, verbose: bool):
    """Preview what 'extsync sync' would change.

    Exits 0 when drift is found and 1 when already in sync.
    """
    report = _reconciler(ctx).diff()
    drift = report.drift

    console.print("[bold]=== State Diff ===[/]\n")

    for failure in report.invalid:
        err_console.print(
            f"[yellow]![/] Ignoring invalid entry {escape(failure.specification)}: {escape(failure.reason)}"
        )

    if drift.in_sync:
        console.print("[green]✓[/] No drift detected - in sync with declared configuration\n")
        console.print(f"Declared plugins ({len(report.declared)}):")
        for record in report.declared:
            console.print(f"  = {escape(record.name)}")
            if verbose:
                console.print(
                    f"      spec: {escape(record.specification)}, version: {escape(record.resolved_version)}"
                )
        sys.exit(report.exit_code)

    console.print("Drift detected:\n")

    pending = {spec.source for spec in drift.to_install}
    remaining = [r for r in report.declared if r.name not in pending]
    if remaining:
        console.print("Declared plugins (will remain):")
        for record in remaining:
            console.print(f"  = {escape(record.name)}")
            if verbose:
                console.print(
                    f"      spec: {escape(record.specification)}, version: {escape(record.resolved_version)}"
                )
        console.print()

    if drift.to_install:
        console.print("Declared plugins (will be installed by sync):")
        for spec in drift.to_install:
            console.print(f"  [green]+[/] {escape(spec.raw)}")
        console.print()

    if report.experimental:
        console.print("Experimental plugins (will be removed by sync):")
        for record in report.experimental:
            console.print(f"  [red]-[/] {escape(record.name)}")
            if verbose:
                console.print(
                    f"      spec: {escape(record.specification)}, version: {escape(record.resolved_version)}"
                )
                console.print(f"      loaded: {_loaded_at(record.created_at)}")
        console.print()

    console.print("Run 'extsync sync' to reconcile to declared state")
    sys.exit(report.exit_code)


# ── Load ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--verbose", is_flag=True, help="Report each plugin on stderr")
@click.pass_context
@handle_errors
def load(ctx: click.Context, verbose: bool):
    """Install declared plugins and print the script that activates them.

    Add this to your .zshrc after the plugins=() array:

        eval "$(extsync load)"
    """
    result = _reconciler(ctx).load_declared()

    for failure in result.invalid + result.failures:
        err_console.print(
            f"[yellow]Warning:[/] Skipped {escape(failure.specification)}: {escape(failure.reason)}"
        )
    if verbose:
        for record in result.loaded:
            err_console.print(f"[green]✓[/] {escape(record.name)} \\[{escape(record.resolved_version)}]")
        for name in result.pruned:
            err_console.print(f"[red]-[/] {escape(name)} (no longer declared)")
        for name in result.dropped:
            err_console.print(f"[yellow]-[/] {escape(name)} (experimental, session ended)")

    click.echo(activation_script(result.entry_files), nl=False)


# ── Clean ────────────────────────────────────────────────────────────


def _format_size(size: float) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="List orphaned downloads without removing them")
@click.pass_context
@handle_errors
def clean(ctx: click.Context, yes: bool, dry_run: bool):
    """Remove downloaded plugins that are no longer declared or loaded."""

    def confirm(entries) -> bool:
        console.print(f"Removing {len(entries)} orphaned plugin cache(s):")
        for entry in entries:
            console.print(f"  - {escape(entry.source)} ({_format_size(entry.size)})")
        return click.confirm("Continue?", default=False)

    result = _reconciler(ctx).clean(dry_run=dry_run, confirm=None if yes else confirm)

    if not result.orphans:
        console.print("No orphaned caches found.")
        return

    if result.dry_run:
        console.print(f"[DRY RUN] Would remove {len(result.orphans)} orphaned cache(s):", markup=False)
        for entry in result.orphans:
            console.print(f"  - {escape(entry.source)} ({_format_size(entry.size)})")
        return

    if result.cancelled:
        console.print("Clean cancelled")
        return

    for entry in result.removed:
        console.print(f"  [red]-[/] Removed {escape(entry.source)}")
    for failure in result.failures:
        err_console.print(f"[red]Error:[/] Could not remove {escape(failure.specification)}: {escape(failure.reason)}")
    console.print(
        f"\nRemoved {len(result.removed)} orphaned cache(s), reclaimed {_format_size(result.reclaimed)}"
    )
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
