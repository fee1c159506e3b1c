"""Configuration editor — structural insertion into the plugins=() array.

Used by ``adopt``. The edit is a line-oriented rewrite driven by the same
boundary scanner the extractor uses; the file is backed up first and then
replaced atomically with its original permission bits.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import time
from pathlib import Path

from extsync.config.extractor import CONFIG_ERRORS, DEFAULT_ARRAY_NAME, find_array_bounds, read_config
from extsync.errors import ConfigEditError

logger = logging.getLogger(__name__)

ADOPT_HEADER = "# Plugins (added by extsync adopt)"


def insert_spec(config_text: str, spec: str, array_name: str = DEFAULT_ARRAY_NAME) -> str:
    """Return ``config_text`` with ``spec`` appended to the array.

    The spec goes right before the closing marker, so it loads last. A file
    without the array gets a new array appended at the end.
    """
    lines = config_text.splitlines(keepends=True)
    bounds = find_array_bounds([line.rstrip("\r\n") for line in lines], array_name)

    if bounds is None:
        prefix = config_text
        if prefix and not prefix.endswith("\n"):
            prefix += "\n"
        block = f"\n{ADOPT_HEADER}\n{array_name}=(\n  {spec}\n)\n"
        return prefix + block

    if not bounds.closed:
        raise ConfigEditError(
            f"The {array_name}=( array starting on line {bounds.start + 1} is never closed",
            hint="Add the missing ')' and retry",
        )

    line = lines[bounds.end]
    head, tail = line[: bounds.close_col], line[bounds.close_col :]

    if bounds.single_line:
        separator = "" if head.endswith("(") or head.endswith(" ") else " "
        lines[bounds.end] = f"{head}{separator}{spec}{tail}"
    elif head.strip():
        # Elements share the line with the closing marker: "  a/b )"
        indent = head[: len(head) - len(head.lstrip())]
        lines[bounds.end] = f"{head.rstrip()}\n{indent}{spec}\n{indent}{tail.lstrip()}"
    else:
        lines.insert(bounds.end, f"{_element_indent(lines, bounds.start, bounds.end)}{spec}\n")

    return "".join(lines)


def _element_indent(lines: list[str], start: int, end: int) -> str:
    """Indentation of the last element line, or two spaces."""
    for line in reversed(lines[start + 1 : end]):
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            return line[: len(line) - len(line.lstrip())]
    return "  "


def backup_config(config_file: Path) -> Path:
    """Copy the config file to a timestamped sibling, preserving its mode."""
    backup = config_file.with_name(f"{config_file.name}.backup-{int(time.time())}")
    counter = 1
    while backup.exists():
        backup = config_file.with_name(f"{config_file.name}.backup-{int(time.time())}-{counter}")
        counter += 1
    try:
        shutil.copy2(config_file, backup)
    except OSError as e:
        raise ConfigEditError(
            f"Failed to create backup of {config_file}: {e}",
            hint="Check that the directory is writable",
        ) from e
    logger.info("Backed up %s to %s", config_file, backup)
    return backup


def atomic_write_text(path: Path, content: str, mode: int | None = None) -> None:
    """Write ``content`` to ``path`` via a temp file and an atomic rename."""
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=CONFIG_ERRORS, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        Path(tmp_path).replace(path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def add_to_config(
    config_file: str | Path,
    spec: str,
    array_name: str = DEFAULT_ARRAY_NAME,
) -> Path | None:
    """Back up the config file and append ``spec`` to its array.

    Returns the backup path. A missing config file is created with a new
    array (and no backup is needed).
    """
    config_file = Path(config_file)

    if config_file.exists():
        original = read_config(config_file)
        mode = stat.S_IMODE(config_file.stat().st_mode)
        backup = backup_config(config_file)
    else:
        original, mode, backup = "", None, None

    updated = insert_spec(original, spec, array_name)

    try:
        atomic_write_text(config_file, updated, mode)
    except OSError as e:
        raise ConfigEditError(
            f"Failed to update {config_file}: {e}",
            hint=f"Your original file is unchanged; backup at {backup}" if backup else "",
        ) from e

    logger.info("Added %s to %s in %s", spec, array_name, config_file)
    return backup
