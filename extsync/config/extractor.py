"""Declared-state extractor — read the plugins=() array without running the file.

The configuration file is a shell script that may contain arbitrary logic,
so it is never sourced or evaluated. Instead a small line-oriented,
quote-aware scanner finds the array assignment and splits its contents into
words:

    plugins=(
      zsh-users/zsh-autosuggestions      # comment
      'romkatv/powerlevel10k@v1.16.1'
      "ohmyzsh/ohmyzsh:plugins/git"
    )

Both the multi-line form above and the single-line form
``plugins=(a/b c/d)`` are supported. The editor in
:mod:`extsync.config.editor` uses :func:`find_array_bounds` so that
insertion and extraction always agree on where the array starts and ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ARRAY_NAME = "plugins"


@dataclass
class ArrayBounds:
    """Location of the array assignment inside a list of lines."""

    start: int  # index of the line holding "<name>=("
    open_col: int  # column just after the opening "("
    end: int | None = None  # index of the line holding the closing ")"
    close_col: int | None = None  # column of the closing ")"
    words: list[str] = field(default_factory=list)

    @property
    def closed(self) -> bool:
        return self.end is not None

    @property
    def single_line(self) -> bool:
        return self.end == self.start


def _scan_line(line: str, begin: int, words: list[str]) -> int | None:
    """Split ``line[begin:]`` into words, appending them to ``words``.

    Single quotes are literal, double quotes honour backslash escapes, and
    an unquoted ``#`` at the start of a word begins a comment. Returns the
    column of the first unquoted ``)``, or None if the array continues on
    the next line.
    """
    i = begin
    n = len(line)
    current: list[str] = []
    in_word = False

    def flush() -> None:
        nonlocal in_word
        if in_word:
            words.append("".join(current))
            current.clear()
            in_word = False

    while i < n:
        ch = line[i]
        if ch in " \t\r\n":
            flush()
            i += 1
        elif ch == "#" and not in_word:
            return None
        elif ch == ")":
            flush()
            return i
        elif ch == "'":
            in_word = True
            close = line.find("'", i + 1)
            if close == -1:
                current.append(line[i + 1 :].rstrip("\r\n"))
                i = n
            else:
                current.append(line[i + 1 : close])
                i = close + 1
        elif ch == '"':
            in_word = True
            i += 1
            while i < n and line[i] != '"':
                if line[i] == "\\" and i + 1 < n and line[i + 1] in '"\\$`':
                    i += 1
                if line[i] not in "\r\n":
                    current.append(line[i])
                i += 1
            i += 1
        elif ch == "\\":
            # A trailing backslash is a line continuation.
            if i + 1 < n:
                in_word = True
                current.append(line[i + 1])
            i += 2
        else:
            in_word = True
            current.append(ch)
            i += 1

    flush()
    return None


def _opening_col(line: str, array_name: str) -> int | None:
    stripped = line.lstrip()
    marker = f"{array_name}=("
    if not stripped.startswith(marker):
        return None
    return len(line) - len(stripped) + len(marker)


def find_array_bounds(lines: list[str], array_name: str = DEFAULT_ARRAY_NAME) -> ArrayBounds | None:
    """Locate the first ``<array_name>=(`` assignment and its closing marker.

    Returns None when the file has no such array. An array that is never
    closed is returned with ``end`` set to None and the words seen so far.
    """
    for index, line in enumerate(lines):
        col = _opening_col(line, array_name)
        if col is None:
            continue

        bounds = ArrayBounds(start=index, open_col=col)
        close = _scan_line(line, col, bounds.words)
        if close is not None:
            bounds.end, bounds.close_col = index, close
            return bounds

        for offset, inner in enumerate(lines[index + 1 :], start=index + 1):
            close = _scan_line(inner, 0, bounds.words)
            if close is not None:
                bounds.end, bounds.close_col = offset, close
                return bounds

        logger.warning("%s=( array is never closed; using entries found so far", array_name)
        return bounds

    return None


def extract(config_text: str, array_name: str = DEFAULT_ARRAY_NAME) -> list[str]:
    """Return the specification strings declared in the array, in order.

    A file without the array yields an empty list.
    """
    bounds = find_array_bounds(config_text.splitlines(), array_name)
    if bounds is None:
        return []
    return [w for w in bounds.words if w]


CONFIG_ERRORS = "surrogateescape"


def read_config(path: Path) -> str:
    """Read a configuration file, carrying undecodable bytes through as surrogates."""
    return path.read_text(encoding="utf-8", errors=CONFIG_ERRORS)


def extract_file(path: str | Path, array_name: str = DEFAULT_ARRAY_NAME) -> list[str]:
    """Read a configuration file and extract its declared specifications."""
    path = Path(path)
    if not path.exists():
        logger.warning("Configuration file not found: %s", path)
        return []
    return extract(read_config(path), array_name)
