"""Loader -- find the file that activates a fetched plugin.

A Python process cannot source code into the user's shell, so activation
is expressed as the path of the plugin's entry file. ``extsync load``
turns those paths into ``source`` lines for the shell to evaluate.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Protocol

from extsync.errors import LoadError
from extsync.models.extension import ExtensionSpec

logger = logging.getLogger(__name__)


class Loader(Protocol):
    def load(self, spec: ExtensionSpec, install_path: Path) -> Path:
        """Return the activated entry file. Raises LoadError."""
        ...


class EntryPointLoader:
    """Locates ``<name>.plugin.zsh`` and the other conventional entry files."""

    SUFFIXES = (".plugin.zsh", ".zsh", ".zsh-theme")

    def candidates(self, spec: ExtensionSpec, install_path: Path) -> list[Path]:
        search_dir = install_path / spec.subpath if spec.subpath else install_path
        plugin_name = Path(spec.subpath).name if spec.subpath else spec.name

        paths = [search_dir / f"{plugin_name}{suffix}" for suffix in self.SUFFIXES]
        paths.append(search_dir / "init.zsh")
        if plugin_name != spec.name:
            paths += [search_dir / f"{spec.name}{suffix}" for suffix in self.SUFFIXES]
        return paths

    def load(self, spec: ExtensionSpec, install_path: Path) -> Path:
        install_path = Path(install_path)
        if not install_path.is_dir():
            raise LoadError(
                f"Plugin {spec.source} is not installed at {install_path}",
                hint=f"Run 'extsync try {spec.raw}' to download it",
            )

        if spec.subpath and not (install_path / spec.subpath).is_dir():
            raise LoadError(
                f"Subdirectory {spec.subpath!r} not found in {spec.source}",
                hint="Check the :subpath part of the specification",
            )

        for candidate in self.candidates(spec, install_path):
            if candidate.is_file():
                logger.debug("Entry point for %s: %s", spec.source, candidate)
                return candidate

        raise LoadError(
            f"No entry file found for {spec.source}",
            hint="Searched for *.plugin.zsh, *.zsh, *.zsh-theme and init.zsh",
        )


def activation_script(entry_files: list[Path]) -> str:
    """Shell snippet that sources each entry file in order."""
    return "".join(f"source {shlex.quote(str(path))}\n" for path in entry_files)
