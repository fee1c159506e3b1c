"""Runtime settings.

Resolved in order: built-in defaults, the optional YAML settings file
(``$EXTSYNC_SETTINGS`` or ``~/.config/extsync/settings.yaml``), environment
variables, then explicit overrides from the command line.

Example settings file::

    config_file: ~/.config/zsh/.zshrc
    fetch_timeout: 20
    restart_command: [zsh, -l]
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from extsync.errors import ExtsyncError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_GIT_HOST = "https://github.com"


def default_data_dir() -> Path:
    explicit = os.environ.get("EXTSYNC_DATA_DIR")
    if explicit:
        return Path(explicit).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / "extsync"


def default_config_file() -> Path:
    explicit = os.environ.get("EXTSYNC_CONFIG_FILE")
    if explicit:
        return Path(explicit).expanduser()
    zdotdir = os.environ.get("ZDOTDIR")
    return (Path(zdotdir).expanduser() if zdotdir else Path.home()) / ".zshrc"


def default_restart_command() -> list[str]:
    return [os.environ.get("SHELL") or "/bin/sh"]


def default_settings_file() -> Path:
    explicit = os.environ.get("EXTSYNC_SETTINGS")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".config" / "extsync" / "settings.yaml"


@dataclass
class Settings:
    """Everything the reconciliation commands need to know about the environment."""

    config_file: Path = field(default_factory=default_config_file)
    data_dir: Path = field(default_factory=default_data_dir)
    array_name: str = "plugins"
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    git_host: str = DEFAULT_GIT_HOST
    restart_command: list[str] = field(default_factory=default_restart_command)
    log_file: Path | None = None

    @property
    def plugin_dir(self) -> Path:
        return self.data_dir / "plugins"

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.yaml"

    @property
    def state_log(self) -> Path:
        return self.log_file or self.data_dir / "state.log"


_PATH_FIELDS = {"config_file", "data_dir", "log_file"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _PATH_FIELDS:
        return Path(str(value)).expanduser()
    if name == "fetch_timeout":
        try:
            timeout = float(value)
        except (TypeError, ValueError) as e:
            raise ExtsyncError(f"fetch_timeout must be a number, got {value!r}") from e
        if timeout <= 0:
            raise ExtsyncError(f"fetch_timeout must be positive, got {value!r}")
        return timeout
    if name == "restart_command":
        if isinstance(value, str):
            return value.split()
        return [str(v) for v in value]
    return str(value)


def _read_settings_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ExtsyncError(
            f"Failed to read settings file {path}: {e}",
            hint="Fix the YAML syntax or remove the file",
        ) from e
    if not isinstance(data, dict):
        raise ExtsyncError(f"Settings file {path} must contain a mapping")
    return data


def load_settings(settings_file: Path | None = None, **overrides: Any) -> Settings:
    """Build Settings from the settings file, environment and overrides."""
    known = {f.name for f in fields(Settings)}
    values: dict[str, Any] = {}

    raw = _read_settings_file(settings_file or default_settings_file())
    unknown = set(raw) - known
    if unknown:
        logger.warning("Unknown settings keys (ignored): %s", ", ".join(sorted(unknown)))
    for key in known & set(raw):
        values[key] = _coerce(key, raw[key])

    env_timeout = os.environ.get("EXTSYNC_FETCH_TIMEOUT")
    if env_timeout:
        values["fetch_timeout"] = _coerce("fetch_timeout", env_timeout)
    if os.environ.get("EXTSYNC_DATA_DIR"):
        values["data_dir"] = default_data_dir()
    if os.environ.get("EXTSYNC_CONFIG_FILE"):
        values["config_file"] = default_config_file()

    for key, value in overrides.items():
        if key not in known:
            raise TypeError(f"Unknown setting: {key}")
        if value is not None:
            values[key] = _coerce(key, value)

    return Settings(**values)
