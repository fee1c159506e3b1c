"""Shared fakes for the fetcher and loader collaborators."""

from pathlib import Path

import pytest

from extsync.errors import FetchError, LoadError
from extsync.settings import Settings
from extsync.state.store import StateStore
from extsync.sync.commands import Reconciler
from extsync.utils.git_ops import FetchResult


class FakeFetcher:
    """Creates the install directory instead of cloning."""

    def __init__(self, plugin_dir: Path, failing: set[str] | None = None):
        self.plugin_dir = plugin_dir
        self.failing = failing or set()
        self.calls: list[str] = []

    def fetch(self, spec, timeout):
        self.calls.append(spec.raw)
        if spec.source in self.failing:
            raise FetchError(f"Failed to download {spec.source}: repository not found")
        path = self.plugin_dir / spec.cache_key
        path.mkdir(parents=True, exist_ok=True)
        return FetchResult(install_path=path, resolved_version=spec.version or "abc1234")


class FakeLoader:
    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.loaded: list[str] = []

    def load(self, spec, install_path):
        if spec.source in self.failing:
            raise LoadError(f"No entry file found for {spec.source}")
        self.loaded.append(spec.raw)
        return Path(install_path) / f"{spec.name}.plugin.zsh"


def write_config(path: Path, plugins: list[str], extra: str = "") -> Path:
    body = "\n".join(f"  {p}" for p in plugins)
    path.write_text(f"# my zshrc\nexport EDITOR=vim\n\nplugins=(\n{body}\n)\n{extra}")
    return path


@pytest.fixture
def settings(tmp_path):
    config = tmp_path / ".zshrc"
    config.write_text("# empty zshrc\n")
    return Settings(
        config_file=config,
        data_dir=tmp_path / "data",
        restart_command=["true"],
    )


@pytest.fixture
def fetcher(settings):
    return FakeFetcher(settings.plugin_dir)


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def reconciler(settings, fetcher, loader):
    return Reconciler(settings, StateStore(settings.state_file), fetcher, loader)
