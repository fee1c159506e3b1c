"""Git operations — fetch plugin repositories into the local plugin cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from git import Git, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from extsync.errors import FetchError
from extsync.models.extension import ExtensionSpec
from extsync.settings import DEFAULT_GIT_HOST

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Where a fetched plugin lives and which revision it is at."""

    install_path: Path
    resolved_version: str


class Fetcher(Protocol):
    def fetch(self, spec: ExtensionSpec, timeout: float) -> FetchResult:
        """Make ``spec`` available locally. Raises FetchError."""
        ...


class GitFetcher:
    """Clones plugins into ``<plugin_dir>/<owner>__<name>``.

    Clones are shallow; when the spec names a subpath the clone is sparse
    and only that directory is checked out. Every git command is killed
    once ``timeout`` seconds pass.
    """

    def __init__(self, plugin_dir: str | Path, host: str = DEFAULT_GIT_HOST):
        self.plugin_dir = Path(plugin_dir)
        self.host = host.rstrip("/")

    def url_for(self, spec: ExtensionSpec) -> str:
        return f"{self.host}/{spec.owner}/{spec.name}.git"

    def fetch(self, spec: ExtensionSpec, timeout: float) -> FetchResult:
        target = self.plugin_dir / spec.cache_key
        try:
            if (target / ".git").is_dir():
                repo = Repo(target)
                if spec.subpath:
                    self._add_sparse_path(repo, spec.subpath, timeout)
                if not spec.version and repo.head.is_detached:
                    self._checkout_default(repo, timeout)
            else:
                repo = self._clone(spec, target, timeout)

            if spec.version and not self._checkout(repo, spec.version, timeout):
                logger.warning(
                    "Version %s of %s not found; using the default branch instead",
                    spec.version,
                    spec.source,
                )
            resolved = repo.git.rev_parse("--short", "HEAD", kill_after_timeout=timeout)
        except GitCommandError as e:
            raise FetchError(
                f"Failed to download {spec.source}: {_describe(e)}",
                hint=f"Verify that {self.url_for(spec)} exists and is reachable",
            ) from e
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise FetchError(
                f"Plugin cache for {spec.source} is corrupted: {target}",
                hint=f"Remove {target} and try again",
            ) from e

        return FetchResult(install_path=target, resolved_version=resolved.strip())

    def _clone(self, spec: ExtensionSpec, target: Path, timeout: float) -> Repo:
        self.plugin_dir.mkdir(parents=True, exist_ok=True)
        url = self.url_for(spec)
        logger.info("Downloading %s from %s", spec.source, url)

        options = ["--depth", "1"]
        if spec.subpath:
            options += ["--filter=blob:none", "--sparse"]
        Git(str(self.plugin_dir)).clone(*options, "--", url, str(target), kill_after_timeout=timeout)

        repo = Repo(target)
        if spec.subpath:
            repo.git.sparse_checkout("set", spec.subpath, kill_after_timeout=timeout)
        return repo

    def _add_sparse_path(self, repo: Repo, subpath: str, timeout: float) -> None:
        try:
            current = repo.git.sparse_checkout("list").splitlines()
        except GitCommandError:
            return  # not a sparse checkout; everything is already present
        if subpath in current:
            return
        repo.git.sparse_checkout("add", subpath, kill_after_timeout=timeout)
        repo.git.fetch("--depth", "1", kill_after_timeout=timeout)
        repo.git.checkout(kill_after_timeout=timeout)

    def _checkout_default(self, repo: Repo, timeout: float) -> None:
        """Return a clone left on a pinned version to the default branch."""
        try:
            remote_head = repo.git.rev_parse("--abbrev-ref", "origin/HEAD")
            repo.git.checkout("--quiet", remote_head.split("/", 1)[1], kill_after_timeout=timeout)
        except (GitCommandError, IndexError):
            logger.debug("No local default branch in %s; fetching it", repo.working_dir)
            repo.git.fetch("--depth", "1", "origin", "HEAD", kill_after_timeout=timeout)
            repo.git.checkout("--quiet", "FETCH_HEAD", kill_after_timeout=timeout)

    def _checkout(self, repo: Repo, version: str, timeout: float) -> bool:
        """Try ``version`` as a tag, then as any other ref."""
        try:
            repo.git.fetch("--depth", "1", "origin", version, kill_after_timeout=timeout)
        except GitCommandError:
            logger.debug("Could not fetch ref %s; trying local refs", version)

        for ref in (f"tags/{version}", version, "FETCH_HEAD"):
            try:
                repo.git.checkout("--quiet", ref, kill_after_timeout=timeout)
                return True
            except GitCommandError:
                continue
        return False


def _describe(error: GitCommandError) -> str:
    stderr = str(error.stderr or "").strip()
    if "not found" in stderr or "404" in stderr:
        return "repository not found"
    if "Authentication" in stderr or "Permission denied" in stderr:
        return "authentication required"
    if error.status in (-9, 137, 124):
        return "network timeout"
    return stderr.splitlines()[-1] if stderr else str(error)
