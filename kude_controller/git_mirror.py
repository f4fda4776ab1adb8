"""Narrow git operations on a local repository mirror.

Each operation runs GitPython in a worker thread so the event loop is not
blocked by network access. Failures are raised as `GitError` naming the
operation that failed.
"""

import asyncio
from collections.abc import Callable
import logging
from pathlib import Path
import re
from typing import Any, TypeVar

import git

from .exceptions import GitError

__all__ = [
    "GitMirror",
    "same_url",
]

_LOGGER = logging.getLogger(__name__)

ORIGIN = "origin"

_T = TypeVar("_T")

_SCP_LIKE = re.compile(r"^[^/]+:")


def _error_message(err: Exception) -> str:
    """Return the most useful part of a git error."""
    if isinstance(err, git.exc.GitCommandError):
        stderr = err.stderr.strip() if isinstance(err.stderr, str) else ""
        if stderr:
            return stderr.removeprefix("stderr:").strip().strip("'").strip()
    return str(err)


def _is_local_path(url: str) -> bool:
    """Return True if git would treat the url as a path on this machine."""
    return "://" not in url and not _SCP_LIKE.match(url)


def same_url(configured: str, wanted: str) -> bool:
    """Return True if a remote url configured by git refers to the wanted url.

    Git records local clone sources as absolute paths, so a relative path is
    resolved against the working directory before comparing.
    """
    if configured == wanted:
        return True
    if _is_local_path(configured) and _is_local_path(wanted):
        return Path(configured).resolve() == Path(wanted).resolve()
    return False


async def _run(
    operation: str, func: Callable[..., _T], *args: Any, **kwargs: Any
) -> _T:
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except (git.exc.GitError, OSError, ValueError) as err:
        raise GitError(operation, _error_message(err)) from err


class GitMirror:
    """A local clone of a remote repository tracking a single branch."""

    def __init__(self, repo: git.Repo) -> None:
        """Initialize GitMirror."""
        self._repo = repo

    @property
    def path(self) -> Path:
        return Path(self._repo.working_tree_dir or self._repo.git_dir)

    @classmethod
    async def clone(cls, url: str, path: Path, branch: str) -> "GitMirror":
        """Clone the branch of a remote repository into path."""
        _LOGGER.debug("Cloning %s@%s into %s", url, branch, path)
        repo = await _run("clone", git.Repo.clone_from, url, str(path), branch=branch)
        return cls(repo)

    @classmethod
    async def open(cls, path: Path) -> "GitMirror":
        """Open an existing mirror."""
        repo = await _run("open", git.Repo, str(path))
        return cls(repo)

    def close(self) -> None:
        self._repo.close()

    def __enter__(self) -> "GitMirror":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def origin_urls(self) -> list[str]:
        """Return the URLs configured for the origin remote.

        Raises:
            GitError: If the mirror has no origin remote.
        """
        try:
            remote = self._repo.remote(ORIGIN)
            return list(remote.urls)
        except (git.exc.GitError, ValueError) as err:
            raise GitError("remote", _error_message(err)) from err

    async def fetch(self) -> None:
        """Fetch all branches and tags from origin."""
        await _run("fetch", self._repo.git.fetch, ORIGIN, "--tags", "--force")

    async def checkout(self, branch: str) -> None:
        """Check out the branch, discarding any local modifications."""
        await _run("checkout", self._repo.git.checkout, branch, force=True)

    async def pull(self, branch: str) -> None:
        """Fast forward the checked out branch to origin."""
        await _run("pull", self._repo.git.pull, ORIGIN, branch, ff_only=True)

    def head_sha(self) -> str:
        """Return the commit checked out at HEAD."""
        try:
            return str(self._repo.head.commit.hexsha)
        except (git.exc.GitError, ValueError) as err:
            raise GitError("head", _error_message(err)) from err
