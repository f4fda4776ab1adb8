"""Tests for git mirror operations."""

from collections.abc import Callable
from pathlib import Path

import git
import pytest

from kude_controller.exceptions import GitError
from kude_controller.git_mirror import GitMirror, same_url


async def test_clone_and_pull(
    source_repo: git.Repo,
    source_url: str,
    tmp_path: Path,
    commit: Callable[..., str],
) -> None:
    """Test cloning a branch and pulling new commits."""
    path = tmp_path / "mirror"
    with await GitMirror.clone(source_url, path, "main") as mirror:
        assert mirror.origin_urls() == [source_url]
        assert mirror.head_sha() == source_repo.head.commit.hexsha
        assert (path / "app.yaml").exists()

    sha = commit("second.yaml", "kind: ConfigMap\n")
    with await GitMirror.open(path) as mirror:
        await mirror.fetch()
        await mirror.checkout("main")
        await mirror.pull("main")
        assert mirror.head_sha() == sha
    assert (path / "second.yaml").exists()


async def test_checkout_discards_local_changes(
    source_url: str, tmp_path: Path
) -> None:
    """Test that a forced checkout discards local modifications."""
    path = tmp_path / "mirror"
    with await GitMirror.clone(source_url, path, "main") as mirror:
        (path / "app.yaml").write_text("modified\n")
        await mirror.checkout("main")
    assert (path / "app.yaml").read_text() != "modified\n"


async def test_clone_missing_branch(source_url: str, tmp_path: Path) -> None:
    """Test cloning a branch that does not exist."""
    with pytest.raises(GitError, match="git clone failed") as exc_info:
        await GitMirror.clone(source_url, tmp_path / "mirror", "does-not-exist")
    assert exc_info.value.operation == "clone"


async def test_open_invalid(tmp_path: Path) -> None:
    """Test opening a directory that is not a repository."""
    path = tmp_path / "not-a-repo"
    path.mkdir()
    with pytest.raises(GitError, match="git open failed"):
        await GitMirror.open(path)


async def test_missing_origin(tmp_path: Path) -> None:
    """Test a repository without an origin remote."""
    git.Repo.init(tmp_path / "local")
    with await GitMirror.open(tmp_path / "local") as mirror:
        with pytest.raises(GitError, match="git remote failed"):
            mirror.origin_urls()
        with pytest.raises(GitError, match="git head failed"):
            mirror.head_sha()


async def test_clone_relative_path(
    source_repo: git.Repo, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test a relative source path matches the absolute path git records."""
    monkeypatch.chdir(tmp_path)
    with await GitMirror.clone("source", tmp_path / "mirror", "main") as mirror:
        urls = mirror.origin_urls()
    assert len(urls) == 1
    assert same_url(urls[0], "source")
    assert same_url(urls[0], "./source/")
    assert not same_url(urls[0], "other")


@pytest.mark.parametrize(
    ("configured", "wanted", "expected"),
    [
        ("https://example.com/repo", "https://example.com/repo", True),
        ("https://example.com/repo", "https://example.com/other", False),
        ("git@example.com:repo.git", "git@example.com:other.git", False),
        ("/srv/repo", "https://example.com/srv/repo", False),
    ],
)
def test_same_url(configured: str, wanted: str, expected: bool) -> None:
    """Test remote urls are only normalized when both are local paths."""
    assert same_url(configured, wanted) == expected
