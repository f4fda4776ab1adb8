"""Shared fixtures for kude-controller tests."""

from collections.abc import Awaitable, Callable
from pathlib import Path

import git
import pytest

from kude_controller.dispatch import Result
from kude_controller.events import EventRecorder
from kude_controller.manifest import (
    Bundle,
    BundleSpec,
    NamedResource,
    ObjectMeta,
    TrackedRepository,
    TrackedRepositorySpec,
)
from kude_controller.store import InMemoryStore

NAMESPACE = "default"
MANIFEST = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: example
data:
  key: value
"""


def commit_file(repo: git.Repo, name: str, content: str, message: str = "") -> str:
    """Write a file into the repository working tree and commit it."""
    path = Path(repo.working_tree_dir) / name  # type: ignore[arg-type]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.git.add(name)
    repo.git.commit(m=message or f"Update {name}")
    return str(repo.head.commit.hexsha)


def make_repository(
    url: str,
    name: str = "repo",
    ref: str = "main",
    polling_interval: str = "5s",
) -> TrackedRepository:
    return TrackedRepository(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE),
        spec=TrackedRepositorySpec(
            url=url, ref=ref, polling_interval=polling_interval
        ),
    )


def make_bundle(
    name: str = "bundle",
    source_repository: str = f"{NAMESPACE}/repo",
    files: list[str] | None = None,
    args: list[str] | None = None,
    drift_detection_interval: str = "5s",
    runs_history_limit: int = 0,
) -> Bundle:
    return Bundle(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE),
        spec=BundleSpec(
            files=files or ["app.yaml"],
            args=args or [],
            source_repository=source_repository,
            drift_detection_interval=drift_detection_interval,
            runs_history_limit=runs_history_limit,
        ),
    )


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Create a test store."""
    return InMemoryStore()


@pytest.fixture(name="recorder")
def recorder_fixture() -> EventRecorder:
    """Create an event recorder."""
    return EventRecorder()


@pytest.fixture(name="work_dir")
def work_dir_fixture(tmp_path: Path) -> Path:
    """Root directory for repository mirrors."""
    work_dir = tmp_path / "mirrors"
    work_dir.mkdir()
    return work_dir


@pytest.fixture(name="source_repo")
def source_repo_fixture(tmp_path: Path) -> git.Repo:
    """Create a local git repository with a manifest on branch main."""
    repo_path = tmp_path / "source"
    repo_path.mkdir()
    repo = git.Repo.init(repo_path)
    repo.config_writer().set_value("user", "name", "myusername").release()
    repo.config_writer().set_value("user", "email", "myemail").release()
    commit_file(repo, "app.yaml", MANIFEST, "Initial commit")
    repo.git.checkout("-B", "main")
    return repo


@pytest.fixture(name="source_url")
def source_url_fixture(source_repo: git.Repo) -> str:
    """URL of the source repository."""
    return str(source_repo.working_tree_dir)


@pytest.fixture(name="settle")
def settle_fixture() -> Callable[..., Awaitable[Result]]:
    """Return a helper that runs passes until no immediate requeue is requested."""

    async def settle(
        reconcile: Callable[[NamedResource], Awaitable[Result]],
        resource_id: NamedResource,
        max_passes: int = 50,
    ) -> Result:
        for _ in range(max_passes):
            result = await reconcile(resource_id)
            if not result.requeue or result.requeue_after:
                return result
        raise AssertionError(f"{resource_id} did not settle in {max_passes} passes")

    return settle


@pytest.fixture(name="commit")
def commit_fixture(source_repo: git.Repo) -> Callable[..., str]:
    """Return a helper that commits a file to the source repository."""

    def commit(name: str, content: str, message: str = "") -> str:
        return commit_file(source_repo, name, content, message)

    return commit


@pytest.fixture(name="new_repository")
def new_repository_fixture(source_url: str) -> Callable[..., TrackedRepository]:
    """Return a factory for TrackedRepositories pointing at the source repository."""

    def new_repository(**kwargs: str) -> TrackedRepository:
        kwargs.setdefault("url", source_url)
        return make_repository(**kwargs)

    return new_repository


@pytest.fixture(name="new_bundle")
def new_bundle_fixture() -> Callable[..., Bundle]:
    """Return a factory for Bundles."""
    return make_bundle


@pytest.fixture(name="manifest")
def manifest_fixture() -> str:
    """Content of app.yaml in the source repository."""
    return MANIFEST
