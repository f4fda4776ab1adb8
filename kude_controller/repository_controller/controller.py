"""
TrackedRepository reconciler.

Each pass drives one TrackedRepository a single step closer to a local mirror
of its remote branch. The mirror lives in `<work_dir>/<uid>` and is kept in sync
by fetching, force checking out and fast forward pulling the branch. Steps that
write to the store return immediately and request another pass, so every pass
starts from the latest persisted state.

Conditions:
    - Available: True once the mirror is at the latest commit of the branch.
    - Cloned: True while the mirror directory is a valid clone of `spec.url`.
    - Degraded: True while the resource is being deleted.
"""

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import shutil

from kude_controller.conditions import AVAILABLE, CLONED, DEGRADED
from kude_controller.context import current_step, trace_context
from kude_controller.dispatch import Result
from kude_controller.duration import parse_interval
from kude_controller.events import EventRecorder
from kude_controller.exceptions import GitError, InvalidDurationError
from kude_controller.git_mirror import GitMirror, same_url
from kude_controller.manifest import (
    ConditionStatus,
    NamedResource,
    TrackedRepository,
)
from kude_controller.reconciler import (
    DELETED_MESSAGE,
    DELETED_REASON,
    ResourceWriter,
)
from kude_controller.store import Store

_LOGGER = logging.getLogger(__name__)

FINALIZER = "trackedrepositories.kude.kfirs.com/finalizer"

TRUE = ConditionStatus.TRUE
FALSE = ConditionStatus.FALSE
UNKNOWN = ConditionStatus.UNKNOWN


@dataclass
class TrackedRepositoryControllerConfig:
    """Configuration for the TrackedRepositoryReconciler."""

    work_dir: Path
    """Root directory holding one mirror per TrackedRepository."""


def _remove_tree(path: Path) -> None:
    """Remove a directory tree, ignoring a missing directory."""
    if path.exists():
        shutil.rmtree(path)


class TrackedRepositoryReconciler:
    """Reconciler for TrackedRepository resources."""

    def __init__(
        self,
        store: Store,
        recorder: EventRecorder,
        config: TrackedRepositoryControllerConfig,
    ) -> None:
        """Initialize TrackedRepositoryReconciler."""
        self._store = store
        self._recorder = recorder
        self._writer = ResourceWriter(store, recorder)
        self._root = Path(config.work_dir).absolute()

    @property
    def root(self) -> Path:
        """Return the absolute directory holding the mirrors."""
        return self._root

    def mirror_path(self, obj: TrackedRepository) -> Path:
        """Return the directory that holds the mirror of the repository."""
        return self._root / obj.metadata.uid

    def is_under_root(self, path: Path) -> bool:
        """Return True if path lies strictly below the configured root."""
        resolved = path.resolve()
        root = self._root.resolve()
        return resolved != root and resolved.is_relative_to(root)

    def _fail(
        self,
        obj: TrackedRepository,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> None:
        """Record a warning event and the matching condition."""
        self._recorder.warning(obj.resource_id, reason, message)
        self._writer.set_condition(obj, condition_type, status, reason, message)

    async def _remove_mirror(self, obj: TrackedRepository, path: Path) -> None:
        """Remove the mirror directory, recording a warning on failure."""
        try:
            await asyncio.to_thread(_remove_tree, path)
        except OSError as err:
            self._recorder.warning(
                obj.resource_id,
                "CleanupError",
                f"Failed to clean up clone directory '{path}': {err}",
            )
            raise

    async def reconcile(self, resource_id: NamedResource) -> Result:
        """Run a single reconciliation pass for the TrackedRepository."""
        with trace_context(str(resource_id)):
            obj = self._store.get_object(resource_id, TrackedRepository)
            if obj is None:
                _LOGGER.debug("%s no longer exists", resource_id)
                return Result()
            return await self._reconcile(obj)

    async def _reconcile(self, obj: TrackedRepository) -> Result:
        if self._writer.ensure_conditions(obj, {AVAILABLE: UNKNOWN, CLONED: UNKNOWN}):
            return Result(requeue=True)

        if obj.is_deleting:
            return await self._finalize(obj)

        if obj.add_finalizer(FINALIZER):
            self._writer.update(obj)
            return Result(requeue=True)

        path = self.mirror_path(obj)
        if obj.status.work_directory != str(path):
            obj.status.work_directory = str(path)
            self._writer.update_status(obj)
            return Result(requeue=True)

        try:
            interval = parse_interval(obj.spec.polling_interval)
        except InvalidDurationError as err:
            message = f"Invalid polling interval: {err}"
            self._fail(obj, AVAILABLE, FALSE, "InvalidPollingInterval", message)
            return Result()

        try:
            exists = path.exists()
        except OSError as err:
            message = f"Failed to inspect clone directory: {err}"
            self._fail(obj, CLONED, UNKNOWN, "CloneInaccessible", message)
            self._writer.set_condition(
                obj, AVAILABLE, FALSE, "CloneInaccessible", message
            )
            return Result(requeue_after=interval)

        if not exists:
            return await self._clone(obj, path, interval)

        return await self._sync(obj, path, interval)

    async def _clone(
        self, obj: TrackedRepository, path: Path, interval: float
    ) -> Result:
        """Create the mirror directory with a fresh clone."""
        message = "Repository not cloned yet"
        self._writer.set_condition(obj, CLONED, FALSE, "NotCloned", message)
        self._writer.set_condition(obj, AVAILABLE, FALSE, "NotCloned", message)
        if obj.status.last_pulled_sha:
            obj.status.last_pulled_sha = ""
            self._writer.update_status(obj)

        with trace_context("clone"):
            try:
                mirror = await GitMirror.clone(obj.spec.url, path, obj.spec.branch)
            except GitError as err:
                self._recorder.warning(
                    obj.resource_id,
                    "CloneFailed",
                    f"Failed to clone repository:\n{err.message}",
                )
                self._writer.set_condition(
                    obj, CLONED, FALSE, "CloneFailed", err.message
                )
                try:
                    await asyncio.to_thread(_remove_tree, path)
                except OSError as cleanup_err:
                    self._recorder.warning(
                        obj.resource_id,
                        "CleanupError",
                        f"Failed to clean up clone directory '{path}': {cleanup_err}",
                    )
                return Result(requeue_after=interval)
        mirror.close()
        self._recorder.normal(
            obj.resource_id,
            "Cloned",
            f"Cloned {obj.spec.url} at {obj.spec.branch} into {path}",
        )
        return Result(requeue=True)

    async def _sync(
        self, obj: TrackedRepository, path: Path, interval: float
    ) -> Result:
        """Bring an existing mirror to the latest commit of the branch."""
        try:
            mirror = await GitMirror.open(path)
        except GitError as err:
            self._fail(obj, CLONED, UNKNOWN, "CloneOpenFailed", err.message)
            return Result(requeue_after=interval)

        with mirror:
            if self._writer.set_condition(
                obj, CLONED, TRUE, "Cloned", "Repository cloned"
            ):
                return Result(requeue=True)

            try:
                urls = mirror.origin_urls()
            except GitError as err:
                self._fail(obj, AVAILABLE, FALSE, "RemoteLookupFailed", err.message)
                return Result(requeue_after=interval)
            if len(urls) != 1:
                message = f"Expected 1 URL, found: {', '.join(urls)}"
                self._fail(obj, AVAILABLE, FALSE, "InvalidRemote", message)
                return Result(requeue_after=interval)
            if not same_url(urls[0], obj.spec.url):
                return await self._invalidate(obj, mirror, path, urls[0])

            branch = obj.spec.branch
            for step, reason, action in (
                ("fetch", "RemoteFetchFailed", mirror.fetch),
                ("checkout", "CheckoutFailed", lambda: mirror.checkout(branch)),
                ("pull", "PullFailed", lambda: mirror.pull(branch)),
            ):
                with trace_context(step):
                    try:
                        await action()
                    except GitError as err:
                        _LOGGER.warning("%s failed: %s", current_step(), err.message)
                        self._fail(obj, AVAILABLE, FALSE, reason, err.message)
                        return Result(requeue_after=interval)

            try:
                sha = mirror.head_sha()
            except GitError as err:
                self._fail(obj, AVAILABLE, FALSE, "HeadReadFailed", err.message)
                return Result(requeue_after=interval)

        if sha != obj.status.last_pulled_sha:
            obj.status.last_pulled_sha = sha
            self._writer.update_status(obj)
            self._recorder.normal(obj.resource_id, "Pulled", f"Pulled commit {sha}")
            return Result(requeue=True)

        message = "Repository is ready"
        if self._writer.set_condition(obj, AVAILABLE, TRUE, "Ready", message):
            self._recorder.normal(obj.resource_id, "Ready", message)
            return Result(requeue=True)

        _LOGGER.debug("%s is up to date at %s", obj.resource_id, sha)
        return Result(requeue_after=interval)

    async def _invalidate(
        self,
        obj: TrackedRepository,
        mirror: GitMirror,
        path: Path,
        current_url: str,
    ) -> Result:
        """Discard a mirror cloned from a different URL."""
        message = f"URL changed from '{current_url}' to '{obj.spec.url}'"
        self._writer.set_condition(obj, AVAILABLE, FALSE, "URLChanged", message)
        self._writer.set_condition(obj, CLONED, UNKNOWN, "URLChanged", message)
        self._recorder.normal(obj.resource_id, "URLChanged", message)
        mirror.close()
        await self._remove_mirror(obj, path)
        return Result(requeue=True)

    async def _finalize(self, obj: TrackedRepository) -> Result:
        """Release the mirror directory and remove the finalizer."""
        if not obj.has_finalizer(FINALIZER):
            return Result()

        if self._writer.set_condition(
            obj, DEGRADED, TRUE, DELETED_REASON, DELETED_MESSAGE
        ):
            return Result(requeue=True)
        if self._writer.set_condition(
            obj, AVAILABLE, FALSE, DELETED_REASON, DELETED_MESSAGE
        ):
            return Result(requeue=True)

        if work_directory := obj.status.work_directory:
            path = Path(work_directory)
            if not self.is_under_root(path):
                self._recorder.warning(
                    obj.resource_id,
                    "InvalidWorkDirectory",
                    f"Work directory '{work_directory}' is not under {self._root}/",
                )
                return Result()
            with trace_context("cleanup"):
                await self._remove_mirror(obj, path)
            obj.status.work_directory = ""
            self._writer.update_status(obj)
            return Result(requeue=True)

        if self._writer.set_condition(
            obj, CLONED, FALSE, "CloneDeleted", "Clone deleted"
        ):
            return Result(requeue=True)

        obj.remove_finalizer(FINALIZER)
        self._writer.update(obj)
        _LOGGER.info("Finalized %s", obj.resource_id)
        return Result()
