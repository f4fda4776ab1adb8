"""Manager for kude-controller.

The manager wires the store to the two reconcilers. It owns one work queue per
resource kind and translates store notifications into queue requests:

- TrackedRepository added, updated or deleted: the repository is queued.
- Bundle added, updated or deleted: the bundle is queued.
- Any change to a TrackedRepository, including status updates: every Bundle
  sourced from it is queued.

Status updates of an object never queue the object itself, since each
reconciler requests its own follow up passes through its results.
"""

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from kude_controller.bundle_controller import (
    BundleControllerConfig,
    BundleReconciler,
    bundles_for_repository,
    register_indexes,
)
from kude_controller.dispatch import QueueConfig, WorkQueue
from kude_controller.events import EventRecorder
from kude_controller.manifest import (
    BUNDLE_KIND,
    TRACKED_REPOSITORY_KIND,
    NamedResource,
    Resource,
)
from kude_controller.repository_controller import (
    TrackedRepositoryControllerConfig,
    TrackedRepositoryReconciler,
)
from kude_controller.store import InMemoryStore, Store, StoreEvent
from kude_controller.task import TaskService, get_task_service

__all__ = ["Manager", "ManagerConfig"]

_LOGGER = logging.getLogger(__name__)

_OBJECT_EVENTS = (
    StoreEvent.OBJECT_ADDED,
    StoreEvent.OBJECT_UPDATED,
    StoreEvent.OBJECT_DELETED,
)


@dataclass
class ManagerConfig:
    """Configuration for the manager and its controllers."""

    repository: TrackedRepositoryControllerConfig
    bundle: BundleControllerConfig = field(default_factory=BundleControllerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)

    @classmethod
    def from_work_dir(cls, work_dir: Path, **kwargs: Any) -> "ManagerConfig":
        """Create a configuration with default settings for a mirror root."""
        return cls(repository=TrackedRepositoryControllerConfig(work_dir), **kwargs)


class Manager:
    """Runs the reconcilers for all resources in a store."""

    def __init__(
        self,
        config: ManagerConfig,
        store: Store | None = None,
        recorder: EventRecorder | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the manager."""
        self.config = config
        self.store = store or InMemoryStore()
        self.recorder = recorder or EventRecorder()
        self._task_service = task_service or get_task_service()
        self.repository_reconciler = TrackedRepositoryReconciler(
            self.store, self.recorder, config.repository
        )
        self.bundle_reconciler = BundleReconciler(
            self.store, self.recorder, config.bundle
        )
        self._repository_queue: WorkQueue | None = None
        self._bundle_queue: WorkQueue | None = None
        self._remove_listeners: list[Any] = []
        register_indexes(self.store)

    @property
    def running(self) -> bool:
        return self._repository_queue is not None

    def _on_object_event(self, resource_id: NamedResource, obj: Resource) -> None:
        if resource_id.kind == TRACKED_REPOSITORY_KIND:
            self._enqueue_repository(resource_id)
            self._enqueue_dependents(resource_id)
        elif resource_id.kind == BUNDLE_KIND and self._bundle_queue is not None:
            self._bundle_queue.add(resource_id)

    def _on_status_event(self, resource_id: NamedResource, obj: Resource) -> None:
        if resource_id.kind == TRACKED_REPOSITORY_KIND:
            self._enqueue_dependents(resource_id)

    def _enqueue_repository(self, resource_id: NamedResource) -> None:
        if self._repository_queue is not None:
            self._repository_queue.add(resource_id)

    def _enqueue_dependents(self, repository_id: NamedResource) -> None:
        if self._bundle_queue is None:
            return
        for bundle_id in bundles_for_repository(self.store, repository_id):
            self._bundle_queue.add(bundle_id)

    async def start(self) -> None:
        """Start the work queues and queue every existing object."""
        if self.running:
            return
        _LOGGER.info("Starting manager")
        self._repository_queue = WorkQueue(
            TRACKED_REPOSITORY_KIND,
            self.repository_reconciler.reconcile,
            self.config.queue,
            self._task_service,
        )
        self._bundle_queue = WorkQueue(
            BUNDLE_KIND,
            self.bundle_reconciler.reconcile,
            self.config.queue,
            self._task_service,
        )
        for event in _OBJECT_EVENTS:
            self._remove_listeners.append(
                self.store.add_listener(event, self._on_object_event)
            )
        self._remove_listeners.append(
            self.store.add_listener(StoreEvent.STATUS_UPDATED, self._on_status_event)
        )
        for obj in self.store.list_objects(TRACKED_REPOSITORY_KIND):
            self._repository_queue.add(obj.resource_id)
        for obj in self.store.list_objects(BUNDLE_KIND):
            self._bundle_queue.add(obj.resource_id)

    async def stop(self) -> None:
        """Stop the work queues, cancelling in-flight passes."""
        if not self.running:
            return
        _LOGGER.info("Stopping manager")
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners.clear()
        for queue in (self._bundle_queue, self._repository_queue):
            if queue is not None:
                await queue.close()
        self._repository_queue = None
        self._bundle_queue = None
        _LOGGER.info("Manager stopped")

    async def wait_idle(self) -> None:
        """Wait until all passes that are ready to run have completed.

        Passes scheduled for later by a timer are not waited on.
        """
        await self._task_service.block_till_done()

    async def run(self, duration: float | None = None) -> None:
        """Run until cancelled, or for the given number of seconds."""
        await self.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await self.stop()

    async def __aenter__(self) -> "Manager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
