"""Work queue that serializes reconciliation passes per resource key."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import Any

from kude_controller.manifest import NamedResource
from kude_controller.task import TaskService, get_task_service

__all__ = [
    "QueueConfig",
    "Reconcile",
    "Result",
    "WorkQueue",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result:
    """Outcome of a reconciliation pass."""

    requeue: bool = False
    """Run another pass for the key as soon as possible."""

    requeue_after: float | None = None
    """Run another pass for the key after this many seconds."""


Reconcile = Callable[[NamedResource], Awaitable[Result]]


@dataclass
class QueueConfig:
    """Configuration for a WorkQueue."""

    max_concurrent_reconciles: int = 4
    """Number of different keys that may be reconciled at the same time."""

    base_backoff: float = 0.005
    """Delay in seconds before retrying a key after its first failure."""

    max_backoff: float = 300.0
    """Upper bound in seconds of the retry delay after repeated failures."""


class WorkQueue:
    """Queue of resource keys waiting to be reconciled.

    A key is either idle, queued, or processing. Requests for a queued key are
    coalesced. Requests for a key that is processing mark it dirty and the key
    is queued again once the pass completes. Each key has at most one delayed
    timer, and the earliest deadline wins.
    """

    def __init__(
        self,
        name: str,
        reconcile: Reconcile,
        config: QueueConfig | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize WorkQueue."""
        self._name = name
        self._reconcile = reconcile
        self._config = config or QueueConfig()
        self._task_service = task_service or get_task_service()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_reconciles)
        self._queued: set[NamedResource] = set()
        self._processing: set[NamedResource] = set()
        self._dirty: set[NamedResource] = set()
        self._timers: dict[NamedResource, tuple[float, asyncio.Task[None]]] = {}
        self._failures: dict[NamedResource, int] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    def add(self, key: NamedResource) -> None:
        """Request a pass for the key as soon as possible."""
        if self._closed:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        task = self._task_service.create_task(
            self._process(key), name=f"{self._name}:{key}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def add_after(self, key: NamedResource, delay: float) -> None:
        """Request a pass for the key after a delay in seconds."""
        if self._closed:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        if (existing := self._timers.get(key)) is not None:
            if existing[0] <= deadline:
                return
            existing[1].cancel()
        timer = self._task_service.create_background_task(
            self._wait_and_add(key, delay), name=f"{self._name}:{key}:timer"
        )
        self._timers[key] = (deadline, timer)

    def add_rate_limited(self, key: NamedResource) -> None:
        """Request a pass for the key after an exponential backoff delay."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(
            self._config.base_backoff * (2**failures), self._config.max_backoff
        )
        _LOGGER.debug("Retrying %s in %0.3fs (failure %d)", key, delay, failures + 1)
        self.add_after(key, delay)

    def forget(self, key: NamedResource) -> None:
        """Reset the failure count of the key."""
        self._failures.pop(key, None)

    def scheduled_in(self, key: NamedResource) -> float | None:
        """Return the seconds until the delayed pass for the key, if any."""
        if (timer := self._timers.get(key)) is None:
            return None
        return max(timer[0] - asyncio.get_running_loop().time(), 0.0)

    def is_idle(self) -> bool:
        """Return True if no key is queued or processing."""
        return not self._queued and not self._processing

    async def _wait_and_add(self, key: NamedResource, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(key, None)
        self.add(key)

    def _cancel_timer(self, key: NamedResource) -> None:
        if (timer := self._timers.pop(key, None)) is not None:
            timer[1].cancel()

    async def _process(self, key: NamedResource) -> None:
        async with self._semaphore:
            self._queued.discard(key)
            self._processing.add(key)
            self._cancel_timer(key)
            try:
                await self._handle(key)
            finally:
                self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    async def _handle(self, key: NamedResource) -> None:
        try:
            result = await self._reconcile(key)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.error("[%s] Reconciling %s failed: %s", self._name, key, err)
            _LOGGER.debug("Reconcile error details", exc_info=True)
            self.add_rate_limited(key)
            return
        self.forget(key)
        if result.requeue_after is not None and result.requeue_after > 0:
            self.add_after(key, result.requeue_after)
        elif result.requeue:
            self._dirty.add(key)

    async def close(self) -> None:
        """Stop accepting keys and cancel pending timers and passes."""
        self._closed = True
        tasks = [timer for _, timer in self._timers.values()]
        self._timers.clear()
        tasks.extend(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._queued.clear()
        self._dirty.clear()
        _LOGGER.debug("[%s] Work queue closed", self._name)
