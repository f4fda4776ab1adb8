"""Service that owns the asyncio tasks of a running controller manager.

Reconciliation passes run as foreground tasks and are what
`block_till_done` waits for. Delayed requeue timers run as background tasks
that are only ever cancelled.
"""

import asyncio
from abc import ABC, abstractmethod
import enum
import logging
from typing import Any, Coroutine

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskKind(str, enum.Enum):
    """How a task is treated when the service is drained."""

    FOREGROUND = "foreground"
    BACKGROUND = "background"


class TaskService(ABC):
    """Service for tracking, waiting for and cancelling asynchronous tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Start a foreground task."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Start a task that `block_till_done` does not wait for."""

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait until no foreground task is running.

        Foreground tasks started while waiting are waited on as well.
        """

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for them to finish."""

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Return the number of running foreground tasks."""


class TaskServiceImpl(TaskService):
    """TaskService that runs tasks on the current event loop."""

    def __init__(self) -> None:
        self._tasks: dict[asyncio.Task[Any], TaskKind] = {}

    def _start(
        self, kind: TaskKind, coro: Coroutine[None, None, Any], name: str | None
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks[task] = kind
        task.add_done_callback(self._on_done)
        return task

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        return self._start(TaskKind.FOREGROUND, coro, name)

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        return self._start(TaskKind.BACKGROUND, coro, name)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        kind = self._tasks.pop(task, None)
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            _LOGGER.error(
                "Task %s (%s) failed: %s",
                task.get_name(),
                kind.value if kind else "untracked",
                err,
            )

    def _foreground(self) -> list[asyncio.Task[Any]]:
        return [
            task
            for task, kind in self._tasks.items()
            if kind is TaskKind.FOREGROUND and not task.done()
        ]

    async def block_till_done(self) -> None:
        while pending := self._foreground():
            _LOGGER.debug("Waiting for %d tasks to complete", len(pending))
            await asyncio.wait(pending)
        # Let done callbacks of the last batch run.
        await asyncio.sleep(0)

    async def cancel_all(self) -> None:
        if not (tasks := list(self._tasks)):
            return
        _LOGGER.debug("Cancelling %d tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks)

    def get_num_active_tasks(self) -> int:
        return len(self._foreground())
