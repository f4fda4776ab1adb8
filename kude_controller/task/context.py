"""The TaskService used by work queues that are not given one explicitly."""

import contextlib
import contextvars
import logging
from collections.abc import Generator

from .service import TaskService, TaskServiceImpl

__all__: list[str] = []

_LOGGER = logging.getLogger(__name__)

_current: contextvars.ContextVar[TaskService | None] = contextvars.ContextVar(
    "kude_controller_task_service", default=None
)


def get_task_service() -> TaskService:
    """Return the task service of the current context.

    A service is created and installed on first use so that a WorkQueue built
    outside `task_service_context` still shares tasks with its manager.
    """
    if (service := _current.get()) is None:
        _LOGGER.debug("Creating task service for the current context")
        service = TaskServiceImpl()
        _current.set(service)
    return service


@contextlib.contextmanager
def task_service_context(
    service: TaskService | None = None,
) -> Generator[TaskService, None, None]:
    """Install a task service for the block and restore the previous one on exit.

    Contexts may be nested, for example by tests that run several managers.
    """
    installed = service or TaskServiceImpl()
    token = _current.set(installed)
    try:
        yield installed
    finally:
        _current.reset(token)
