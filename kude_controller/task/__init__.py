"""Tracking of the asyncio tasks started by the controllers.

Reconciliation passes and queue timers are started through a `TaskService` so
the manager can wait for in-flight work and cancel it on shutdown.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
