"""Store writes made by the reconcilers.

Reconcilers hold no state between passes. Everything they need is read from
the store at the start of a pass, and every write goes back to the store
through a `ResourceWriter` before the pass continues. A failed write is
recorded as a warning event on the resource and re-raised so the work queue
retries the pass with backoff.
"""

import logging
from typing import TypeVar

from .conditions import find_condition, set_condition
from .events import EventRecorder
from .exceptions import StoreException
from .manifest import ConditionStatus, Resource
from .store import Store

__all__ = [
    "ResourceWriter",
    "INITIAL_REASON",
    "INITIAL_MESSAGE",
    "DELETED_REASON",
    "DELETED_MESSAGE",
]

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)

INITIAL_REASON = "Reconciling"
INITIAL_MESSAGE = "Initial value"
DELETED_REASON = "Deleted"
DELETED_MESSAGE = "Deleting resource"

STATUS_UPDATE_FAILED = "StatusUpdateFailed"
UPDATE_FAILED = "UpdateFailed"


class ResourceWriter:
    """Writes conditions, status and metadata of resources to the store."""

    def __init__(self, store: Store, recorder: EventRecorder) -> None:
        self._store = store
        self._recorder = recorder

    def _failed(self, target: Resource, reason: str, message: str) -> None:
        _LOGGER.debug("%s: %s", target.resource_id, message)
        self._recorder.warning(target.resource_id, reason, message)

    def set_condition(
        self,
        obj: Resource,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> bool:
        """Set a condition of the object, returning True if it was written."""
        try:
            return set_condition(
                self._store, obj, condition_type, status, reason, message
            )
        except StoreException as err:
            self._failed(
                obj,
                STATUS_UPDATE_FAILED,
                f"Failed to set condition {condition_type}: {err}",
            )
            raise

    def ensure_conditions(
        self, obj: Resource, defaults: dict[str, ConditionStatus]
    ) -> bool:
        """Add any missing condition with its initial status.

        Returns True if a condition was written.
        """
        written = False
        for condition_type, status in defaults.items():
            if find_condition(obj, condition_type) is None:
                written |= self.set_condition(
                    obj, condition_type, status, INITIAL_REASON, INITIAL_MESSAGE
                )
        return written

    def update_status(self, obj: T, event_target: Resource | None = None) -> None:
        """Write the status of the object.

        Failures are reported on `event_target`, e.g. the Bundle owning a run.
        """
        try:
            self._store.update_status(obj)
        except StoreException as err:
            self._failed(
                event_target or obj,
                STATUS_UPDATE_FAILED,
                f"Failed to update status of {obj.resource_id}: {err}",
            )
            raise

    def update(self, obj: T) -> None:
        """Write the metadata and spec of the object."""
        try:
            self._store.update(obj)
        except StoreException as err:
            self._failed(obj, UPDATE_FAILED, f"Failed to update object: {err}")
            raise
