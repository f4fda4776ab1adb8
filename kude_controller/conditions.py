"""Condition ledger shared by the controllers.

Conditions are merged by `type`. A condition is rewritten only when its status,
reason or message changes, and its `lastTransitionTime` only moves when the
status itself changes. Every write is persisted to the store immediately so
the next reconciliation pass observes it.
"""

from datetime import datetime, timezone
import logging
from typing import Any

from .manifest import Condition, ConditionStatus, Resource
from .store import Store

__all__ = [
    "AVAILABLE",
    "CLONED",
    "DEGRADED",
    "UP_TO_DATE",
    "find_condition",
    "is_condition_true",
    "set_condition",
]

_LOGGER = logging.getLogger(__name__)

AVAILABLE = "Available"
CLONED = "Cloned"
DEGRADED = "Degraded"
UP_TO_DATE = "UpToDate"


def _conditions(obj: Resource) -> list[Condition]:
    status: Any = getattr(obj, "status")
    if not hasattr(status, "conditions"):
        raise ValueError(f"Resource {obj.resource_id} does not support conditions")
    conditions: list[Condition] = status.conditions
    return conditions


def find_condition(obj: Resource, condition_type: str) -> Condition | None:
    """Return the condition of the given type, if present."""
    for condition in _conditions(obj):
        if condition.type == condition_type:
            return condition
    return None


def is_condition_true(obj: Resource, condition_type: str) -> bool:
    """Return True if the condition is present with status True."""
    condition = find_condition(obj, condition_type)
    return condition is not None and condition.status == ConditionStatus.TRUE


def set_condition(
    store: Store,
    obj: Resource,
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
) -> bool:
    """Merge a condition into the object status and persist it.

    Returns True if the condition changed and the status was written. The
    object is updated in place, including its resource version.
    """
    conditions = _conditions(obj)
    existing = find_condition(obj, condition_type)
    if (
        existing is not None
        and existing.status == status
        and existing.reason == reason
        and existing.message == message
    ):
        return False

    now = datetime.now(timezone.utc)
    if existing is None:
        conditions.append(
            Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                observed_generation=obj.metadata.generation,
                last_transition_time=now,
            )
        )
    else:
        if existing.status != status:
            existing.last_transition_time = now
        existing.status = status
        existing.reason = reason
        existing.message = message
        existing.observed_generation = obj.metadata.generation

    _LOGGER.debug(
        "Setting condition %s=%s (%s) on %s",
        condition_type,
        status,
        reason,
        obj.resource_id,
    )
    store.update_status(obj)
    return True
