"""Store contract used by the controllers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from kude_controller.manifest import NamedResource, Resource

__all__ = [
    "Store",
    "StoreEvent",
    "IndexFunc",
]

T = TypeVar("T", bound=Resource)

IndexFunc = Callable[[Resource], list[str]]
"""Function that extracts the index values of an object."""


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    STATUS_UPDATED = "status_updated"
    OBJECT_DELETED = "object_deleted"


class Store(ABC):
    """Abstract base class for the object store with listener support.

    Objects passed to write methods are updated in place with the metadata
    assigned by the store (uid, generation, resource version) so callers may
    keep using them for subsequent writes. Returned objects are copies.
    """

    @abstractmethod
    def create(self, obj: T) -> T:
        """Add a new object to the store.

        Raises:
            AlreadyExistsError: If an object with the same identity exists.
        """

    @abstractmethod
    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve an object by resource identity and type."""

    @abstractmethod
    def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
        index: tuple[str, str] | None = None,
    ) -> list[Resource]:
        """List objects of a kind.

        Args:
            kind: The kind of objects to return.
            namespace: Only return objects in this namespace.
            labels: Only return objects carrying all of these labels.
            index: A `(index name, value)` pair registered with `add_index`.
        """

    @abstractmethod
    def update(self, obj: T) -> T:
        """Replace the metadata and spec of an object.

        The status of the stored object is preserved. An object that is being
        deleted is removed once its finalizer list is empty.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the resource version is stale.
        """

    @abstractmethod
    def update_status(self, obj: T) -> T:
        """Replace the status of an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the resource version is stale.
        """

    @abstractmethod
    def delete(self, resource_id: NamedResource) -> None:
        """Delete an object.

        Objects with finalizers are only marked for deletion. Removing an
        object removes the objects it owns.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def add_index(self, kind: str, name: str, func: IndexFunc) -> None:
        """Register a field index for a kind."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        """Register a callback for a store event.

        Returns a callable that can be called to remove the listener.
        """
