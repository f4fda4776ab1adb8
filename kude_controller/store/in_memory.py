"""Module for in memory object store."""

import copy
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
import itertools
import logging
from typing import Any, TypeVar, DefaultDict
import uuid

from kude_controller.manifest import NamedResource, Resource
from kude_controller.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ObjectNotFoundError,
)

from .store import IndexFunc, Store, StoreEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are keyed by NamedResource. Every write bumps a store wide resource
    version. Creation timestamps are strictly increasing so that objects can be
    ordered by creation even when created within the same clock tick.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Resource] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._indexers: DefaultDict[str, dict[str, IndexFunc]] = defaultdict(dict)
        self._index_values: DefaultDict[
            tuple[str, str], DefaultDict[str, set[NamedResource]]
        ] = defaultdict(lambda: defaultdict(set))
        self._versions = itertools.count(1)
        self._last_created: datetime | None = None

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _creation_time(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now

    def _check_version(self, current: Resource, obj: Resource) -> None:
        expected = obj.metadata.resource_version
        actual = current.metadata.resource_version
        if expected and expected != actual:
            raise ConflictError(str(obj.resource_id), expected, actual)

    def _get_existing(self, resource_id: NamedResource) -> Resource:
        if (current := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        return current

    def create(self, obj: T) -> T:
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise AlreadyExistsError(f"Object {resource_id} already exists")
        meta = obj.metadata
        meta.uid = meta.uid or str(uuid.uuid4())
        meta.generation = 1
        meta.resource_version = self._next_version()
        meta.creation_timestamp = self._creation_time()
        meta.deletion_timestamp = None
        _LOGGER.debug("Adding object %s to store", resource_id)
        stored = copy.deepcopy(obj)
        self._objects[resource_id] = stored
        self._reindex(resource_id, None, stored)
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, stored)
        return copy.deepcopy(stored)

    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        obj = self._objects.get(resource_id)
        if obj is None:
            return None
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} "
                f"(was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
        index: tuple[str, str] | None = None,
    ) -> list[Resource]:
        if index is not None:
            index_name, value = index
            if index_name not in self._indexers[kind]:
                raise ValueError(f"No index '{index_name}' registered for {kind}")
            candidates = [
                self._objects[rid]
                for rid in sorted(self._index_values[(kind, index_name)][value])
            ]
        else:
            candidates = [obj for obj in self._objects.values() if obj.kind == kind]
        results = []
        for obj in candidates:
            if namespace is not None and obj.namespace != namespace:
                continue
            if labels and any(
                obj.metadata.labels.get(key) != value for key, value in labels.items()
            ):
                continue
            results.append(copy.deepcopy(obj))
        return results

    def update(self, obj: T) -> T:
        resource_id = obj.resource_id
        current = self._get_existing(resource_id)
        self._check_version(current, obj)

        updated = copy.deepcopy(obj)
        updated.metadata.uid = current.metadata.uid
        updated.metadata.creation_timestamp = current.metadata.creation_timestamp
        updated.metadata.deletion_timestamp = current.metadata.deletion_timestamp
        updated.metadata.generation = current.metadata.generation
        updated.status = copy.deepcopy(current.status)  # type: ignore[attr-defined]
        if updated.spec != current.spec:  # type: ignore[attr-defined]
            updated.metadata.generation += 1
        updated.metadata.resource_version = self._next_version()
        obj.metadata.generation = updated.metadata.generation
        obj.metadata.resource_version = updated.metadata.resource_version

        if updated.is_deleting and not updated.metadata.finalizers:
            _LOGGER.debug("Finalizers drained, removing %s", resource_id)
            self._remove(resource_id)
            return copy.deepcopy(updated)

        self._objects[resource_id] = updated
        self._reindex(resource_id, current, updated)
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, updated)
        return copy.deepcopy(updated)

    def update_status(self, obj: T) -> T:
        resource_id = obj.resource_id
        current = self._get_existing(resource_id)
        self._check_version(current, obj)
        updated = copy.deepcopy(current)
        updated.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        updated.metadata.resource_version = self._next_version()
        obj.metadata.resource_version = updated.metadata.resource_version
        self._objects[resource_id] = updated
        self._fire_event(StoreEvent.STATUS_UPDATED, resource_id, updated)
        return copy.deepcopy(updated)

    def delete(self, resource_id: NamedResource) -> None:
        current = self._get_existing(resource_id)
        if not current.metadata.finalizers:
            self._remove(resource_id)
            return
        if current.is_deleting:
            return
        _LOGGER.debug(
            "Marking %s for deletion, pending finalizers %s",
            resource_id,
            current.metadata.finalizers,
        )
        current.metadata.deletion_timestamp = datetime.now(timezone.utc)
        current.metadata.resource_version = self._next_version()
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, current)

    def _remove(self, resource_id: NamedResource) -> None:
        """Remove an object and garbage collect the objects it owns."""
        if (removed := self._objects.pop(resource_id, None)) is None:
            return
        _LOGGER.debug("Removed object %s from store", resource_id)
        self._reindex(resource_id, removed, None)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, removed)
        dependents = [
            rid
            for rid, obj in self._objects.items()
            if any(
                ref.uid == removed.metadata.uid for ref in obj.metadata.owner_references
            )
        ]
        for rid in dependents:
            if rid in self._objects:
                _LOGGER.debug("Garbage collecting %s owned by %s", rid, resource_id)
                self.delete(rid)

    def add_index(self, kind: str, name: str, func: IndexFunc) -> None:
        if name in self._indexers[kind]:
            raise ValueError(f"Index '{name}' already registered for {kind}")
        self._indexers[kind][name] = func
        values = self._index_values[(kind, name)]
        for resource_id, obj in self._objects.items():
            if obj.kind == kind:
                for value in func(obj):
                    values[value].add(resource_id)

    def _reindex(
        self,
        resource_id: NamedResource,
        old: Resource | None,
        new: Resource | None,
    ) -> None:
        for name, func in self._indexers[resource_id.kind].items():
            values = self._index_values[(resource_id.kind, name)]
            if old is not None:
                for value in func(old):
                    values[value].discard(resource_id)
                    if not values[value]:
                        del values[value]
            if new is not None:
                for value in func(new):
                    values[value].add(resource_id)

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Resource], None],
    ) -> Callable[[], None]:
        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
