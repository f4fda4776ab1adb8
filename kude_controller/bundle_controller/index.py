"""Index from TrackedRepositories to the Bundles that consume them."""

import logging

from kude_controller.manifest import (
    BUNDLE_KIND,
    Bundle,
    NamedResource,
    Resource,
)
from kude_controller.store import Store

_LOGGER = logging.getLogger(__name__)

SOURCE_REPOSITORY_INDEX = "spec.sourceRepository"


def source_repository_values(obj: Resource) -> list[str]:
    """Return the index values of a Bundle."""
    if not isinstance(obj, Bundle):
        return []
    return [obj.spec.source_repository]


def register_indexes(store: Store) -> None:
    """Register the field indexes used by the bundle controller."""
    store.add_index(BUNDLE_KIND, SOURCE_REPOSITORY_INDEX, source_repository_values)


def bundles_for_repository(
    store: Store, repository_id: NamedResource
) -> list[NamedResource]:
    """Return the keys of the Bundles sourced from the repository."""
    bundles = store.list_objects(
        BUNDLE_KIND, index=(SOURCE_REPOSITORY_INDEX, repository_id.namespaced_name)
    )
    keys = [obj.resource_id for obj in bundles]
    _LOGGER.debug("Bundles for %s: %s", repository_id, keys)
    return keys
