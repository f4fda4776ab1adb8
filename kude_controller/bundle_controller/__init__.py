"""The bundle controller module.

This module provides a reconciler that keeps the manifests of a Bundle applied
from the mirror of its TrackedRepository, recording every apply as a RunRecord.
"""

from .controller import (
    FINALIZER,
    OWNER_UID_LABEL,
    BundleControllerConfig,
    BundleReconciler,
)
from .index import SOURCE_REPOSITORY_INDEX, bundles_for_repository, register_indexes

__all__ = [
    "FINALIZER",
    "OWNER_UID_LABEL",
    "BundleControllerConfig",
    "BundleReconciler",
    "SOURCE_REPOSITORY_INDEX",
    "bundles_for_repository",
    "register_indexes",
]
