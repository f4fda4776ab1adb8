"""The repository controller module.

This module provides a reconciler that mirrors TrackedRepository resources into
local working trees and reports the pulled commit on their status.
"""

from .controller import (
    FINALIZER,
    TrackedRepositoryControllerConfig,
    TrackedRepositoryReconciler,
)

__all__ = [
    "FINALIZER",
    "TrackedRepositoryControllerConfig",
    "TrackedRepositoryReconciler",
]
