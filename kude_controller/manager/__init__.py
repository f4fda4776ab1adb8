"""Manager for kude-controller.

This module provides the manager that runs the TrackedRepository and Bundle
reconcilers against a store, and the loader that fills the store from
manifest files.
"""

from .loader import LoadOptions, ResourceLoader, load_into_store
from .manager import Manager, ManagerConfig

__all__ = [
    "Manager",
    "ManagerConfig",
    "LoadOptions",
    "ResourceLoader",
    "load_into_store",
]
