"""
The store module holds the resources reconciled by kude-controller.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Owns object metadata: uid, generation, resource version, timestamps.
- Provides optimistic concurrency, finalizer handling, owner reference
  garbage collection, field indexes and change notifications.

This abstract interface allows for various implementations (in-memory, cluster
API backed, etc.).
"""

from .store import Store, StoreEvent, IndexFunc
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "IndexFunc",
    "InMemoryStore",
]
