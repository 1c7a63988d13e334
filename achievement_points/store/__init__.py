"""
Store package for the achievement points core.

Re-exports the capability interface and the in-memory backend. The PostgreSQL
backend lives in `achievement_points.store.postgres` and is imported on demand
by the bootstrap registry.
"""

from achievement_points.store.abstract import (
    AbstractKeyValueStore,
    KeyValueStore,
    RecordKey,
    StoredItem,
)
from achievement_points.store.memory import InMemoryStore

__all__ = [
    "AbstractKeyValueStore",
    "KeyValueStore",
    "RecordKey",
    "StoredItem",
    "InMemoryStore",
]
