"""
In-memory store backend.

Keeps records in a dict guarded by a lock that is held for exactly one store
call, which gives the same single-record atomicity a real key-value store
offers and nothing more. Used by the unit tests and for local experiments;
state does not survive the process.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Iterator, List, Optional

from achievement_points.errors import AlreadyExists, VersionConflict
from achievement_points.store.abstract import AbstractKeyValueStore, RecordKey, StoredItem


class InMemoryStore(AbstractKeyValueStore):
    """
    Thread-safe dict-backed implementation of the KeyValueStore protocol.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    name: str = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[RecordKey, StoredItem] = {}

    def _snapshot(self, item: StoredItem) -> StoredItem:
        return StoredItem(key=item.key, value=copy.deepcopy(item.value), version=item.version)

    def get(self, key: RecordKey) -> Optional[StoredItem]:
        with self._lock:
            item = self._items.get(key)
            return self._snapshot(item) if item is not None else None

    def put(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        with self._lock:
            current = self._items.get(key)
            version = current.version + 1 if current is not None else 1
            item = StoredItem(key=key, value=copy.deepcopy(value), version=version)
            self._items[key] = item
            return self._snapshot(item)

    def put_if_absent(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        with self._lock:
            if key in self._items:
                raise AlreadyExists(key)
            item = StoredItem(key=key, value=copy.deepcopy(value), version=1)
            self._items[key] = item
            return self._snapshot(item)

    def update_if_version(
        self, key: RecordKey, value: Dict[str, Any], expected_version: int
    ) -> StoredItem:
        with self._lock:
            current = self._items.get(key)
            if current is None or current.version != expected_version:
                raise VersionConflict(key, expected_version)
            item = StoredItem(key=key, value=copy.deepcopy(value), version=current.version + 1)
            self._items[key] = item
            return self._snapshot(item)

    def query(self, partition: str, sort_prefix: str = "") -> Iterator[StoredItem]:
        with self._lock:
            keys: List[RecordKey] = sorted(
                k for k in self._items if k.partition == partition and k.sort.startswith(sort_prefix)
            )
        # Each record is read under the lock when it is reached, not up front.
        for key in keys:
            item = self.get(key)
            if item is not None:
                yield item

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = ["InMemoryStore"]
