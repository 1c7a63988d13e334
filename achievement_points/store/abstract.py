"""
Store capability interfaces for the achievement points core.

The services never talk to a concrete database. They depend on the
KeyValueStore protocol below, which only promises single-record atomicity:

- ``get``: read one record and its version.
- ``put``: unconditional write, reserved for first writes and seeding.
- ``put_if_absent``: create only when the key does not exist.
- ``update_if_version``: overwrite only when the stored version still matches.
- ``query``: lazily iterate every record sharing a partition key.

Concrete backends (in-memory, PostgreSQL) implement the KeyValueStore protocol,
optionally through the AbstractKeyValueStore ABC.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Protocol, runtime_checkable


@dataclass(frozen=True, order=True)
class RecordKey:
    """
    Composite record key.

    Attributes
    ----------
    partition : str
        Partition key; ``query`` returns every record sharing it.
    sort : str
        Sort key, unique within the partition.
    """

    partition: str
    sort: str

    def __str__(self) -> str:
        return f"{self.partition}/{self.sort}"


@dataclass(frozen=True)
class StoredItem:
    """A record as returned by the store, with its version metadata."""

    key: RecordKey
    value: Dict[str, Any]
    version: int


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Capability interface every store backend must implement.

    Versions start at 1 when a record is created and grow by one on every
    successful write. No cross-key atomicity is assumed.
    """

    def get(self, key: RecordKey) -> Optional[StoredItem]:
        """
        Read a record.

        Returns
        -------
        StoredItem | None
            The record, or None when the key is not present.
        """
        ...

    def put(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        """Write a record unconditionally."""
        ...

    def put_if_absent(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        """
        Create a record.

        Raises
        ------
        AlreadyExists
            If the key is already present.
        """
        ...

    def update_if_version(
        self, key: RecordKey, value: Dict[str, Any], expected_version: int
    ) -> StoredItem:
        """
        Replace a record if its stored version equals ``expected_version``.

        Raises
        ------
        VersionConflict
            If the record has advanced past ``expected_version`` or is absent.
        """
        ...

    def query(self, partition: str, sort_prefix: str = "") -> Iterator[StoredItem]:
        """
        Lazily iterate records of one partition, ordered by sort key.

        Parameters
        ----------
        partition : str
            Partition key to read.
        sort_prefix : str
            Only yield records whose sort key starts with this prefix.
        """
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


class AbstractKeyValueStore(abc.ABC):
    """
    Optional ABC helper for class-based backends.

    Subclasses implement the five store operations; ``close`` defaults to a no-op.
    """

    name: str

    @abc.abstractmethod
    def get(self, key: RecordKey) -> Optional[StoredItem]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def put(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def put_if_absent(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def update_if_version(
        self, key: RecordKey, value: Dict[str, Any], expected_version: int
    ) -> StoredItem:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def query(self, partition: str, sort_prefix: str = "") -> Iterator[StoredItem]:  # pragma: no cover
        raise NotImplementedError

    def close(self) -> None:
        return None

    def __enter__(self) -> "AbstractKeyValueStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "RecordKey",
    "StoredItem",
    "KeyValueStore",
    "AbstractKeyValueStore",
]
