"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the record store.
This allows us to:
1. Run the core against an in-memory store in tests and tools
2. Swap in a real document database later
3. Keep business logic decoupled from storage implementation

The interface is intentionally small - get/insert/patch/delete plus an
indexed query builder. Records are plain dicts; the store owns the `id`
and `creation_time` fields.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


Record = dict[str, Any]
Predicate = Callable[[Record], bool]


class RecordQuery(ABC):
    """
    Chainable query over one collection.

    Usage:
        children = await (
            store.query("govt_project_breakdowns")
            .with_index("project_id", project_id=pid)
            .collect()
        )
    """

    @abstractmethod
    def with_index(self, index_name: str, **equals: Any) -> "RecordQuery":
        """
        Restrict to records whose indexed fields equal the given values.

        Args:
            index_name: A declared index of the collection
            equals: field=value pairs, a prefix of the index's fields

        Raises:
            StorageError: If the index is unknown or the fields don't match it
        """
        pass

    @abstractmethod
    def filter(self, predicate: Predicate) -> "RecordQuery":
        """Keep only records for which `predicate(record)` is true."""
        pass

    @abstractmethod
    def order(self, direction: str = "asc") -> "RecordQuery":
        """Order by creation, "asc" (oldest first) or "desc"."""
        pass

    @abstractmethod
    async def collect(self) -> list[Record]:
        """Run the query and return every matching record."""
        pass

    @abstractmethod
    async def first(self) -> Optional[Record]:
        """Run the query and return the first match, or None."""
        pass


class RecordStoreInterface(ABC):
    """
    Abstract interface for the structured record store.

    Any storage implementation must implement these methods. Infrastructure
    failures surface as StorageError; they are not modelled individually.
    """

    @abstractmethod
    async def get(
        self,
        record_id: str,
        collection: Optional[str] = None,
    ) -> Optional[Record]:
        """
        Retrieve a record by id.

        With `collection`, a record that lives in another collection is
        treated as missing.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert(self, collection: str, fields: Record) -> str:
        """
        Insert a new record.

        Args:
            collection: Target collection name
            fields: Record fields (without id/creation_time)

        Returns:
            The new record's id
        """
        pass

    @abstractmethod
    async def patch(self, record_id: str, fields: Record) -> None:
        """
        Shallow-merge fields into an existing record.

        A field given as None is removed from the record.

        Raises:
            StorageError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """
        Delete a record by id.

        Raises:
            StorageError: If the record doesn't exist
        """
        pass

    @abstractmethod
    def query(self, collection: str) -> RecordQuery:
        """Start a query over one collection."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass
