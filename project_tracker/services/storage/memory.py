"""
In-Memory Storage Implementation

The bundled record store. Documents live in a single id-keyed dict, so
`get(id)` works across collections the same way it does in a document
database. Indexes are declared per collection and validated on use;
lookups themselves scan, which is fine for in-process volumes.

TRADEOFFS:
- No persistence (process lifetime only)
- No transactions (the core never relies on them)
- Records are deep-copied in and out so callers can't mutate store state
"""

import copy
import time
from typing import Any, Optional
from uuid import uuid4

from project_tracker.models.records import (
    ACTIVITIES,
    AGGREGATIONS,
    BREAKDOWNS,
    PROJECTS,
)
from project_tracker.services.storage.interface import (
    Predicate,
    Record,
    RecordQuery,
    RecordStoreInterface,
    StorageError,
)


# Index name -> indexed fields, per collection
DEFAULT_INDEXES: dict[str, dict[str, tuple[str, ...]]] = {
    BREAKDOWNS: {
        "project_id": ("project_id",),
        "project_name": ("project_name",),
        "implementing_office": ("implementing_office",),
        "status": ("status",),
        "project_name_and_office": ("project_name", "implementing_office"),
        "municipality": ("municipality",),
    },
    PROJECTS: {
        "project_name": ("project_name",),
        "status": ("status",),
        "project_manager_id": ("project_manager_id",),
    },
    AGGREGATIONS: {
        "entity_type": ("entity_type",),
        "aggregation_type": ("aggregation_type",),
        "entity_type_and_aggregation_type": ("entity_type", "aggregation_type"),
        "parent_id": ("parent_id",),
    },
    ACTIVITIES: {
        "entity": ("entity_type", "entity_id"),
        "batch_id": ("batch_id",),
    },
}

SYSTEM_FIELDS = ("id", "creation_time")


class InMemoryQuery(RecordQuery):
    """Query builder for InMemoryRecordStore."""

    def __init__(self, store: "InMemoryRecordStore", collection: str):
        self._store = store
        self._collection = collection
        self._predicates: list[Predicate] = []
        self._descending = False

    def with_index(self, index_name: str, **equals: Any) -> "InMemoryQuery":
        index_fields = self._store.index_fields(self._collection, index_name)
        given = tuple(equals)
        if given != index_fields[:len(given)]:
            raise StorageError(
                f"Fields {given} are not a prefix of index "
                f"{self._collection}.{index_name} {index_fields}"
            )
        for field, value in equals.items():
            self._predicates.append(
                lambda record, f=field, v=value: record.get(f) == v
            )
        return self

    def filter(self, predicate: Predicate) -> "InMemoryQuery":
        self._predicates.append(predicate)
        return self

    def order(self, direction: str = "asc") -> "InMemoryQuery":
        if direction not in ("asc", "desc"):
            raise StorageError(f"Unknown order direction: {direction}")
        self._descending = direction == "desc"
        return self

    async def collect(self) -> list[Record]:
        records = [
            record
            for record in self._store.documents(self._collection)
            if all(predicate(record) for predicate in self._predicates)
        ]
        if self._descending:
            records.reverse()
        return [copy.deepcopy(record) for record in records]

    async def first(self) -> Optional[Record]:
        records = await self.collect()
        return records[0] if records else None


class InMemoryRecordStore(RecordStoreInterface):
    """
    Dict-backed implementation of the record store.

    Insertion order is creation order, which is what `order()` sorts by.
    """

    def __init__(
        self,
        indexes: Optional[dict[str, dict[str, tuple[str, ...]]]] = None,
    ):
        self._indexes = indexes if indexes is not None else DEFAULT_INDEXES
        # id -> (collection, record)
        self._documents: dict[str, tuple[str, Record]] = {}

    def index_fields(self, collection: str, index_name: str) -> tuple[str, ...]:
        """Fields of a declared index."""
        try:
            return self._indexes[collection][index_name]
        except KeyError:
            raise StorageError(f"Unknown index {collection}.{index_name}")

    def documents(self, collection: str) -> list[Record]:
        """Live records of one collection, in creation order."""
        return [
            record
            for name, record in self._documents.values()
            if name == collection
        ]

    async def get(
        self,
        record_id: str,
        collection: Optional[str] = None,
    ) -> Optional[Record]:
        entry = self._documents.get(record_id)
        if entry is None:
            return None
        if collection is not None and entry[0] != collection:
            return None
        return copy.deepcopy(entry[1])

    async def insert(self, collection: str, fields: Record) -> str:
        record_id = str(uuid4())
        record = {
            key: copy.deepcopy(value)
            for key, value in fields.items()
            if key not in SYSTEM_FIELDS and value is not None
        }
        record["id"] = record_id
        record["creation_time"] = time.time()
        self._documents[record_id] = (collection, record)
        return record_id

    async def patch(self, record_id: str, fields: Record) -> None:
        entry = self._documents.get(record_id)
        if entry is None:
            raise StorageError(f"Cannot patch missing record: {record_id}")
        record = entry[1]
        for key, value in fields.items():
            if key in SYSTEM_FIELDS:
                raise StorageError(f"Cannot patch system field: {key}")
            if value is None:
                record.pop(key, None)
            else:
                record[key] = copy.deepcopy(value)

    async def delete(self, record_id: str) -> None:
        if self._documents.pop(record_id, None) is None:
            raise StorageError(f"Cannot delete missing record: {record_id}")

    def query(self, collection: str) -> InMemoryQuery:
        return InMemoryQuery(self, collection)
