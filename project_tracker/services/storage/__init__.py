"""
Storage Services Package

Provides the abstract record store interface and the bundled in-memory
implementation. Designed to be swappable.
"""

from project_tracker.services.storage.interface import (
    Record,
    RecordQuery,
    RecordStoreInterface,
    StorageError,
)
from project_tracker.services.storage.memory import (
    DEFAULT_INDEXES,
    InMemoryQuery,
    InMemoryRecordStore,
)

__all__ = [
    # Interfaces
    "Record",
    "RecordQuery",
    "RecordStoreInterface",
    # Exceptions
    "StorageError",
    # In-memory implementation
    "DEFAULT_INDEXES",
    "InMemoryQuery",
    "InMemoryRecordStore",
]
