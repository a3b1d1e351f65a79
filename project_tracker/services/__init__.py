"""Services package."""

from project_tracker.services.identity import (
    IdentityProviderInterface,
    StaticIdentityProvider,
)
from project_tracker.services.storage import (
    InMemoryRecordStore,
    RecordQuery,
    RecordStoreInterface,
    StorageError,
)

__all__ = [
    # Identity
    "IdentityProviderInterface",
    "StaticIdentityProvider",
    # Storage services
    "InMemoryRecordStore",
    "RecordQuery",
    "RecordStoreInterface",
    "StorageError",
]
