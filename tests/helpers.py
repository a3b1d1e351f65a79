"""Builders and test doubles."""

from typing import Optional

from project_tracker.models.records import PROJECTS
from project_tracker.rollup import RecalculationService
from project_tracker.services.storage import (
    InMemoryRecordStore,
    Record,
    StorageError,
)


class FlakyRecordStore(InMemoryRecordStore):
    """
    In-memory store that fails on demand.

    `failing_patch_ids` always fail; `transient_patch_failures` fail that
    many times before succeeding. `fail_collections` rejects inserts.
    """

    def __init__(self):
        super().__init__()
        self.failing_patch_ids: set[str] = set()
        self.transient_patch_failures: dict[str, int] = {}
        self.fail_collections: set[str] = set()
        self.patch_calls: list[str] = []

    async def patch(self, record_id: str, fields: Record) -> None:
        self.patch_calls.append(record_id)
        if record_id in self.failing_patch_ids:
            raise StorageError(f"Simulated failure patching {record_id}")
        remaining = self.transient_patch_failures.get(record_id, 0)
        if remaining:
            self.transient_patch_failures[record_id] = remaining - 1
            raise StorageError(f"Simulated transient failure patching {record_id}")
        await super().patch(record_id, fields)

    async def insert(self, collection: str, fields: Record) -> str:
        if collection in self.fail_collections:
            raise StorageError(f"Simulated failure inserting into {collection}")
        return await super().insert(collection, fields)


class SpyRecalculationService(RecalculationService):
    """Records every project id it is asked to recalculate."""

    def __init__(self, store, **kwargs):
        super().__init__(store, retry_attempts=1, retry_wait_seconds=0, **kwargs)
        self.calls: list[str] = []

    async def recalc(self, project_id: str, updated_by: str):
        self.calls.append(project_id)
        return await super().recalc(project_id, updated_by)


async def insert_project(store, name: str = "Road Works", **fields) -> str:
    """Insert a bare project straight into the store."""
    return await store.insert(PROJECTS, {
        "project_name": name,
        "implementing_office": "Engineering",
        "project_completed": 0,
        "project_delayed": 0,
        "projects_on_track": 0,
        **fields,
    })


def make_breakdown(project_id: Optional[str] = None, **fields) -> dict:
    """Minimal valid breakdown input."""
    data = {
        "project_name": "Road Works",
        "implementing_office": "Engineering",
        **fields,
    }
    if project_id:
        data["project_id"] = project_id
    return data
