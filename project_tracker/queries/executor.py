"""
Read-Side Queries

DESIGN DECISION: Reads go straight to the store and never write.
Every read still requires an authenticated caller, the same as writes.

Listings come back newest first.
"""

from typing import Optional

from project_tracker.errors import NotAuthenticatedError
from project_tracker.models.aggregation import grouping_key_name
from project_tracker.models.records import (
    ACTIVITIES,
    AGGREGATIONS,
    BREAKDOWNS,
    BreakdownFilter,
    Principal,
)
from project_tracker.services.identity import IdentityProviderInterface
from project_tracker.services.storage import Record, RecordStoreInterface


def _contains(value: Optional[str], needle: Optional[str]) -> bool:
    """Case-insensitive substring match; no needle matches everything."""
    if not needle:
        return True
    return needle.lower() in (value or "").lower()


class RecordQueries:
    """
    Executes read queries against the record store.

    GUARANTEES:
    - Only returns real data from the store
    - Never mutates anything
    - Empty list (or None) if nothing matches
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        identity: IdentityProviderInterface,
    ):
        self._store = store
        self._identity = identity

    async def _require_principal(self) -> Principal:
        principal = await self._identity.current_principal()
        if principal is None:
            raise NotAuthenticatedError()
        return principal

    # -------------------------------------------------------------------------
    # Breakdowns
    # -------------------------------------------------------------------------

    async def list_breakdowns(
        self,
        filters: Optional[BreakdownFilter] = None,
    ) -> list[Record]:
        """
        List breakdowns matching the filter.

        Uses the project_id index when filtering by project, otherwise the
        status index when filtering by status.
        """
        await self._require_principal()
        filters = filters or BreakdownFilter()

        query = self._store.query(BREAKDOWNS)
        if filters.project_id:
            query = query.with_index("project_id", project_id=filters.project_id)
            if filters.status:
                query = query.filter(lambda r: r.get("status") == filters.status)
        elif filters.status:
            query = query.with_index("status", status=filters.status)

        rows = await (
            query
            .filter(lambda r: _contains(r.get("project_name"), filters.project_name))
            .filter(lambda r: _contains(r.get("implementing_office"), filters.implementing_office))
            .filter(lambda r: _contains(r.get("municipality"), filters.municipality))
            .order("desc")
            .collect()
        )

        if filters.limit:
            rows = rows[:filters.limit]
        return rows

    async def get_breakdown(self, breakdown_id: str) -> Optional[Record]:
        await self._require_principal()
        return await self._store.get(breakdown_id, BREAKDOWNS)

    # -------------------------------------------------------------------------
    # Aggregations
    # -------------------------------------------------------------------------

    async def list_aggregations(
        self,
        entity_type: str,
        aggregation_type: str,
        key_value: Optional[str] = None,
        key_name: str = grouping_key_name(0),
    ) -> list[Record]:
        """
        Aggregations of one entity/aggregation type.

        With key_value, only those whose grouping key `key_name` equals it.
        """
        await self._require_principal()

        query = self._store.query(AGGREGATIONS).with_index(
            "entity_type_and_aggregation_type",
            entity_type=entity_type,
            aggregation_type=aggregation_type,
        )
        if key_value is not None:
            query = query.filter(
                lambda r: (r.get("grouping_keys") or {}).get(key_name) == key_value
            )
        return await query.order("desc").collect()

    async def get_aggregation(self, aggregation_id: str) -> Optional[Record]:
        await self._require_principal()
        return await self._store.get(aggregation_id, AGGREGATIONS)

    # -------------------------------------------------------------------------
    # Activity history
    # -------------------------------------------------------------------------

    async def list_activities(self, entity_type: str, entity_id: str) -> list[Record]:
        """History of one entity, newest first."""
        await self._require_principal()
        return await (
            self._store.query(ACTIVITIES)
            .with_index("entity", entity_type=entity_type, entity_id=entity_id)
            .order("desc")
            .collect()
        )

    async def list_batch_activities(self, batch_id: str) -> list[Record]:
        """Every record written by one bulk operation, in write order."""
        await self._require_principal()
        return await (
            self._store.query(ACTIVITIES)
            .with_index("batch_id", batch_id=batch_id)
            .collect()
        )
