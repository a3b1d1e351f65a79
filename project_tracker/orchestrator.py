"""
Main Orchestrator for Project Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Breakdown mutations (validate -> write -> log activity -> recalc parents)
2. Project mutations (validate -> write -> log activity)
3. Subtotal refresh (load breakdowns -> group -> upsert aggregations)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written for an unauthenticated caller
- Nothing is written before all input has been validated
- Activity is logged before parents are recalculated
- A child write is never rolled back because a parent recalculation failed;
  the result reports the parent as stale instead

This is the "glue" that keeps parents consistent with their children
even when individual components fail along the way.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from project_tracker.aggregation import (
    AggregationEngine,
    breakdown_subtotal_config,
    partition_by_group,
)
from project_tracker.audit import (
    BREAKDOWN_ENTITY,
    PROJECT_ENTITY,
    ActivityLogger,
    create_batch_id,
)
from project_tracker.config import get_settings
from project_tracker.errors import (
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from project_tracker.models.activity import (
    ActivityAction,
    ActivityLogRequest,
    ActivityRequestBuilder,
    ActivitySource,
)
from project_tracker.models.aggregation import AggregationOutcome
from project_tracker.models.records import (
    BREAKDOWNS,
    PROJECTS,
    BreakdownCreate,
    BreakdownUpdate,
    BulkMutationResult,
    MutationResult,
    Principal,
    ProjectCreate,
    ProjectUpdate,
    RecalculationBatch,
    RecalculationResult,
    RollupStatus,
)
from project_tracker.queries import RecordQueries
from project_tracker.rollup import RecalculationService
from project_tracker.services.identity import (
    IdentityProviderInterface,
    StaticIdentityProvider,
)
from project_tracker.services.storage import (
    InMemoryRecordStore,
    Record,
    RecordStoreInterface,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate(model: Type[ModelT], data: Union[ModelT, dict[str, Any]]) -> ModelT:
    """Parse caller input, turning pydantic errors into a domain error."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}",
            [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ],
        ) from e


def _validate_item(
    model: Type[ModelT],
    data: Union[ModelT, dict[str, Any]],
    index: int,
) -> ModelT:
    try:
        return _validate(model, data)
    except ValidationError as e:
        raise ValidationError(
            f"Item {index}: {e.message}",
            [dict(detail, index=index) for detail in e.details],
        ) from e


def _unique(ids: Iterable[Optional[str]]) -> list[str]:
    """Drop empties and duplicates, keeping first-seen order."""
    return list(dict.fromkeys(i for i in ids if i))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Flow:
    """Shared plumbing: who is calling, and does a record exist."""

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

    async def _require_record(
        self,
        record_id: str,
        collection: str,
        resource: str,
    ) -> Record:
        record = await self._store.get(record_id, collection)
        if record is None:
            raise NotFoundError(resource, record_id)
        return record


class BreakdownMutationFlow(_Flow):
    """
    Orchestrates every write to breakdowns.

    Flow for a single mutation:
    1. Resolve principal -> NotAuthenticatedError if none
    2. Validate input and referenced parents
    3. Write the breakdown and re-read it
    4. Log activity (never fails the mutation)
    5. Recalculate every affected parent, each in isolation

    Bulk mutations do steps 2-4 for every item first and then recalculate
    each affected parent exactly once.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        identity: IdentityProviderInterface,
        audit_logger: Optional[ActivityLogger] = None,
        recalculation: Optional[RecalculationService] = None,
        elevated_role: Optional[str] = None,
    ):
        super().__init__(store, identity)
        self._audit_logger = audit_logger or ActivityLogger(store)
        self._recalculation = recalculation or RecalculationService(store)
        self._elevated_role = elevated_role or get_settings().app.elevated_role

    # -------------------------------------------------------------------------
    # Single mutations
    # -------------------------------------------------------------------------

    async def create_breakdown(
        self,
        data: Union[BreakdownCreate, dict[str, Any]],
        reason: Optional[str] = None,
    ) -> MutationResult:
        """
        Create a breakdown and recalculate its parent, if it has one.

        Raises:
            NotAuthenticatedError: No caller
            ValidationError: Bad input
            NotFoundError: project_id refers to a missing project
        """
        principal = await self._require_principal()
        payload = _validate(BreakdownCreate, data)

        if payload.project_id:
            await self._require_record(payload.project_id, PROJECTS, "Project")

        breakdown_id = await self._insert(payload, principal)
        created = await self._store.get(breakdown_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.created(BREAKDOWN_ENTITY, breakdown_id, created, reason),
        )
        logger.info(
            "breakdown_created",
            breakdown_id=breakdown_id,
            project_id=payload.project_id,
            performed_by=principal.id,
        )

        return await self._finish(breakdown_id, _unique([payload.project_id]), principal)

    async def update_breakdown(
        self,
        breakdown_id: str,
        updates: Union[BreakdownUpdate, dict[str, Any]],
        reason: Optional[str] = None,
    ) -> MutationResult:
        """
        Apply a partial update. Keys sent as None are cleared.

        Both the old and the new parent are recalculated when the
        breakdown moves between projects.

        Raises:
            NotAuthenticatedError: No caller
            ValidationError: Bad input
            NotFoundError: Missing breakdown, or missing new parent
        """
        principal = await self._require_principal()
        patch = _validate(BreakdownUpdate, updates)

        previous = await self._require_record(breakdown_id, BREAKDOWNS, "Breakdown")
        changes = patch.model_dump(exclude_unset=True)
        if changes.get("project_id"):
            await self._require_record(changes["project_id"], PROJECTS, "Project")

        await self._store.patch(breakdown_id, {
            **changes,
            "updated_at": _now(),
            "updated_by": principal.id,
        })
        current = await self._store.get(breakdown_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.updated(
                BREAKDOWN_ENTITY, breakdown_id, previous, current, reason
            ),
        )
        logger.info(
            "breakdown_updated",
            breakdown_id=breakdown_id,
            fields=sorted(changes),
            performed_by=principal.id,
        )

        old_parent = previous.get("project_id")
        new_parent = current.get("project_id")
        affected = _unique([
            old_parent if old_parent != new_parent else None,
            new_parent,
        ])
        return await self._finish(breakdown_id, affected, principal)

    async def delete_breakdown(
        self,
        breakdown_id: str,
        reason: Optional[str] = None,
    ) -> MutationResult:
        """
        Delete a breakdown and recalculate its former parent.

        Raises:
            NotAuthenticatedError: No caller
            NotFoundError: Missing breakdown
        """
        principal = await self._require_principal()
        previous = await self._require_record(breakdown_id, BREAKDOWNS, "Breakdown")

        await self._store.delete(breakdown_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.deleted(BREAKDOWN_ENTITY, breakdown_id, previous, reason),
        )
        logger.info(
            "breakdown_deleted",
            breakdown_id=breakdown_id,
            project_id=previous.get("project_id"),
            performed_by=principal.id,
        )

        return await self._finish(
            breakdown_id, _unique([previous.get("project_id")]), principal
        )

    # -------------------------------------------------------------------------
    # Bulk mutations
    # -------------------------------------------------------------------------

    async def bulk_create_breakdowns(
        self,
        items: list[Union[BreakdownCreate, dict[str, Any]]],
        reason: Optional[str] = None,
    ) -> BulkMutationResult:
        """
        Create many breakdowns (spreadsheet import).

        Every item and every referenced parent is checked before the first
        insert, so a bad row means nothing is written.
        """
        principal = await self._require_principal()
        payloads = [
            _validate_item(BreakdownCreate, item, i) for i, item in enumerate(items)
        ]
        parents = _unique(p.project_id for p in payloads)
        for project_id in parents:
            await self._require_record(project_id, PROJECTS, "Project")

        ids = []
        requests = []
        for payload in payloads:
            breakdown_id = await self._insert(payload, principal)
            created = await self._store.get(breakdown_id)
            ids.append(breakdown_id)
            requests.append(ActivityLogRequest(
                entity_type=BREAKDOWN_ENTITY,
                entity_id=breakdown_id,
                action=ActivityAction.BULK_CREATED,
                snapshot=created,
                new_values=created,
            ))

        batch_id = await self._audit_logger.log_bulk(
            principal,
            requests,
            reason=reason or "Excel import",
            source=ActivitySource.BULK_IMPORT,
        )
        logger.info(
            "breakdowns_bulk_created",
            count=len(ids),
            batch_id=batch_id,
            affected_projects=len(parents),
        )

        return await self._finish_bulk(ids, [], batch_id, parents, principal)

    async def bulk_update_breakdowns(
        self,
        items: list[dict[str, Any]],
        reason: Optional[str] = None,
    ) -> BulkMutationResult:
        """
        Update many breakdowns. Each item carries its `breakdown_id` plus
        the fields to change.

        Ids that no longer exist are skipped and reported in `skipped_ids`.
        """
        principal = await self._require_principal()

        prepared: list[tuple[str, dict[str, Any]]] = []
        for i, item in enumerate(items):
            fields = dict(item)
            breakdown_id = fields.pop("breakdown_id", None)
            if not breakdown_id:
                raise ValidationError(
                    f"Item {i}: breakdown_id is required",
                    [{"loc": ["breakdown_id"], "msg": "Field required",
                      "type": "missing", "index": i}],
                )
            patch = _validate_item(BreakdownUpdate, fields, i)
            prepared.append((breakdown_id, patch.model_dump(exclude_unset=True)))

        for project_id in _unique(changes.get("project_id") for _, changes in prepared):
            await self._require_record(project_id, PROJECTS, "Project")

        ids = []
        skipped = []
        affected = []
        requests = []
        for breakdown_id, changes in prepared:
            previous = await self._store.get(breakdown_id, BREAKDOWNS)
            if previous is None:
                logger.warning("bulk_update_skipped_missing", breakdown_id=breakdown_id)
                skipped.append(breakdown_id)
                continue

            affected.extend([previous.get("project_id"), changes.get("project_id")])

            await self._store.patch(breakdown_id, {
                **changes,
                "updated_at": _now(),
                "updated_by": principal.id,
            })
            current = await self._store.get(breakdown_id)
            ids.append(breakdown_id)
            requests.append(ActivityLogRequest(
                entity_type=BREAKDOWN_ENTITY,
                entity_id=breakdown_id,
                action=ActivityAction.BULK_UPDATED,
                snapshot=current,
                previous_values=previous,
                new_values=current,
            ))

        batch_id = await self._audit_logger.log_bulk(
            principal,
            requests,
            reason=reason or "Bulk update",
            source=ActivitySource.BULK_IMPORT,
        )
        parents = _unique(affected)
        logger.info(
            "breakdowns_bulk_updated",
            count=len(ids),
            skipped=len(skipped),
            batch_id=batch_id,
            affected_projects=len(parents),
        )

        return await self._finish_bulk(ids, skipped, batch_id, parents, principal)

    async def bulk_delete_breakdowns(
        self,
        breakdown_ids: list[str],
        reason: Optional[str] = None,
    ) -> BulkMutationResult:
        """Delete many breakdowns, skipping ids that no longer exist."""
        principal = await self._require_principal()

        ids = []
        skipped = []
        affected = []
        requests = []
        for breakdown_id in breakdown_ids:
            previous = await self._store.get(breakdown_id, BREAKDOWNS)
            if previous is None:
                logger.warning("bulk_delete_skipped_missing", breakdown_id=breakdown_id)
                skipped.append(breakdown_id)
                continue

            affected.append(previous.get("project_id"))
            await self._store.delete(breakdown_id)
            ids.append(breakdown_id)
            requests.append(ActivityLogRequest(
                entity_type=BREAKDOWN_ENTITY,
                entity_id=breakdown_id,
                action=ActivityAction.BULK_DELETED,
                previous_values=previous,
            ))

        batch_id = await self._audit_logger.log_bulk(
            principal,
            requests,
            reason=reason or "Bulk deletion",
            source=ActivitySource.WEB_UI,
        )
        parents = _unique(affected)
        logger.info(
            "breakdowns_bulk_deleted",
            count=len(ids),
            skipped=len(skipped),
            batch_id=batch_id,
            affected_projects=len(parents),
        )

        return await self._finish_bulk(ids, skipped, batch_id, parents, principal)

    # -------------------------------------------------------------------------
    # Read-side activity
    # -------------------------------------------------------------------------

    async def log_breakdown_view(self, breakdown_id: str) -> Optional[str]:
        """Record that the caller viewed a breakdown. Returns the activity id."""
        principal = await self._require_principal()
        record = await self._require_record(breakdown_id, BREAKDOWNS, "Breakdown")
        return await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.viewed(BREAKDOWN_ENTITY, breakdown_id, record),
        )

    async def log_breakdown_export(
        self,
        breakdown_ids: list[str],
        export_format: str = "csv",
    ) -> str:
        """
        Record an export of several breakdowns under one batch id.

        Missing ids are ignored. Returns the batch id.
        """
        principal = await self._require_principal()

        requests = []
        for breakdown_id in breakdown_ids:
            record = await self._store.get(breakdown_id, BREAKDOWNS)
            if record is None:
                continue
            requests.append(ActivityRequestBuilder.exported(
                BREAKDOWN_ENTITY, breakdown_id, record, export_format
            ))

        return await self._audit_logger.log_bulk(
            principal, requests, source=ActivitySource.WEB_UI
        )

    # -------------------------------------------------------------------------
    # Manual recalculation
    # -------------------------------------------------------------------------

    async def recalculate_project(self, project_id: str) -> RecalculationResult:
        """
        Recalculate one project on demand.

        Raises:
            NotAuthenticatedError: No caller
            NotFoundError: Missing project
        """
        principal = await self._require_principal()
        return await self._recalculation.recalc(project_id, principal.id)

    async def recalculate_all_projects(self) -> RecalculationBatch:
        """
        Recalculate every project. Restricted to the elevated role.

        Raises:
            NotAuthenticatedError: No caller
            NotAuthorizedError: Caller lacks the elevated role
        """
        principal = await self._require_principal()
        if principal.role != self._elevated_role:
            raise NotAuthorizedError("recalculate all projects")
        return await self._recalculation.recalc_all(principal.id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _insert(self, payload: BreakdownCreate, principal: Principal) -> str:
        now = _now()
        return await self._store.insert(BREAKDOWNS, {
            **payload.model_dump(exclude_none=True),
            "created_by": principal.id,
            "created_at": now,
            "updated_at": now,
            "updated_by": principal.id,
        })

    async def _run_cascade(
        self,
        project_ids: list[str],
        principal: Principal,
    ) -> tuple[RecalculationBatch, RollupStatus]:
        """Recalculate parents one by one; a failure only marks that parent."""
        if not project_ids:
            return RecalculationBatch(), RollupStatus.CONSISTENT

        batch = await self._recalculation.recalc_many(project_ids, principal.id)
        if batch.all_succeeded:
            return batch, RollupStatus.CONSISTENT

        logger.warning(
            "rollup_stale",
            failed_project_ids=batch.failed_ids,
            performed_by=principal.id,
        )
        return batch, RollupStatus.STALE

    async def _finish(
        self,
        breakdown_id: str,
        affected: list[str],
        principal: Principal,
    ) -> MutationResult:
        batch, status = await self._run_cascade(affected, principal)
        return MutationResult(
            breakdown_id=breakdown_id,
            affected_project_ids=affected,
            recalculations=batch.results,
            failed_project_ids=batch.failed_ids,
            rollup_status=status,
        )

    async def _finish_bulk(
        self,
        ids: list[str],
        skipped: list[str],
        batch_id: str,
        parents: list[str],
        principal: Principal,
    ) -> BulkMutationResult:
        batch, status = await self._run_cascade(parents, principal)
        return BulkMutationResult(
            count=len(ids),
            ids=ids,
            skipped_ids=skipped,
            batch_id=batch_id,
            affected_projects=len(parents),
            recalculations=batch.results,
            failed_project_ids=batch.failed_ids,
            rollup_status=status,
        )


class ProjectMutationFlow(_Flow):
    """
    Orchestrates writes to projects.

    Rollup counters are owned by the recalculation service: they start at 0
    here and can't be set through create or update.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        identity: IdentityProviderInterface,
        audit_logger: Optional[ActivityLogger] = None,
    ):
        super().__init__(store, identity)
        self._audit_logger = audit_logger or ActivityLogger(store)

    async def create_project(
        self,
        data: Union[ProjectCreate, dict[str, Any]],
        reason: Optional[str] = None,
    ) -> str:
        """Create a project with zeroed rollup counters. Returns its id."""
        principal = await self._require_principal()
        payload = _validate(ProjectCreate, data)

        now = _now()
        project_id = await self._store.insert(PROJECTS, {
            **payload.model_dump(exclude_none=True),
            "project_completed": 0,
            "project_delayed": 0,
            "projects_on_track": 0,
            "created_by": principal.id,
            "created_at": now,
            "updated_at": now,
            "updated_by": principal.id,
        })
        created = await self._store.get(project_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.created(PROJECT_ENTITY, project_id, created, reason),
        )
        logger.info("project_created", project_id=project_id, performed_by=principal.id)
        return project_id

    async def update_project(
        self,
        project_id: str,
        updates: Union[ProjectUpdate, dict[str, Any]],
        reason: Optional[str] = None,
    ) -> str:
        """Apply a partial update to a project. Returns its id."""
        principal = await self._require_principal()
        patch = _validate(ProjectUpdate, updates)
        previous = await self._require_record(project_id, PROJECTS, "Project")

        changes = patch.model_dump(exclude_unset=True)
        await self._store.patch(project_id, {
            **changes,
            "updated_at": _now(),
            "updated_by": principal.id,
        })
        current = await self._store.get(project_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.updated(PROJECT_ENTITY, project_id, previous, current, reason),
        )
        logger.info(
            "project_updated",
            project_id=project_id,
            fields=sorted(changes),
            performed_by=principal.id,
        )
        return project_id

    async def delete_project(self, project_id: str, reason: Optional[str] = None) -> str:
        """
        Delete a project. Its breakdowns are left as they are and keep
        pointing at the deleted id.
        """
        principal = await self._require_principal()
        previous = await self._require_record(project_id, PROJECTS, "Project")

        await self._store.delete(project_id)

        await self._audit_logger.log(
            principal,
            ActivityRequestBuilder.deleted(PROJECT_ENTITY, project_id, previous, reason),
        )
        logger.info("project_deleted", project_id=project_id, performed_by=principal.id)
        return project_id


class SubtotalFlow(_Flow):
    """Keeps breakdown subtotals in the aggregations collection current."""

    def __init__(
        self,
        store: RecordStoreInterface,
        identity: IdentityProviderInterface,
        engine: Optional[AggregationEngine] = None,
    ):
        super().__init__(store, identity)
        self._engine = engine or AggregationEngine(store)

    async def refresh_breakdown_subtotals(
        self,
        project_name: Optional[str] = None,
    ) -> list[AggregationOutcome]:
        """
        Upsert one subtotal per (project name, implementing office) group.

        Limited to one project name if given. No breakdowns, no subtotals.
        """
        principal = await self._require_principal()

        query = self._store.query(BREAKDOWNS)
        if project_name is not None:
            query = query.with_index("project_name", project_name=project_name)
        rows = await query.collect()

        config = breakdown_subtotal_config()
        outcomes = []
        for group in partition_by_group(rows, config.group_by_fields):
            outcomes.append(await self._engine.aggregate(group, config, principal.id))

        logger.info(
            "subtotals_refreshed",
            project_name=project_name,
            groups=len(outcomes),
            performed_by=principal.id,
        )
        return outcomes


def create_app_components(
    store: Optional[RecordStoreInterface] = None,
    identity: Optional[IdentityProviderInterface] = None,
) -> tuple[BreakdownMutationFlow, ProjectMutationFlow, SubtotalFlow, RecordQueries]:
    """
    Factory function to create all application components.

    Args:
        store: Record store to use. Defaults to a fresh in-memory store.
        identity: Identity provider. Defaults to an unauthenticated
                  StaticIdentityProvider; call set_principal() on it.

    Returns:
        (breakdown_flow, project_flow, subtotal_flow, queries)
    """
    store = store or InMemoryRecordStore()
    identity = identity or StaticIdentityProvider()
    audit_logger = ActivityLogger(store)

    breakdown_flow = BreakdownMutationFlow(
        store,
        identity,
        audit_logger=audit_logger,
        recalculation=RecalculationService(store),
    )
    project_flow = ProjectMutationFlow(store, identity, audit_logger=audit_logger)
    subtotal_flow = SubtotalFlow(store, identity)
    queries = RecordQueries(store, identity)

    return breakdown_flow, project_flow, subtotal_flow, queries
