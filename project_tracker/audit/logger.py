"""
Activity Logger

DESIGN DECISION: Every mutation of a breakdown or project leaves an
activity record behind. This provides:
1. Who changed what, and when
2. A field-level diff for updates, with human-readable change flags
3. Correlation of bulk operations through a shared batch id

The activity logger:
- Never fails the mutation it is recording (errors are logged and swallowed)
- Retries transient store failures before giving up
- Snapshots the actor's identity at write time
"""

import json
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from project_tracker.config import get_settings
from project_tracker.models.activity import (
    ActivityAction,
    ActivityLogRequest,
    ActivityRecord,
    ActivitySource,
)
from project_tracker.models.records import ACTIVITIES, Principal
from project_tracker.services.storage import RecordStoreInterface, StorageError


def configure_logging(json_logs: bool = True) -> None:
    """Configure structlog once for the whole package."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().audit.log_json)


# Never part of a diff
SYSTEM_FIELDS = frozenset({
    "id",
    "creation_time",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
})

DIFFED_ACTIONS = (ActivityAction.UPDATED, ActivityAction.BULK_UPDATED)

BREAKDOWN_ENTITY = "breakdown"
PROJECT_ENTITY = "project"
PARTICULAR_ENTITY = "particular"


# =============================================================================
# CHANGE PROFILES
# =============================================================================

class SummaryRule(BaseModel):
    """
    Raises `flag` in the change summary when any of `source_fields` changed.

    If `old_key`/`new_key` are set, the previous and new value of the first
    field are copied into the summary too (through `display` if given).
    """
    model_config = ConfigDict(frozen=True)

    source_fields: tuple[str, ...]
    flag: str
    old_key: Optional[str] = None
    new_key: Optional[str] = None
    display: Optional[Callable[[Any], Any]] = None


class ActivityProfile(BaseModel):
    """How one entity type is diffed and summarized."""
    model_config = ConfigDict(frozen=True)

    entity_type: str
    excluded_fields: frozenset[str] = frozenset()
    rules: tuple[SummaryRule, ...] = ()


def _active_label(value: Any) -> str:
    return "active" if value else "inactive"


PROFILES: dict[str, ActivityProfile] = {
    BREAKDOWN_ENTITY: ActivityProfile(
        entity_type=BREAKDOWN_ENTITY,
        rules=(
            SummaryRule(source_fields=("allocated_budget",), flag="budget_changed",
                        old_key="old_budget", new_key="new_budget"),
            SummaryRule(source_fields=("status",), flag="status_changed",
                        old_key="old_status", new_key="new_status"),
            SummaryRule(source_fields=("date_started", "target_date", "completion_date"),
                        flag="schedule_changed"),
            SummaryRule(source_fields=("project_id",), flag="parent_changed"),
            SummaryRule(source_fields=("implementing_office",), flag="office_changed"),
        ),
    ),
    PROJECT_ENTITY: ActivityProfile(
        entity_type=PROJECT_ENTITY,
        rules=(
            SummaryRule(source_fields=("total_budget_allocated",), flag="budget_changed",
                        old_key="old_budget", new_key="new_budget"),
            SummaryRule(source_fields=("target_date_completion",), flag="schedule_changed"),
            SummaryRule(source_fields=("project_manager_id",), flag="manager_changed"),
            SummaryRule(source_fields=("status",), flag="status_changed"),
            SummaryRule(source_fields=("category_id",), flag="category_changed"),
        ),
    ),
    PARTICULAR_ENTITY: ActivityProfile(
        entity_type=PARTICULAR_ENTITY,
        excluded_fields=frozenset({"usage_count", "project_usage_count"}),
        rules=(
            SummaryRule(source_fields=("is_active",), flag="status_changed",
                        old_key="old_status", new_key="new_status",
                        display=_active_label),
            SummaryRule(source_fields=("display_order",), flag="order_changed"),
        ),
    ),
}


def get_profile(entity_type: str) -> ActivityProfile:
    """Profile for an entity type; unknown types get a plain diff."""
    return PROFILES.get(entity_type) or ActivityProfile(entity_type=entity_type)


# =============================================================================
# DIFFING
# =============================================================================

def serialize_value(value: Any) -> str:
    """Canonical JSON form used to compare two field values."""
    return json.dumps(value, sort_keys=True, default=str)


def compute_changed_fields(
    previous: dict[str, Any],
    new: dict[str, Any],
    excluded: Iterable[str] = (),
) -> list[str]:
    """
    Fields whose serialized value differs between two snapshots.

    A key present on one side only counts as changed. Order follows the
    previous snapshot, then keys that only exist in the new one.
    """
    skip = SYSTEM_FIELDS | set(excluded)
    keys = list(previous) + [key for key in new if key not in previous]

    return [
        key for key in keys
        if key not in skip
        and serialize_value(previous.get(key)) != serialize_value(new.get(key))
    ]


def summarize_changes(
    profile: ActivityProfile,
    changed_fields: list[str],
    previous: dict[str, Any],
    new: dict[str, Any],
) -> dict[str, Any]:
    """Change flags for the fields that actually changed."""
    changed = set(changed_fields)
    summary: dict[str, Any] = {}

    for rule in profile.rules:
        hit = [field for field in rule.source_fields if field in changed]
        if not hit:
            continue
        summary[rule.flag] = True
        if rule.old_key and rule.new_key:
            field = hit[0]
            old_value, new_value = previous.get(field), new.get(field)
            if rule.display:
                old_value, new_value = rule.display(old_value), rule.display(new_value)
            summary[rule.old_key] = old_value
            summary[rule.new_key] = new_value

    return summary


# =============================================================================
# LOGGER
# =============================================================================

class ActivityLogger:
    """
    Writes activity records for entity mutations.

    Logs both to:
    1. Structured local log (for debugging)
    2. The activities collection (for persistence and history views)
    """

    def __init__(
        self,
        store: Optional[RecordStoreInterface] = None,
        retry_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
    ):
        """
        Initialize activity logger.

        Args:
            store: Record store for persistence.
                   If None, only logs locally.
        """
        settings = get_settings().audit
        self._store = store
        self._retry_attempts = retry_attempts or settings.retry_attempts
        self._retry_wait = (
            settings.retry_wait_seconds
            if retry_wait_seconds is None
            else retry_wait_seconds
        )
        self._logger = structlog.get_logger(__name__)

    def build_record(
        self,
        actor: Optional[Principal],
        request: ActivityLogRequest,
    ) -> ActivityRecord:
        """
        Turn a request into the record that will be written.

        Raises:
            ValueError: If there is no actor to attribute the activity to
        """
        if actor is None:
            raise ValueError("No actor to attribute activity to")

        changed_fields = None
        change_summary = None
        if (
            request.action in DIFFED_ACTIONS
            and request.previous_values is not None
            and request.new_values is not None
        ):
            profile = get_profile(request.entity_type)
            changed_fields = compute_changed_fields(
                request.previous_values,
                request.new_values,
                profile.excluded_fields,
            )
            change_summary = summarize_changes(
                profile,
                changed_fields,
                request.previous_values,
                request.new_values,
            )

        return ActivityRecord(
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            action=request.action,
            snapshot=request.effective_snapshot,
            previous_values=request.previous_values,
            new_values=request.new_values,
            changed_fields=changed_fields,
            change_summary=change_summary,
            performed_by=actor.id,
            performed_by_name=actor.name or "Unknown",
            performed_by_email=actor.email or "",
            performed_by_role=actor.role or "user",
            reason=request.reason,
            source=request.source,
            batch_id=request.batch_id,
        )

    async def log(
        self,
        actor: Optional[Principal],
        request: ActivityLogRequest,
    ) -> Optional[str]:
        """
        Record one activity.

        Always logs locally. Persists to the store if available.

        Returns the stored record id, or None if nothing was persisted.
        Never raises.
        """
        try:
            record = self.build_record(actor, request)
            self._logger.info("activity_recorded", **record.to_log_dict())

            if self._store is None:
                return None
            return await self._persist(record)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "activity_log_failed",
                error=str(e),
                error_type=type(e).__name__,
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                action=request.action.value,
            )
            return None

    async def log_bulk(
        self,
        actor: Optional[Principal],
        requests: list[ActivityLogRequest],
        reason: Optional[str] = None,
        source: ActivitySource = ActivitySource.BULK_IMPORT,
        batch_id: Optional[str] = None,
    ) -> str:
        """
        Record one activity per request, all under a shared batch id.

        `reason` and `source` apply to every item; an item's own reason
        wins if it has one. Returns the batch id.
        """
        batch_id = batch_id or create_batch_id()

        for request in requests:
            await self.log(actor, request.model_copy(update={
                "batch_id": batch_id,
                "reason": request.reason or reason,
                "source": source,
            }))

        self._logger.info(
            "activity_batch_recorded",
            batch_id=batch_id,
            count=len(requests),
        )
        return batch_id

    async def _persist(self, record: ActivityRecord) -> str:
        activity_id = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        ):
            with attempt:
                activity_id = await self._store.insert(
                    ACTIVITIES, record.to_store_fields()
                )
        return activity_id


def create_batch_id() -> str:
    """
    Create a new batch id for correlating the records of one bulk action.

    Use this at the start of a bulk operation and pass it to every record.
    """
    return str(uuid4())
