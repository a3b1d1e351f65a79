"""
Activity Models for Project Tracker

Every mutation of a breakdown or project produces an activity record.
This provides:
1. Traceability of who changed what, and when
2. A field-level diff for updates
3. Correlation of bulk operations through a shared batch id

DESIGN DECISION: Activity records are append-only. We never update or
delete them, and the actor's name/email/role are copied in at write time
so later profile changes do not rewrite history.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ActivityAction(str, Enum):
    """Kinds of activity we record."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    BULK_CREATED = "bulk_created"
    BULK_UPDATED = "bulk_updated"
    BULK_DELETED = "bulk_deleted"
    VIEWED = "viewed"
    EXPORTED = "exported"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"


class ActivitySource(str, Enum):
    """Where a mutation came from."""
    WEB_UI = "web_ui"
    BULK_IMPORT = "bulk_import"
    SYSTEM = "system"


class ActivityLogRequest(BaseModel):
    """
    Input to ActivityLogger.log().

    `snapshot` is the entity as it should be displayed in the log. When it
    is omitted, the new values (or else the previous values) are used.
    """

    entity_type: str = Field(..., min_length=1)
    entity_id: Optional[str] = None
    action: ActivityAction
    snapshot: Optional[dict[str, Any]] = None
    previous_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    source: ActivitySource = ActivitySource.WEB_UI
    batch_id: Optional[str] = None

    @property
    def effective_snapshot(self) -> dict[str, Any]:
        return self.snapshot or self.new_values or self.previous_values or {}


class ActivityRecord(BaseModel):
    """
    A single immutable activity entry.

    Built by the logger, written once, never modified.
    """

    entity_type: str
    entity_id: Optional[str] = None
    action: ActivityAction
    snapshot: dict[str, Any] = Field(default_factory=dict)
    previous_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None

    # Diff (only for updates with both snapshots)
    changed_fields: Optional[list[str]] = None
    change_summary: Optional[dict[str, Any]] = None

    # Actor, as resolved when the record was written
    performed_by: str
    performed_by_name: str = "Unknown"
    performed_by_email: str = ""
    performed_by_role: str = "user"

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    reason: Optional[str] = None
    source: ActivitySource = ActivitySource.WEB_UI
    batch_id: Optional[str] = None

    def to_store_fields(self) -> dict[str, Any]:
        """Fields to insert into the activities collection."""
        return self.model_dump(mode="python")

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Snapshots are left out; they can be large and are in the store.
        """
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action.value,
            "changed_fields": self.changed_fields,
            "change_summary": self.change_summary,
            "performed_by": self.performed_by,
            "performed_by_role": self.performed_by_role,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "source": self.source.value,
            "batch_id": self.batch_id,
        }


class ActivityRequestBuilder:
    """
    Helper class to build log requests with common patterns.

    Usage:
        request = ActivityRequestBuilder.created("breakdown", breakdown_id, doc)
        request = ActivityRequestBuilder.updated("project", project_id, before, after)
    """

    @staticmethod
    def created(
        entity_type: str,
        entity_id: str,
        record: dict[str, Any],
        reason: Optional[str] = None,
    ) -> ActivityLogRequest:
        return ActivityLogRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            action=ActivityAction.CREATED,
            snapshot=record,
            new_values=record,
            reason=reason,
        )

    @staticmethod
    def updated(
        entity_type: str,
        entity_id: str,
        previous: dict[str, Any],
        current: dict[str, Any],
        reason: Optional[str] = None,
    ) -> ActivityLogRequest:
        return ActivityLogRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            action=ActivityAction.UPDATED,
            snapshot=current,
            previous_values=previous,
            new_values=current,
            reason=reason,
        )

    @staticmethod
    def deleted(
        entity_type: str,
        entity_id: str,
        previous: dict[str, Any],
        reason: Optional[str] = None,
    ) -> ActivityLogRequest:
        return ActivityLogRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            action=ActivityAction.DELETED,
            previous_values=previous,
            reason=reason,
        )

    @staticmethod
    def viewed(
        entity_type: str,
        entity_id: str,
        record: dict[str, Any],
    ) -> ActivityLogRequest:
        return ActivityLogRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            action=ActivityAction.VIEWED,
            snapshot=record,
        )

    @staticmethod
    def exported(
        entity_type: str,
        entity_id: str,
        record: dict[str, Any],
        export_format: Optional[str] = None,
    ) -> ActivityLogRequest:
        return ActivityLogRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            action=ActivityAction.EXPORTED,
            snapshot=record,
            reason=f"Exported as {export_format}" if export_format else None,
        )
