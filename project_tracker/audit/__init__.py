"""Activity logging package."""

from project_tracker.audit.logger import (
    BREAKDOWN_ENTITY,
    PARTICULAR_ENTITY,
    PROJECT_ENTITY,
    PROFILES,
    ActivityLogger,
    ActivityProfile,
    SummaryRule,
    compute_changed_fields,
    configure_logging,
    create_batch_id,
    get_profile,
    summarize_changes,
)

__all__ = [
    "BREAKDOWN_ENTITY",
    "PARTICULAR_ENTITY",
    "PROJECT_ENTITY",
    "PROFILES",
    "ActivityLogger",
    "ActivityProfile",
    "SummaryRule",
    "compute_changed_fields",
    "configure_logging",
    "create_batch_id",
    "get_profile",
    "summarize_changes",
]
