"""
Data Models Package

This package contains the Pydantic models used by the Project Tracker core.
Input flowing into the orchestrator must conform to these schemas.
"""

from project_tracker.models.records import (
    ACTIVITIES,
    AGGREGATIONS,
    BREAKDOWNS,
    PROJECTS,
    BreakdownCreate,
    BreakdownFilter,
    BreakdownStatus,
    BreakdownUpdate,
    BulkMutationResult,
    MutationResult,
    Principal,
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    RecalculationBatch,
    RecalculationResult,
    RollupStatus,
)
from project_tracker.models.aggregation import (
    AggregateField,
    AggregateFunction,
    AggregationConfig,
    AggregationOutcome,
)
from project_tracker.models.activity import (
    ActivityAction,
    ActivityLogRequest,
    ActivityRecord,
    ActivityRequestBuilder,
    ActivitySource,
)

__all__ = [
    # Collections
    "ACTIVITIES",
    "AGGREGATIONS",
    "BREAKDOWNS",
    "PROJECTS",
    # Record models
    "BreakdownCreate",
    "BreakdownFilter",
    "BreakdownStatus",
    "BreakdownUpdate",
    "BulkMutationResult",
    "MutationResult",
    "Principal",
    "ProjectCreate",
    "ProjectStatus",
    "ProjectUpdate",
    "RecalculationBatch",
    "RecalculationResult",
    "RollupStatus",
    # Aggregation models
    "AggregateField",
    "AggregateFunction",
    "AggregationConfig",
    "AggregationOutcome",
    # Activity models
    "ActivityAction",
    "ActivityLogRequest",
    "ActivityRecord",
    "ActivityRequestBuilder",
    "ActivitySource",
]
