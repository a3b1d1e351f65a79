"""
Core Data Models for Project Tracker

These models define the schemas for data entering and leaving the core.
Records themselves live in the store as plain dicts; the models here:
1. Validate caller input before anything is written
2. Describe the results returned by the orchestrator and services
3. Keep field names in one place for the store collections

DESIGN DECISION: Project rollup fields (completed/delayed/on-track counters)
are deliberately absent from ProjectCreate and ProjectUpdate. They are only
ever written by the recalculation service.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# COLLECTIONS
# =============================================================================

BREAKDOWNS = "govt_project_breakdowns"
PROJECTS = "projects"
AGGREGATIONS = "aggregations"
ACTIVITIES = "activities"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class BreakdownStatus(str, Enum):
    """
    Status of a breakdown line item.

    Each value maps to exactly one rollup counter on the parent project.
    """
    COMPLETED = "completed"
    DELAYED = "delayed"
    ONGOING = "ongoing"


class ProjectStatus(str, Enum):
    """Status of a project."""
    DONE = "done"
    PENDING = "pending"
    ONGOING = "ongoing"


class RollupStatus(str, Enum):
    """
    Whether the parents touched by a mutation are known to be in sync.

    STALE means the child was saved but at least one parent recalculation
    failed; a later recalculation restores consistency.
    """
    CONSISTENT = "consistent"
    STALE = "stale"


# =============================================================================
# IDENTITY
# =============================================================================

class Principal(BaseModel):
    """The authenticated caller, as returned by the identity provider."""

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


# =============================================================================
# BREAKDOWN (CHILD) INPUT
# =============================================================================

class BreakdownCreate(BaseModel):
    """
    Fields accepted when creating a breakdown.

    Only project_name and implementing_office are mandatory; everything
    else mirrors the optional columns of the source spreadsheets.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", use_enum_values=True)

    project_name: str = Field(..., min_length=1, max_length=300)
    implementing_office: str = Field(..., min_length=1, max_length=200)
    project_id: Optional[str] = Field(
        default=None,
        description="Parent project this breakdown rolls up into"
    )
    project_title: Optional[str] = None

    # Location
    municipality: Optional[str] = None
    barangay: Optional[str] = None
    district: Optional[str] = None

    # Financial
    allocated_budget: Optional[float] = Field(default=None, ge=0)
    obligated_budget: Optional[float] = Field(default=None, ge=0)
    budget_utilized: Optional[float] = Field(default=None, ge=0)
    balance: Optional[float] = None
    utilization_rate: Optional[float] = Field(default=None, ge=0)
    project_accomplishment: Optional[float] = Field(default=None, ge=0)

    # Status and schedule
    status: Optional[BreakdownStatus] = None
    date_started: Optional[datetime] = None
    target_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None

    # Metadata
    remarks: Optional[str] = None
    report_date: Optional[datetime] = None
    batch_id: Optional[str] = None
    fund_source: Optional[str] = None


class BreakdownUpdate(BaseModel):
    """
    Fields accepted when updating a breakdown.

    Only the keys the caller actually sends are applied. Sending a key with
    None clears that field (including project_id, which unlinks the parent).
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", use_enum_values=True)

    project_name: Optional[str] = Field(default=None, min_length=1, max_length=300)
    implementing_office: Optional[str] = Field(default=None, min_length=1, max_length=200)
    project_id: Optional[str] = None
    project_title: Optional[str] = None
    municipality: Optional[str] = None
    barangay: Optional[str] = None
    district: Optional[str] = None
    allocated_budget: Optional[float] = Field(default=None, ge=0)
    obligated_budget: Optional[float] = Field(default=None, ge=0)
    budget_utilized: Optional[float] = Field(default=None, ge=0)
    balance: Optional[float] = None
    utilization_rate: Optional[float] = Field(default=None, ge=0)
    project_accomplishment: Optional[float] = Field(default=None, ge=0)
    status: Optional[BreakdownStatus] = None
    date_started: Optional[datetime] = None
    target_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    remarks: Optional[str] = None
    report_date: Optional[datetime] = None
    fund_source: Optional[str] = None

    @field_validator("project_name", "implementing_office")
    @classmethod
    def required_fields_not_cleared(cls, v):
        if v is None:
            raise ValueError("Field is required and cannot be cleared")
        return v


class BreakdownFilter(BaseModel):
    """
    Read-side filter for breakdown listings.

    Name, office and municipality match case-insensitive substrings;
    status matches exactly.
    """
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    implementing_office: Optional[str] = None
    municipality: Optional[str] = None
    status: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


# =============================================================================
# PROJECT (PARENT) INPUT
# =============================================================================

class ProjectCreate(BaseModel):
    """Fields accepted when creating a project. Rollup counters start at 0."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", use_enum_values=True)

    project_name: str = Field(..., min_length=1, max_length=300)
    implementing_office: str = Field(..., min_length=1, max_length=200)
    total_budget_allocated: float = Field(default=0.0, ge=0)
    obligated_budget: Optional[float] = Field(default=None, ge=0)
    total_budget_utilized: float = Field(default=0.0, ge=0)
    utilization_rate: float = Field(default=0.0, ge=0)
    status: Optional[ProjectStatus] = None
    target_date_completion: Optional[datetime] = None
    project_manager_id: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1900, le=2200)


class ProjectUpdate(BaseModel):
    """Fields accepted when updating a project. Rollup counters are rejected."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", use_enum_values=True)

    project_name: Optional[str] = Field(default=None, min_length=1, max_length=300)
    implementing_office: Optional[str] = Field(default=None, min_length=1, max_length=200)
    total_budget_allocated: Optional[float] = Field(default=None, ge=0)
    obligated_budget: Optional[float] = Field(default=None, ge=0)
    total_budget_utilized: Optional[float] = Field(default=None, ge=0)
    utilization_rate: Optional[float] = Field(default=None, ge=0)
    status: Optional[ProjectStatus] = None
    target_date_completion: Optional[datetime] = None
    project_manager_id: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1900, le=2200)

    @field_validator("project_name", "implementing_office")
    @classmethod
    def required_fields_not_cleared(cls, v):
        if v is None:
            raise ValueError("Field is required and cannot be cleared")
        return v


# =============================================================================
# RESULTS
# =============================================================================

class RecalculationResult(BaseModel):
    """Outcome of re-deriving one project's rollup from its children."""

    project_id: str
    child_count: int = Field(ge=0)
    completed: int = Field(ge=0)
    delayed: int = Field(ge=0)
    on_track: int = Field(ge=0)

    # Children whose status is missing or not one of the three buckets
    unrecognized: int = Field(default=0, ge=0)

    # Only populated when financial totals are rolled up
    total_budget_allocated: Optional[float] = None
    obligated_budget: Optional[float] = None
    total_budget_utilized: Optional[float] = None
    utilization_rate: Optional[float] = None

    @property
    def counters(self) -> tuple[int, int, int]:
        return self.completed, self.delayed, self.on_track


class RecalculationBatch(BaseModel):
    """
    Outcome of recalculating several projects.

    Every id ends up either in `results` or in `failures`.
    """
    results: list[RecalculationResult] = Field(default_factory=list)
    failures: dict[str, str] = Field(
        default_factory=dict,
        description="project_id -> error message"
    )

    @property
    def failed_ids(self) -> list[str]:
        return list(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures


class MutationResult(BaseModel):
    """Result of a single breakdown create/update/delete."""

    breakdown_id: str
    affected_project_ids: list[str] = Field(default_factory=list)
    recalculations: list[RecalculationResult] = Field(default_factory=list)
    failed_project_ids: list[str] = Field(default_factory=list)
    rollup_status: RollupStatus = RollupStatus.CONSISTENT


class BulkMutationResult(BaseModel):
    """Result of a bulk breakdown operation."""

    count: int = Field(ge=0)
    ids: list[str] = Field(default_factory=list)
    skipped_ids: list[str] = Field(
        default_factory=list,
        description="Ids that no longer existed and were skipped"
    )
    batch_id: str
    affected_projects: int = Field(ge=0)
    recalculations: list[RecalculationResult] = Field(default_factory=list)
    failed_project_ids: list[str] = Field(default_factory=list)
    rollup_status: RollupStatus = RollupStatus.CONSISTENT
