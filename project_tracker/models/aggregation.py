"""
Aggregation Models

An AggregationConfig is a declarative description of one grouped
computation: which fields form the group key, which functions run over
which source fields, and how the result is labelled. One generic engine
consumes it for any entity type.

Persisted results are keyed by (entity_type, aggregation_type, key1..key5)
and store up to ten positional values (value1..value10).
"""

from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


MAX_GROUP_FIELDS = 5
MAX_VALUE_SLOTS = 10

VALUE_SLOTS = tuple(f"value{i}" for i in range(1, MAX_VALUE_SLOTS + 1))


def grouping_key_name(index: int) -> str:
    """Name of the grouping key slot for the field at `index` (0-based)."""
    return f"key{index + 1}"


class AggregateFunction(str, Enum):
    """Supported aggregate functions."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class AggregateField(BaseModel):
    """One aggregate computation: function(source_field) -> target slot."""

    source_field: str = Field(..., min_length=1)
    function: AggregateFunction
    target_key: str = Field(
        ...,
        description="Positional slot, value1..value10"
    )

    @field_validator("target_key")
    @classmethod
    def validate_target_key(cls, v: str) -> str:
        if v not in VALUE_SLOTS:
            raise ValueError(f"Target key must be one of value1..value{MAX_VALUE_SLOTS}, got {v}")
        return v

    @property
    def named_key(self) -> str:
        """Key used in the named aggregation map, e.g. sum_allocated_budget."""
        return f"{self.function.value}_{self.source_field}"


class AggregationConfig(BaseModel):
    """
    Declarative configuration for one grouped aggregation.

    Build these with AggregationConfigBuilder or a per-entity factory
    rather than by subclassing.
    """

    entity_type: str = Field(..., min_length=1)
    aggregation_type: str = Field(..., min_length=1)
    group_by_fields: list[str] = Field(
        default_factory=list,
        max_length=MAX_GROUP_FIELDS
    )
    aggregate_fields: list[AggregateField] = Field(
        default_factory=list,
        max_length=MAX_VALUE_SLOTS
    )
    label_template: Optional[Callable[[dict[str, Any]], str]] = Field(
        default=None,
        description="Builds the display label from {field: group value}"
    )
    hierarchy_level: Optional[int] = Field(default=None, ge=1)
    parent_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_unique_targets(self) -> "AggregationConfig":
        targets = [f.target_key for f in self.aggregate_fields]
        if len(targets) != len(set(targets)):
            raise ValueError("Each aggregate field needs its own target slot")
        return self


class AggregationOutcome(BaseModel):
    """What one aggregate() call did to the store."""

    aggregation_id: str
    created: bool = False
    updated: bool = False
