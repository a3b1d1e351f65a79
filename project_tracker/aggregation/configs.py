"""
Aggregation Configurations

Per-entity factories build AggregationConfig values with the builder
below. Adding a new subtotal means adding a factory here, not a new
engine or subclass.
"""

from typing import Any, Callable, Optional

from project_tracker.models.aggregation import (
    VALUE_SLOTS,
    AggregateField,
    AggregateFunction,
    AggregationConfig,
)
from project_tracker.models.records import BREAKDOWNS


class AggregationConfigBuilder:
    """
    Fluent builder for AggregationConfig.

    Target slots are assigned in call order (value1, value2, ...) unless
    given explicitly.

    Usage:
        config = (
            AggregationConfigBuilder("govt_project_breakdowns", "subtotal")
            .group_by("project_name", "implementing_office")
            .sum("allocated_budget")
            .avg("utilization_rate")
            .label(lambda keys: f"{keys['project_name']} (Subtotal)")
            .build()
        )
    """

    def __init__(self, entity_type: str, aggregation_type: str):
        self._entity_type = entity_type
        self._aggregation_type = aggregation_type
        self._group_by: list[str] = []
        self._fields: list[AggregateField] = []
        self._label: Optional[Callable[[dict[str, Any]], str]] = None
        self._hierarchy_level: Optional[int] = None
        self._parent_id: Optional[str] = None

    def group_by(self, *fields: str) -> "AggregationConfigBuilder":
        self._group_by.extend(fields)
        return self

    def add(
        self,
        function: AggregateFunction,
        source_field: str,
        target_key: Optional[str] = None,
    ) -> "AggregationConfigBuilder":
        if target_key is None:
            used = {f.target_key for f in self._fields}
            free = [slot for slot in VALUE_SLOTS if slot not in used]
            if not free:
                raise ValueError("All value slots are in use")
            target_key = free[0]
        self._fields.append(AggregateField(
            source_field=source_field,
            function=function,
            target_key=target_key,
        ))
        return self

    def sum(self, source_field: str, target_key: Optional[str] = None) -> "AggregationConfigBuilder":
        return self.add(AggregateFunction.SUM, source_field, target_key)

    def avg(self, source_field: str, target_key: Optional[str] = None) -> "AggregationConfigBuilder":
        return self.add(AggregateFunction.AVG, source_field, target_key)

    def min(self, source_field: str, target_key: Optional[str] = None) -> "AggregationConfigBuilder":
        return self.add(AggregateFunction.MIN, source_field, target_key)

    def max(self, source_field: str, target_key: Optional[str] = None) -> "AggregationConfigBuilder":
        return self.add(AggregateFunction.MAX, source_field, target_key)

    def count(self, source_field: str, target_key: Optional[str] = None) -> "AggregationConfigBuilder":
        return self.add(AggregateFunction.COUNT, source_field, target_key)

    def label(self, template: Callable[[dict[str, Any]], str]) -> "AggregationConfigBuilder":
        self._label = template
        return self

    def hierarchy_level(self, level: int) -> "AggregationConfigBuilder":
        self._hierarchy_level = level
        return self

    def parent(self, parent_id: str) -> "AggregationConfigBuilder":
        self._parent_id = parent_id
        return self

    def build(self) -> AggregationConfig:
        return AggregationConfig(
            entity_type=self._entity_type,
            aggregation_type=self._aggregation_type,
            group_by_fields=list(self._group_by),
            aggregate_fields=list(self._fields),
            label_template=self._label,
            hierarchy_level=self._hierarchy_level,
            parent_id=self._parent_id,
        )


def breakdown_subtotal_config() -> AggregationConfig:
    """
    Subtotal of breakdowns per (project name, implementing office).

    value1..value4: sums of allocated, obligated, utilized and balance.
    value5: average utilization rate.
    """
    return (
        AggregationConfigBuilder(BREAKDOWNS, "subtotal")
        .group_by("project_name", "implementing_office")
        .sum("allocated_budget")
        .sum("obligated_budget")
        .sum("budget_utilized")
        .sum("balance")
        .avg("utilization_rate")
        .label(lambda keys: f"{keys['project_name']} - {keys['implementing_office']} (Subtotal)")
        .hierarchy_level(1)
        .build()
    )
