"""Grouped aggregation package."""

from project_tracker.aggregation.configs import (
    AggregationConfigBuilder,
    breakdown_subtotal_config,
)
from project_tracker.aggregation.engine import (
    AggregationEngine,
    compute_aggregate,
    partition_by_group,
)

__all__ = [
    "AggregationConfigBuilder",
    "AggregationEngine",
    "breakdown_subtotal_config",
    "compute_aggregate",
    "partition_by_group",
]
