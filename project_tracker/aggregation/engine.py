"""
Generic Aggregation Engine

DESIGN DECISION: One engine, any entity. The engine knows nothing about
breakdowns or projects; everything entity-specific comes in through an
AggregationConfig.

Contract:
- Input items must already share their group-by values. The group key is
  read from the first item only; partitioning a mixed list is the caller's
  job (see partition_by_group).
- Exactly one store write per call: patch the record with the same
  (entity_type, aggregation_type, key1..keyN), or insert a new one.
- Creation metadata of an existing record is never overwritten.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog

from project_tracker.errors import EmptyInputError
from project_tracker.models.aggregation import (
    AggregateField,
    AggregateFunction,
    AggregationConfig,
    AggregationOutcome,
    grouping_key_name,
)
from project_tracker.models.records import AGGREGATIONS
from project_tracker.services.storage import Record, RecordStoreInterface


logger = structlog.get_logger(__name__)


def _is_number(value: Any) -> bool:
    """Numbers count; bools and NaN don't."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, Decimal)):
        return True
    return isinstance(value, float) and not math.isnan(value)


def compute_aggregate(items: list[Record], field: AggregateField) -> Optional[float]:
    """
    Run one aggregate function over `items`.

    Returns None when the result is undefined (avg/min/max with no numeric
    values). sum treats non-numeric values as 0; count counts every
    non-null value regardless of type.
    """
    raw = [item.get(field.source_field) for item in items]
    numbers = [float(v) for v in raw if _is_number(v)]

    if field.function == AggregateFunction.SUM:
        return sum(numbers) if numbers else 0.0
    if field.function == AggregateFunction.COUNT:
        return sum(1 for v in raw if v is not None)
    if not numbers:
        return None
    if field.function == AggregateFunction.AVG:
        return sum(numbers) / len(numbers)
    if field.function == AggregateFunction.MIN:
        return min(numbers)
    return max(numbers)


def partition_by_group(
    items: Iterable[Record],
    group_by_fields: list[str],
) -> list[list[Record]]:
    """
    Split a mixed list into groups sharing all group-by values.

    Groups come back in first-seen order, items in input order.
    """
    groups: dict[tuple, list[Record]] = {}
    for item in items:
        key = tuple(item.get(field) for field in group_by_fields)
        groups.setdefault(key, []).append(item)
    return list(groups.values())


class AggregationEngine:
    """
    Computes and persists grouped aggregates.

    Usage:
        engine = AggregationEngine(store)
        outcome = await engine.aggregate(rows, breakdown_subtotal_config(), user.id)
    """

    def __init__(self, store: RecordStoreInterface):
        self._store = store

    async def aggregate(
        self,
        items: list[Record],
        config: AggregationConfig,
        actor_id: str,
    ) -> AggregationOutcome:
        """
        Aggregate one homogeneous group and upsert its AggregationRecord.

        Raises:
            EmptyInputError: If items is empty
        """
        if not items:
            raise EmptyInputError(config.entity_type)

        now = datetime.now(timezone.utc)
        first = items[0]

        grouping_keys = {
            grouping_key_name(i): first.get(field)
            for i, field in enumerate(config.group_by_fields)
        }

        aggregated_values: dict[str, Optional[float]] = {}
        named_aggregations: dict[str, float] = {}
        for field in config.aggregate_fields:
            result = compute_aggregate(items, field)
            aggregated_values[field.target_key] = result
            if result is not None:
                named_aggregations[field.named_key] = result

        if config.label_template:
            display_label = config.label_template(
                {field: first.get(field) for field in config.group_by_fields}
            )
        else:
            display_label = f"{config.entity_type} {config.aggregation_type}"

        existing = await self._find_existing(config, grouping_keys)

        if existing:
            await self._store.patch(existing["id"], {
                "aggregated_values": aggregated_values,
                "named_aggregations": named_aggregations,
                "display_label": display_label,
                "row_count": len(items),
                "updated_at": now,
                "updated_by": actor_id,
            })
            logger.info(
                "aggregation_updated",
                aggregation_id=existing["id"],
                entity_type=config.entity_type,
                aggregation_type=config.aggregation_type,
                row_count=len(items),
            )
            return AggregationOutcome(aggregation_id=existing["id"], updated=True)

        aggregation_id = await self._store.insert(AGGREGATIONS, {
            "entity_type": config.entity_type,
            "aggregation_type": config.aggregation_type,
            "grouping_keys": grouping_keys,
            "aggregated_values": aggregated_values,
            "named_aggregations": named_aggregations,
            "display_label": display_label,
            "row_count": len(items),
            "hierarchy_level": config.hierarchy_level,
            "parent_id": config.parent_id,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(
            "aggregation_created",
            aggregation_id=aggregation_id,
            entity_type=config.entity_type,
            aggregation_type=config.aggregation_type,
            row_count=len(items),
        )
        return AggregationOutcome(aggregation_id=aggregation_id, created=True)

    async def _find_existing(
        self,
        config: AggregationConfig,
        grouping_keys: dict[str, Any],
    ) -> Optional[Record]:
        """Exact match on entity type, aggregation type and the full key set."""

        def same_group(record: Record) -> bool:
            stored = record.get("grouping_keys") or {}
            return len(stored) == len(grouping_keys) and all(
                stored.get(key) == value for key, value in grouping_keys.items()
            )

        return await (
            self._store.query(AGGREGATIONS)
            .with_index(
                "entity_type_and_aggregation_type",
                entity_type=config.entity_type,
                aggregation_type=config.aggregation_type,
            )
            .filter(same_group)
            .first()
        )
