"""
Project Rollup Recalculation

DESIGN DECISION: A project's counters are never incremented or
decremented. Every recalculation reads ALL of the project's breakdowns and
re-derives the counters from scratch. That makes recalculation:
1. Idempotent - running it twice gives the same answer
2. Safe to repeat concurrently - last writer wins, and every writer is right
3. The recovery path for any partial failure - just run it again

MAPPING:
- "completed" status -> project_completed
- "delayed" status   -> project_delayed
- "ongoing" status   -> projects_on_track
Missing or unrecognized statuses count toward no bucket.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from project_tracker.config import get_settings
from project_tracker.errors import NotFoundError
from project_tracker.models.records import (
    BREAKDOWNS,
    PROJECTS,
    BreakdownStatus,
    RecalculationBatch,
    RecalculationResult,
)
from project_tracker.services.storage import (
    Record,
    RecordStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


def count_statuses(breakdowns: list[Record]) -> dict[str, int]:
    """Exhaustive three-way count, plus the number left out."""
    counts = {"completed": 0, "delayed": 0, "on_track": 0, "unrecognized": 0}
    for breakdown in breakdowns:
        status = breakdown.get("status")
        if status == BreakdownStatus.COMPLETED.value:
            counts["completed"] += 1
        elif status == BreakdownStatus.DELAYED.value:
            counts["delayed"] += 1
        elif status == BreakdownStatus.ONGOING.value:
            counts["on_track"] += 1
        else:
            counts["unrecognized"] += 1
    return counts


def sum_financials(breakdowns: list[Record]) -> dict[str, float]:
    """Budget totals of a project derived from its breakdowns."""

    def total(field: str) -> float:
        return sum(
            float(b[field]) for b in breakdowns
            if isinstance(b.get(field), (int, float)) and not isinstance(b.get(field), bool)
        )

    allocated = total("allocated_budget")
    utilized = total("budget_utilized")
    return {
        "total_budget_allocated": allocated,
        "obligated_budget": total("obligated_budget"),
        "total_budget_utilized": utilized,
        "utilization_rate": (utilized / allocated * 100) if allocated > 0 else 0.0,
    }


class RecalculationService:
    """
    Re-derives project rollups from breakdowns.

    Usage:
        service = RecalculationService(store)
        result = await service.recalc(project_id, updated_by=user.id)
        batch = await service.recalc_many(project_ids, updated_by=user.id)
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        include_financial_totals: Optional[bool] = None,
        retry_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
    ):
        settings = get_settings().rollup
        self._store = store
        self._include_financials = (
            settings.include_financial_totals
            if include_financial_totals is None
            else include_financial_totals
        )
        self._retry_attempts = retry_attempts or settings.retry_attempts
        self._retry_wait = (
            settings.retry_wait_seconds
            if retry_wait_seconds is None
            else retry_wait_seconds
        )

    async def recalc(self, project_id: str, updated_by: str) -> RecalculationResult:
        """
        Recalculate one project's rollup from all of its breakdowns.

        Always writes the project (updated_at/updated_by are touched even
        when no counter changes). With no breakdowns, the counters are
        explicitly reset to 0.

        Raises:
            NotFoundError: If the project doesn't exist
            StorageError: On store failure
        """
        project = await self._store.get(project_id, PROJECTS)
        if project is None:
            raise NotFoundError("Project", project_id)

        breakdowns = await (
            self._store.query(BREAKDOWNS)
            .with_index("project_id", project_id=project_id)
            .collect()
        )

        counts = count_statuses(breakdowns)
        fields = {
            "project_completed": counts["completed"],
            "project_delayed": counts["delayed"],
            "projects_on_track": counts["on_track"],
            "updated_at": datetime.now(timezone.utc),
            "updated_by": updated_by,
        }

        financials = {}
        if self._include_financials:
            financials = sum_financials(breakdowns)
            fields.update(financials)

        await self._store.patch(project_id, fields)

        if counts["unrecognized"]:
            logger.warning(
                "recalc_unrecognized_status",
                project_id=project_id,
                unrecognized=counts["unrecognized"],
            )

        logger.info(
            "project_recalculated",
            project_id=project_id,
            child_count=len(breakdowns),
            completed=counts["completed"],
            delayed=counts["delayed"],
            on_track=counts["on_track"],
        )

        return RecalculationResult(
            project_id=project_id,
            child_count=len(breakdowns),
            **counts,
            **financials,
        )

    async def recalc_many(
        self,
        project_ids: Iterable[str],
        updated_by: str,
    ) -> RecalculationBatch:
        """
        Recalculate several projects, each independently.

        Transient store failures are retried (recalculation is idempotent).
        A project that still fails is recorded in `failures` and the rest
        carry on.
        """
        batch = RecalculationBatch()

        for project_id in project_ids:
            try:
                result = await self._recalc_with_retry(project_id, updated_by)
            except Exception as e:
                logger.error(
                    "recalc_failed",
                    project_id=project_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                batch.failures[project_id] = str(e)
                continue
            batch.results.append(result)

        return batch

    async def recalc_all(self, updated_by: str) -> RecalculationBatch:
        """
        Recalculate every project in the store.

        Potentially expensive; cost grows with total breakdown count.
        """
        projects = await self._store.query(PROJECTS).collect()
        logger.info("recalc_all_started", project_count=len(projects))
        return await self.recalc_many([p["id"] for p in projects], updated_by)

    async def _recalc_with_retry(
        self,
        project_id: str,
        updated_by: str,
    ) -> RecalculationResult:
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        ):
            with attempt:
                result = await self.recalc(project_id, updated_by)
        return result
