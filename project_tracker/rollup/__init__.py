"""Project rollup package."""

from project_tracker.rollup.service import RecalculationService

__all__ = ["RecalculationService"]
