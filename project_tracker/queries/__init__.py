"""Read-side query package."""

from project_tracker.queries.executor import RecordQueries

__all__ = ["RecordQueries"]
