"""
Domain Errors

Every failure the core surfaces to a caller is a TrackerError carrying a
stable error code, so callers can branch on `code` instead of parsing
messages.

Propagation rules:
- Authentication, authorization and not-found errors abort the operation
- Validation errors are raised before anything is written
- Activity logging errors never reach the caller (see audit.logger)
- Recalculation errors are isolated per project and reported in results
"""

from typing import Any, Optional


class ErrorCodes:
    """Stable error codes."""
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    EMPTY_INPUT = "EMPTY_INPUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class TrackerError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)


class NotAuthenticatedError(TrackerError):
    """No principal could be resolved for the current call."""

    def __init__(self):
        super().__init__("Authentication required", ErrorCodes.NOT_AUTHENTICATED)


class NotAuthorizedError(TrackerError):
    """The principal lacks the role an operation requires."""

    def __init__(self, action: Optional[str] = None):
        message = f"Not authorized to {action}" if action else "Not authorized"
        super().__init__(message, ErrorCodes.NOT_AUTHORIZED)


class NotFoundError(TrackerError):
    """A referenced record does not exist."""

    def __init__(self, resource: str, record_id: Optional[str] = None):
        super().__init__(
            f"{resource} not found",
            ErrorCodes.NOT_FOUND,
            {"id": record_id} if record_id else None,
        )
        self.resource = resource
        self.record_id = record_id


class EmptyInputError(TrackerError):
    """An aggregation was requested over zero records."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"No items found for aggregation: {entity_type}",
            ErrorCodes.EMPTY_INPUT,
        )
        self.entity_type = entity_type


class ValidationError(TrackerError):
    """Input failed schema validation. `details` holds the field errors."""

    def __init__(self, message: str, details: Optional[list[dict]] = None):
        super().__init__(message, ErrorCodes.VALIDATION_ERROR, details or [])
