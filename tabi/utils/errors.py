"""
Error taxonomy for the trip planning pipeline and the trip/itinerary stores.

Every failure is converted into an ``ErrorCategory`` at the boundary where it
originates; orchestrator state only ever holds an ``ErrorInfo``.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Failure categories surfaced to callers."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    PARSING = "parsing"
    VALIDATION = "validation"
    SERVICE = "service"
    UNKNOWN = "unknown"


NON_RETRYABLE_CATEGORIES = {ErrorCategory.CONFIGURATION, ErrorCategory.VALIDATION}


def is_retryable(category: ErrorCategory) -> bool:
    return category not in NON_RETRYABLE_CATEGORIES


_FRIENDLY_MESSAGES = {
    ErrorCategory.CONFIGURATION: "AI trip planning is not configured. Please contact support.",
    ErrorCategory.NETWORK: "Network connection problem. Please check your connection and try again.",
    ErrorCategory.PARSING: "The AI returned a response we could not understand. Please try again.",
    ErrorCategory.VALIDATION: "The trip details were not valid. Please adjust your request and try again.",
    ErrorCategory.SERVICE: "The AI service is temporarily unavailable. Please try again in a moment.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred. Please try again.",
}


def friendly_error_message(category: ErrorCategory) -> str:
    """Human-readable message for a failure category."""
    return _FRIENDLY_MESSAGES.get(category, _FRIENDLY_MESSAGES[ErrorCategory.UNKNOWN])


class TabiError(Exception):
    """Base exception for the trip planner."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    @property
    def can_retry(self) -> bool:
        return is_retryable(self.category)


class GenerationError(TabiError):
    """Raised by the generation client when the external call fails."""


class MaterializationError(TabiError):
    """Raised when a parsed plan cannot be turned into a stored trip."""


class TripValidationError(TabiError):
    """Raised when trip, day or activity data breaks a business rule."""

    def __init__(self, errors, details: Optional[Dict[str, Any]] = None):
        self.errors = list(errors) if not isinstance(errors, str) else [errors]
        super().__init__(
            message=f"Validation failed: {', '.join(self.errors)}",
            category=ErrorCategory.VALIDATION,
            code="validation-failed",
            details=details,
            status_code=422
        )


class DocumentNotFoundError(TabiError):
    """Raised by a document store when the addressed document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(
            message=f"Document {collection}/{doc_id} not found",
            category=ErrorCategory.SERVICE,
            code="document-not-found",
            details={"collection": collection, "doc_id": doc_id},
            status_code=404
        )


class TripNotFoundError(TabiError):
    def __init__(self, trip_id: str):
        super().__init__(
            message="Trip not found",
            category=ErrorCategory.SERVICE,
            code="trip-not-found",
            details={"trip_id": trip_id},
            status_code=404
        )


class AccessDeniedError(TabiError):
    def __init__(self, trip_id: str):
        super().__init__(
            message="Access denied",
            category=ErrorCategory.SERVICE,
            code="access-denied",
            details={"trip_id": trip_id},
            status_code=403
        )


class DayNotFoundError(TabiError):
    def __init__(self, day_index: int):
        super().__init__(
            message=f"Day at index {day_index} not found",
            category=ErrorCategory.SERVICE,
            code="day-not-found",
            details={"day_index": day_index},
            status_code=404
        )


class ActivityNotFoundError(TabiError):
    def __init__(self, activity_id: str):
        super().__init__(
            message=f"Activity with ID {activity_id} not found",
            category=ErrorCategory.SERVICE,
            code="activity-not-found",
            details={"activity_id": activity_id},
            status_code=404
        )
