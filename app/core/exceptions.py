"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Every AppException renders as {"success": false, "error": {...}} at the API boundary.
"""
from typing import Any
from enum import Enum


GENERIC_ERROR_MESSAGE = "An unexpected error occurred"
LISTING_NOT_FOUND_MESSAGE = "Listing not found or you are not allowed to modify it"


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Listing errors (2xxx)
    LISTING_NOT_FOUND = "ERR_2001"
    LISTING_FORBIDDEN_FIELD = "ERR_2002"
    REJECTION_REASON_REQUIRED = "ERR_2003"

    # Creation guard errors (3xxx)
    IDEMPOTENCY_IN_PROGRESS = "ERR_3001"

    # External service errors (5xxx)
    DEPENDENCY_UNAVAILABLE = "ERR_5001"
    STORAGE_ERROR = "ERR_5002"
    NOTIFICATION_ERROR = "ERR_5003"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "success": False,
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails. The message is shown to the caller verbatim."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class SpamRejectedError(AppException):
    """Raised when the honeypot field is filled.

    Renders exactly like an unexpected error so automated clients learn nothing.
    """

    def __init__(self):
        super().__init__(
            message=GENERIC_ERROR_MESSAGE,
            error_code=ErrorCode.INTERNAL_ERROR,
            status_code=500,
        )


class UnauthenticatedError(AppException):
    """Raised when no valid actor can be resolved for a write path"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class ListingNotFoundError(AppException):
    """Raised when a listing does not exist"""

    def __init__(self, identifier: Any = None):
        super().__init__(
            message=LISTING_NOT_FOUND_MESSAGE,
            error_code=ErrorCode.LISTING_NOT_FOUND,
            status_code=404,
        )
        # identifier is kept for logs only, never rendered
        self.identifier = identifier


class ListingAccessDeniedError(ListingNotFoundError):
    """Raised when the actor may not mutate the listing.

    Same status, code and body as ListingNotFoundError.
    """

    def __init__(self, identifier: Any = None, actor_id: Any = None):
        super().__init__(identifier)
        self.actor_id = actor_id


class ForbiddenFieldError(ValidationException):
    """Raised when a content update tries to touch lifecycle or ownership fields"""

    def __init__(self, fields: list[str]):
        super().__init__(
            message=f"Fields cannot be changed through this operation: {', '.join(sorted(fields))}",
            details={"fields": sorted(fields)}
        )
        self.error_code = ErrorCode.LISTING_FORBIDDEN_FIELD


class ThrottledError(AppException):
    """Raised when an actor exceeds an action's rate window"""

    def __init__(self, action: str, retry_after_seconds: int):
        super().__init__(
            message="Too many requests. Please try again later.",
            error_code=ErrorCode.RATE_LIMITED,
            status_code=429,
            details={"action": action, "retry_after_seconds": retry_after_seconds}
        )
        self.retry_after_seconds = retry_after_seconds


class IdempotencyConflictError(AppException):
    """Raised when a duplicate request is still in flight after the wait bound"""

    def __init__(self, key: str):
        super().__init__(
            message="A request with this idempotency key is still being processed",
            error_code=ErrorCode.IDEMPOTENCY_IN_PROGRESS,
            status_code=409,
            details={"idempotency_key": key}
        )


class DependencyError(AppException):
    """Raised when a required backing service (store, redis) is unavailable"""

    def __init__(
        self,
        service_name: str,
        message: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message or f"{service_name} is temporarily unavailable",
            error_code=ErrorCode.DEPENDENCY_UNAVAILABLE,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class SideEffectError(AppException):
    """Raised by best-effort side channels (storage cleanup, notifications).

    Caught and logged by the post-commit hook runner, never returned to a caller.
    """

    def __init__(
        self,
        channel: str,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=500,
            details=details
        )
        self.details["channel"] = channel

    @classmethod
    def from_response(
        cls,
        channel: str,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "SideEffectError":
        """Build a SideEffectError from an HTTP response (e.g. httpx.Response)"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            channel=channel,
            message=f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )


class InvalidStateTransitionError(StateMachineException):
    """Raised when a listing status transition is not allowed"""

    def __init__(self, current_state: str, target_state: str, listing_id: str | None = None):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "listing_id": listing_id
            }
        )


class ForbiddenError(AppException):
    """Raised when a non-administrator calls an administrative endpoint"""

    def __init__(self, message: str = "Administrator access required"):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
        )
