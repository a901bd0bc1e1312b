"""Error taxonomy shared by the lifecycle engine, the review service and the API."""

import enum

from fastapi import status


class ErrorCode(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATE = "INVALID_STATE"
    WINDOW_EXPIRED = "WINDOW_EXPIRED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


# Used by the routers to turn a failed result into an HTTP response
HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.WINDOW_EXPIRED: status.HTTP_410_GONE,
    ErrorCode.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class BookingServiceError(Exception):
    """Base class for business-rule failures.

    Raised inside transaction bodies to abort them; converted into a failed
    result at the operation boundary.
    """

    code = ErrorCode.VALIDATION
    default_message = "The operation could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]


class NotFoundError(BookingServiceError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID '{identifier}' not found"
        super().__init__(message)


class UnauthorizedError(BookingServiceError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "You are not allowed to perform this action"


class InvalidTransitionError(BookingServiceError):
    code = ErrorCode.INVALID_TRANSITION
    default_message = "This status change is not allowed"


class InvalidStateError(BookingServiceError):
    code = ErrorCode.INVALID_STATE
    default_message = "This operation is not allowed for the current booking status"


class WindowExpiredError(BookingServiceError):
    code = ErrorCode.WINDOW_EXPIRED
    default_message = "The review window has closed"


class AlreadyExistsError(BookingServiceError):
    code = ErrorCode.ALREADY_EXISTS
    default_message = "You have already reviewed this booking"


class ConflictError(BookingServiceError):
    """Transaction contention outlasted the retry budget; retry the whole action."""

    code = ErrorCode.CONFLICT
    default_message = "The booking was changed by someone else, please try again"


class ValidationError(BookingServiceError):
    code = ErrorCode.VALIDATION
    default_message = "Validation failed"


class StoreUnavailableError(BookingServiceError):
    code = ErrorCode.STORE_UNAVAILABLE
    default_message = "The booking store is temporarily unavailable"


class ImmutabilityViolationError(ValidationError):
    """Raised when a flush would rewrite history, snapshots or a published review."""

    def __init__(self, model_name: str, record_id: str, detail: str) -> None:
        self.model_name = model_name
        self.record_id = record_id
        super().__init__(f"Immutability violation on {model_name} {record_id}: {detail}")
