"""
Custom exceptions for booking operations
Every rejection carries a specific, human-readable reason
"""
from typing import Optional, Any


class BookingException(Exception):
    """Base exception for all booking-related errors"""

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }

# ============================================================
# Lookup Exceptions
# ============================================================

class RecordNotFoundError(BookingException):
    """Record not found in the store"""

    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="RECORD_NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)}
        )


class ResourceNotFoundError(RecordNotFoundError):
    """Vehicle not found"""

    def __init__(self, resource_id: str):
        super().__init__("Vehicle", resource_id)
        self.resource_id = resource_id


class ReservationNotFoundError(RecordNotFoundError):
    """Reservation not found"""

    def __init__(self, reservation_id: str):
        super().__init__("Reservation", reservation_id)
        self.reservation_id = reservation_id

# ============================================================
# Scheduling Exceptions
# ============================================================

class InvalidIntervalError(BookingException):
    """Start is not strictly before end"""

    status_code = 422

    def __init__(self, start, end):
        if start == end:
            message = "The booking has no duration: end time equals start time"
        else:
            message = "End time must be after start time"
        super().__init__(
            message=message,
            error_code="INVALID_INTERVAL",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()}
        )
        self.start = start
        self.end = end


class ConflictError(BookingException):
    """Candidate interval overlaps an existing active booking"""

    status_code = 409

    def __init__(self, conflicting):
        super().__init__(
            message=(
                f"The vehicle is already booked from "
                f"{conflicting.start_time.isoformat()} to {conflicting.end_time.isoformat()}"
                f" by {conflicting.display_name}"
            ),
            error_code="RESERVATION_CONFLICT",
            details={
                "reservation_id": conflicting.id,
                "resource_id": conflicting.resource_id,
                "start_time": conflicting.start_time.isoformat(),
                "end_time": conflicting.end_time.isoformat(),
            }
        )
        self.conflicting = conflicting


class ResourceUnavailableError(BookingException):
    """Vehicle is flagged unavailable (workshop / maintenance)"""

    status_code = 409

    def __init__(self, resource_id: str, reason: str = "The vehicle is in the workshop and cannot be booked"):
        super().__init__(
            message=reason,
            error_code="RESOURCE_UNAVAILABLE",
            details={"resource_id": resource_id}
        )
        self.resource_id = resource_id


class IllegalTransitionError(BookingException):
    """Operation not allowed for the reservation's current state"""

    status_code = 409

    def __init__(
        self,
        message: str,
        reservation_id: str,
        current_status: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(
            message=message,
            error_code="ILLEGAL_TRANSITION",
            details={
                "reservation_id": reservation_id,
                "current_status": current_status,
                "operation": operation
            }
        )
        self.reservation_id = reservation_id
        self.current_status = current_status
        self.operation = operation


class AuthorizationError(BookingException):
    """Acting user may not modify this reservation"""

    status_code = 403

    def __init__(self, reservation_id: str, acting_user_id: str, operation: str):
        super().__init__(
            message=f"Only the person who booked it can {operation} this reservation",
            error_code="AUTHORIZATION_ERROR",
            details={
                "reservation_id": reservation_id,
                "acting_user_id": acting_user_id,
                "operation": operation
            }
        )
        self.reservation_id = reservation_id
        self.acting_user_id = acting_user_id

# ============================================================
# Collaborator Exceptions
# ============================================================

class RemoteFailure(BookingException):
    """A collaborator store call failed; recoverable by retry or reload"""

    status_code = 503

    def __init__(self, operation: str, error: Optional[str] = None):
        super().__init__(
            message=f"Could not complete '{operation}', please try again",
            error_code="REMOTE_FAILURE",
            details={"operation": operation, "error": error} if error else {"operation": operation}
        )
        self.operation = operation

# ============================================================
# Validation Exceptions
# ============================================================

class ValidationError(BookingException):
    """Input validation error"""

    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(
            message=f"Validation error for {field}: {message}",
            error_code="VALIDATION_ERROR",
            details={"field": field, "error": message}
        )
