"""
Booking pipeline error taxonomy

Stages raise these internally; every public stage operation converts them
into a typed result (see schemas.StageError) before returning to its caller.
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base class for all pipeline failures"""

    kind = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(BookingError):
    """Malformed input; rejected before any external call"""

    kind = "validation_error"


class PaymentDeclined(BookingError):
    """Card declined or authentication required; terminal for this attempt"""

    kind = "payment_declined"

    def __init__(self, message: str, decline_code: Optional[str] = None, **details: Any):
        super().__init__(message, decline_code=decline_code, **details)
        self.decline_code = decline_code


class TransientProviderError(BookingError):
    """Network error, timeout or 5xx from an external provider after bounded retries"""

    kind = "transient_provider_error"


class ConflictError(BookingError):
    """Duplicate or concurrent operation; callers resolve it by idempotent lookup"""

    kind = "conflict"


class BookingCreationFailed(BookingError):
    """Booking could not be written after the payment hold succeeded"""

    kind = "booking_creation_failed"

    def __init__(
        self,
        message: str,
        authorization_id: str,
        authorization_status: str,
        **details: Any,
    ):
        super().__init__(
            message,
            authorization_id=authorization_id,
            authorization_status=authorization_status,
            **details,
        )
        self.authorization_id = authorization_id
        self.authorization_status = authorization_status


class AssignmentFailed(BookingError):
    """No worker could be attached; the booking needs manual assignment"""

    kind = "assignment_failed"


class NotificationError(BookingError):
    """Provider refused or could not be reached for a notification send"""

    kind = "notification_error"
