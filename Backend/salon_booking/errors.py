"""
Booking error taxonomy.

Every business failure raised by the booking core is a BookingError carrying a
stable error code and the HTTP status the API layer answers with. The core never
imports FastAPI; translation happens in the exception handlers in main.py.
"""

from typing import Any, Optional

from .core.responses import ErrorCodes


class BookingError(Exception):
    """Base class for business rule violations."""
    code: str = ErrorCodes.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(BookingError):
    """Raised when a referenced entity does not exist."""
    code = ErrorCodes.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource} not found with id: {identifier}",
            {"resource": resource, "id": str(identifier)},
        )


class SlotNotFoundError(NotFoundError):
    code = ErrorCodes.SLOT_NOT_FOUND

    def __init__(self, slot_id: Any):
        super().__init__("Time slot", slot_id)


class SlotUnavailableError(BookingError):
    """The slot is flagged unavailable (blocked or already taken)."""
    code = ErrorCodes.SLOT_UNAVAILABLE
    status_code = 409

    def __init__(self, slot_id: Any):
        self.slot_id = slot_id
        super().__init__("Time slot is not available", {"time_slot_id": str(slot_id)})


class SlotInPastError(BookingError):
    code = ErrorCodes.SLOT_IN_PAST
    status_code = 409

    def __init__(self, slot_id: Any):
        self.slot_id = slot_id
        super().__init__("Cannot book a time slot in the past", {"time_slot_id": str(slot_id)})


class DoubleBookingError(BookingError):
    """A non-cancelled appointment already holds the slot."""
    code = ErrorCodes.DOUBLE_BOOKING
    status_code = 409

    def __init__(self, slot_id: Any):
        self.slot_id = slot_id
        super().__init__("Time slot is already booked", {"time_slot_id": str(slot_id)})


class InvalidTransitionError(BookingError):
    code = ErrorCodes.INVALID_TRANSITION
    status_code = 409

    def __init__(self, current_status: str, action: str):
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Appointment with status {current_status} cannot be {_past_tense(action)}",
            {"current_status": current_status, "action": action},
        )


class BookingValidationError(BookingError):
    code = ErrorCodes.VALIDATION_ERROR
    status_code = 400


class ReviewEditWindowExpiredError(BookingValidationError):
    code = ErrorCodes.EDIT_WINDOW_EXPIRED

    def __init__(self, hours: int):
        super().__init__(
            f"Reviews can only be edited within {hours} hours of posting",
            {"edit_window_hours": hours},
        )


class ConcurrentUpdateError(BookingError):
    """Another transaction changed the appointment first."""
    code = ErrorCodes.CONCURRENT_UPDATE
    status_code = 409

    def __init__(self, appointment_id: Any):
        super().__init__(
            "Appointment was modified concurrently, reload and retry",
            {"appointment_id": str(appointment_id)},
        )


_PAST_TENSE = {
    "confirm": "confirmed",
    "complete": "completed",
    "cancel": "cancelled",
    "no_show": "marked as no-show",
    "reschedule": "rescheduled",
    "assign_staff": "assigned staff",
    "record_payment": "paid",
}


def _past_tense(action: str) -> str:
    return _PAST_TENSE.get(action, action)
