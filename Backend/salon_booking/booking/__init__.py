"""Appointment booking core: slots, appointments, customers and lifecycle."""
from .availability import (
    generate_slots,
    generate_slots_for_all_salons,
    list_available,
    list_available_in_range,
    set_available,
    verify_available,
)
from .customers import get_customer, get_customer_by_email, resolve_or_create
from .lifecycle import (
    BookingRequest,
    assign_staff,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    create_appointment,
    mark_no_show,
    record_payment,
    reschedule_appointment,
)

__all__ = [
    # Availability
    "generate_slots",
    "generate_slots_for_all_salons",
    "list_available",
    "list_available_in_range",
    "set_available",
    "verify_available",
    # Customers
    "get_customer",
    "get_customer_by_email",
    "resolve_or_create",
    # Lifecycle
    "BookingRequest",
    "assign_staff",
    "cancel_appointment",
    "complete_appointment",
    "confirm_appointment",
    "create_appointment",
    "mark_no_show",
    "record_payment",
    "reschedule_appointment",
]
