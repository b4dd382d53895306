"""
Booking orchestrator.

Every operation here runs as one database transaction: the slot flag and the
appointment row change together or not at all. Double booking is prevented by
three layers that hold independently of each other:

    1. The slot row is locked (SELECT ... FOR UPDATE) before it is checked.
    2. The slot flag is flipped with a compare-and-swap UPDATE.
    3. A partial unique index allows one non-cancelled appointment per slot.

Appointment rows are locked the same way for status changes and carry a
version counter, so a stale concurrent write surfaces as ConcurrentUpdateError.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core import clock
from ..core.db import unit_of_work
from ..errors import (
    BookingValidationError,
    ConcurrentUpdateError,
    DoubleBookingError,
    InvalidTransitionError,
    NotFoundError,
    SlotInPastError,
    SlotNotFoundError,
    SlotUnavailableError,
)
from ..models import Appointment, AppointmentStatus, PaymentStatus, Salon, Service
from . import appointments as appointment_store
from . import slots as slot_store
from . import status as status_machine
from .availability import is_in_past, set_available
from .codes import generate_confirmation_code
from .customers import resolve_or_create


logger = logging.getLogger(__name__)

ACTIVE_SLOT_INDEX = "uq_appointments_active_time_slot"
MAX_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class BookingRequest:
    salon_id: str
    service_id: str
    time_slot_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    preferred_contact: Optional[str] = None
    notes: Optional[str] = None

    def validate(self) -> None:
        missing = [
            name
            for name in (
                "salon_id",
                "service_id",
                "time_slot_id",
                "customer_name",
                "customer_email",
                "customer_phone",
            )
            if not (getattr(self, name) or "").strip()
        ]
        if missing:
            raise BookingValidationError(
                f"Missing required fields: {', '.join(missing)}", {"missing": missing}
            )
        if "@" not in self.customer_email:
            raise BookingValidationError("Invalid email format", {"field": "customer_email"})


def _is_active_slot_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    # PostgreSQL names the index, SQLite names the column.
    return ACTIVE_SLOT_INDEX in message or "appointments.time_slot_id" in message


@asynccontextmanager
async def _booking_transaction(
    session: AsyncSession,
    appointment_id: Optional[str] = None,
    slot_id: Optional[str] = None,
) -> AsyncIterator[AsyncSession]:
    try:
        async with unit_of_work(session):
            yield session
    except StaleDataError:
        logger.warning("Concurrent update rejected for appointment %s", appointment_id)
        raise ConcurrentUpdateError(appointment_id) from None
    except IntegrityError as exc:
        if slot_id and _is_active_slot_violation(exc):
            logger.warning("Double booking rejected by unique index for slot %s", slot_id)
            raise DoubleBookingError(slot_id) from exc
        raise


async def _unique_confirmation_code(session: AsyncSession) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_confirmation_code()
        if not await appointment_store.confirmation_code_exists(session, code):
            return code
    raise RuntimeError("Could not generate a unique confirmation code")


# ────────────────────────────────────────────────────────────────
# Create
# ────────────────────────────────────────────────────────────────

async def create_appointment(session: AsyncSession, request: BookingRequest) -> Appointment:
    """
    Book ``request.time_slot_id`` for the customer and return the PENDING appointment.

    Raises SlotNotFoundError, SlotInPastError, DoubleBookingError (slot bound to a
    live appointment), SlotUnavailableError (slot blocked without a booking),
    NotFoundError (service or salon) or BookingValidationError.
    """
    request.validate()
    slot_id = request.time_slot_id

    async with _booking_transaction(session, slot_id=slot_id):
        slot = await slot_store.get_slot(session, slot_id, for_update=True)
        if slot is None:
            raise SlotNotFoundError(slot_id)
        if is_in_past(slot):
            raise SlotInPastError(slot_id)
        if await appointment_store.has_active_appointment(session, slot_id):
            logger.warning("Slot %s is already booked", slot_id)
            raise DoubleBookingError(slot_id)
        if not slot.is_available:
            raise SlotUnavailableError(slot_id)

        customer = await resolve_or_create(
            session,
            name=request.customer_name,
            email=request.customer_email,
            phone=request.customer_phone,
            preferred_contact=request.preferred_contact,
        )

        service = await session.get(Service, request.service_id)
        if service is None:
            raise NotFoundError("Service", request.service_id)
        salon = await session.get(Salon, request.salon_id)
        if salon is None:
            raise NotFoundError("Salon", request.salon_id)
        if slot.salon_id != salon.id:
            raise BookingValidationError(
                "Time slot does not belong to the selected salon",
                {"time_slot_id": slot_id, "salon_id": salon.id},
            )
        if service.salon_id != salon.id:
            raise BookingValidationError(
                "Service is not offered by the selected salon",
                {"service_id": service.id, "salon_id": salon.id},
            )

        appointment = Appointment(
            appointment_number=await appointment_store.next_appointment_number(session),
            confirmation_code=await _unique_confirmation_code(session),
            customer_id=customer.id,
            service_id=service.id,
            time_slot_id=slot.id,
            salon_id=salon.id,
            status=AppointmentStatus.PENDING,
            booking_date=clock.utc_now(),
            payment_status=PaymentStatus.PENDING,
            total_amount_cents=service.price_cents,
            customer_notes=request.notes,
        )
        session.add(appointment)
        await session.flush()

        if not await slot_store.claim_slot(session, slot_id):
            raise DoubleBookingError(slot_id)

    logger.info(
        "Created appointment %s (%s) for slot %s",
        appointment.appointment_number,
        appointment.confirmation_code,
        slot_id,
    )
    return appointment


# ────────────────────────────────────────────────────────────────
# Status transitions
# ────────────────────────────────────────────────────────────────

async def _transition(session: AsyncSession, appointment_id: str, action: str) -> Appointment:
    async with _booking_transaction(session, appointment_id=appointment_id):
        appointment = await appointment_store.get_appointment(session, appointment_id, for_update=True)
        previous = appointment.status
        appointment.status = status_machine.next_status(previous, action)
        now = clock.utc_now()
        if action == status_machine.CONFIRM:
            appointment.confirmed_at = now
        elif action == status_machine.COMPLETE:
            appointment.completed_at = now
        await session.flush()

    logger.info("Appointment %s: %s -> %s", appointment_id, previous.value, appointment.status.value)
    return appointment


async def confirm_appointment(session: AsyncSession, appointment_id: str) -> Appointment:
    return await _transition(session, appointment_id, status_machine.CONFIRM)


async def complete_appointment(session: AsyncSession, appointment_id: str) -> Appointment:
    return await _transition(session, appointment_id, status_machine.COMPLETE)


async def mark_no_show(session: AsyncSession, appointment_id: str) -> Appointment:
    return await _transition(session, appointment_id, status_machine.NO_SHOW)


async def cancel_appointment(
    session: AsyncSession,
    appointment_id: str,
    reason: Optional[str] = None,
    cancelled_by: Optional[str] = None,
) -> Appointment:
    """Cancel and free the slot; a paid appointment is marked refunded."""
    async with _booking_transaction(session, appointment_id=appointment_id):
        appointment = await appointment_store.get_appointment(session, appointment_id, for_update=True)
        appointment.status = status_machine.next_status(appointment.status, status_machine.CANCEL)
        appointment.cancelled_at = clock.utc_now()
        appointment.cancellation_reason = reason
        appointment.cancelled_by = cancelled_by
        if appointment.payment_status == PaymentStatus.PAID:
            appointment.payment_status = PaymentStatus.REFUNDED
        await session.flush()
        await set_available(session, appointment.time_slot_id, True)

    logger.info("Cancelled appointment %s, released slot %s", appointment_id, appointment.time_slot_id)
    return appointment


async def reschedule_appointment(
    session: AsyncSession, appointment_id: str, new_slot_id: str
) -> Appointment:
    """
    Move the appointment to ``new_slot_id``.

    All checks run before anything is written; the new slot is claimed before
    the old one is released, and both happen in one transaction.
    """
    async with _booking_transaction(session, appointment_id=appointment_id, slot_id=new_slot_id):
        appointment = await appointment_store.get_appointment(session, appointment_id, for_update=True)
        status_machine.next_status(appointment.status, status_machine.RESCHEDULE)
        old_slot_id = appointment.time_slot_id
        if new_slot_id == old_slot_id:
            raise BookingValidationError(
                "New time slot is the same as the current one", {"time_slot_id": new_slot_id}
            )

        new_slot = await slot_store.get_slot(session, new_slot_id, for_update=True)
        if new_slot is None:
            raise SlotNotFoundError(new_slot_id)
        if new_slot.salon_id != appointment.salon_id:
            raise BookingValidationError(
                "New time slot belongs to a different salon",
                {"time_slot_id": new_slot_id, "salon_id": appointment.salon_id},
            )
        if is_in_past(new_slot):
            raise SlotInPastError(new_slot_id)
        if await appointment_store.has_active_appointment(session, new_slot_id):
            raise DoubleBookingError(new_slot_id)
        if not new_slot.is_available:
            raise SlotUnavailableError(new_slot_id)

        if not await slot_store.claim_slot(session, new_slot_id):
            raise DoubleBookingError(new_slot_id)
        appointment.time_slot_id = new_slot_id
        await session.flush()
        await set_available(session, old_slot_id, True)

    logger.info("Rescheduled appointment %s from slot %s to %s", appointment_id, old_slot_id, new_slot_id)
    return appointment


# ────────────────────────────────────────────────────────────────
# Staff and payment bookkeeping
# ────────────────────────────────────────────────────────────────

async def assign_staff(session: AsyncSession, appointment_id: str, staff_name: str) -> Appointment:
    if not staff_name or not staff_name.strip():
        raise BookingValidationError("Staff name is required", {"field": "staff_name"})

    async with _booking_transaction(session, appointment_id=appointment_id):
        appointment = await appointment_store.get_appointment(session, appointment_id, for_update=True)
        status_machine.next_status(appointment.status, status_machine.ASSIGN_STAFF)
        appointment.assigned_staff = staff_name.strip()
        await session.flush()

    return appointment


async def record_payment(
    session: AsyncSession,
    appointment_id: str,
    method: str,
    reference: Optional[str] = None,
) -> Appointment:
    """Mark the appointment paid. Bookkeeping only, no money is moved."""
    if not method or not method.strip():
        raise BookingValidationError("Payment method is required", {"field": "method"})

    async with _booking_transaction(session, appointment_id=appointment_id):
        appointment = await appointment_store.get_appointment(session, appointment_id, for_update=True)
        if appointment.status == AppointmentStatus.CANCELLED:
            raise InvalidTransitionError(appointment.status.value, "record_payment")
        if appointment.payment_status != PaymentStatus.PENDING:
            raise InvalidTransitionError(appointment.payment_status.value, "record_payment")
        appointment.payment_status = PaymentStatus.PAID
        appointment.payment_method = method.strip().upper()
        appointment.payment_reference = reference
        appointment.paid_at = clock.utc_now()
        await session.flush()

    logger.info("Recorded %s payment for appointment %s", appointment.payment_method, appointment_id)
    return appointment
