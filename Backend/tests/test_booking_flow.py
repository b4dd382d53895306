"""
Booking orchestrator tests: create, cancel, reschedule, status changes and the
double-booking race.

Each operation runs in its own session (``run`` fixture) and state is checked
from a fresh session afterwards.

Run with: pytest Backend/tests/test_booking_flow.py -v
"""

import asyncio
import re

import pytest
from sqlalchemy import func, select

from salon_booking.booking import (
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
from salon_booking.booking.appointments import find_active_for_slot
from salon_booking.errors import (
    BookingValidationError,
    DoubleBookingError,
    InvalidTransitionError,
    NotFoundError,
    SlotInPastError,
    SlotNotFoundError,
    SlotUnavailableError,
)
from salon_booking.models import Appointment, AppointmentStatus, PaymentStatus, Service, TimeSlot


async def active_count(session_factory, slot_id):
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Appointment.id)).where(
                Appointment.time_slot_id == slot_id,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
        )
        return result.scalar_one()


async def slot_flag(session_factory, slot):
    async with session_factory() as session:
        return (await session.get(TimeSlot, slot.id)).is_available


async def load_appointment(session_factory, appointment_id):
    async with session_factory() as session:
        return await session.get(Appointment, appointment_id)


def request_for(salon, service_id, slot_id):
    return BookingRequest(
        salon_id=salon.id,
        service_id=service_id,
        time_slot_id=slot_id,
        customer_name="Asha Rao",
        customer_email="asha@example.com",
        customer_phone="+15550123",
    )


# ────────────────────────────────────────────────────────────────
# Create
# ────────────────────────────────────────────────────────────────

class TestCreateAppointment:

    @pytest.mark.asyncio
    async def test_creates_pending_and_takes_slot(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))

        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.payment_status == PaymentStatus.PENDING
        assert appointment.total_amount_cents == 150000
        assert re.fullmatch(r"APT-[A-Z0-9]{8}", appointment.confirmation_code)
        assert appointment.appointment_number == "APT00001"
        assert await slot_flag(session_factory, slots[0]) is False
        assert await active_count(session_factory, slots[0].id) == 1

    @pytest.mark.asyncio
    async def test_price_is_snapshotted(self, run, session_factory, async_session, slots, service, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        service.price_cents = 99
        await async_session.commit()

        stored = await load_appointment(session_factory, appointment.id)
        assert stored.total_amount_cents == 150000

    @pytest.mark.asyncio
    async def test_rebooking_taken_slot_is_double_booking(self, run, session_factory, slots, make_request):
        await run(create_appointment, make_request(slots[0]))

        with pytest.raises(DoubleBookingError):
            await run(create_appointment, make_request(slots[0], email="ben@example.com"))
        assert await active_count(session_factory, slots[0].id) == 1

    @pytest.mark.asyncio
    async def test_blocked_slot_is_unavailable(self, run, async_session, slots, make_request):
        slots[0].is_available = False
        await async_session.commit()

        with pytest.raises(SlotUnavailableError):
            await run(create_appointment, make_request(slots[0]))

    @pytest.mark.asyncio
    async def test_past_slot(self, run, session_factory, past_slot, make_request):
        with pytest.raises(SlotInPastError):
            await run(create_appointment, make_request(past_slot))
        assert await slot_flag(session_factory, past_slot) is True

    @pytest.mark.asyncio
    async def test_missing_slot(self, run, salon, service):
        with pytest.raises(SlotNotFoundError):
            await run(create_appointment, request_for(salon, service.id, "missing"))

    @pytest.mark.asyncio
    async def test_missing_service_rolls_back(self, run, session_factory, salon, slots):
        with pytest.raises(NotFoundError):
            await run(create_appointment, request_for(salon, "missing", slots[0].id))
        assert await slot_flag(session_factory, slots[0]) is True
        assert await active_count(session_factory, slots[0].id) == 0

    @pytest.mark.asyncio
    async def test_service_from_other_salon(self, run, async_session, salon, other_salon, slots):
        foreign = Service(salon_id=other_salon.id, name="Shave", duration_minutes=30, price_cents=500)
        async_session.add(foreign)
        await async_session.commit()

        with pytest.raises(BookingValidationError):
            await run(create_appointment, request_for(salon, foreign.id, slots[0].id))

    @pytest.mark.asyncio
    async def test_missing_required_fields(self, run, slots, make_request):
        with pytest.raises(BookingValidationError) as exc_info:
            await run(create_appointment, make_request(slots[0], name="  ", phone=""))
        assert exc_info.value.details["missing"] == ["customer_name", "customer_phone"]

    @pytest.mark.asyncio
    async def test_numbers_increase_and_customer_is_reused(self, run, slots, make_request):
        first = await run(create_appointment, make_request(slots[0]))
        second = await run(create_appointment, make_request(slots[1], name="Someone Else"))
        assert (first.appointment_number, second.appointment_number) == ("APT00001", "APT00002")
        assert first.customer_id == second.customer_id


class TestConcurrentBooking:

    @pytest.mark.asyncio
    async def test_exactly_one_of_many_wins(self, run, session_factory, slots, make_request):
        """Simultaneous bookings of one slot: one succeeds, the rest see DoubleBookingError."""
        results = await asyncio.gather(
            *(
                run(create_appointment, make_request(slots[0], name=f"Guest {i}", email=f"guest{i}@example.com"))
                for i in range(5)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Appointment)]
        losers = [r for r in results if not isinstance(r, Appointment)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(err, DoubleBookingError) for err in losers)
        assert await active_count(session_factory, slots[0].id) == 1
        assert await slot_flag(session_factory, slots[0]) is False

    @pytest.mark.asyncio
    async def test_concurrent_cancel_and_confirm_are_serialized(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))

        results = await asyncio.gather(
            run(cancel_appointment, appointment.id),
            run(confirm_appointment, appointment.id),
            return_exceptions=True,
        )

        # Either order ends cancelled: confirm-then-cancel is legal, cancel-then-confirm is refused.
        stored = await load_appointment(session_factory, appointment.id)
        errors = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(err, InvalidTransitionError) for err in errors)
        assert stored.status == AppointmentStatus.CANCELLED
        assert await slot_flag(session_factory, slots[0]) is True


# ────────────────────────────────────────────────────────────────
# Cancel
# ────────────────────────────────────────────────────────────────

class TestCancelAppointment:

    @pytest.mark.asyncio
    async def test_book_rebook_cancel_rebook(self, run, session_factory, slots, make_request):
        """The 09:00 walkthrough: taken, refused, freed, taken again."""
        first = await run(create_appointment, make_request(slots[0]))
        assert first.status == AppointmentStatus.PENDING

        with pytest.raises(DoubleBookingError):
            await run(create_appointment, make_request(slots[0], email="ben@example.com"))

        cancelled = await run(cancel_appointment, first.id, reason="Changed plans", cancelled_by="CUSTOMER")
        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert cancelled.cancellation_reason == "Changed plans"
        assert cancelled.cancelled_by == "CUSTOMER"
        assert await slot_flag(session_factory, slots[0]) is True

        second = await run(create_appointment, make_request(slots[0], email="ben@example.com"))
        assert second.status == AppointmentStatus.PENDING
        active = await run(find_active_for_slot, slots[0].id)
        assert active.id == second.id

    @pytest.mark.asyncio
    async def test_confirmed_can_be_cancelled(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(confirm_appointment, appointment.id)
        cancelled = await run(cancel_appointment, appointment.id)
        assert cancelled.status == AppointmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_completed_cannot_be_cancelled(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(confirm_appointment, appointment.id)
        await run(complete_appointment, appointment.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await run(cancel_appointment, appointment.id)

        assert exc_info.value.current_status == "COMPLETED"
        stored = await load_appointment(session_factory, appointment.id)
        assert stored.status == AppointmentStatus.COMPLETED
        assert stored.cancelled_at is None
        assert await slot_flag(session_factory, slots[0]) is False

    @pytest.mark.asyncio
    async def test_cancel_twice(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(cancel_appointment, appointment.id)
        with pytest.raises(InvalidTransitionError):
            await run(cancel_appointment, appointment.id)

    @pytest.mark.asyncio
    async def test_paid_appointment_is_refunded(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(record_payment, appointment.id, "card")
        cancelled = await run(cancel_appointment, appointment.id)
        assert cancelled.payment_status == PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_missing_appointment(self, run):
        with pytest.raises(NotFoundError):
            await run(cancel_appointment, "missing")


# ────────────────────────────────────────────────────────────────
# Reschedule
# ────────────────────────────────────────────────────────────────

class TestRescheduleAppointment:

    @pytest.mark.asyncio
    async def test_moves_slot_flags(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(confirm_appointment, appointment.id)

        moved = await run(reschedule_appointment, appointment.id, slots[2].id)

        assert moved.time_slot_id == slots[2].id
        assert moved.status == AppointmentStatus.CONFIRMED
        assert await slot_flag(session_factory, slots[0]) is True
        assert await slot_flag(session_factory, slots[2]) is False

    @pytest.mark.asyncio
    async def test_taken_target_leaves_everything_unchanged(self, run, session_factory, slots, make_request):
        mine = await run(create_appointment, make_request(slots[0]))
        await run(create_appointment, make_request(slots[1], email="ben@example.com"))

        with pytest.raises(DoubleBookingError):
            await run(reschedule_appointment, mine.id, slots[1].id)

        stored = await load_appointment(session_factory, mine.id)
        assert stored.time_slot_id == slots[0].id
        assert await slot_flag(session_factory, slots[0]) is False
        assert await slot_flag(session_factory, slots[1]) is False
        assert await active_count(session_factory, slots[1].id) == 1

    @pytest.mark.asyncio
    async def test_blocked_target(self, run, async_session, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        slots[2].is_available = False
        await async_session.commit()

        with pytest.raises(SlotUnavailableError):
            await run(reschedule_appointment, appointment.id, slots[2].id)
        assert await slot_flag(session_factory, slots[0]) is False

    @pytest.mark.asyncio
    async def test_past_target(self, run, session_factory, slots, past_slot, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        with pytest.raises(SlotInPastError):
            await run(reschedule_appointment, appointment.id, past_slot.id)
        assert await slot_flag(session_factory, slots[0]) is False
        assert await slot_flag(session_factory, past_slot) is True

    @pytest.mark.asyncio
    async def test_missing_target(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        with pytest.raises(SlotNotFoundError):
            await run(reschedule_appointment, appointment.id, "missing")

    @pytest.mark.asyncio
    async def test_same_slot(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        with pytest.raises(BookingValidationError):
            await run(reschedule_appointment, appointment.id, slots[0].id)

    @pytest.mark.asyncio
    async def test_cancelled_cannot_reschedule(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(cancel_appointment, appointment.id)
        with pytest.raises(InvalidTransitionError):
            await run(reschedule_appointment, appointment.id, slots[1].id)
        assert await slot_flag(session_factory, slots[1]) is True


# ────────────────────────────────────────────────────────────────
# Other transitions
# ────────────────────────────────────────────────────────────────

class TestStatusOperations:

    @pytest.mark.asyncio
    async def test_confirm_then_complete(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))

        confirmed = await run(confirm_appointment, appointment.id)
        assert confirmed.status == AppointmentStatus.CONFIRMED
        assert confirmed.confirmed_at is not None

        completed = await run(complete_appointment, appointment.id)
        assert completed.status == AppointmentStatus.COMPLETED
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_complete_requires_confirmation(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        with pytest.raises(InvalidTransitionError):
            await run(complete_appointment, appointment.id)

    @pytest.mark.asyncio
    async def test_confirm_twice(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(confirm_appointment, appointment.id)
        with pytest.raises(InvalidTransitionError):
            await run(confirm_appointment, appointment.id)

    @pytest.mark.asyncio
    async def test_no_show_keeps_slot_taken(self, run, session_factory, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        await run(confirm_appointment, appointment.id)
        no_show = await run(mark_no_show, appointment.id)
        assert no_show.status == AppointmentStatus.NO_SHOW
        assert await slot_flag(session_factory, slots[0]) is False

    @pytest.mark.asyncio
    async def test_assign_staff(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        updated = await run(assign_staff, appointment.id, " Priya ")
        assert updated.assigned_staff == "Priya"

        await run(cancel_appointment, appointment.id)
        with pytest.raises(InvalidTransitionError):
            await run(assign_staff, appointment.id, "Priya")

    @pytest.mark.asyncio
    async def test_record_payment_once(self, run, slots, make_request):
        appointment = await run(create_appointment, make_request(slots[0]))
        paid = await run(record_payment, appointment.id, "cash", reference="R-1")
        assert paid.payment_status == PaymentStatus.PAID
        assert paid.payment_method == "CASH"
        assert paid.paid_at is not None

        with pytest.raises(InvalidTransitionError):
            await run(record_payment, appointment.id, "cash")
