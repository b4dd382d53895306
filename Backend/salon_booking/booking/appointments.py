"""
Appointment store.

Queries over appointments by id, confirmation code, slot, customer, salon and
status, plus the sequential appointment-number counter. Related rows are
joined explicitly by foreign key through ``load_details``.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..errors import NotFoundError
from ..models import (
    Appointment,
    AppointmentCounter,
    AppointmentStatus,
    Customer,
    Salon,
    Service,
    TimeSlot,
)
from .codes import format_appointment_number


APPOINTMENT_COUNTER = "appointments"


@dataclass
class AppointmentDetails:
    appointment: Appointment
    customer: Optional[Customer]
    service: Optional[Service]
    time_slot: Optional[TimeSlot]
    salon: Optional[Salon]


# ────────────────────────────────────────────────────────────────
# Lookups
# ────────────────────────────────────────────────────────────────

async def find_appointment(
    session: AsyncSession, appointment_id: str, for_update: bool = False
) -> Optional[Appointment]:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_appointment(
    session: AsyncSession, appointment_id: str, for_update: bool = False
) -> Appointment:
    appointment = await find_appointment(session, appointment_id, for_update=for_update)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


async def get_by_confirmation_code(session: AsyncSession, code: str) -> Appointment:
    result = await session.execute(
        select(Appointment).where(Appointment.confirmation_code == code.strip().upper())
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment", code)
    return appointment


async def get_by_appointment_number(session: AsyncSession, number: str) -> Appointment:
    result = await session.execute(
        select(Appointment).where(Appointment.appointment_number == number.strip().upper())
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment", number)
    return appointment


async def confirmation_code_exists(session: AsyncSession, code: str) -> bool:
    result = await session.execute(
        select(Appointment.id).where(Appointment.confirmation_code == code).limit(1)
    )
    return result.first() is not None


async def find_active_for_slot(session: AsyncSession, slot_id: str) -> Optional[Appointment]:
    """The non-cancelled appointment bound to ``slot_id``, if any."""
    result = await session.execute(
        select(Appointment).where(
            Appointment.time_slot_id == slot_id,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
    )
    return result.scalars().first()


async def has_active_appointment(session: AsyncSession, slot_id: str) -> bool:
    return await find_active_for_slot(session, slot_id) is not None


# ────────────────────────────────────────────────────────────────
# Listings
# ────────────────────────────────────────────────────────────────

async def list_for_customer(session: AsyncSession, customer_id: str) -> Sequence[Appointment]:
    result = await session.execute(
        select(Appointment)
        .where(Appointment.customer_id == customer_id)
        .order_by(Appointment.booking_date.desc())
    )
    return result.scalars().all()


async def list_for_salon(
    session: AsyncSession,
    salon_id: str,
    status: Optional[AppointmentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Sequence[Appointment]:
    stmt = (
        select(Appointment)
        .join(TimeSlot, TimeSlot.id == Appointment.time_slot_id)
        .where(Appointment.salon_id == salon_id)
    )
    if status is not None:
        stmt = stmt.where(Appointment.status == status)
    if start_date is not None:
        stmt = stmt.where(TimeSlot.slot_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(TimeSlot.slot_date <= end_date)
    result = await session.execute(stmt.order_by(TimeSlot.slot_date, TimeSlot.start_time))
    return result.scalars().all()


async def list_by_status(session: AsyncSession, status: AppointmentStatus) -> Sequence[Appointment]:
    result = await session.execute(
        select(Appointment)
        .where(Appointment.status == status)
        .order_by(Appointment.booking_date.desc())
    )
    return result.scalars().all()


async def list_upcoming(session: AsyncSession, salon_id: str) -> Sequence[Appointment]:
    """Pending and confirmed appointments from today on, earliest first."""
    result = await session.execute(
        select(Appointment)
        .join(TimeSlot, TimeSlot.id == Appointment.time_slot_id)
        .where(
            Appointment.salon_id == salon_id,
            Appointment.status.in_([AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]),
            TimeSlot.slot_date >= clock.local_today(),
        )
        .order_by(TimeSlot.slot_date, TimeSlot.start_time)
    )
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Numbering
# ────────────────────────────────────────────────────────────────

async def next_appointment_number(session: AsyncSession) -> str:
    """Allocate the next ``APT00001``-style number inside the caller's transaction."""
    stmt = (
        select(AppointmentCounter)
        .where(AppointmentCounter.name == APPOINTMENT_COUNTER)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    counter = (await session.execute(stmt)).scalar_one_or_none()
    if counter is None:
        try:
            async with session.begin_nested():
                counter = AppointmentCounter(name=APPOINTMENT_COUNTER, value=0)
                session.add(counter)
                await session.flush()
        except IntegrityError:
            counter = (await session.execute(stmt)).scalar_one()

    counter.value += 1
    await session.flush()
    return format_appointment_number(counter.value)


# ────────────────────────────────────────────────────────────────
# Related rows
# ────────────────────────────────────────────────────────────────

async def _rows_by_id(session: AsyncSession, model, ids: set[str]) -> dict:
    if not ids:
        return {}
    result = await session.execute(select(model).where(model.id.in_(list(ids))))
    return {row.id: row for row in result.scalars().all()}


async def load_details(
    session: AsyncSession, appointments: Sequence[Appointment]
) -> list[AppointmentDetails]:
    customers = await _rows_by_id(session, Customer, {a.customer_id for a in appointments})
    services = await _rows_by_id(session, Service, {a.service_id for a in appointments})
    time_slots = await _rows_by_id(session, TimeSlot, {a.time_slot_id for a in appointments})
    salons = await _rows_by_id(session, Salon, {a.salon_id for a in appointments})
    return [
        AppointmentDetails(
            appointment=a,
            customer=customers.get(a.customer_id),
            service=services.get(a.service_id),
            time_slot=time_slots.get(a.time_slot_id),
            salon=salons.get(a.salon_id),
        )
        for a in appointments
    ]
