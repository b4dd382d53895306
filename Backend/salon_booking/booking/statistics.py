"""Per-salon booking statistics for the owner dashboard."""

from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Appointment, AppointmentStatus, PaymentStatus, Service, TimeSlot


@dataclass
class DailyStats:
    date: date
    appointments: int
    revenue_cents: int


@dataclass
class ServicePopularity:
    service_id: str
    service_name: str
    bookings: int
    revenue_cents: int


@dataclass
class BusyHour:
    hour: int
    appointments: int


async def status_counts(session: AsyncSession, salon_id: str) -> dict[str, int]:
    """Appointment count per status; statuses with no appointments report 0."""
    result = await session.execute(
        select(Appointment.status, func.count(Appointment.id))
        .where(Appointment.salon_id == salon_id)
        .group_by(Appointment.status)
    )
    counts = {status.value: 0 for status in AppointmentStatus}
    for status, count in result.all():
        counts[AppointmentStatus(status).value] = count
    return counts


async def count_for_date(session: AsyncSession, salon_id: str, slot_date: date) -> int:
    result = await session.execute(
        select(func.count(Appointment.id))
        .join(TimeSlot, TimeSlot.id == Appointment.time_slot_id)
        .where(Appointment.salon_id == salon_id, TimeSlot.slot_date == slot_date)
    )
    return result.scalar_one()


async def daily_stats(
    session: AsyncSession, salon_id: str, start_date: date, end_date: date
) -> list[DailyStats]:
    result = await session.execute(
        select(
            TimeSlot.slot_date,
            func.count(Appointment.id),
            func.coalesce(func.sum(Appointment.total_amount_cents), 0),
        )
        .join(TimeSlot, TimeSlot.id == Appointment.time_slot_id)
        .where(
            Appointment.salon_id == salon_id,
            TimeSlot.slot_date >= start_date,
            TimeSlot.slot_date <= end_date,
        )
        .group_by(TimeSlot.slot_date)
        .order_by(TimeSlot.slot_date)
    )
    return [
        DailyStats(date=slot_date, appointments=count, revenue_cents=int(revenue))
        for slot_date, count, revenue in result.all()
    ]


async def popular_services(session: AsyncSession, salon_id: str, limit: int = 5) -> list[ServicePopularity]:
    """Services ranked by confirmed or completed bookings."""
    bookings = func.count(Appointment.id)
    result = await session.execute(
        select(
            Service.id,
            Service.name,
            bookings,
            func.coalesce(func.sum(Appointment.total_amount_cents), 0),
        )
        .join(Service, Service.id == Appointment.service_id)
        .where(
            Appointment.salon_id == salon_id,
            Appointment.status.in_([AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED]),
        )
        .group_by(Service.id, Service.name)
        .order_by(bookings.desc(), Service.name)
        .limit(limit)
    )
    return [
        ServicePopularity(service_id=sid, service_name=name, bookings=count, revenue_cents=int(revenue))
        for sid, name, count, revenue in result.all()
    ]


async def busiest_hours(session: AsyncSession, salon_id: str, limit: Optional[int] = None) -> list[BusyHour]:
    """Non-cancelled appointments bucketed by slot start hour, busiest first."""
    result = await session.execute(
        select(TimeSlot.start_time)
        .join(Appointment, Appointment.time_slot_id == TimeSlot.id)
        .where(
            Appointment.salon_id == salon_id,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
    )
    hours = Counter(start.hour for start in result.scalars().all())
    ranked = sorted(hours.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [BusyHour(hour=hour, appointments=count) for hour, count in ranked]


async def revenue(
    session: AsyncSession,
    salon_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> int:
    """Cents collected from completed, paid appointments."""
    stmt = (
        select(func.coalesce(func.sum(Appointment.total_amount_cents), 0))
        .join(TimeSlot, TimeSlot.id == Appointment.time_slot_id)
        .where(
            Appointment.salon_id == salon_id,
            Appointment.status == AppointmentStatus.COMPLETED,
            Appointment.payment_status == PaymentStatus.PAID,
        )
    )
    if start_date is not None:
        stmt = stmt.where(TimeSlot.slot_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(TimeSlot.slot_date <= end_date)
    return int((await session.execute(stmt)).scalar_one())
