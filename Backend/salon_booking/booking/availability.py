"""
Slot availability manager.

Generates bookable slots from salon opening hours and answers "what can be
booked" questions. Slot dates and times are salon-local wall-clock values.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import get_settings
from ..errors import (
    BookingValidationError,
    NotFoundError,
    SlotInPastError,
    SlotNotFoundError,
    SlotUnavailableError,
)
from ..models import Salon, TimeSlot
from . import slots as slot_store


logger = logging.getLogger(__name__)


def _resolve_hours(salon: Salon, open_time: Optional[time], close_time: Optional[time]) -> tuple[time, time]:
    settings = get_settings()
    fallback_open = clock.parse_clock_time(settings.default_open_time) or time(9, 0)
    fallback_close = clock.parse_clock_time(settings.default_close_time) or time(18, 0)

    if open_time is None:
        open_time = clock.parse_clock_time(salon.open_time)
        if open_time is None:
            if salon.open_time:
                logger.warning("Unparsable open time %r for salon %s, using %s", salon.open_time, salon.id, fallback_open)
            open_time = fallback_open
    if close_time is None:
        close_time = clock.parse_clock_time(salon.close_time)
        if close_time is None:
            if salon.close_time:
                logger.warning("Unparsable close time %r for salon %s, using %s", salon.close_time, salon.id, fallback_close)
            close_time = fallback_close
    return open_time, close_time


def _check_positive(field: str, value: int) -> None:
    if value <= 0:
        raise BookingValidationError(f"{field} must be positive", {"field": field, "value": value})


def _default_lunch_break() -> Optional[tuple[time, time]]:
    settings = get_settings()
    start = clock.parse_clock_time(settings.lunch_break_start)
    end = clock.parse_clock_time(settings.lunch_break_end)
    if start and end and start < end:
        return start, end
    return None


def build_day_slots(
    salon_id: str,
    slot_date: date,
    open_time: time,
    close_time: time,
    slot_duration_minutes: int,
    lunch_break: Optional[tuple[time, time]] = None,
) -> list[TimeSlot]:
    """Fixed-length slots from open to close; the last one ends at or before close."""
    _check_positive("slot_duration_minutes", slot_duration_minutes)
    step = timedelta(minutes=slot_duration_minutes)
    cursor = datetime.combine(slot_date, open_time)
    day_end = datetime.combine(slot_date, close_time)
    day_slots: list[TimeSlot] = []

    while cursor + step <= day_end:
        slot_end = cursor + step
        if lunch_break:
            break_start = datetime.combine(slot_date, lunch_break[0])
            break_end = datetime.combine(slot_date, lunch_break[1])
            if cursor < break_end and slot_end > break_start:
                cursor = slot_end
                continue
        day_slots.append(
            TimeSlot(
                salon_id=salon_id,
                slot_date=slot_date,
                start_time=cursor.time(),
                end_time=slot_end.time(),
                is_available=True,
            )
        )
        cursor = slot_end

    return day_slots


async def get_salon(session: AsyncSession, salon_id: str) -> Salon:
    salon = await session.get(Salon, salon_id)
    if salon is None:
        raise NotFoundError("Salon", salon_id)
    return salon


async def generate_slots(
    session: AsyncSession,
    salon_id: str,
    start_date: Optional[date] = None,
    window_days: Optional[int] = None,
    open_time: Optional[time] = None,
    close_time: Optional[time] = None,
    slot_duration_minutes: Optional[int] = None,
    lunch_break: Optional[tuple[time, time]] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Create slots for ``window_days`` days starting at ``start_date``.

    Days before today and days that already have slots for the salon are left
    alone, so calling this twice for the same window creates nothing the second
    time. Returns the number of slots created. The caller commits.
    """
    settings = get_settings()
    salon = await get_salon(session, salon_id)
    now = now or clock.local_now()
    today = now.date()
    start_date = start_date or today
    window_days = settings.slot_window_days if window_days is None else window_days
    if slot_duration_minutes is None:
        slot_duration_minutes = settings.slot_duration_minutes
    _check_positive("window_days", window_days)
    _check_positive("slot_duration_minutes", slot_duration_minutes)
    lunch_break = lunch_break or _default_lunch_break()
    open_time, close_time = _resolve_hours(salon, open_time, close_time)

    created = 0
    for offset in range(window_days):
        slot_date = start_date + timedelta(days=offset)
        if slot_date < today:
            continue
        if await slot_store.day_has_slots(session, salon_id, slot_date):
            continue

        day_slots = build_day_slots(
            salon_id, slot_date, open_time, close_time, slot_duration_minutes, lunch_break
        )
        try:
            async with session.begin_nested():
                session.add_all(day_slots)
                await session.flush()
        except IntegrityError:
            # Another generator filled this day between our check and insert.
            logger.info("Slots for salon %s on %s created concurrently, skipping", salon_id, slot_date)
            continue
        created += len(day_slots)

    logger.info("Generated %d slots for salon %s from %s", created, salon_id, start_date)
    return created


async def generate_slots_for_all_salons(
    session: AsyncSession,
    start_date: Optional[date] = None,
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """Run the generator for every salon; one salon failing never stops the sweep."""
    if window_days is not None:
        _check_positive("window_days", window_days)
    result = await session.execute(select(Salon.id).order_by(Salon.created_at))
    salon_ids = list(result.scalars().all())
    created: dict[str, int] = {}

    for salon_id in salon_ids:
        try:
            async with session.begin_nested():
                created[salon_id] = await generate_slots(
                    session, salon_id, start_date=start_date, window_days=window_days, now=now
                )
        except Exception:
            logger.exception("Failed to generate slots for salon %s", salon_id)

    logger.info("Slot generation sweep finished for %d of %d salons", len(created), len(salon_ids))
    return created


async def list_available(
    session: AsyncSession,
    salon_id: str,
    slot_date: date,
    now: Optional[datetime] = None,
) -> Sequence[TimeSlot]:
    """Free slots of one day, ordered by start time; slots of today that started before now are dropped."""
    await get_salon(session, salon_id)
    now = now or clock.local_now()
    available = await slot_store.list_slots(session, salon_id, slot_date, only_available=True)
    if slot_date == now.date():
        current = now.time()
        available = [slot for slot in available if slot.start_time >= current]
    return available


async def list_available_in_range(
    session: AsyncSession,
    salon_id: str,
    start_date: date,
    end_date: date,
    now: Optional[datetime] = None,
) -> Sequence[TimeSlot]:
    await get_salon(session, salon_id)
    now = now or clock.local_now()
    available = await slot_store.list_slots(session, salon_id, start_date, end_date, only_available=True)
    return [slot for slot in available if slot.starts_at >= now]


def is_in_past(slot: TimeSlot, now: Optional[datetime] = None) -> bool:
    now = now or clock.local_now()
    return slot.starts_at < now


async def verify_available(
    session: AsyncSession,
    slot_id: str,
    now: Optional[datetime] = None,
    for_update: bool = False,
) -> TimeSlot:
    """Return the slot if it can be booked, else raise the most specific error.

    A past slot reports SlotInPastError whatever its availability flag says.
    """
    slot = await slot_store.get_slot(session, slot_id, for_update=for_update)
    if slot is None:
        raise SlotNotFoundError(slot_id)
    if is_in_past(slot, now):
        raise SlotInPastError(slot_id)
    if not slot.is_available:
        raise SlotUnavailableError(slot_id)
    return slot


async def set_available(session: AsyncSession, slot_id: str, available: bool) -> TimeSlot:
    slot = await slot_store.get_slot(session, slot_id)
    if slot is None:
        raise SlotNotFoundError(slot_id)
    slot.is_available = available
    await session.flush()
    return slot
