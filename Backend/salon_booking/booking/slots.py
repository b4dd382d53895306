"""
TimeSlot store.

Row-level persistence for salon time slots. ``is_available`` is claimed through
``claim_slot`` and released through ``availability.set_available``; callers in
the booking lifecycle own the surrounding transaction.
"""

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TimeSlot


async def get_slot(session: AsyncSession, slot_id: str, for_update: bool = False) -> Optional[TimeSlot]:
    stmt = select(TimeSlot).where(TimeSlot.id == slot_id)
    if for_update:
        # FOR UPDATE is a no-op on SQLite, where BEGIN IMMEDIATE serializes instead.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def day_has_slots(session: AsyncSession, salon_id: str, slot_date: date) -> bool:
    result = await session.execute(
        select(TimeSlot.id)
        .where(TimeSlot.salon_id == salon_id, TimeSlot.slot_date == slot_date)
        .limit(1)
    )
    return result.first() is not None


async def list_slots(
    session: AsyncSession,
    salon_id: str,
    start_date: date,
    end_date: Optional[date] = None,
    only_available: bool = False,
) -> Sequence[TimeSlot]:
    end_date = end_date or start_date
    stmt = select(TimeSlot).where(
        TimeSlot.salon_id == salon_id,
        TimeSlot.slot_date >= start_date,
        TimeSlot.slot_date <= end_date,
    )
    if only_available:
        stmt = stmt.where(TimeSlot.is_available.is_(True))
    result = await session.execute(stmt.order_by(TimeSlot.slot_date, TimeSlot.start_time))
    return result.scalars().all()


async def claim_slot(session: AsyncSession, slot_id: str) -> bool:
    """Compare-and-swap the slot from available to taken.

    Returns False when the slot was already taken (or does not exist), so two
    racing writers can never both succeed.
    """
    result = await session.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.is_available == True)  # noqa: E712
        .values(is_available=False)
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount == 1

