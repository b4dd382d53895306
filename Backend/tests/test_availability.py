"""
Availability queries and slot verification.
"""

from datetime import datetime, time, timedelta

import pytest

from salon_booking.booking.availability import (
    list_available,
    list_available_in_range,
    set_available,
    verify_available,
)
from salon_booking.booking.slots import claim_slot
from salon_booking.errors import NotFoundError, SlotInPastError, SlotNotFoundError, SlotUnavailableError


class TestListAvailable:

    @pytest.mark.asyncio
    async def test_ordered_free_slots(self, async_session, salon, slots, tomorrow):
        await set_available(async_session, slots[1].id, False)
        await async_session.commit()

        available = await list_available(async_session, salon.id, tomorrow)

        assert [s.start_time for s in available] == [time(9, 0), time(10, 0)]

    @pytest.mark.asyncio
    async def test_today_drops_started_slots(self, async_session, salon, slots, tomorrow):
        """On the current day only slots starting after now are offered."""
        now = datetime.combine(tomorrow, time(9, 15))
        available = await list_available(async_session, salon.id, tomorrow, now=now)
        assert [s.start_time for s in available] == [time(9, 30), time(10, 0)]

    @pytest.mark.asyncio
    async def test_slot_starting_now_is_listed_and_bookable(self, async_session, salon, slots, tomorrow):
        now = datetime.combine(tomorrow, time(9, 0))

        available = await list_available(async_session, salon.id, tomorrow, now=now)
        in_range = await list_available_in_range(async_session, salon.id, tomorrow, tomorrow, now=now)
        verified = await verify_available(async_session, slots[0].id, now=now)

        assert available[0].id == slots[0].id
        assert in_range[0].id == slots[0].id
        assert verified.id == slots[0].id

    @pytest.mark.asyncio
    async def test_other_days_not_time_filtered(self, async_session, salon, slots, tomorrow):
        now = datetime.combine(tomorrow - timedelta(days=1), time(23, 0))
        available = await list_available(async_session, salon.id, tomorrow, now=now)
        assert len(available) == 3

    @pytest.mark.asyncio
    async def test_unknown_salon(self, async_session):
        with pytest.raises(NotFoundError):
            await list_available(async_session, "nope", datetime.now().date())

    @pytest.mark.asyncio
    async def test_range_excludes_past(self, async_session, salon, slots, past_slot, tomorrow):
        available = await list_available_in_range(
            async_session, salon.id, past_slot.slot_date, tomorrow
        )
        assert [s.id for s in available] == [s.id for s in slots]


class TestVerifyAvailable:

    @pytest.mark.asyncio
    async def test_free_future_slot(self, async_session, slots):
        slot = await verify_available(async_session, slots[0].id)
        assert slot.id == slots[0].id

    @pytest.mark.asyncio
    async def test_missing_slot(self, async_session):
        with pytest.raises(SlotNotFoundError):
            await verify_available(async_session, "missing")

    @pytest.mark.asyncio
    async def test_past_reported_before_flag(self, async_session, past_slot):
        """A past slot is in the past whether or not it is flagged free."""
        await set_available(async_session, past_slot.id, False)
        with pytest.raises(SlotInPastError):
            await verify_available(async_session, past_slot.id)

    @pytest.mark.asyncio
    async def test_unavailable_slot(self, async_session, slots):
        await set_available(async_session, slots[0].id, False)
        with pytest.raises(SlotUnavailableError):
            await verify_available(async_session, slots[0].id)


class TestSlotFlag:

    @pytest.mark.asyncio
    async def test_set_available_missing(self, async_session):
        with pytest.raises(SlotNotFoundError):
            await set_available(async_session, "missing", True)

    @pytest.mark.asyncio
    async def test_claim_is_compare_and_swap(self, async_session, slots):
        assert await claim_slot(async_session, slots[0].id) is True
        assert await claim_slot(async_session, slots[0].id) is False
        await async_session.commit()
        await async_session.refresh(slots[0])
        assert slots[0].is_available is False

    @pytest.mark.asyncio
    async def test_duration(self, slots):
        assert slots[0].duration_minutes == 30
