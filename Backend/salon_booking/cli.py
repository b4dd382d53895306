#!/usr/bin/env python3
"""
Create the schema and generate bookable time slots.

Safe to run repeatedly (days that already have slots are skipped), so it can be
scheduled daily to keep the booking window filled.

Usage:
    export DATABASE_URL="postgresql+asyncpg://localhost:5432/salon_booking"
    salon-generate-slots                      # every salon, default window
    salon-generate-slots --salon-id <id> --start-date 2030-03-04 --days 14
"""
import argparse
import asyncio
import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .booking.availability import generate_slots, generate_slots_for_all_salons
from .core import db
from .core.db import unit_of_work


logger = logging.getLogger(__name__)


async def run_generation(
    session_factory: async_sessionmaker[AsyncSession],
    salon_id: Optional[str] = None,
    start_date: Optional[date] = None,
    days: Optional[int] = None,
) -> dict[str, int]:
    async with session_factory() as session:
        async with unit_of_work(session):
            if salon_id:
                created = {
                    salon_id: await generate_slots(session, salon_id, start_date=start_date, window_days=days)
                }
            else:
                created = await generate_slots_for_all_salons(session, start_date=start_date, window_days=days)
    for sid, count in created.items():
        logger.info("Salon %s: %d slots created", sid, count)
    return created


async def _main(args: argparse.Namespace) -> None:
    try:
        await db.init_models(db.engine)
        await run_generation(db.AsyncSessionLocal, args.salon_id, args.start_date, args.days)
    finally:
        await db.engine.dispose()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    parser = argparse.ArgumentParser(description="Generate bookable time slots for salons")
    parser.add_argument("--salon-id", help="Only generate for this salon")
    parser.add_argument("--start-date", type=date.fromisoformat, help="First day (YYYY-MM-DD), default today")
    parser.add_argument("--days", type=int, help="Window length in days, default SLOT_WINDOW_DAYS")
    asyncio.run(_main(parser.parse_args()))


if __name__ == "__main__":
    main()
