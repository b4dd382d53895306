"""
Salon rating cache.

``Salon.average_rating`` and ``Salon.total_reviews`` are derived from visible
reviews. Review writes schedule a refresh as a background task with its own
session; the cache is eventually consistent and a failed refresh is only logged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core import db
from .errors import NotFoundError
from .models import Review, Salon


logger = logging.getLogger(__name__)

# Strong references so pending refreshes are not garbage collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


@dataclass
class RatingSummary:
    salon_id: str
    average_rating: float
    total_reviews: int
    distribution: dict[int, int] = field(default_factory=dict)


def round_rating(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


async def compute_rating_summary(session: AsyncSession, salon_id: str) -> RatingSummary:
    result = await session.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.salon_id == salon_id, Review.is_visible.is_(True))
        .group_by(Review.rating)
    )
    distribution = {stars: 0 for stars in range(5, 0, -1)}
    for rating, count in result.all():
        distribution[int(rating)] = count

    total = sum(distribution.values())
    average = sum(stars * count for stars, count in distribution.items()) / total if total else 0.0
    return RatingSummary(
        salon_id=salon_id,
        average_rating=round_rating(average),
        total_reviews=total,
        distribution=distribution,
    )


async def refresh_salon_rating(
    salon_id: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    """Recompute the cached rating fields of one salon. Never raises."""
    session_factory = session_factory or db.AsyncSessionLocal
    try:
        async with session_factory() as session:
            summary = await compute_rating_summary(session, salon_id)
            salon = await session.get(Salon, salon_id)
            if salon is None:
                raise NotFoundError("Salon", salon_id)
            salon.average_rating = summary.average_rating if summary.total_reviews else None
            salon.total_reviews = summary.total_reviews
            await session.commit()
        logger.info(
            "Updated cached rating for salon %s: avg=%s, total=%s",
            salon_id,
            summary.average_rating,
            summary.total_reviews,
        )
    except Exception:
        logger.exception("Failed to update salon rating cache for %s", salon_id)


def schedule_rating_refresh(
    salon_id: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> asyncio.Task:
    """Fire-and-forget ``refresh_salon_rating``; must be called from a running loop."""
    task = asyncio.create_task(refresh_salon_rating(salon_id, session_factory))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
