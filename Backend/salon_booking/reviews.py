import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core import clock
from .core.config import get_settings
from .core.db import unit_of_work
from .errors import BookingValidationError, NotFoundError, ReviewEditWindowExpiredError
from .models import Appointment, Review, Salon
from .ratings import RatingSummary, compute_rating_summary, schedule_rating_refresh


logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


@dataclass(frozen=True)
class ReviewInput:
    salon_id: str
    reviewer_name: str
    reviewer_email: str
    rating: int
    comment: str
    appointment_id: Optional[str] = None


def _check_rating(rating: int) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise BookingValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}", {"field": "rating"}
        )


async def get_review(session: AsyncSession, review_id: str) -> Review:
    review = await session.get(Review, review_id)
    if review is None:
        raise NotFoundError("Review", review_id)
    return review


async def list_salon_reviews(session: AsyncSession, salon_id: str, sort: str = "recent") -> Sequence[Review]:
    if await session.get(Salon, salon_id) is None:
        raise NotFoundError("Salon", salon_id)
    order = {
        "highest": (Review.rating.desc(), Review.review_date.desc()),
        "lowest": (Review.rating.asc(), Review.review_date.desc()),
    }.get(sort, (Review.review_date.desc(),))
    result = await session.execute(
        select(Review)
        .where(Review.salon_id == salon_id, Review.is_visible.is_(True))
        .order_by(*order)
    )
    return result.scalars().all()


async def create_review(
    session: AsyncSession,
    data: ReviewInput,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Review:
    """Store a review; linking it to an appointment of the same salon marks it verified."""
    _check_rating(data.rating)
    async with unit_of_work(session):
        if await session.get(Salon, data.salon_id) is None:
            raise NotFoundError("Salon", data.salon_id)
        if data.appointment_id:
            appointment = await session.get(Appointment, data.appointment_id)
            if appointment is None:
                raise NotFoundError("Appointment", data.appointment_id)
            if appointment.salon_id != data.salon_id:
                raise BookingValidationError(
                    "Appointment belongs to a different salon", {"appointment_id": data.appointment_id}
                )

        now = clock.utc_now()
        review = Review(
            salon_id=data.salon_id,
            appointment_id=data.appointment_id,
            reviewer_name=data.reviewer_name.strip(),
            reviewer_email=data.reviewer_email.strip().lower(),
            rating=data.rating,
            comment=data.comment.strip(),
            review_date=now,
            last_modified=now,
            is_verified=data.appointment_id is not None,
            is_visible=True,
        )
        session.add(review)
        await session.flush()

    logger.info("Review %s created for salon %s", review.id, review.salon_id)
    schedule_rating_refresh(review.salon_id, session_factory)
    return review


async def update_review(
    session: AsyncSession,
    review_id: str,
    rating: Optional[int] = None,
    comment: Optional[str] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Review:
    edit_window = get_settings().review_edit_window_hours
    async with unit_of_work(session):
        review = await get_review(session, review_id)
        if clock.utc_now() - clock.ensure_utc(review.review_date) > timedelta(hours=edit_window):
            raise ReviewEditWindowExpiredError(edit_window)
        if rating is not None:
            _check_rating(rating)
            review.rating = rating
        if comment is not None and comment.strip():
            review.comment = comment.strip()
        review.last_modified = clock.utc_now()
        await session.flush()

    logger.info("Review %s updated", review_id)
    schedule_rating_refresh(review.salon_id, session_factory)
    return review


async def delete_review(
    session: AsyncSession,
    review_id: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    """Soft delete: the review is hidden, never removed."""
    async with unit_of_work(session):
        review = await get_review(session, review_id)
        review.is_visible = False
        salon_id = review.salon_id
        await session.flush()

    logger.info("Review %s hidden", review_id)
    schedule_rating_refresh(salon_id, session_factory)


async def rating_summary(session: AsyncSession, salon_id: str) -> RatingSummary:
    if await session.get(Salon, salon_id) is None:
        raise NotFoundError("Salon", salon_id)
    return await compute_rating_summary(session, salon_id)
