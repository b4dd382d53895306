"""Salon review HTTP API. Each write schedules a background rating refresh."""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from . import reviews
from .appointments_api import EMAIL_PATTERN
from .core import clock
from .core.db import get_session
from .core.responses import ErrorResponse
from .models import Review

router = APIRouter(
    prefix="/api/reviews",
    tags=["reviews"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


# ────────────────────────────────────────────────────────────────
# Request / Response Models
# ────────────────────────────────────────────────────────────────

class CreateReviewRequest(BaseModel):
    salon_id: str = Field(..., min_length=1)
    reviewer_name: str = Field(..., min_length=2, max_length=100)
    reviewer_email: str = Field(..., max_length=255)
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10, max_length=500)
    appointment_id: Optional[str] = None

    @field_validator("reviewer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v


class UpdateReviewRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, min_length=10, max_length=500)

    @model_validator(mode="after")
    def validate_has_changes(self):
        if self.rating is None and self.comment is None:
            raise ValueError("Provide a rating or a comment to update")
        return self


class ReviewResponse(BaseModel):
    id: str
    salon_id: str
    appointment_id: Optional[str] = None
    reviewer_name: str
    rating: int
    comment: str
    review_date: datetime
    last_modified: Optional[datetime] = None
    is_verified: bool


class RatingSummaryResponse(BaseModel):
    salon_id: str
    average_rating: float
    total_reviews: int
    distribution: dict[int, int]


def review_to_response(review: Review) -> ReviewResponse:
    return ReviewResponse(
        id=review.id,
        salon_id=review.salon_id,
        appointment_id=review.appointment_id,
        reviewer_name=review.reviewer_name,
        rating=review.rating,
        comment=review.comment,
        review_date=clock.ensure_utc(review.review_date),
        last_modified=clock.ensure_utc(review.last_modified),
        is_verified=review.is_verified,
    )


def _session_factory(request: Request):
    return getattr(request.app.state, "session_factory", None)


# ────────────────────────────────────────────────────────────────
# Endpoints
# ────────────────────────────────────────────────────────────────

@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: CreateReviewRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    review = await reviews.create_review(
        session,
        reviews.ReviewInput(**payload.model_dump()),
        session_factory=_session_factory(request),
    )
    return review_to_response(review)


@router.get("/salon/{salon_id}", response_model=list[ReviewResponse])
async def list_salon_reviews(
    salon_id: str,
    sort: Literal["recent", "highest", "lowest"] = Query(default="recent"),
    session: AsyncSession = Depends(get_session),
):
    return [review_to_response(r) for r in await reviews.list_salon_reviews(session, salon_id, sort)]


@router.get("/salon/{salon_id}/summary", response_model=RatingSummaryResponse)
async def rating_summary(salon_id: str, session: AsyncSession = Depends(get_session)):
    summary = await reviews.rating_summary(session, salon_id)
    return RatingSummaryResponse(
        salon_id=summary.salon_id,
        average_rating=summary.average_rating,
        total_reviews=summary.total_reviews,
        distribution=summary.distribution,
    )


@router.get("/{review_id}", response_model=ReviewResponse)
async def get_review(review_id: str, session: AsyncSession = Depends(get_session)):
    return review_to_response(await reviews.get_review(session, review_id))


@router.put("/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: str,
    payload: UpdateReviewRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    review = await reviews.update_review(
        session,
        review_id,
        rating=payload.rating,
        comment=payload.comment,
        session_factory=_session_factory(request),
    )
    return review_to_response(review)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    await reviews.delete_review(session, review_id, session_factory=_session_factory(request))
