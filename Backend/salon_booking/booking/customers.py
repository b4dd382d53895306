import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..errors import NotFoundError
from ..models import Customer


logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_customer_by_email(session: AsyncSession, email: str) -> Optional[Customer]:
    result = await session.execute(select(Customer).where(Customer.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_customer(session: AsyncSession, customer_id: str) -> Customer:
    customer = await session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


async def get_customer_by_email(session: AsyncSession, email: str) -> Customer:
    customer = await find_customer_by_email(session, email)
    if customer is None:
        raise NotFoundError("Customer", normalize_email(email))
    return customer


async def resolve_or_create(
    session: AsyncSession,
    name: str,
    email: str,
    phone: Optional[str] = None,
    preferred_contact: Optional[str] = None,
    notes: Optional[str] = None,
) -> Customer:
    """
    Return the customer owning ``email``, creating one on first booking.

    An existing customer is returned as stored: later bookings never overwrite
    the name or phone captured the first time.
    """
    normalized = normalize_email(email)
    customer = await find_customer_by_email(session, normalized)
    if customer:
        return customer

    customer = Customer(
        name=name.strip(),
        email=normalized,
        phone=phone.strip() if phone else None,
        preferred_contact=preferred_contact,
        notes=notes,
        created_at=clock.utc_now(),
    )
    try:
        async with session.begin_nested():
            session.add(customer)
            await session.flush()
    except IntegrityError:
        # Lost the race to a concurrent first booking with the same email.
        existing = await find_customer_by_email(session, normalized)
        if existing is None:
            raise
        return existing

    logger.info("Created customer %s for %s", customer.id, normalized)
    return customer
