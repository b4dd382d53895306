"""
Appointment booking HTTP API.

Thin FastAPI layer over ``salon_booking.booking``. Business errors propagate as
BookingError subclasses and are mapped to status codes by the handlers
registered in main.py.
"""

import re
from datetime import date, datetime, time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import appointments as appointment_store
from .booking import availability, lifecycle, statistics
from .booking import status as status_machine
from .booking.appointments import AppointmentDetails
from .booking.customers import get_customer
from .core import clock
from .core.db import get_session, unit_of_work
from .core.responses import ErrorResponse
from .models import AppointmentStatus, PaymentStatus, TimeSlot

router = APIRouter(
    prefix="/api/appointments",
    tags=["appointments"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")


# ────────────────────────────────────────────────────────────────
# Request / Response Models
# ────────────────────────────────────────────────────────────────

class CreateAppointmentRequest(BaseModel):
    salon_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    time_slot_id: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=2, max_length=100)
    customer_email: str = Field(..., max_length=255)
    customer_phone: str
    preferred_contact: Optional[Literal["EMAIL", "PHONE", "SMS"]] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Customer name must be at least 2 characters")
        return v

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        digits = re.sub(r"[\s\-().]", "", v)
        if not PHONE_PATTERN.match(digits):
            raise ValueError("Invalid phone number format")
        return digits


class StaffAssignmentRequest(BaseModel):
    staff_name: str = Field(..., min_length=1, max_length=255)


class PaymentRequest(BaseModel):
    method: Literal["CASH", "CARD", "UPI", "ONLINE"]
    reference: Optional[str] = Field(default=None, max_length=128)


class TimeSlotResponse(BaseModel):
    id: str
    salon_id: str
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    is_available: bool


class AppointmentResponse(BaseModel):
    id: str
    appointment_number: str
    confirmation_code: str
    status: AppointmentStatus
    status_display: str
    salon_id: str
    salon_name: Optional[str] = None
    salon_address: Optional[str] = None
    salon_phone: Optional[str] = None
    service_id: str
    service_name: Optional[str] = None
    duration_minutes: Optional[int] = None
    customer_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    time_slot: Optional[TimeSlotResponse] = None
    booking_date: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    total_amount_cents: int
    customer_notes: Optional[str] = None
    assigned_staff: Optional[str] = None
    allowed_actions: list[str]


class GenerateSlotsResponse(BaseModel):
    created: dict[str, int]
    total: int


class DailyStatsResponse(BaseModel):
    date: date
    appointments: int
    revenue_cents: int


class SalonStatsResponse(BaseModel):
    salon_id: str
    status_counts: dict[str, int]
    today_appointments: int
    revenue_cents: int
    popular_services: list[dict]
    busiest_hours: list[dict]


# ────────────────────────────────────────────────────────────────
# Serialization
# ────────────────────────────────────────────────────────────────

def slot_to_response(slot: TimeSlot) -> TimeSlotResponse:
    return TimeSlotResponse(
        id=slot.id,
        salon_id=slot.salon_id,
        date=slot.slot_date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        duration_minutes=slot.duration_minutes,
        is_available=slot.is_available,
    )


def details_to_response(details: AppointmentDetails) -> AppointmentResponse:
    appointment = details.appointment
    customer, service, salon = details.customer, details.service, details.salon
    return AppointmentResponse(
        id=appointment.id,
        appointment_number=appointment.appointment_number,
        confirmation_code=appointment.confirmation_code,
        status=appointment.status,
        status_display=status_machine.display_name(appointment.status),
        salon_id=appointment.salon_id,
        salon_name=salon.name if salon else None,
        salon_address=salon.address if salon else None,
        salon_phone=salon.phone if salon else None,
        service_id=appointment.service_id,
        service_name=service.name if service else None,
        duration_minutes=service.duration_minutes if service else None,
        customer_id=appointment.customer_id,
        customer_name=customer.name if customer else None,
        customer_email=customer.email if customer else None,
        customer_phone=customer.phone if customer else None,
        time_slot=slot_to_response(details.time_slot) if details.time_slot else None,
        booking_date=clock.ensure_utc(appointment.booking_date),
        confirmed_at=clock.ensure_utc(appointment.confirmed_at),
        completed_at=clock.ensure_utc(appointment.completed_at),
        cancelled_at=clock.ensure_utc(appointment.cancelled_at),
        cancelled_by=appointment.cancelled_by,
        cancellation_reason=appointment.cancellation_reason,
        payment_status=appointment.payment_status,
        payment_method=appointment.payment_method,
        paid_at=clock.ensure_utc(appointment.paid_at),
        total_amount_cents=appointment.total_amount_cents,
        customer_notes=appointment.customer_notes,
        assigned_staff=appointment.assigned_staff,
        allowed_actions=status_machine.allowed_actions(appointment.status),
    )


async def _respond_one(session: AsyncSession, appointment) -> AppointmentResponse:
    [details] = await appointment_store.load_details(session, [appointment])
    return details_to_response(details)


async def _respond_many(session: AsyncSession, appointments) -> list[AppointmentResponse]:
    return [details_to_response(d) for d in await appointment_store.load_details(session, appointments)]


# ────────────────────────────────────────────────────────────────
# Booking lifecycle
# ────────────────────────────────────────────────────────────────

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    payload: CreateAppointmentRequest,
    session: AsyncSession = Depends(get_session),
):
    appointment = await lifecycle.create_appointment(
        session,
        lifecycle.BookingRequest(
            salon_id=payload.salon_id,
            service_id=payload.service_id,
            time_slot_id=payload.time_slot_id,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            preferred_contact=payload.preferred_contact,
            notes=payload.notes,
        ),
    )
    return await _respond_one(session, appointment)


@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    reason: Optional[str] = Query(default=None, max_length=500),
    cancelled_by: Optional[str] = Query(default=None, max_length=64),
    session: AsyncSession = Depends(get_session),
):
    appointment = await lifecycle.cancel_appointment(session, appointment_id, reason, cancelled_by)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: str,
    new_time_slot_id: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_session),
):
    appointment = await lifecycle.reschedule_appointment(session, appointment_id, new_time_slot_id)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(appointment_id: str, session: AsyncSession = Depends(get_session)):
    appointment = await lifecycle.confirm_appointment(session, appointment_id)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(appointment_id: str, session: AsyncSession = Depends(get_session)):
    appointment = await lifecycle.complete_appointment(session, appointment_id)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_no_show(appointment_id: str, session: AsyncSession = Depends(get_session)):
    appointment = await lifecycle.mark_no_show(session, appointment_id)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/staff", response_model=AppointmentResponse)
async def assign_staff(
    appointment_id: str,
    payload: StaffAssignmentRequest,
    session: AsyncSession = Depends(get_session),
):
    appointment = await lifecycle.assign_staff(session, appointment_id, payload.staff_name)
    return await _respond_one(session, appointment)


@router.put("/{appointment_id}/payment", response_model=AppointmentResponse)
async def record_payment(
    appointment_id: str,
    payload: PaymentRequest,
    session: AsyncSession = Depends(get_session),
):
    appointment = await lifecycle.record_payment(session, appointment_id, payload.method, payload.reference)
    return await _respond_one(session, appointment)


# ────────────────────────────────────────────────────────────────
# Time slots
# ────────────────────────────────────────────────────────────────

@router.get("/slots/available", response_model=list[TimeSlotResponse])
async def get_available_slots(
    salon_id: str = Query(..., min_length=1),
    slot_date: date = Query(..., alias="date"),
    end_date: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    if end_date is not None and end_date > slot_date:
        slots = await availability.list_available_in_range(session, salon_id, slot_date, end_date)
    else:
        slots = await availability.list_available(session, salon_id, slot_date)
    return [slot_to_response(slot) for slot in slots]


@router.post("/slots/generate", response_model=GenerateSlotsResponse)
async def generate_slots(
    salon_id: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    async with unit_of_work(session):
        if salon_id:
            created = {salon_id: await availability.generate_slots(session, salon_id, start_date=start_date)}
        else:
            created = await availability.generate_slots_for_all_salons(session, start_date=start_date)
    return GenerateSlotsResponse(created=created, total=sum(created.values()))


# ────────────────────────────────────────────────────────────────
# Lookups
# ────────────────────────────────────────────────────────────────

@router.get("/confirmation/{code}", response_model=AppointmentResponse)
async def get_by_confirmation_code(code: str, session: AsyncSession = Depends(get_session)):
    appointment = await appointment_store.get_by_confirmation_code(session, code)
    return await _respond_one(session, appointment)


@router.get("/number/{appointment_number}", response_model=AppointmentResponse)
async def get_by_appointment_number(appointment_number: str, session: AsyncSession = Depends(get_session)):
    appointment = await appointment_store.get_by_appointment_number(session, appointment_number)
    return await _respond_one(session, appointment)


@router.get("/customer/{customer_id}", response_model=list[AppointmentResponse])
async def list_customer_appointments(customer_id: str, session: AsyncSession = Depends(get_session)):
    await get_customer(session, customer_id)
    appointments = await appointment_store.list_for_customer(session, customer_id)
    return await _respond_many(session, appointments)


@router.get("/salon/{salon_id}", response_model=list[AppointmentResponse])
async def list_salon_appointments(
    salon_id: str,
    appointment_status: Optional[AppointmentStatus] = Query(default=None, alias="status"),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    upcoming: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
):
    await availability.get_salon(session, salon_id)
    if upcoming:
        appointments = await appointment_store.list_upcoming(session, salon_id)
    else:
        appointments = await appointment_store.list_for_salon(session, salon_id, appointment_status, start_date, end_date)
    return await _respond_many(session, appointments)


@router.get("/status/{appointment_status}", response_model=list[AppointmentResponse])
async def list_by_status(appointment_status: AppointmentStatus, session: AsyncSession = Depends(get_session)):
    appointments = await appointment_store.list_by_status(session, appointment_status)
    return await _respond_many(session, appointments)


# ────────────────────────────────────────────────────────────────
# Statistics
# ────────────────────────────────────────────────────────────────

@router.get("/stats/salon/{salon_id}", response_model=SalonStatsResponse)
async def salon_stats(salon_id: str, session: AsyncSession = Depends(get_session)):
    await availability.get_salon(session, salon_id)
    popular = await statistics.popular_services(session, salon_id)
    hours = await statistics.busiest_hours(session, salon_id, limit=5)
    return SalonStatsResponse(
        salon_id=salon_id,
        status_counts=await statistics.status_counts(session, salon_id),
        today_appointments=await statistics.count_for_date(session, salon_id, clock.local_today()),
        revenue_cents=await statistics.revenue(session, salon_id),
        popular_services=[vars(p) for p in popular],
        busiest_hours=[vars(h) for h in hours],
    )


@router.get("/stats/salon/{salon_id}/daily", response_model=list[DailyStatsResponse])
async def salon_daily_stats(
    salon_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    session: AsyncSession = Depends(get_session),
):
    await availability.get_salon(session, salon_id)
    rows = await statistics.daily_stats(session, salon_id, start_date, end_date)
    return [DailyStatsResponse(date=row.date, appointments=row.appointments, revenue_cents=row.revenue_cents) for row in rows]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(appointment_id: str, session: AsyncSession = Depends(get_session)):
    appointment = await appointment_store.get_appointment(session, appointment_id)
    return await _respond_one(session, appointment)
