"""Domain models for practice scheduling."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from praxisflow.domain.times import format_appointment_time


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# "HH:MM", zero-padded; "HH:MM:SS" is accepted and trimmed.
AppointmentTime = Annotated[str, BeforeValidator(format_appointment_time)]


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Half-filled booking forms send "" for a time not yet chosen.
OptionalAppointmentTime = Annotated[AppointmentTime | None, BeforeValidator(_blank_to_none)]


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Practice(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    phone: str | None = None
    email: str | None = None


class Patient(BaseModel):
    id: str = Field(default_factory=_new_id)
    practice_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Appointment(BaseModel):
    id: str = Field(default_factory=_new_id)
    practice_id: str | None = None
    patient_id: str | None = None
    patient: Patient | None = None
    appointment_date: date
    appointment_time: AppointmentTime
    duration_minutes: int | None = Field(default=None, ge=0)
    service: str | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None
    ai_booked: bool = False
    recurring_appointment_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class CandidateAppointment(BaseModel):
    """An appointment being created or edited, possibly only half filled in."""

    id: str | None = None
    appointment_date: date | None = None
    appointment_time: OptionalAppointmentTime = None
    duration_minutes: int | None = Field(default=None, ge=0)


class RecurringAppointment(BaseModel):
    id: str = Field(default_factory=_new_id)
    practice_id: str | None = None
    patient_id: str | None = None
    patient: Patient | None = None
    service: str
    duration_minutes: int = Field(default=30, gt=0)
    notes: str | None = None
    recurrence_type: RecurrenceType = RecurrenceType.WEEKLY
    recurrence_interval: int = Field(default=1, ge=1)
    # 0 = Sunday ... 6 = Saturday
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    start_time: AppointmentTime
    start_date: date
    end_date: date | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> RecurringAppointment:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ConflictWarning(BaseModel):
    """Advisory record that a stored appointment overlaps others."""

    id: str = Field(default_factory=_new_id)
    practice_id: str | None = None
    appointment_id: str
    conflicting_appointment_ids: list[str]
    message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Derived values (computed on demand, never stored)
# ---------------------------------------------------------------------------


class TimeSlot(BaseModel):
    start: datetime
    end: datetime


class ConflictInfo(BaseModel):
    has_conflict: bool
    conflicting_appointments: list[Appointment] = Field(default_factory=list)
    message: str | None = None


class ConflictCluster(BaseModel):
    appointments: list[Appointment]
    time_range: str


class AvailableSlot(BaseModel):
    time: str
    start: datetime
    end: datetime
    available: bool


# ---------------------------------------------------------------------------
# AI booking
# ---------------------------------------------------------------------------


class BookingData(BaseModel):
    patient_name: str = Field(min_length=1)
    patient_phone: str = Field(min_length=5)
    service: str = Field(min_length=1)
    preferred_date: date
    preferred_time: AppointmentTime
    confirmed: bool


class AiBookingRequest(BaseModel):
    practice_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=10000)
    caller_phone: str | None = None


class BookingResult(BaseModel):
    response: str
    booking_confirmed: bool
    appointment_id: str | None = None
    action_type: str
    conflict_message: str | None = None


class CallOutcome(StrEnum):
    APPOINTMENT_BOOKED = "appointment_booked"
    INFORMATION_PROVIDED = "information_provided"


class AiCallLog(BaseModel):
    """One voice-agent call handled by the booking webhook, booked or not."""

    id: str = Field(default_factory=_new_id)
    practice_id: str
    caller_phone: str | None = None
    outcome: CallOutcome
    transcript: str
    appointment_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class PracticeCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: str | None = None
    email: str | None = None


class PatientCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    phone: str | None = None
    email: str | None = None


class AppointmentCreate(BaseModel):
    patient_id: str | None = None
    appointment_date: date
    appointment_time: AppointmentTime
    duration_minutes: int | None = Field(default=None, gt=0)
    service: str | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None


class AppointmentUpdate(BaseModel):
    patient_id: str | None = None
    appointment_date: date | None = None
    appointment_time: AppointmentTime | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    service: str | None = None
    status: AppointmentStatus | None = None
    notes: str | None = None


class AppointmentWriteResponse(BaseModel):
    appointment: Appointment
    conflicts: ConflictInfo


class RecurringAppointmentCreate(BaseModel):
    patient_id: str | None = None
    service: str = Field(min_length=1)
    duration_minutes: int = Field(default=30, gt=0)
    notes: str | None = None
    recurrence_type: RecurrenceType = RecurrenceType.WEEKLY
    recurrence_interval: int = Field(default=1, ge=1)
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    start_time: AppointmentTime
    start_date: date
    end_date: date | None = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> RecurringAppointmentCreate:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringSeriesResponse(BaseModel):
    series: RecurringAppointment
    description: str
    appointments: list[Appointment]
