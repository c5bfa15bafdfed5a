"""Service for listing bookable slots of a practice day."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from praxisflow.config import settings
from praxisflow.domain.models import (
    Appointment,
    AppointmentStatus,
    AvailableSlot,
    CandidateAppointment,
)
from praxisflow.services.conflicts import check_conflicts
from praxisflow.services.intervals import effective_duration


def slot_times_for_date(day: date) -> list[datetime]:
    """Slot start times for *day*, from opening hour up to and including closing hour."""
    slots: list[datetime] = []
    current = datetime.combine(day, time(settings.business_start_hour))
    last = datetime.combine(day, time(settings.business_end_hour))
    delta = timedelta(minutes=settings.slot_interval_minutes)
    while current <= last:
        slots.append(current)
        current += delta
    return slots


def available_slots(
    day: date,
    appointments: list[Appointment],
    duration_minutes: int | None = None,
) -> list[AvailableSlot]:
    """Return the slot grid of *day*, each slot marked free or taken.

    A slot is free when an appointment of *duration_minutes* starting there
    would not conflict with any booked appointment. Cancelled appointments
    do not block slots.
    """
    booked = [a for a in appointments if a.status != AppointmentStatus.CANCELLED]
    duration = effective_duration(duration_minutes)

    out: list[AvailableSlot] = []
    for start in slot_times_for_date(day):
        label = start.strftime("%H:%M")
        candidate = CandidateAppointment(
            appointment_date=day,
            appointment_time=label,
            duration_minutes=duration,
        )
        info = check_conflicts(candidate, booked)
        out.append(
            AvailableSlot(
                time=label,
                start=start,
                end=start + timedelta(minutes=duration),
                available=not info.has_conflict,
            )
        )
    return out
