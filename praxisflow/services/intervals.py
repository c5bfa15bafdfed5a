"""Resolve appointments into concrete time intervals and test them for overlap."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Protocol

from praxisflow.config import settings
from praxisflow.domain.models import TimeSlot
from praxisflow.domain.times import format_appointment_time, parse_time


class Schedulable(Protocol):
    appointment_date: date
    appointment_time: str
    duration_minutes: int | None


def effective_duration(duration_minutes: int | None) -> int:
    """Zero or missing durations fall back to the practice default."""
    return duration_minutes or settings.default_duration_minutes


def resolve_interval(appointment: Schedulable) -> TimeSlot:
    """Return the wall-clock ``[start, end)`` interval of an appointment.

    The end is not clamped to the appointment's date, so a late appointment
    can end after midnight.
    """
    start = datetime.combine(
        appointment.appointment_date, parse_time(appointment.appointment_time)
    )
    end = start + timedelta(minutes=effective_duration(appointment.duration_minutes))
    return TimeSlot(start=start, end=end)


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    """Half-open overlap test: intervals that only touch do not overlap."""
    return a.start < b.end and b.start < a.end
