"""Service for compiling recurring appointment series into RRULE strings and
expanding them into individual appointments."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, rrulestr

from praxisflow.domain.models import Appointment, RecurrenceType, RecurringAppointment
from praxisflow.services.intervals import parse_time

# Open-ended series are materialized this far ahead of their start date.
RECURRENCE_HORIZON_DAYS = 90

# Weekday numbering follows the booking UI: 0 = Sunday ... 6 = Saturday.
_WEEKDAY_MAP = {0: SU, 1: MO, 2: TU, 3: WE, 4: TH, 5: FR, 6: SA}
_WEEKDAY_LABELS = {0: "So", 1: "Mo", 2: "Di", 3: "Mi", 4: "Do", 5: "Fr", 6: "Sa"}
# Monday-first display order
_WEEKDAY_ORDER = [1, 2, 3, 4, 5, 6, 0]

_FREQ_NAMES = {
    RecurrenceType.DAILY: "DAILY",
    RecurrenceType.WEEKLY: "WEEKLY",
    RecurrenceType.MONTHLY: "MONTHLY",
}


def build_rrule(series: RecurringAppointment) -> str:
    """Compile a series' recurrence fields into an RRULE string (without DTSTART/UNTIL)."""
    parts = [f"FREQ={_FREQ_NAMES[series.recurrence_type]}"]
    if series.recurrence_interval > 1:
        parts.append(f"INTERVAL={series.recurrence_interval}")

    if series.recurrence_type == RecurrenceType.WEEKLY and series.days_of_week:
        days = sorted(set(series.days_of_week), key=_WEEKDAY_ORDER.index)
        parts.append("BYDAY=" + ",".join(str(_WEEKDAY_MAP[d]) for d in days))
    elif series.recurrence_type == RecurrenceType.MONTHLY and series.day_of_month:
        parts.append(f"BYMONTHDAY={series.day_of_month}")

    return ";".join(parts)


def _series_end(series: RecurringAppointment, until: date | None) -> date:
    candidates = [d for d in (series.end_date, until) if d is not None]
    if not candidates:
        return series.start_date + timedelta(days=RECURRENCE_HORIZON_DAYS)
    return min(candidates)


def expand_series(series: RecurringAppointment, until: date | None = None) -> list[Appointment]:
    """Expand a recurring series into its individual appointments.

    Occurrences run from ``start_date`` through ``end_date`` (or *until*,
    whichever is earlier; open-ended series stop after
    ``RECURRENCE_HORIZON_DAYS``). Months without the requested day of month
    are skipped. Inactive series produce nothing.
    """
    if not series.is_active:
        return []

    last_day = _series_end(series, until)
    if last_day < series.start_date:
        return []

    dtstart = datetime.combine(series.start_date, parse_time(series.start_time))
    rule_str = (
        f"DTSTART:{dtstart.strftime('%Y%m%dT%H%M%S')}\n"
        f"RRULE:{build_rrule(series)}"
        f";UNTIL={last_day.strftime('%Y%m%d')}T235959"
    )
    rule = rrulestr(rule_str)

    return [
        Appointment(
            practice_id=series.practice_id,
            patient_id=series.patient_id,
            patient=series.patient,
            appointment_date=dt.date(),
            appointment_time=series.start_time,
            duration_minutes=series.duration_minutes,
            service=series.service,
            notes=series.notes,
            recurring_appointment_id=series.id,
        )
        for dt in rule
    ]


def describe_recurrence(series: RecurringAppointment) -> str:
    """German summary of a series' rhythm, e.g. ``"Wöchentlich alle 2 Wochen (Mo, Mi)"``."""
    interval = series.recurrence_interval

    if series.recurrence_type == RecurrenceType.DAILY:
        return "Täglich" + (f" alle {interval} Tage" if interval > 1 else "")

    if series.recurrence_type == RecurrenceType.WEEKLY:
        label = "Wöchentlich" + (f" alle {interval} Wochen" if interval > 1 else "")
        if series.days_of_week:
            days = sorted(set(series.days_of_week), key=_WEEKDAY_ORDER.index)
            label += " (" + ", ".join(_WEEKDAY_LABELS[d] for d in days) + ")"
        return label

    day_of_month = series.day_of_month or series.start_date.day
    return (
        "Monatlich"
        + (f" alle {interval} Monate" if interval > 1 else "")
        + f" am {day_of_month}."
    )
