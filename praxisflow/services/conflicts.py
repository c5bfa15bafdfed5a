"""Service for detecting scheduling conflicts between appointments.

Every function here is pure: it takes the practice's current appointment
snapshot as an argument and returns derived data without touching it.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from praxisflow.domain.models import (
    Appointment,
    CandidateAppointment,
    ConflictCluster,
    ConflictInfo,
    TimeSlot,
)
from praxisflow.services.intervals import overlaps, parse_time, resolve_interval


def _same_day(appointments: list[Appointment], day: date) -> list[Appointment]:
    return [a for a in appointments if a.appointment_date == day]


def _patient_name(appointment: Appointment) -> str:
    patient = appointment.patient
    if patient is None:
        return "Unbekannt"
    parts = [p for p in (patient.first_name, patient.last_name) if p]
    return " ".join(parts) or "Unbekannt"


def conflict_message(conflicting: list[Appointment]) -> str | None:
    """Human-readable (German) warning for a set of conflicting appointments."""
    if not conflicting:
        return None
    if len(conflicting) == 1:
        conflict = conflicting[0]
        return (
            f"Konflikt mit Termin von {_patient_name(conflict)} "
            f"um {conflict.appointment_time} Uhr"
        )
    return f"Konflikt mit {len(conflicting)} anderen Terminen zur gleichen Zeit"


def check_conflicts(
    candidate: CandidateAppointment | Appointment,
    appointments: list[Appointment],
) -> ConflictInfo:
    """Return the appointments that overlap *candidate* on the same day.

    A candidate without date or time never conflicts, so this is safe to call
    while a booking form is still being filled in. When *candidate* has an
    ``id`` (editing), the stored appointment with that id is ignored.
    """
    if candidate.appointment_date is None or not candidate.appointment_time:
        return ConflictInfo(has_conflict=False, conflicting_appointments=[])

    target = resolve_interval(candidate)
    conflicting = [
        appointment
        for appointment in _same_day(appointments, candidate.appointment_date)
        if not (candidate.id and appointment.id == candidate.id)
        and overlaps(target, resolve_interval(appointment))
    ]

    return ConflictInfo(
        has_conflict=bool(conflicting),
        conflicting_appointments=conflicting,
        message=conflict_message(conflicting),
    )


def get_slot_conflicts(
    day: date,
    hour_slot: str,
    appointments: list[Appointment],
) -> list[Appointment]:
    """Return every appointment on *day* that intersects the hour ``[HH:00, HH+1:00)``.

    Only the hour of *hour_slot* is used; ``"09:30"`` means the 09:00 slot.
    """
    slot_hour = parse_time(hour_slot).hour
    slot_start = datetime.combine(day, time(slot_hour))
    window = TimeSlot(start=slot_start, end=slot_start + timedelta(hours=1))

    return [
        appointment
        for appointment in _same_day(appointments, day)
        if overlaps(resolve_interval(appointment), window)
    ]


def summarize_day_conflicts(
    day: date,
    appointments: list[Appointment],
) -> list[ConflictCluster]:
    """Group the overlapping appointments of *day* into clusters.

    Single-seed grouping: walking the day in list order, each unprocessed
    appointment collects the unprocessed appointments that overlap *it*
    directly. A chain A-B-C where A and C do not overlap is therefore not
    merged into one cluster, and the result depends on input order.
    Appointments without any overlap partner are not reported.
    """
    day_appointments = _same_day(appointments, day)
    intervals = {a.id: resolve_interval(a) for a in day_appointments}

    clusters: list[ConflictCluster] = []
    processed: set[str] = set()

    for seed in day_appointments:
        if seed.id in processed:
            continue

        group = [seed]
        for other in day_appointments:
            if other.id == seed.id or other.id in processed:
                continue
            if overlaps(intervals[seed.id], intervals[other.id]):
                group.append(other)
                processed.add(other.id)
        processed.add(seed.id)

        if len(group) > 1:
            times = sorted(a.appointment_time for a in group)
            clusters.append(
                ConflictCluster(appointments=group, time_range=f"{times[0]} - {times[-1]}")
            )

    return clusters
