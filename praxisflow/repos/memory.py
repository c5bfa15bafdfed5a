"""In-memory, practice-scoped repositories."""

from __future__ import annotations

from datetime import date

from praxisflow.domain.models import (
    AiCallLog,
    Appointment,
    ConflictWarning,
    Patient,
    Practice,
    RecurringAppointment,
)


class PracticeRepository:
    """Dict-backed store for Practice instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Practice] = {}

    def add(self, practice: Practice) -> None:
        self._store[practice.id] = practice

    def get(self, practice_id: str) -> Practice | None:
        return self._store.get(practice_id)


class PatientRepository:
    """Dict-backed store for Patient instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Patient] = {}

    def add(self, patient: Patient) -> None:
        self._store[patient.id] = patient

    def get(self, patient_id: str) -> Patient | None:
        return self._store.get(patient_id)

    def find_by_phone(self, practice_id: str, phone: str) -> Patient | None:
        for patient in self._store.values():
            if patient.practice_id == practice_id and patient.phone == phone:
                return patient
        return None

    def list_for_practice(self, practice_id: str) -> list[Patient]:
        return sorted(
            [p for p in self._store.values() if p.practice_id == practice_id],
            key=lambda p: (p.last_name or "", p.first_name or ""),
        )


class AppointmentRepository:
    """Dict-backed store for Appointment instances, keyed by id.

    Listings are returned in booking order (date, then time), which is the
    order the conflict summaries walk them in.
    """

    def __init__(self) -> None:
        self._store: dict[str, Appointment] = {}

    def add(self, appointment: Appointment) -> None:
        self._store[appointment.id] = appointment

    def get(self, appointment_id: str) -> Appointment | None:
        return self._store.get(appointment_id)

    def delete(self, appointment_id: str) -> None:
        self._store.pop(appointment_id, None)

    def list_for_practice(self, practice_id: str) -> list[Appointment]:
        return sorted(
            [a for a in self._store.values() if a.practice_id == practice_id],
            key=lambda a: (a.appointment_date, a.appointment_time),
        )

    def list_for_date(self, practice_id: str, day: date) -> list[Appointment]:
        return [a for a in self.list_for_practice(practice_id) if a.appointment_date == day]

    def list_for_series(self, series_id: str) -> list[Appointment]:
        """Return all occurrences generated from a recurring series."""
        return sorted(
            [a for a in self._store.values() if a.recurring_appointment_id == series_id],
            key=lambda a: (a.appointment_date, a.appointment_time),
        )


class RecurringAppointmentRepository:
    """Dict-backed store for RecurringAppointment instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, RecurringAppointment] = {}

    def add(self, series: RecurringAppointment) -> None:
        self._store[series.id] = series

    def get(self, series_id: str) -> RecurringAppointment | None:
        return self._store.get(series_id)

    def list_for_practice(self, practice_id: str) -> list[RecurringAppointment]:
        return [s for s in self._store.values() if s.practice_id == practice_id]


class ConflictWarningRepository:
    """List-backed store for ConflictWarning instances."""

    def __init__(self) -> None:
        self._warnings: list[ConflictWarning] = []

    def add(self, warning: ConflictWarning) -> None:
        self._warnings.append(warning)

    def list_for_practice(self, practice_id: str) -> list[ConflictWarning]:
        return sorted(
            [w for w in self._warnings if w.practice_id == practice_id],
            key=lambda w: w.created_at,
        )

    def list_for_appointment(self, appointment_id: str) -> list[ConflictWarning]:
        return [w for w in self._warnings if w.appointment_id == appointment_id]

    def delete_for_appointment(self, appointment_id: str) -> None:
        """Drop the appointment's own warnings."""
        self._warnings = [w for w in self._warnings if w.appointment_id != appointment_id]

    def list_mentioning(self, appointment_id: str) -> list[ConflictWarning]:
        """Warnings that name the appointment, as subject or as one of the conflicts."""
        return [
            w
            for w in self._warnings
            if w.appointment_id == appointment_id
            or appointment_id in w.conflicting_appointment_ids
        ]


class AiCallLogRepository:
    """List-backed store for AiCallLog instances, newest first on listing."""

    def __init__(self) -> None:
        self._logs: list[AiCallLog] = []

    def add(self, log: AiCallLog) -> None:
        self._logs.append(log)

    def list_for_practice(self, practice_id: str) -> list[AiCallLog]:
        return sorted(
            [log for log in self._logs if log.practice_id == practice_id],
            key=lambda log: log.created_at,
            reverse=True,
        )
