"""Domain events emitted while appointments are booked and changed."""

from __future__ import annotations

from pydantic import BaseModel


class AppointmentCreated(BaseModel):
    """Fired when a new Appointment is stored."""

    appointment_id: str


class AppointmentUpdated(BaseModel):
    """Fired when an existing Appointment is rescheduled or edited."""

    appointment_id: str


class AppointmentDeleted(BaseModel):
    """Fired after an Appointment was removed from the store."""

    appointment_id: str


class ConflictDetected(BaseModel):
    """Fired when a stored appointment overlaps others on the same day."""

    appointment_id: str
    conflicting_appointment_ids: list[str]
    message: str | None = None


class AppointmentBooked(BaseModel):
    """Fired when the voice agent booked an appointment from a call."""

    practice_id: str
    appointment_id: str
    patient_id: str
    caller_phone: str | None = None
