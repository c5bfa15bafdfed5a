"""FastAPI application: entry point for the practice scheduling service."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import ValidationError

from praxisflow.config import settings
from praxisflow.domain.bus import EventBus
from praxisflow.domain.events import AppointmentCreated, AppointmentDeleted, AppointmentUpdated
from praxisflow.domain.handlers import HandlerRegistry
from praxisflow.domain.models import (
    AiBookingRequest,
    AiCallLog,
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    AppointmentWriteResponse,
    AvailableSlot,
    BookingResult,
    CandidateAppointment,
    ConflictCluster,
    ConflictInfo,
    ConflictWarning,
    Patient,
    PatientCreate,
    Practice,
    PracticeCreate,
    RecurringAppointment,
    RecurringAppointmentCreate,
    RecurringSeriesResponse,
)
from praxisflow.errors import BookingExtractionError, InvalidTimeError, PracticeNotFoundError
from praxisflow.repos.memory import (
    AiCallLogRepository,
    AppointmentRepository,
    ConflictWarningRepository,
    PatientRepository,
    PracticeRepository,
    RecurringAppointmentRepository,
)
from praxisflow.services.availability import available_slots
from praxisflow.services.booking import extract_webhook_payload, process_booking
from praxisflow.services.conflicts import (
    check_conflicts,
    get_slot_conflicts,
    summarize_day_conflicts,
)
from praxisflow.services.recurrence import describe_recurrence, expand_series

if settings.env != "production":
    logging.basicConfig(level=settings.log_level.upper())
else:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)

app = FastAPI(title="PraxisFlow Scheduling Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
practice_repo = PracticeRepository()
patient_repo = PatientRepository()
appointment_repo = AppointmentRepository()
recurring_repo = RecurringAppointmentRepository()
warning_repo = ConflictWarningRepository()
call_log_repo = AiCallLogRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    appointment_repo=appointment_repo,
    warning_repo=warning_repo,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors and return them as JSON."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": f"{type(exc).__name__}: {exc}"},
    )


# ── Helpers ───────────────────────────────────────────────────────────


def _require_practice(practice_id: str) -> Practice:
    practice = practice_repo.get(practice_id)
    if practice is None:
        raise HTTPException(status_code=404, detail="Practice not found")
    return practice


def _require_appointment(practice_id: str, appointment_id: str) -> Appointment:
    appointment = appointment_repo.get(appointment_id)
    if appointment is None or appointment.practice_id != practice_id:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


def _resolve_patient(practice_id: str, patient_id: str | None) -> Patient | None:
    if patient_id is None:
        return None
    patient = patient_repo.get(patient_id)
    if patient is None or patient.practice_id != practice_id:
        raise HTTPException(status_code=400, detail="Patient does not belong to this practice")
    return patient


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/practices", response_model=Practice, status_code=201)
def create_practice(payload: PracticeCreate) -> Practice:
    practice = Practice(**payload.model_dump())
    practice_repo.add(practice)
    return practice


@app.get("/practices/{practice_id}", response_model=Practice)
def get_practice(practice_id: str) -> Practice:
    return _require_practice(practice_id)


@app.post("/practices/{practice_id}/patients", response_model=Patient, status_code=201)
def create_patient(practice_id: str, payload: PatientCreate) -> Patient:
    _require_practice(practice_id)
    patient = Patient(practice_id=practice_id, **payload.model_dump())
    patient_repo.add(patient)
    return patient


@app.get("/practices/{practice_id}/patients", response_model=list[Patient])
def list_patients(practice_id: str) -> list[Patient]:
    _require_practice(practice_id)
    return patient_repo.list_for_practice(practice_id)


@app.get("/practices/{practice_id}/appointments", response_model=list[Appointment])
def list_appointments(practice_id: str, day: date | None = None) -> list[Appointment]:
    """Return the practice's appointments, optionally for a single day."""
    _require_practice(practice_id)
    if day is not None:
        return appointment_repo.list_for_date(practice_id, day)
    return appointment_repo.list_for_practice(practice_id)


@app.post(
    "/practices/{practice_id}/appointments",
    response_model=AppointmentWriteResponse,
    status_code=201,
)
def create_appointment(practice_id: str, payload: AppointmentCreate) -> AppointmentWriteResponse:
    """Book an appointment. Overlaps are reported but never block the booking."""
    _require_practice(practice_id)
    appointment = Appointment(
        practice_id=practice_id,
        patient=_resolve_patient(practice_id, payload.patient_id),
        **payload.model_dump(),
    )
    conflicts = check_conflicts(
        appointment, appointment_repo.list_for_date(practice_id, appointment.appointment_date)
    )

    appointment_repo.add(appointment)
    event_bus.publish(AppointmentCreated(appointment_id=appointment.id))
    return AppointmentWriteResponse(appointment=appointment, conflicts=conflicts)


@app.patch(
    "/practices/{practice_id}/appointments/{appointment_id}",
    response_model=AppointmentWriteResponse,
)
def update_appointment(
    practice_id: str, appointment_id: str, payload: AppointmentUpdate
) -> AppointmentWriteResponse:
    """Edit an appointment; the edited appointment is not checked against itself."""
    stored = _require_appointment(practice_id, appointment_id)
    changes = payload.model_dump(exclude_none=True)
    if "patient_id" in changes:
        changes["patient"] = _resolve_patient(practice_id, changes["patient_id"])

    updated = stored.model_copy(update=changes)
    conflicts = check_conflicts(
        updated, appointment_repo.list_for_date(practice_id, updated.appointment_date)
    )

    appointment_repo.add(updated)
    event_bus.publish(AppointmentUpdated(appointment_id=updated.id))
    return AppointmentWriteResponse(appointment=updated, conflicts=conflicts)


@app.delete("/practices/{practice_id}/appointments/{appointment_id}", status_code=200)
def delete_appointment(practice_id: str, appointment_id: str) -> dict:
    _require_appointment(practice_id, appointment_id)
    appointment_repo.delete(appointment_id)
    event_bus.publish(AppointmentDeleted(appointment_id=appointment_id))
    return {"status": "deleted"}


@app.post("/practices/{practice_id}/conflicts/check", response_model=ConflictInfo)
def check_candidate(practice_id: str, candidate: CandidateAppointment) -> ConflictInfo:
    """Check a (possibly incomplete) booking form against the practice's appointments."""
    _require_practice(practice_id)
    return check_conflicts(candidate, appointment_repo.list_for_practice(practice_id))


@app.get(
    "/practices/{practice_id}/schedule/{day}/slots/{hour_slot}",
    response_model=list[Appointment],
)
def slot_appointments(practice_id: str, day: date, hour_slot: str) -> list[Appointment]:
    """Return the appointments occupying one hour cell of the calendar grid."""
    _require_practice(practice_id)
    try:
        return get_slot_conflicts(day, hour_slot, appointment_repo.list_for_practice(practice_id))
    except InvalidTimeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get(
    "/practices/{practice_id}/schedule/{day}/conflicts",
    response_model=list[ConflictCluster],
)
def day_conflicts(practice_id: str, day: date) -> list[ConflictCluster]:
    _require_practice(practice_id)
    return summarize_day_conflicts(day, appointment_repo.list_for_practice(practice_id))


@app.get(
    "/practices/{practice_id}/schedule/{day}/availability",
    response_model=list[AvailableSlot],
)
def day_availability(
    practice_id: str, day: date, duration_minutes: int | None = None
) -> list[AvailableSlot]:
    _require_practice(practice_id)
    if duration_minutes is not None and duration_minutes <= 0:
        raise HTTPException(status_code=422, detail="duration_minutes must be positive")
    return available_slots(
        day, appointment_repo.list_for_date(practice_id, day), duration_minutes
    )


@app.post(
    "/practices/{practice_id}/recurring-appointments",
    response_model=RecurringSeriesResponse,
    status_code=201,
)
def create_recurring_appointment(
    practice_id: str, payload: RecurringAppointmentCreate
) -> RecurringSeriesResponse:
    """Create a recurring series and book its occurrences."""
    _require_practice(practice_id)
    series = RecurringAppointment(
        practice_id=practice_id,
        patient=_resolve_patient(practice_id, payload.patient_id),
        **payload.model_dump(),
    )
    recurring_repo.add(series)

    occurrences = expand_series(series)
    for appointment in occurrences:
        appointment_repo.add(appointment)
        event_bus.publish(AppointmentCreated(appointment_id=appointment.id))

    logger.info(
        "Created recurring series %s with %d appointment(s)", series.id, len(occurrences)
    )
    return RecurringSeriesResponse(
        series=series,
        description=describe_recurrence(series),
        appointments=occurrences,
    )


@app.get(
    "/practices/{practice_id}/recurring-appointments",
    response_model=list[RecurringAppointment],
)
def list_recurring_appointments(practice_id: str) -> list[RecurringAppointment]:
    _require_practice(practice_id)
    return recurring_repo.list_for_practice(practice_id)


@app.get(
    "/practices/{practice_id}/recurring-appointments/{series_id}/appointments",
    response_model=list[Appointment],
)
def list_series_appointments(practice_id: str, series_id: str) -> list[Appointment]:
    series = recurring_repo.get(series_id)
    if series is None or series.practice_id != practice_id:
        raise HTTPException(status_code=404, detail="Recurring appointment not found")
    return appointment_repo.list_for_series(series_id)


@app.get(
    "/practices/{practice_id}/conflict-warnings",
    response_model=list[ConflictWarning],
)
def list_conflict_warnings(practice_id: str) -> list[ConflictWarning]:
    _require_practice(practice_id)
    return warning_repo.list_for_practice(practice_id)


@app.get(
    "/practices/{practice_id}/appointments/{appointment_id}/conflict-warnings",
    response_model=list[ConflictWarning],
)
def list_appointment_warnings(practice_id: str, appointment_id: str) -> list[ConflictWarning]:
    _require_appointment(practice_id, appointment_id)
    return warning_repo.list_for_appointment(appointment_id)


@app.get("/practices/{practice_id}/call-logs", response_model=list[AiCallLog])
def list_call_logs(practice_id: str) -> list[AiCallLog]:
    """Voice-agent calls for the practice, newest first."""
    _require_practice(practice_id)
    return call_log_repo.list_for_practice(practice_id)


@app.post("/ai-booking", response_model=BookingResult)
def ai_booking(body: dict = Body(...)) -> BookingResult:
    """Voice-agent webhook: book the appointment agreed on in a phone call."""
    try:
        practice_id, message, caller_phone = extract_webhook_payload(body)
        request = AiBookingRequest(
            practice_id=practice_id or "", message=message or "", caller_phone=caller_phone
        )
    except BookingExtractionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        return process_booking(
            request,
            practice_repo=practice_repo,
            patient_repo=patient_repo,
            appointment_repo=appointment_repo,
            call_log_repo=call_log_repo,
            bus=event_bus,
        )
    except PracticeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except OpenAIError as exc:
        logger.error("AI booking extraction failed: %s", exc)
        raise HTTPException(status_code=502, detail="AI-Service nicht verfügbar") from exc
