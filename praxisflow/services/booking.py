"""Service for turning voice-agent call transcripts into booked appointments."""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import dateparser
from pydantic import ValidationError

from praxisflow.config import settings
from praxisflow.domain.bus import EventBus
from praxisflow.domain.events import AppointmentBooked, AppointmentCreated
from praxisflow.domain.models import (
    AiBookingRequest,
    AiCallLog,
    Appointment,
    AppointmentStatus,
    BookingData,
    BookingResult,
    CallOutcome,
    Patient,
)
from praxisflow.errors import BookingExtractionError, PracticeNotFoundError
from praxisflow.repos.memory import (
    AiCallLogRepository,
    AppointmentRepository,
    PatientRepository,
    PracticeRepository,
)
from praxisflow.services.conflicts import check_conflicts

logger = logging.getLogger(__name__)

NO_BOOKING_RESPONSE = "Keine Buchungsbestätigung vom AI-Assistenten"
CALL_ENDED_WITHOUT_BOOKING = "Anruf beendet ohne erfolgreiche Terminbuchung"
AI_BOOKING_NOTE = "Termin über AI-Agent gebucht"
# Characters of the caller input kept in a call log
TRANSCRIPT_EXCERPT_CHARS = 1000

_CONFIRMATION_PHRASES = (
    "erfolgreich gebucht",
    "termin wurde gebucht",
    "termin ist gebucht",
    "terminbuchung wird durchgeführt",
)

_SYSTEM_PROMPT = """\
Sie sind ein AI-System zur Terminbuchungs-Extraktion aus deutschen \
Telefongesprächs-Transkripten.

AUFGABE: Extrahieren Sie Terminbuchungen aus dem Transkript.

REGEL: Falls der AI-Assistent im Gespräch bestätigt hat, dass der Termin \
gebucht wurde (z. B. "erfolgreich gebucht", "Termin wurde gebucht", \
"Termin ist gebucht"), MÜSSEN Sie eine Buchung erstellen, auch wenn Daten \
unvollständig sind.

BUCHUNGS-FORMAT (JSON):
{{
  "response": "Termin aus Gespräch extrahiert",
  "booking": {{
    "patient_name": "Name aus Gespräch (auch nur Vorname OK)",
    "patient_phone": "Bereinigtes Telefon (+4917663098540)",
    "service": "Leistung aus Gespräch oder 'Behandlung'",
    "preferred_date": "YYYY-MM-DD",
    "preferred_time": "HH:MM",
    "confirmed": true
  }}
}}

KEINE BUCHUNG, wenn der AI-Assistent nicht "gebucht" gesagt hat:
{{
  "response": "{no_booking}"
}}

DATUM BERECHNEN (heute ist {today}):
- "morgen" = {tomorrow}
- "Mittwoch" / "nächster Mittwoch" = {next_wednesday}

ZEIT KONVERTIEREN:
- "15 Uhr 30" -> "15:30"
- "13 Uhr" -> "13:00"

Antworten Sie NUR mit dem JSON-Objekt.
"""

_GERMAN_WEEKDAYS = {
    "montag": 0,
    "dienstag": 1,
    "mittwoch": 2,
    "donnerstag": 3,
    "freitag": 4,
    "samstag": 5,
    "sonntag": 6,
}

_NAME_PATTERNS = (
    re.compile(r"name.*?\b(?:ist|is)\s+([A-Za-zÄÖÜäöüß\s]+?)[.,\n]", re.IGNORECASE),
    re.compile(r"ich\s+hei(?:ß|ss)e\s+([A-Za-zÄÖÜäöüß\s]+?)[.,\n]", re.IGNORECASE),
)
_PHONE_RE = re.compile(r"(\+?\d[\d\s,]{7,}\d)")
_TIME_RE = re.compile(r"\b(\d{1,2})(?:\s*Uhr(?:\s*(\d{2}))?|:(\d{2}))", re.IGNORECASE)
_DATE_RE = re.compile(
    r"\b(übermorgen|morgen"
    r"|montag|dienstag|mittwoch|donnerstag|freitag|samstag|sonntag"
    r"|\d{1,2}\.\d{1,2}\.\d{2,4})\b",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Webhook payloads
# ---------------------------------------------------------------------------


def extract_webhook_payload(body: dict) -> tuple[str | None, str | None, str | None]:
    """Return ``(practice_id, message, caller_phone)`` from a voice-agent webhook.

    Understands the VAPI format (``message.type`` + ``call``) and the legacy
    direct format (``practiceId``/``message``/``callerPhone``).
    """
    vapi_message = body.get("message")
    if isinstance(vapi_message, dict) and vapi_message.get("type"):
        call = body.get("call") or {}
        practice_id = ((call.get("assistant") or {}).get("metadata") or {}).get(
            "practiceId"
        ) or (call.get("metadata") or {}).get("practiceId")
        if not practice_id:
            raise BookingExtractionError("Practice ID not found in webhook metadata")

        caller_phone = (call.get("customer") or {}).get("number") or call.get("phoneNumber")

        if vapi_message["type"] == "end-of-call-report" and vapi_message.get("artifact"):
            transcript = vapi_message["artifact"].get("transcript")
            analysis = vapi_message.get("analysis") or {}
            if str(analysis.get("successEvaluation")).lower() == "true" and transcript:
                message = (
                    f"TELEFONGESPRÄCHS-TRANSKRIPT:\n{transcript}\n\n"
                    f"GESPRÄCHS-ANALYSE: {analysis.get('summary', '')}"
                )
            else:
                message = CALL_ENDED_WITHOUT_BOOKING
        else:
            message = (
                vapi_message.get("content")
                or vapi_message.get("text")
                or json.dumps(vapi_message, ensure_ascii=False)
            )
        return practice_id, message, caller_phone

    return body.get("practiceId"), body.get("message"), body.get("callerPhone")


def clean_phone_number(phone: str) -> str:
    """Normalize a (German) phone number to ``+49...`` form."""
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("49"):
        return "+" + cleaned
    if cleaned.startswith("0"):
        return "+49" + cleaned[1:]
    return "+49" + cleaned


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def practice_today() -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def next_weekday(today: date, weekday: int) -> date:
    """The next *weekday* (0 = Monday) strictly after *today*."""
    days_ahead = (weekday - today.weekday()) % 7
    return today + timedelta(days=days_ahead or 7)


def reference_dates(today: date) -> tuple[date, date]:
    """Return ``(tomorrow, next_wednesday)`` used to anchor the LLM prompt."""
    return today + timedelta(days=1), next_weekday(today, 2)


def _parse_german_date(raw: str, today: date) -> date | None:
    word = raw.lower()
    if word == "übermorgen":
        return today + timedelta(days=2)
    if word == "morgen":
        return today + timedelta(days=1)
    if word in _GERMAN_WEEKDAYS:
        return next_weekday(today, _GERMAN_WEEKDAYS[word])

    parsed = dateparser.parse(
        raw,
        languages=["de"],
        settings={
            "DATE_ORDER": "DMY",
            "PREFER_DATES_FROM": "future",
            "RELATIVE_BASE": datetime.combine(today, time()),
        },
    )
    return parsed.date() if parsed else None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _extract_with_llm(message: str, today: date) -> dict:
    """Call OpenAI to extract a booking as JSON from a call transcript."""
    from openai import OpenAI

    tomorrow, next_wednesday = reference_dates(today)
    system_prompt = _SYSTEM_PROMPT.format(
        today=today.isoformat(),
        tomorrow=tomorrow.isoformat(),
        next_wednesday=next_wednesday.isoformat(),
        no_booking=NO_BOOKING_RESPONSE,
    )

    client = OpenAI(api_key=settings.openai_api_key)
    response = client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": message},
        ],
        temperature=0,
        response_format={"type": "json_object"},
    )
    return json.loads(response.choices[0].message.content)


def booking_from_llm_reply(reply: dict) -> tuple[BookingData | None, str]:
    """Validate the LLM's JSON reply. Unconfirmed or malformed bookings yield ``None``."""
    response_text = reply.get("response") or NO_BOOKING_RESPONSE
    booking = reply.get("booking")
    if not isinstance(booking, dict) or not booking.get("confirmed"):
        return None, response_text
    try:
        return BookingData.model_validate(booking), response_text
    except ValidationError as exc:
        logger.warning("Discarding invalid booking from AI reply: %s", exc)
        return None, response_text


def has_booking_confirmation(message: str) -> bool:
    """True when the transcript shows the voice agent confirmed a booking."""
    lowered = message.lower()
    return any(phrase in lowered for phrase in _CONFIRMATION_PHRASES)


def manual_extract_booking(
    message: str, today: date, caller_phone: str | None = None
) -> BookingData | None:
    """Regex fallback for transcripts the LLM could not turn into a booking.

    Returns ``None`` when no phone number can be found in the transcript or
    the caller metadata.
    """
    name = "Patient"
    for pattern in _NAME_PATTERNS:
        m = pattern.search(message)
        if m and m.group(1).strip():
            name = " ".join(m.group(1).split())
            break

    phone_match = _PHONE_RE.search(message)
    if phone_match:
        phone = re.sub(r"[\s,]", "", phone_match.group(1))
    elif caller_phone:
        phone = caller_phone
    else:
        return None

    service = "Massage" if "massage" in message.lower() else "Behandlung"

    preferred_date = None
    date_match = _DATE_RE.search(message)
    if date_match:
        preferred_date = _parse_german_date(date_match.group(1), today)
    if preferred_date is None:
        preferred_date = next_weekday(today, 0)

    preferred_time = "10:30"
    for m in _TIME_RE.finditer(message):
        hours = int(m.group(1))
        minutes = int(m.group(2) or m.group(3) or 0)
        if hours < 24 and minutes < 60:
            preferred_time = f"{hours:02d}:{minutes:02d}"
            break

    return BookingData(
        patient_name=name,
        patient_phone=clean_phone_number(phone),
        service=service,
        preferred_date=preferred_date,
        preferred_time=preferred_time,
        confirmed=True,
    )


def extract_booking(
    message: str, today: date, caller_phone: str | None = None
) -> tuple[BookingData | None, str]:
    """Extract a booking with the LLM, falling back to regexes on confirmed calls."""
    booking: BookingData | None = None
    response_text = NO_BOOKING_RESPONSE

    if settings.llm_enabled:
        try:
            booking, response_text = booking_from_llm_reply(_extract_with_llm(message, today))
        except json.JSONDecodeError:
            logger.warning("AI reply was not valid JSON")
    else:
        logger.warning("OPENAI_API_KEY not set; skipping AI booking extraction")

    if booking is None and has_booking_confirmation(message):
        logger.info("Attempting manual booking extraction from transcript")
        booking = manual_extract_booking(message, today, caller_phone)
        if booking is not None:
            response_text = "Termin aus Gespräch extrahiert"

    return booking, response_text


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


def _log_call(
    request: AiBookingRequest,
    response_text: str,
    appointment_id: str | None,
    call_log_repo: AiCallLogRepository,
) -> AiCallLog:
    log = AiCallLog(
        practice_id=request.practice_id,
        caller_phone=request.caller_phone,
        outcome=(
            CallOutcome.APPOINTMENT_BOOKED if appointment_id else CallOutcome.INFORMATION_PROVIDED
        ),
        transcript=(
            f"Input: {request.message[:TRANSCRIPT_EXCERPT_CHARS]}...\nAI Response: {response_text}"
        ),
        appointment_id=appointment_id,
    )
    call_log_repo.add(log)
    return log


def _find_or_create_patient(
    practice_id: str, booking: BookingData, patient_repo: PatientRepository
) -> Patient:
    phone = clean_phone_number(booking.patient_phone)
    existing = patient_repo.find_by_phone(practice_id, phone)
    if existing is not None:
        return existing

    first_name, _, last_name = booking.patient_name.strip().partition(" ")
    patient = Patient(
        practice_id=practice_id,
        first_name=first_name,
        last_name=last_name.strip() or "Patient",
        phone=phone,
    )
    patient_repo.add(patient)
    logger.info("Created patient %s for practice %s", patient.id, practice_id)
    return patient


def process_booking(
    request: AiBookingRequest,
    *,
    practice_repo: PracticeRepository,
    patient_repo: PatientRepository,
    appointment_repo: AppointmentRepository,
    call_log_repo: AiCallLogRepository,
    bus: EventBus,
    today: date | None = None,
) -> BookingResult:
    """Book the appointment described in a call transcript, if the call confirmed one.

    Conflicts with existing appointments do not block the booking; they are
    reported back in ``conflict_message``. Every call is recorded in
    *call_log_repo*, whether it ended in a booking or not.
    """
    if practice_repo.get(request.practice_id) is None:
        raise PracticeNotFoundError(request.practice_id)

    today = today or practice_today()
    booking, response_text = extract_booking(request.message, today, request.caller_phone)

    if booking is None:
        logger.info("No booking in call for practice %s", request.practice_id)
        _log_call(request, response_text, None, call_log_repo)
        return BookingResult(
            response=response_text, booking_confirmed=False, action_type="information"
        )

    patient = _find_or_create_patient(request.practice_id, booking, patient_repo)
    appointment = Appointment(
        practice_id=request.practice_id,
        patient_id=patient.id,
        patient=patient,
        appointment_date=booking.preferred_date,
        appointment_time=booking.preferred_time,
        service=booking.service,
        status=AppointmentStatus.PENDING,
        ai_booked=True,
        notes=AI_BOOKING_NOTE,
    )
    conflicts = check_conflicts(
        appointment,
        appointment_repo.list_for_date(request.practice_id, appointment.appointment_date),
    )

    appointment_repo.add(appointment)
    bus.publish(AppointmentCreated(appointment_id=appointment.id))
    bus.publish(
        AppointmentBooked(
            practice_id=request.practice_id,
            appointment_id=appointment.id,
            patient_id=patient.id,
            caller_phone=request.caller_phone,
        )
    )
    _log_call(request, response_text, appointment.id, call_log_repo)

    return BookingResult(
        response=response_text,
        booking_confirmed=True,
        appointment_id=appointment.id,
        action_type="booking",
        conflict_message=conflicts.message,
    )
