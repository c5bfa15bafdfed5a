"""End-to-end tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from praxisflow.config import settings
from praxisflow.main import (
    app,
    appointment_repo,
    call_log_repo,
    patient_repo,
    practice_repo,
    recurring_repo,
    warning_repo,
)


@pytest.fixture(autouse=True)
def _clear_repos(monkeypatch):
    """Reset in-memory repos before each test."""
    monkeypatch.setattr(settings, "openai_api_key", "")
    repos = (practice_repo, patient_repo, appointment_repo, recurring_repo)
    for repo in repos:
        repo._store.clear()
    warning_repo._warnings.clear()
    call_log_repo._logs.clear()
    yield
    for repo in repos:
        repo._store.clear()
    warning_repo._warnings.clear()
    call_log_repo._logs.clear()


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def practice_id(client) -> str:
    resp = client.post("/practices", json={"name": "Praxis Sonnenschein"})
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.fixture()
def patient_id(client, practice_id) -> str:
    resp = client.post(
        f"/practices/{practice_id}/patients",
        json={"first_name": "Anna", "last_name": "Schmidt", "phone": "+4917663098540"},
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def _book(client, practice_id, time, duration=30, day="2024-01-15", **extra):
    return client.post(
        f"/practices/{practice_id}/appointments",
        json={
            "appointment_date": day,
            "appointment_time": time,
            "duration_minutes": duration,
            **extra,
        },
    )


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_appointment_without_conflict(client, practice_id, patient_id):
    resp = _book(client, practice_id, "09:00:00", patient_id=patient_id)

    assert resp.status_code == 201
    body = resp.json()
    assert body["appointment"]["appointment_time"] == "09:00"
    assert body["appointment"]["patient"]["first_name"] == "Anna"
    assert body["conflicts"] == {
        "has_conflict": False,
        "conflicting_appointments": [],
        "message": None,
    }


def test_conflicting_appointment_is_booked_with_warning(client, practice_id, patient_id):
    first = _book(client, practice_id, "09:00", 60, patient_id=patient_id).json()

    resp = _book(client, practice_id, "09:30")

    assert resp.status_code == 201
    conflicts = resp.json()["conflicts"]
    assert conflicts["has_conflict"] is True
    assert conflicts["message"] == "Konflikt mit Termin von Anna Schmidt um 09:00 Uhr"
    assert [a["id"] for a in conflicts["conflicting_appointments"]] == [
        first["appointment"]["id"]
    ]

    warnings = client.get(f"/practices/{practice_id}/conflict-warnings").json()
    assert len(warnings) == 1
    assert warnings[0]["appointment_id"] == resp.json()["appointment"]["id"]

    first_id = first["appointment"]["id"]
    per_appointment = client.get(
        f"/practices/{practice_id}/appointments/{first_id}/conflict-warnings"
    ).json()
    assert per_appointment == []
    assert len(client.get(f"/practices/{practice_id}/appointments").json()) == 2


def test_back_to_back_booking_has_no_warning(client, practice_id):
    _book(client, practice_id, "09:30", 30)
    resp = _book(client, practice_id, "10:00", 30)

    assert resp.json()["conflicts"]["has_conflict"] is False
    assert client.get(f"/practices/{practice_id}/conflict-warnings").json() == []


def test_malformed_time_is_rejected(client, practice_id):
    assert _book(client, practice_id, "25:99").status_code == 422


def test_unknown_practice_returns_404(client):
    assert _book(client, "missing", "09:00").status_code == 404


def test_patient_from_other_practice_is_rejected(client, practice_id, patient_id):
    other = client.post("/practices", json={"name": "Andere Praxis"}).json()["id"]
    resp = _book(client, other, "09:00", patient_id=patient_id)
    assert resp.status_code == 400


def test_rescheduling_does_not_conflict_with_itself(client, practice_id):
    appt = _book(client, practice_id, "09:00", 60).json()["appointment"]

    resp = client.patch(
        f"/practices/{practice_id}/appointments/{appt['id']}",
        json={"appointment_time": "09:30"},
    )

    assert resp.status_code == 200
    assert resp.json()["appointment"]["appointment_time"] == "09:30"
    assert resp.json()["conflicts"]["has_conflict"] is False


def test_rescheduling_into_another_appointment(client, practice_id):
    _book(client, practice_id, "11:00", 30)
    appt = _book(client, practice_id, "09:00", 30).json()["appointment"]

    resp = client.patch(
        f"/practices/{practice_id}/appointments/{appt['id']}",
        json={"appointment_time": "11:15"},
    )

    assert resp.json()["conflicts"]["has_conflict"] is True


def test_list_appointments_by_day(client, practice_id):
    _book(client, practice_id, "09:00", day="2024-01-15")
    _book(client, practice_id, "09:00", day="2024-01-16")

    resp = client.get(f"/practices/{practice_id}/appointments", params={"day": "2024-01-16"})

    assert [a["appointment_date"] for a in resp.json()] == ["2024-01-16"]


def test_warning_is_withdrawn_when_the_overlap_is_moved_away(client, practice_id):
    _book(client, practice_id, "09:00", 60)
    second = _book(client, practice_id, "09:30").json()["appointment"]
    assert len(client.get(f"/practices/{practice_id}/conflict-warnings").json()) == 1

    client.patch(
        f"/practices/{practice_id}/appointments/{second['id']}",
        json={"appointment_time": "11:00"},
    )

    assert client.get(f"/practices/{practice_id}/conflict-warnings").json() == []


def test_moving_the_other_appointment_withdraws_the_warning(client, practice_id):
    first = _book(client, practice_id, "09:00", 60).json()["appointment"]
    _book(client, practice_id, "09:30")

    client.patch(
        f"/practices/{practice_id}/appointments/{first['id']}",
        json={"appointment_time": "12:00"},
    )

    assert client.get(f"/practices/{practice_id}/conflict-warnings").json() == []


def test_repeated_edits_keep_a_single_warning(client, practice_id):
    _book(client, practice_id, "09:00", 60)
    second = _book(client, practice_id, "09:30").json()["appointment"]

    for note in ("Rückruf", "Bestätigt"):
        client.patch(
            f"/practices/{practice_id}/appointments/{second['id']}",
            json={"notes": note},
        )

    [warning] = client.get(f"/practices/{practice_id}/conflict-warnings").json()
    assert warning["appointment_id"] == second["id"]


def test_deleting_an_appointment_drops_warnings_naming_it(client, practice_id):
    first = _book(client, practice_id, "09:00", 60).json()["appointment"]
    _book(client, practice_id, "09:30")
    _book(client, practice_id, "09:45")

    client.delete(f"/practices/{practice_id}/appointments/{first['id']}")

    # 09:30 and 09:45 still overlap each other
    warnings = client.get(f"/practices/{practice_id}/conflict-warnings").json()
    assert warnings
    assert all(first["id"] not in w["conflicting_appointment_ids"] for w in warnings)
    assert all(w["appointment_id"] != first["id"] for w in warnings)


def test_delete_appointment(client, practice_id):
    appt = _book(client, practice_id, "09:00").json()["appointment"]

    resp = client.delete(f"/practices/{practice_id}/appointments/{appt['id']}")

    assert resp.status_code == 200
    assert client.get(f"/practices/{practice_id}/appointments").json() == []
    missing = client.delete(f"/practices/{practice_id}/appointments/{appt['id']}")
    assert missing.status_code == 404


# ---------------------------------------------------------------------------
# Conflict queries
# ---------------------------------------------------------------------------


def test_check_candidate(client, practice_id):
    _book(client, practice_id, "10:00", 60)

    resp = client.post(
        f"/practices/{practice_id}/conflicts/check",
        json={"appointment_date": "2024-01-15", "appointment_time": "10:30"},
    )

    assert resp.json()["has_conflict"] is True


def test_check_incomplete_candidate(client, practice_id):
    _book(client, practice_id, "10:00", 60)

    resp = client.post(
        f"/practices/{practice_id}/conflicts/check",
        json={"appointment_date": "2024-01-15"},
    )

    assert resp.status_code == 200
    assert resp.json()["has_conflict"] is False


def test_check_candidate_with_blank_time(client, practice_id):
    _book(client, practice_id, "10:00", 60)

    resp = client.post(
        f"/practices/{practice_id}/conflicts/check",
        json={"appointment_date": "2024-01-15", "appointment_time": ""},
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "has_conflict": False,
        "conflicting_appointments": [],
        "message": None,
    }


def test_slot_appointments(client, practice_id):
    inside = _book(client, practice_id, "09:15", 30).json()["appointment"]
    _book(client, practice_id, "10:00", 30)

    resp = client.get(f"/practices/{practice_id}/schedule/2024-01-15/slots/09:00")

    assert [a["id"] for a in resp.json()] == [inside["id"]]


def test_slot_with_malformed_hour(client, practice_id):
    resp = client.get(f"/practices/{practice_id}/schedule/2024-01-15/slots/nine")
    assert resp.status_code == 422


def test_day_conflicts(client, practice_id):
    _book(client, practice_id, "09:00", 30)
    _book(client, practice_id, "09:15", 30)
    _book(client, practice_id, "14:00", 30)

    clusters = client.get(f"/practices/{practice_id}/schedule/2024-01-15/conflicts").json()

    assert len(clusters) == 1
    assert clusters[0]["time_range"] == "09:00 - 09:15"
    assert len(clusters[0]["appointments"]) == 2


def test_day_availability(client, practice_id):
    _book(client, practice_id, "09:00", 60)

    slots = client.get(
        f"/practices/{practice_id}/schedule/2024-01-15/availability",
        params={"duration_minutes": 30},
    ).json()
    free = {s["time"]: s["available"] for s in slots}

    assert free["08:30"] is True
    assert free["09:00"] is False
    assert free["09:30"] is False
    assert free["10:00"] is True


# ---------------------------------------------------------------------------
# Recurring series
# ---------------------------------------------------------------------------


def test_create_recurring_series(client, practice_id, patient_id):
    resp = client.post(
        f"/practices/{practice_id}/recurring-appointments",
        json={
            "patient_id": patient_id,
            "service": "Krankengymnastik",
            "duration_minutes": 45,
            "recurrence_type": "weekly",
            "days_of_week": [1, 4],
            "start_time": "08:00",
            "start_date": "2026-03-02",
            "end_date": "2026-03-13",
        },
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["description"] == "Wöchentlich (Mo, Do)"
    assert [a["appointment_date"] for a in body["appointments"]] == [
        "2026-03-02",
        "2026-03-05",
        "2026-03-09",
        "2026-03-12",
    ]
    stored = client.get(f"/practices/{practice_id}/appointments").json()
    assert len(stored) == 4
    assert all(a["recurring_appointment_id"] == body["series"]["id"] for a in stored)
    assert len(client.get(f"/practices/{practice_id}/recurring-appointments").json()) == 1

    series_id = body["series"]["id"]
    occurrences = client.get(
        f"/practices/{practice_id}/recurring-appointments/{series_id}/appointments"
    ).json()
    assert [a["appointment_time"] for a in occurrences] == ["08:00"] * 4
    missing = client.get(f"/practices/{practice_id}/recurring-appointments/nope/appointments")
    assert missing.status_code == 404


def test_recurring_series_end_before_start_is_rejected(client, practice_id):
    resp = client.post(
        f"/practices/{practice_id}/recurring-appointments",
        json={
            "service": "Massage",
            "recurrence_type": "daily",
            "start_time": "08:00",
            "start_date": "2026-03-02",
            "end_date": "2026-03-01",
        },
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# AI booking webhook
# ---------------------------------------------------------------------------


def test_ai_booking_legacy_payload(client, practice_id):
    resp = client.post(
        "/ai-booking",
        json={
            "practiceId": practice_id,
            "message": "Mein Name ist Jonas Weber. Morgen um 14 Uhr. Termin ist gebucht.",
            "callerPhone": "0176 11122233",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["booking_confirmed"] is True
    assert body["action_type"] == "booking"

    [appointment] = client.get(f"/practices/{practice_id}/appointments").json()
    assert appointment["id"] == body["appointment_id"]
    assert appointment["appointment_time"] == "14:00"
    assert appointment["ai_booked"] is True
    assert appointment["patient"]["phone"] == "+4917611122233"


def test_ai_booking_information_only(client, practice_id):
    resp = client.post(
        "/ai-booking", json={"practiceId": practice_id, "message": "Haben Sie Parkplätze?"}
    )

    assert resp.json()["booking_confirmed"] is False
    assert resp.json()["action_type"] == "information"


def test_call_logs_record_booked_and_unbooked_calls(client, practice_id):
    booked = client.post(
        "/ai-booking",
        json={
            "practiceId": practice_id,
            "message": "Ich heiße Jonas Weber. Morgen um 14 Uhr. Termin ist gebucht.",
            "callerPhone": "+4917611122233",
        },
    ).json()
    client.post("/ai-booking", json={"practiceId": practice_id, "message": "Haben Sie Parkplätze?"})

    logs = client.get(f"/practices/{practice_id}/call-logs").json()

    assert sorted(log["outcome"] for log in logs) == [
        "appointment_booked",
        "information_provided",
    ]
    by_outcome = {log["outcome"]: log for log in logs}
    assert by_outcome["appointment_booked"]["appointment_id"] == booked["appointment_id"]
    assert by_outcome["appointment_booked"]["caller_phone"] == "+4917611122233"
    assert by_outcome["information_provided"]["appointment_id"] is None
    assert "Haben Sie Parkplätze?" in by_outcome["information_provided"]["transcript"]


def test_call_logs_for_unknown_practice(client):
    assert client.get("/practices/nope/call-logs").status_code == 404


def test_ai_booking_unknown_practice(client):
    resp = client.post("/ai-booking", json={"practiceId": "nope", "message": "Hallo"})
    assert resp.status_code == 404


def test_ai_booking_missing_message(client, practice_id):
    resp = client.post("/ai-booking", json={"practiceId": practice_id})
    assert resp.status_code == 400


def test_ai_booking_vapi_without_practice(client):
    resp = client.post("/ai-booking", json={"message": {"type": "transcript", "content": "x"}})
    assert resp.status_code == 400
