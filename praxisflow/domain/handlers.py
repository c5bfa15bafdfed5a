"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging

from praxisflow.domain.bus import EventBus
from praxisflow.domain.events import (
    AppointmentBooked,
    AppointmentCreated,
    AppointmentDeleted,
    AppointmentUpdated,
    ConflictDetected,
)
from praxisflow.domain.models import Appointment, ConflictWarning
from praxisflow.repos.memory import AppointmentRepository, ConflictWarningRepository
from praxisflow.services.conflicts import check_conflicts

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories."""

    def __init__(
        self,
        bus: EventBus,
        appointment_repo: AppointmentRepository,
        warning_repo: ConflictWarningRepository,
    ) -> None:
        self.bus = bus
        self.appointment_repo = appointment_repo
        self.warning_repo = warning_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(AppointmentCreated, self.on_appointment_created)
        self.bus.subscribe(AppointmentUpdated, self.on_appointment_updated)
        self.bus.subscribe(AppointmentDeleted, self.on_appointment_deleted)
        self.bus.subscribe(ConflictDetected, self.on_conflict_detected)
        self.bus.subscribe(AppointmentBooked, self.on_appointment_booked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _detect(self, appointment: Appointment) -> None:
        others = self.appointment_repo.list_for_date(
            appointment.practice_id, appointment.appointment_date
        )
        info = check_conflicts(appointment, others)
        if info.has_conflict:
            self.bus.publish(
                ConflictDetected(
                    appointment_id=appointment.id,
                    conflicting_appointment_ids=[a.id for a in info.conflicting_appointments],
                    message=info.message,
                )
            )

    def _withdraw_warnings(self, appointment_id: str) -> None:
        """Drop every warning naming the appointment and re-check the others it named."""
        affected = {w.appointment_id for w in self.warning_repo.list_mentioning(appointment_id)}
        affected.discard(appointment_id)

        self.warning_repo.delete_for_appointment(appointment_id)
        for other_id in sorted(affected):
            self.warning_repo.delete_for_appointment(other_id)
            other = self.appointment_repo.get(other_id)
            if other is not None:
                self._detect(other)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_appointment_created(self, event: AppointmentCreated) -> None:
        stored = self.appointment_repo.get(event.appointment_id)
        if stored is None:
            return
        self._detect(stored)

    def on_appointment_updated(self, event: AppointmentUpdated) -> None:
        stored = self.appointment_repo.get(event.appointment_id)
        if stored is None:
            return
        self._withdraw_warnings(stored.id)
        self._detect(stored)

    def on_appointment_deleted(self, event: AppointmentDeleted) -> None:
        self._withdraw_warnings(event.appointment_id)

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        stored = self.appointment_repo.get(event.appointment_id)
        if stored is None:
            return

        # Advisory only: the appointment stays booked as-is.
        self.warning_repo.add(
            ConflictWarning(
                practice_id=stored.practice_id,
                appointment_id=stored.id,
                conflicting_appointment_ids=event.conflicting_appointment_ids,
                message=event.message,
            )
        )
        logger.warning(
            "Appointment %s on %s %s overlaps %s: %s",
            stored.id,
            stored.appointment_date,
            stored.appointment_time,
            ", ".join(event.conflicting_appointment_ids),
            event.message,
        )

    def on_appointment_booked(self, event: AppointmentBooked) -> None:
        logger.info(
            "AI agent booked appointment %s for patient %s (practice %s, caller %s)",
            event.appointment_id,
            event.patient_id,
            event.practice_id,
            event.caller_phone or "unknown",
        )
