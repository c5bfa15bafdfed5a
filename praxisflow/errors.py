"""Domain errors raised by the scheduling services."""

from __future__ import annotations


class InvalidTimeError(ValueError):
    """An appointment time string is not a valid ``HH:MM`` wall-clock time."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid appointment time: {value!r} (expected HH:MM)")
        self.value = value


class BookingExtractionError(ValueError):
    """A voice-agent webhook payload could not be turned into a booking request."""


class PracticeNotFoundError(LookupError):
    def __init__(self, practice_id: str) -> None:
        super().__init__(f"Practice not found: {practice_id}")
        self.practice_id = practice_id
