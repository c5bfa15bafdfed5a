"""Wall-clock time parsing shared by the models and the interval resolver."""

from __future__ import annotations

import re
from datetime import time

from praxisflow.errors import InvalidTimeError

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time(value: str | time) -> time:
    """Parse an ``HH:MM`` (or ``HH:MM:SS``) string into a :class:`datetime.time`.

    Seconds are accepted because the database hands times back as
    ``HH:MM:SS``; they are dropped. Anything else raises ``InvalidTimeError``.
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise InvalidTimeError(value)

    m = _TIME_RE.match(value.strip())
    if m is None:
        raise InvalidTimeError(value)
    hours, minutes = int(m.group(1)), int(m.group(2))
    seconds = int(m.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidTimeError(value)
    return time(hours, minutes)


def format_appointment_time(value: str | time) -> str:
    """Normalize a time to zero-padded ``HH:MM`` (``"9:05:00"`` -> ``"09:05"``)."""
    parsed = parse_time(value)
    return f"{parsed.hour:02d}:{parsed.minute:02d}"
