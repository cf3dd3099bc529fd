from __future__ import annotations

import datetime
from typing import List

from errors import ValidationError


MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: str | datetime.time) -> int:
    """Return minutes since midnight for an ``HH:MM`` string or a time value."""
    if isinstance(value, datetime.time):
        return value.hour * 60 + value.minute
    text = str(value or "").strip()
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise ValidationError(f"Time '{value}' must be formatted as HH:MM.")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValidationError(f"Time '{value}' must be formatted as HH:MM.") from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValidationError(f"Time '{value}' is outside the day.")
    return hours * 60 + minutes


def minutes_to_time_string(minutes: int) -> str:
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours:02d}:{mins:02d}"


def minutes_to_time(minutes: int) -> datetime.time:
    return datetime.time(minutes // 60, minutes % 60)


def parse_time(value: str | datetime.time) -> datetime.time:
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    return minutes_to_time(time_to_minutes(value))


def slot_boundaries(
    start: str | datetime.time,
    end: str | datetime.time,
    length_minutes: int,
) -> List[int]:
    """Minute offsets of every slot in the half-open window [start, end).

    A window whose end is not after its start has no slots.
    """
    try:
        step = int(length_minutes)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Slot length must be a whole number of minutes.") from exc
    if step <= 0:
        raise ValidationError("Slot length must be a positive number of minutes.")
    start_minutes = time_to_minutes(start)
    end_minutes = time_to_minutes(end)
    return list(range(start_minutes, end_minutes, step))


def generate_time_slots(
    start: str | datetime.time,
    end: str | datetime.time,
    length_minutes: int,
) -> List[str]:
    return [minutes_to_time_string(minutes) for minutes in slot_boundaries(start, end, length_minutes)]


def slot_times(
    start: str | datetime.time,
    end: str | datetime.time,
    length_minutes: int,
) -> List[datetime.time]:
    return [minutes_to_time(minutes) for minutes in slot_boundaries(start, end, length_minutes)]
