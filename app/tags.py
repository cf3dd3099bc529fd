from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Optional, Union

from errors import ValidationError


WEEKDAY_TOKENS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


@dataclass(frozen=True)
class ByWeekday:
    """Applies every week on the given day (0 = Monday)."""

    day: int

    def __post_init__(self) -> None:
        if isinstance(self.day, bool) or not isinstance(self.day, int) or not 0 <= self.day <= 6:
            raise ValidationError("day_of_week must be an integer between 0 (Monday) and 6 (Sunday).")

    @property
    def label(self) -> str:
        return WEEKDAY_TOKENS[self.day]


@dataclass(frozen=True)
class ByDate:
    """Applies to one calendar date only."""

    date: datetime.date

    def __post_init__(self) -> None:
        if isinstance(self.date, datetime.datetime) or not isinstance(self.date, datetime.date):
            raise ValidationError("specific_date must be a date.")

    @property
    def label(self) -> str:
        return self.date.isoformat()


ScheduleTag = Union[ByWeekday, ByDate]


def tag_columns(tag: ScheduleTag) -> tuple[Optional[int], Optional[datetime.date]]:
    """Return the (day_of_week, specific_date) storage pair for a tag."""
    if isinstance(tag, ByWeekday):
        return tag.day, None
    if isinstance(tag, ByDate):
        return None, tag.date
    raise ValidationError("A shift or override must be tagged by weekday or by date.")


def tag_from_columns(day_of_week: Optional[int], specific_date: Optional[datetime.date]) -> ScheduleTag:
    if specific_date is not None and day_of_week is None:
        return ByDate(specific_date)
    if day_of_week is not None and specific_date is None:
        return ByWeekday(int(day_of_week))
    raise ValidationError("Must provide either day_of_week OR specific_date, not both.")


def tag_from_payload(day_of_week: Any = None, specific_date: Any = None) -> ScheduleTag:
    """Build a tag from loosely typed request fields."""
    has_day = day_of_week is not None and day_of_week != ""
    has_date = specific_date is not None and specific_date != ""
    if has_day == has_date:
        raise ValidationError("Must provide either day_of_week OR specific_date, not both.")
    if has_date:
        if isinstance(specific_date, datetime.date) and not isinstance(specific_date, datetime.datetime):
            return ByDate(specific_date)
        try:
            return ByDate(datetime.date.fromisoformat(str(specific_date)))
        except ValueError as exc:
            raise ValidationError("specific_date must be YYYY-MM-DD.") from exc
    try:
        day = int(day_of_week)
    except (TypeError, ValueError) as exc:
        raise ValidationError("day_of_week must be an integer between 0 and 6.") from exc
    return ByWeekday(day)
