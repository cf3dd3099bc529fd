from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import List, Optional, Sequence

from database import CapacityStore, Pharmacy, PharmacyOverride


@dataclass(frozen=True)
class EffectiveSettings:
    operating_start_time: datetime.time
    operating_end_time: datetime.time
    labor_strength: int
    capacity_factor: float
    slot_length_minutes: int


@dataclass(frozen=True)
class ShiftWindow:
    """One shift of a day after resolution; ``synthetic`` when built from the operating window."""

    start_time: datetime.time
    end_time: datetime.time
    labor_strength: int
    synthetic: bool = False


def _first_set(field: str, overrides: Sequence[Optional[PharmacyOverride]], default):
    for override in overrides:
        if override is None:
            continue
        value = getattr(override, field)
        if value is not None:
            return value
    return default


def merge_settings(
    pharmacy: Pharmacy,
    date_override: Optional[PharmacyOverride],
    weekday_override: Optional[PharmacyOverride],
) -> EffectiveSettings:
    """Resolve each field on its own: date override, then weekday override, then the pharmacy default."""
    layers = (date_override, weekday_override)
    return EffectiveSettings(
        operating_start_time=_first_set("operating_start_time", layers, pharmacy.operating_start_time),
        operating_end_time=_first_set("operating_end_time", layers, pharmacy.operating_end_time),
        labor_strength=int(_first_set("default_labor_strength", layers, pharmacy.default_labor_strength)),
        capacity_factor=float(_first_set("capacity_factor", layers, pharmacy.capacity_factor)),
        slot_length_minutes=int(_first_set("slot_length_minutes", layers, pharmacy.slot_length_minutes)),
    )


class ConfigurationResolver:
    """Turns pharmacy defaults, overrides and shifts into the configuration of one date."""

    def __init__(self, store: CapacityStore) -> None:
        self.store = store

    def resolve_settings(self, pharmacy: Pharmacy, day: datetime.date) -> EffectiveSettings:
        return merge_settings(
            pharmacy,
            self.store.override_for_date(pharmacy.id, day),
            self.store.override_for_weekday(pharmacy.id, day.weekday()),
        )

    def resolve_shifts(
        self,
        pharmacy: Pharmacy,
        day: datetime.date,
        settings: Optional[EffectiveSettings] = None,
    ) -> List[ShiftWindow]:
        """Date shifts, else weekday shifts, else one shift over the operating window. Never merged."""
        shifts = self.store.shifts_for_date(pharmacy.id, day)
        if not shifts:
            shifts = self.store.shifts_for_weekday(pharmacy.id, day.weekday())
        if shifts:
            return [
                ShiftWindow(
                    start_time=shift.start_time,
                    end_time=shift.end_time,
                    labor_strength=shift.default_labor_strength,
                )
                for shift in shifts
            ]
        settings = settings or self.resolve_settings(pharmacy, day)
        return [
            ShiftWindow(
                start_time=settings.operating_start_time,
                end_time=settings.operating_end_time,
                labor_strength=settings.labor_strength,
                synthetic=True,
            )
        ]
