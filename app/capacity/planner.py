from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass, field
from typing import List, Tuple

from database import CapacityStore, WorkforceRecord
from timegrid import slot_times

from .resolver import ConfigurationResolver, EffectiveSettings

logger = logging.getLogger(__name__)


def calculate_configured_capacity(labor_strength: int, capacity_factor: float, total_slots: int) -> int:
    """floor(strength * factor / slots). Callers must not ask for a window without slots."""
    if total_slots <= 0:
        raise ValueError("A shift without slots has no per-slot capacity.")
    return int(math.floor((labor_strength * capacity_factor) / total_slots))


def apply_workforce(
    store: CapacityStore,
    record: WorkforceRecord,
    settings: EffectiveSettings,
) -> Tuple[List[datetime.time], int, int]:
    """Spread a posted strength over the existing slots of its window.

    Returns the window's slot times, the per-slot capacity and how many slot
    rows were updated. A window without slots updates nothing.
    """
    times = slot_times(record.shift_start_time, record.shift_end_time, settings.slot_length_minutes)
    if not times:
        return [], 0, 0
    capacity = calculate_configured_capacity(record.signed_in_strength, settings.capacity_factor, len(times))
    updated = 0
    for slot_time in times:
        updated += store.update_slot_plan(
            record.pharmacy_id, record.shift_date, slot_time, capacity, record.signed_in_strength
        )
    return times, capacity, updated


@dataclass
class ShiftPlan:
    start_time: datetime.time
    end_time: datetime.time
    labor_strength: int
    slot_times: List[datetime.time]
    configured_capacity: int


@dataclass
class PlanSummary:
    pharmacy_id: int
    date: datetime.date
    settings: EffectiveSettings
    shifts: List[ShiftPlan] = field(default_factory=list)

    @property
    def slot_count(self) -> int:
        return sum(len(shift.slot_times) for shift in self.shifts)


class SlotPlanGenerator:
    """Writes the slot rows of one pharmacy day; re-running only refreshes plan fields."""

    def __init__(self, store: CapacityStore) -> None:
        self.store = store
        self.resolver = ConfigurationResolver(store)

    def generate(self, pharmacy_id: int, day: datetime.date) -> PlanSummary:
        pharmacy = self.store.get_pharmacy(pharmacy_id)
        settings = self.resolver.resolve_settings(pharmacy, day)
        shifts = self.resolver.resolve_shifts(pharmacy, day, settings)
        summary = PlanSummary(pharmacy_id=pharmacy_id, date=day, settings=settings)
        for shift in shifts:
            times = slot_times(shift.start_time, shift.end_time, settings.slot_length_minutes)
            if not times:
                logger.debug(
                    "Pharmacy %s %s: shift %s-%s has no slots",
                    pharmacy_id, day, shift.start_time, shift.end_time,
                )
                continue
            capacity = calculate_configured_capacity(shift.labor_strength, settings.capacity_factor, len(times))
            for slot_time in times:
                self.store.upsert_slot(pharmacy_id, day, slot_time, capacity, shift.labor_strength)
            summary.shifts.append(
                ShiftPlan(
                    start_time=shift.start_time,
                    end_time=shift.end_time,
                    labor_strength=shift.labor_strength,
                    slot_times=times,
                    configured_capacity=capacity,
                )
            )
        # Postings win over the plan, each over its own window.
        for record in self.store.workforce_for_date(pharmacy_id, day):
            apply_workforce(self.store, record, settings)
        return summary
