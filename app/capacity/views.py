from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List

from database import CapacitySlot, CapacityStore

from .planner import SlotPlanGenerator

DEFAULT_HORIZON_DAYS = 14


@dataclass(frozen=True)
class SlotCapacityView:
    time: datetime.time
    configured: int
    consumed: int
    fulfilled: int
    headroom: int
    available: bool
    has_reassignable_shortfall: bool

    @classmethod
    def from_slot(cls, slot: CapacitySlot) -> "SlotCapacityView":
        return cls(
            time=slot.slot_time,
            configured=slot.configured_capacity,
            consumed=slot.consumed_capacity,
            fulfilled=slot.fulfilled_capacity,
            headroom=slot.headroom,
            available=bool(slot.is_available),
            has_reassignable_shortfall=slot.unfulfilled > 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.strftime("%H:%M"),
            "configured": self.configured,
            "consumed": self.consumed,
            "fulfilled": self.fulfilled,
            "headroom": self.headroom,
            "available": self.available,
            "hasReassignableShortfall": self.has_reassignable_shortfall,
        }


@dataclass
class DayCapacityView:
    date: datetime.date
    slots: List[SlotCapacityView] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "slots": [slot.to_dict() for slot in self.slots]}


def build_capacity_view(
    store: CapacityStore,
    pharmacy_id: int,
    start: datetime.date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> List[DayCapacityView]:
    """Plan and report every day from ``start`` over the horizon."""
    planner = SlotPlanGenerator(store)
    days: List[DayCapacityView] = []
    for offset in range(max(0, int(horizon_days))):
        day = start + datetime.timedelta(days=offset)
        planner.generate(pharmacy_id, day)
        slots = [SlotCapacityView.from_slot(slot) for slot in store.slots_for_date(pharmacy_id, day)]
        days.append(DayCapacityView(date=day, slots=slots))
    return days
