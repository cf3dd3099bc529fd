from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from database import CapacitySlot, CapacityStore
from errors import CapacityInsufficientError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotMove:
    slot_time: datetime.time
    amount: int
    overflow: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"slotTime": self.slot_time.strftime("%H:%M"), "amount": self.amount, "overflow": self.overflow}


@dataclass
class RedistributionResult:
    pharmacy_id: int
    date: datetime.date
    source_time: Optional[datetime.time] = None
    unfulfilled: int = 0
    moves: List[SlotMove] = field(default_factory=list)

    @property
    def moved(self) -> int:
        return sum(move.amount for move in self.moves)

    @property
    def overflow(self) -> int:
        return sum(move.amount for move in self.moves if move.overflow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pharmacyId": self.pharmacy_id,
            "date": self.date.isoformat(),
            "sourceTime": self.source_time.strftime("%H:%M") if self.source_time else None,
            "unfulfilled": self.unfulfilled,
            "moved": self.moved,
            "overflow": self.overflow,
            "moves": [move.to_dict() for move in self.moves],
        }


@dataclass
class AvailabilityResult:
    pharmacy_id: int
    date: datetime.date
    slot_time: datetime.time
    available: bool
    reassigned: int = 0
    moves: List[SlotMove] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pharmacyId": self.pharmacy_id,
            "date": self.date.isoformat(),
            "slotTime": self.slot_time.strftime("%H:%M"),
            "available": self.available,
            "reassigned": self.reassigned,
            "moves": [move.to_dict() for move in self.moves],
        }


def _spread_forward(
    store: CapacityStore,
    candidates: Iterable[CapacitySlot],
    amount: int,
) -> Tuple[List[SlotMove], int]:
    """Fill candidate headroom greedily in order; returns the moves and what is left over."""
    moves: List[SlotMove] = []
    remaining = amount
    for slot in candidates:
        if remaining <= 0:
            break
        portion = min(remaining, slot.headroom)
        if portion <= 0:
            continue
        store.add_consumed(slot.id, portion)
        moves.append(SlotMove(slot_time=slot.slot_time, amount=portion))
        remaining -= portion
    return moves, remaining


class RedistributionEngine:
    """Moves unfulfilled capacity off past or disabled slots onto later slots of the same day."""

    def __init__(self, store: CapacityStore) -> None:
        self.store = store

    def redistribute(self, pharmacy_id: int, now: datetime.datetime) -> RedistributionResult:
        self.store.get_pharmacy(pharmacy_id)
        today = now.date()
        current = now.time().replace(tzinfo=None)
        result = RedistributionResult(pharmacy_id=pharmacy_id, date=today)
        source = self.store.latest_overdue_slot(pharmacy_id, today, current)
        if source is None:
            return result
        unfulfilled = source.unfulfilled
        result.source_time = source.slot_time
        result.unfulfilled = unfulfilled

        candidates = self.store.later_open_slots(pharmacy_id, today, max(source.slot_time, current))
        moves, remaining = _spread_forward(self.store, candidates, unfulfilled)
        if remaining > 0:
            last = self.store.last_slot_of_day(pharmacy_id, today)
            if last is not None and last.id != source.id:
                # Overflow ignores the last slot's ceiling; consumed may end above configured.
                self.store.add_consumed(last.id, remaining)
                moves.append(SlotMove(slot_time=last.slot_time, amount=remaining, overflow=True))
                logger.warning(
                    "Pharmacy %s: %s unfulfilled units from %s overflowed onto last slot %s",
                    pharmacy_id, remaining, source.slot_time, last.slot_time,
                )
                remaining = 0
        result.moves = moves
        moved = unfulfilled - remaining
        if moved > 0:
            self.store.add_consumed(source.id, -moved)
            logger.info(
                "Pharmacy %s: moved %s of %s unfulfilled units from %s across %d slot(s)",
                pharmacy_id, moved, unfulfilled, source.slot_time, len(moves),
            )
        return result

    def set_availability(
        self,
        pharmacy_id: int,
        day: datetime.date,
        slot_time: datetime.time,
        available: bool,
    ) -> AvailabilityResult:
        self.store.get_pharmacy(pharmacy_id)
        slot = self.store.get_slot(pharmacy_id, day, slot_time)
        if slot is None:
            raise NotFoundError("Slot not found.")
        result = AvailabilityResult(pharmacy_id=pharmacy_id, date=day, slot_time=slot.slot_time, available=available)
        unfulfilled = slot.unfulfilled
        if available or unfulfilled <= 0:
            self.store.set_availability(slot.id, available)
            return result

        candidates = self.store.later_open_slots(pharmacy_id, day, slot.slot_time)
        available_capacity = sum(candidate.headroom for candidate in candidates)
        if available_capacity < unfulfilled:
            logger.warning(
                "Pharmacy %s: refused to disable %s %s, %s unfulfilled but only %s reassignable",
                pharmacy_id, day, slot.slot_time, unfulfilled, available_capacity,
            )
            raise CapacityInsufficientError(unfulfilled, available_capacity)

        moves, _ = _spread_forward(self.store, candidates, unfulfilled)
        self.store.set_availability(slot.id, False, reset_counters=True)
        result.moves = moves
        result.reassigned = unfulfilled
        logger.info(
            "Pharmacy %s: disabled %s %s and reassigned %s units",
            pharmacy_id, day, slot.slot_time, unfulfilled,
        )
        return result
