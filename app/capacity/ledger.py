from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from database import CapacityStore
from errors import ValidationError

from .planner import SlotPlanGenerator

logger = logging.getLogger(__name__)

NO_CAPACITY_REASON = "No available slots with sufficient capacity for the requested amount"
SLOT_NOT_FOUND_REASON = "Slot not found"
OVER_FULFILL_REASON = "Cannot fulfill more than consumed capacity"


@dataclass(frozen=True)
class ConsumeResult:
    accepted: bool
    reason: Optional[str] = None
    slot_date: Optional[datetime.date] = None
    slot_time: Optional[datetime.time] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"accepted": self.accepted}
        if self.reason:
            payload["reason"] = self.reason
        if self.slot_time is not None:
            payload["slotDate"] = self.slot_date.isoformat() if self.slot_date else None
            payload["slotTime"] = self.slot_time.strftime("%H:%M")
        return payload


@dataclass(frozen=True)
class FulfillResult:
    accepted: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"accepted": self.accepted}
        if self.reason:
            payload["reason"] = self.reason
        return payload


def require_amount(value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError("amount must be a positive whole number.")
    try:
        amount = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("amount must be a positive whole number.") from exc
    if amount <= 0:
        raise ValidationError("amount must be a positive whole number.")
    return amount


class CapacityLedger:
    """Admission (consume) and delivery (fulfill) against a pharmacy's slot plan."""

    def __init__(self, store: CapacityStore) -> None:
        self.store = store
        self.planner = SlotPlanGenerator(store)

    def consume(
        self,
        pharmacy_id: int,
        amount: int,
        day: datetime.date,
        now: datetime.datetime,
    ) -> ConsumeResult:
        amount = require_amount(amount)
        self.planner.generate(pharmacy_id, day)
        today = now.date()
        if day < today:
            logger.debug("Pharmacy %s: rejected %s units for past date %s", pharmacy_id, amount, day)
            return ConsumeResult(accepted=False, reason=NO_CAPACITY_REASON)
        after = now.time().replace(tzinfo=None) if day == today else None
        slot = self.store.first_open_slot(pharmacy_id, day, amount, after=after)
        if slot is None:
            logger.debug("Pharmacy %s: no slot on %s can take %s units", pharmacy_id, day, amount)
            return ConsumeResult(accepted=False, reason=NO_CAPACITY_REASON)
        self.store.add_consumed(slot.id, amount)
        return ConsumeResult(accepted=True, slot_date=slot.slot_date, slot_time=slot.slot_time)

    def fulfill(
        self,
        pharmacy_id: int,
        amount: int,
        day: datetime.date,
        slot_time: datetime.time,
    ) -> FulfillResult:
        amount = require_amount(amount)
        slot = self.store.get_slot(pharmacy_id, day, slot_time)
        if slot is None:
            return FulfillResult(accepted=False, reason=SLOT_NOT_FOUND_REASON)
        if slot.fulfilled_capacity + amount > slot.consumed_capacity:
            return FulfillResult(accepted=False, reason=OVER_FULFILL_REASON)
        self.store.add_fulfilled(slot.id, amount)
        return FulfillResult(accepted=True)
