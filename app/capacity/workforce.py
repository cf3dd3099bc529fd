from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import List

from database import CapacityStore, WorkforceRecord
from errors import ValidationError

from .planner import apply_workforce
from .resolver import ConfigurationResolver

logger = logging.getLogger(__name__)


@dataclass
class WorkforceUpdate:
    record: WorkforceRecord
    slot_times: List[datetime.time]
    configured_capacity: int
    slots_updated: int


class WorkforcePosting:
    """Signed-in strength for a shift replaces the planned strength of that shift's slots."""

    def __init__(self, store: CapacityStore) -> None:
        self.store = store
        self.resolver = ConfigurationResolver(store)

    def record(
        self,
        pharmacy_id: int,
        day: datetime.date,
        start_time: datetime.time,
        end_time: datetime.time,
        signed_in_strength: int,
    ) -> WorkforceUpdate:
        if isinstance(signed_in_strength, bool) or int(signed_in_strength) < 0:
            raise ValidationError("signed_in_strength must be zero or more.")
        strength = int(signed_in_strength)
        pharmacy = self.store.get_pharmacy(pharmacy_id)
        record = self.store.upsert_workforce(pharmacy_id, day, start_time, end_time, strength)
        settings = self.resolver.resolve_settings(pharmacy, day)
        times, capacity, updated = apply_workforce(self.store, record, settings)
        if times:
            logger.info(
                "Pharmacy %s %s: signed-in strength %s for %s-%s sets %s per slot on %d slot(s)",
                pharmacy_id, day, strength, start_time, end_time, capacity, updated,
            )
        return WorkforceUpdate(record=record, slot_times=times, configured_capacity=capacity, slots_updated=updated)

    def list(self, pharmacy_id: int, day: datetime.date) -> List[WorkforceRecord]:
        self.store.get_pharmacy(pharmacy_id)
        return self.store.workforce_for_date(pharmacy_id, day)
