"""Outward interface of the capacity engine.

Every operation opens its own session, runs inside one transaction and, when
it mutates a pharmacy's slots, holds that pharmacy's lock for the duration.
"""

from __future__ import annotations

import datetime
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.orm import sessionmaker

from database import CapacityStore, SessionLocal, WorkforceRecord
from errors import ValidationError
from timegrid import parse_time

from .ledger import CapacityLedger, ConsumeResult, FulfillResult
from .planner import PlanSummary, SlotPlanGenerator
from .redistribution import AvailabilityResult, RedistributionEngine, RedistributionResult
from .views import DEFAULT_HORIZON_DAYS, DayCapacityView, build_capacity_view
from .workforce import WorkforcePosting, WorkforceUpdate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def coerce_date(value: Any, field: str = "date") -> datetime.date:
    if value is None or value == "":
        raise ValidationError(f"{field} is required.")
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD.") from exc


def coerce_time(value: Any, field: str = "time") -> datetime.time:
    if value is None or value == "":
        raise ValidationError(f"{field} is required.")
    return parse_time(value)


class PharmacyLocks:
    """One lock per known pharmacy id, created on first use and dropped on delete."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def get(self, pharmacy_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(pharmacy_id)
            if lock is None:
                lock = self._locks[pharmacy_id] = threading.Lock()
            return lock

    def discard(self, pharmacy_id: int) -> None:
        with self._guard:
            self._locks.pop(pharmacy_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class CapacityService:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Clock = datetime.datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._locks = PharmacyLocks()

    def now(self) -> datetime.datetime:
        return self._clock()

    @contextmanager
    def _transaction(self, pharmacy_id: Optional[int] = None) -> Iterator[CapacityStore]:
        lock = None
        if pharmacy_id is not None:
            # Unknown ids fail here so they never get a lock.
            with self._session_factory() as session:
                CapacityStore(session).get_pharmacy(pharmacy_id)
            lock = self._locks.get(pharmacy_id)
            lock.acquire()
        try:
            with self._session_factory.begin() as session:
                yield CapacityStore(session)
        finally:
            if lock is not None:
                lock.release()

    def forget_pharmacy(self, pharmacy_id: int) -> None:
        self._locks.discard(pharmacy_id)

    def list_pharmacy_ids(self) -> List[int]:
        with self._transaction() as store:
            return store.list_pharmacy_ids()

    def generate_plan(self, pharmacy_id: int, date: Any = None) -> PlanSummary:
        day = self.now().date() if date is None else coerce_date(date)
        with self._transaction(pharmacy_id) as store:
            summary = SlotPlanGenerator(store).generate(pharmacy_id, day)
        logger.info("Pharmacy %s: planned %d slot(s) for %s", pharmacy_id, summary.slot_count, day)
        return summary

    def consume(self, pharmacy_id: int, amount: Any, date: Any = None) -> ConsumeResult:
        now = self.now()
        day = now.date() if date is None or date == "" else coerce_date(date)
        with self._transaction(pharmacy_id) as store:
            return CapacityLedger(store).consume(pharmacy_id, amount, day, now)

    def fulfill(self, pharmacy_id: int, amount: Any, date: Any, time: Any) -> FulfillResult:
        day = coerce_date(date)
        slot_time = coerce_time(time)
        with self._transaction(pharmacy_id) as store:
            return CapacityLedger(store).fulfill(pharmacy_id, amount, day, slot_time)

    def redistribute(self, pharmacy_id: int) -> RedistributionResult:
        now = self.now()
        with self._transaction(pharmacy_id) as store:
            return RedistributionEngine(store).redistribute(pharmacy_id, now)

    def set_slot_availability(self, pharmacy_id: int, date: Any, time: Any, available: bool) -> AvailabilityResult:
        if not isinstance(available, bool):
            raise ValidationError("available must be true or false.")
        day = coerce_date(date)
        slot_time = coerce_time(time)
        with self._transaction(pharmacy_id) as store:
            return RedistributionEngine(store).set_availability(pharmacy_id, day, slot_time, available)

    def record_workforce(
        self,
        pharmacy_id: int,
        date: Any,
        start_time: Any,
        end_time: Any,
        signed_in_strength: Any,
    ) -> WorkforceUpdate:
        day = coerce_date(date, "shift_date")
        start = coerce_time(start_time, "shift_start_time")
        end = coerce_time(end_time, "shift_end_time")
        try:
            strength = int(signed_in_strength)
        except (TypeError, ValueError) as exc:
            raise ValidationError("signed_in_strength must be a whole number.") from exc
        with self._transaction(pharmacy_id) as store:
            return WorkforcePosting(store).record(pharmacy_id, day, start, end, strength)

    def list_workforce(self, pharmacy_id: int, date: Any = None) -> List[WorkforceRecord]:
        day = self.now().date() if date is None else coerce_date(date)
        with self._transaction() as store:
            return WorkforcePosting(store).list(pharmacy_id, day)

    def get_capacity_view(self, pharmacy_id: int, horizon_days: int = DEFAULT_HORIZON_DAYS) -> List[DayCapacityView]:
        # Views write plans, so they take the pharmacy lock like any other mutation.
        with self._transaction(pharmacy_id) as store:
            return build_capacity_view(store, pharmacy_id, self.now().date(), horizon_days)
