from __future__ import annotations

import datetime
import sys
import threading
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import CapacityStore, create_pharmacy, init_database, make_engine, make_session_factory  # noqa: E402
from capacity.api import CapacityService  # noqa: E402
from errors import NotFoundError  # noqa: E402

MONDAY = datetime.date(2024, 4, 1)
NOW = datetime.datetime(2024, 4, 1, 10, 30)


def test_interleaved_consume_and_redistribute_keep_counters_consistent(tmp_path) -> None:
    engine = make_engine(f"sqlite:///{(tmp_path / 'capacity.db').as_posix()}")
    init_database(engine)
    session_factory = make_session_factory(engine)
    with session_factory() as session:
        pharmacy = create_pharmacy(
            session,
            name="Central",
            code="CEN",
            operating_start_time="09:00",
            operating_end_time="13:00",
            default_labor_strength=4,
            capacity_factor=10,
        )
        pharmacy_id = pharmacy.id
    service = CapacityService(session_factory, clock=lambda: NOW)
    service.generate_plan(pharmacy_id, MONDAY)
    with session_factory.begin() as session:
        slot = CapacityStore(session).get_slot(pharmacy_id, MONDAY, datetime.time(10))
        slot.consumed_capacity = 8
        slot.fulfilled_capacity = 3

    results = []
    errors = []
    start = threading.Barrier(15)

    def consume() -> None:
        try:
            start.wait()
            results.append(service.consume(pharmacy_id, 1))
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    def redistribute() -> None:
        try:
            start.wait()
            service.redistribute(pharmacy_id)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=consume) for _ in range(10)]
    threads += [threading.Thread(target=redistribute) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(results) == 10
    assert all(result.accepted for result in results)
    with session_factory() as session:
        slots = CapacityStore(session).slots_for_date(pharmacy_id, MONDAY)
    by_hour = {slot.slot_time.hour: slot for slot in slots}
    assert sum(slot.consumed_capacity for slot in slots) == 8 + 10
    assert by_hour[10].consumed_capacity == 3
    assert by_hour[11].consumed_capacity + by_hour[12].consumed_capacity == 15
    assert all(0 <= slot.fulfilled_capacity <= slot.consumed_capacity <= slot.configured_capacity for slot in slots)
    engine.dispose()


def test_lock_registry_only_holds_known_pharmacies() -> None:
    engine = make_engine("sqlite:///:memory:")
    init_database(engine)
    session_factory = make_session_factory(engine)
    with session_factory() as session:
        pharmacy_id = create_pharmacy(
            session,
            name="Central",
            code="CEN",
            operating_start_time="09:00",
            operating_end_time="13:00",
        ).id
    service = CapacityService(session_factory, clock=lambda: NOW)

    for unknown in range(1000, 1050):
        with pytest.raises(NotFoundError):
            service.consume(unknown, 1)
    assert len(service._locks) == 0

    service.generate_plan(pharmacy_id, MONDAY)
    service.redistribute(pharmacy_id)
    assert len(service._locks) == 1

    service.forget_pharmacy(pharmacy_id)
    assert len(service._locks) == 0
    engine.dispose()
