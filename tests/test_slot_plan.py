from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    CapacityStore,
    create_pharmacy,
    init_database,
    make_engine,
    make_session_factory,
    save_override,
    save_shift,
)
from capacity.api import CapacityService  # noqa: E402
from capacity.planner import calculate_configured_capacity  # noqa: E402
from errors import NotFoundError  # noqa: E402
from tags import ByDate, ByWeekday  # noqa: E402

MONDAY = datetime.date(2024, 4, 1)
NOW = datetime.datetime(2024, 4, 1, 10, 30)


class SlotPlanTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite:///:memory:")
        init_database(self.engine)
        self.session_factory = make_session_factory(self.engine)
        with self.session_factory() as session:
            pharmacy = create_pharmacy(
                session,
                name="Central",
                code="CEN",
                operating_start_time="09:00",
                operating_end_time="12:00",
                default_labor_strength=3,
                capacity_factor=10,
            )
            self.pharmacy_id = pharmacy.id
        self.service = CapacityService(self.session_factory, clock=lambda: NOW)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _slots(self, day: datetime.date = MONDAY):
        with self.session_factory() as session:
            return CapacityStore(session).slots_for_date(self.pharmacy_id, day)

    def test_operating_window_is_split_into_equal_slots(self) -> None:
        summary = self.service.generate_plan(self.pharmacy_id, MONDAY)

        slots = self._slots()
        self.assertEqual(summary.slot_count, 3)
        self.assertEqual([slot.slot_time for slot in slots], [datetime.time(9), datetime.time(10), datetime.time(11)])
        self.assertTrue(all(slot.configured_capacity == 10 for slot in slots))
        self.assertTrue(all(slot.labor_strength == 3 for slot in slots))

    def test_regeneration_keeps_counters_and_availability(self) -> None:
        self.service.generate_plan(self.pharmacy_id, MONDAY)
        with self.session_factory.begin() as session:
            slot = CapacityStore(session).get_slot(self.pharmacy_id, MONDAY, datetime.time(11))
            slot.consumed_capacity = 7
            slot.fulfilled_capacity = 2
            slot.is_available = False

        self.service.generate_plan(self.pharmacy_id, MONDAY)

        slots = self._slots()
        self.assertEqual(len(slots), 3)
        last = slots[-1]
        self.assertEqual((last.configured_capacity, last.consumed_capacity, last.fulfilled_capacity), (10, 7, 2))
        self.assertFalse(last.is_available)

    def test_regeneration_picks_up_changed_settings(self) -> None:
        self.service.generate_plan(self.pharmacy_id, MONDAY)
        with self.session_factory() as session:
            save_override(session, self.pharmacy_id, ByDate(MONDAY), capacity_factor=20)

        self.service.generate_plan(self.pharmacy_id, MONDAY)

        self.assertTrue(all(slot.configured_capacity == 20 for slot in self._slots()))

    def test_zero_width_shift_contributes_no_slots(self) -> None:
        with self.session_factory() as session:
            save_shift(session, self.pharmacy_id, ByDate(MONDAY), start_time="09:00", end_time="09:00")

        summary = self.service.generate_plan(self.pharmacy_id, MONDAY)

        self.assertEqual(summary.slot_count, 0)
        self.assertEqual(self._slots(), [])

    def test_each_shift_is_planned_on_its_own(self) -> None:
        with self.session_factory() as session:
            save_shift(
                session, self.pharmacy_id, ByWeekday(0), start_time="09:00", end_time="11:00", default_labor_strength=1
            )
            save_shift(
                session, self.pharmacy_id, ByWeekday(0), start_time="13:00", end_time="16:00", default_labor_strength=2
            )

        self.service.generate_plan(self.pharmacy_id, MONDAY)

        capacities = {slot.slot_time: slot.configured_capacity for slot in self._slots()}
        self.assertEqual(capacities[datetime.time(9)], 5)
        self.assertEqual(capacities[datetime.time(10)], 5)
        self.assertEqual(capacities[datetime.time(13)], 6)
        self.assertEqual(len(capacities), 5)

    def test_unknown_pharmacy_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.generate_plan(9999, MONDAY)


def test_configured_capacity_is_floored() -> None:
    assert calculate_configured_capacity(3, 10, 3) == 10
    assert calculate_configured_capacity(2, 10, 3) == 6
    assert calculate_configured_capacity(0, 10, 4) == 0


if __name__ == "__main__":
    unittest.main()
