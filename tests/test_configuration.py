from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    CapacitySlot,
    CapacityStore,
    create_pharmacy,
    delete_override,
    delete_pharmacy,
    init_database,
    list_overrides,
    list_shifts,
    make_engine,
    make_session_factory,
    save_override,
    save_shift,
)
from capacity.resolver import ConfigurationResolver  # noqa: E402
from errors import NotFoundError, ValidationError  # noqa: E402
from tags import ByDate, ByWeekday, tag_from_payload  # noqa: E402

MONDAY = datetime.date(2024, 4, 1)


class TagTests(unittest.TestCase):
    def test_weekday_zero_is_a_valid_tag(self) -> None:
        self.assertEqual(tag_from_payload(day_of_week=0), ByWeekday(0))
        self.assertEqual(tag_from_payload(specific_date="2024-04-01"), ByDate(MONDAY))

    def test_exactly_one_of_weekday_or_date_is_required(self) -> None:
        with self.assertRaises(ValidationError):
            tag_from_payload()
        with self.assertRaises(ValidationError):
            tag_from_payload(day_of_week=1, specific_date="2024-04-01")

    def test_weekday_out_of_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            tag_from_payload(day_of_week=7)
        with self.assertRaises(ValidationError):
            ByWeekday(True)


class ConfigurationResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite:///:memory:")
        init_database(self.engine)
        self.session = make_session_factory(self.engine)()
        self.pharmacy = create_pharmacy(
            self.session,
            name="Central",
            code="CEN",
            operating_start_time="09:00",
            operating_end_time="17:00",
            default_labor_strength=2,
            capacity_factor=10,
        )
        self.resolver = ConfigurationResolver(CapacityStore(self.session))

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_defaults_apply_without_overrides(self) -> None:
        settings = self.resolver.resolve_settings(self.pharmacy, MONDAY)

        self.assertEqual(settings.operating_start_time, datetime.time(9, 0))
        self.assertEqual(settings.labor_strength, 2)
        self.assertEqual(settings.capacity_factor, 10.0)
        self.assertEqual(settings.slot_length_minutes, 60)

    def test_each_field_cascades_independently(self) -> None:
        save_override(self.session, self.pharmacy.id, ByWeekday(0), slot_length_minutes=30, capacity_factor=5)
        save_override(self.session, self.pharmacy.id, ByDate(MONDAY), capacity_factor=20)

        settings = self.resolver.resolve_settings(self.pharmacy, MONDAY)

        self.assertEqual(settings.capacity_factor, 20.0)
        self.assertEqual(settings.slot_length_minutes, 30)
        self.assertEqual(settings.labor_strength, 2)
        self.assertEqual(settings.operating_end_time, datetime.time(17, 0))

    def test_weekday_override_does_not_leak_to_other_days(self) -> None:
        save_override(self.session, self.pharmacy.id, ByWeekday(1), operating_start_time="11:00")

        settings = self.resolver.resolve_settings(self.pharmacy, MONDAY)

        self.assertEqual(settings.operating_start_time, datetime.time(9, 0))

    def test_saving_override_again_merges_fields(self) -> None:
        save_override(self.session, self.pharmacy.id, ByWeekday(0), operating_start_time="10:00")
        override = save_override(self.session, self.pharmacy.id, ByWeekday(0), capacity_factor=12)

        self.assertEqual(override.operating_start_time, datetime.time(10, 0))
        self.assertEqual(override.capacity_factor, 12.0)
        self.assertEqual(len(list_overrides(self.session, self.pharmacy.id, show_all=True)), 1)

    def test_date_shifts_win_over_weekday_shifts(self) -> None:
        save_shift(self.session, self.pharmacy.id, ByWeekday(0), start_time="08:00", end_time="12:00")
        save_shift(self.session, self.pharmacy.id, ByDate(MONDAY), start_time="13:00", end_time="15:00")
        save_shift(self.session, self.pharmacy.id, ByDate(MONDAY), start_time="10:00", end_time="12:00")

        shifts = self.resolver.resolve_shifts(self.pharmacy, MONDAY)

        self.assertEqual([shift.start_time for shift in shifts], [datetime.time(10, 0), datetime.time(13, 0)])

    def test_weekday_shifts_used_when_no_date_shift(self) -> None:
        save_shift(
            self.session, self.pharmacy.id, ByWeekday(0), start_time="08:00", end_time="12:00", default_labor_strength=4
        )

        shifts = self.resolver.resolve_shifts(self.pharmacy, MONDAY)

        self.assertEqual(len(shifts), 1)
        self.assertEqual(shifts[0].labor_strength, 4)
        self.assertFalse(shifts[0].synthetic)

    def test_synthetic_shift_spans_effective_window(self) -> None:
        save_override(self.session, self.pharmacy.id, ByDate(MONDAY), operating_end_time="13:00", default_labor_strength=5)

        shifts = self.resolver.resolve_shifts(self.pharmacy, MONDAY)

        self.assertEqual(len(shifts), 1)
        self.assertTrue(shifts[0].synthetic)
        self.assertEqual(shifts[0].end_time, datetime.time(13, 0))
        self.assertEqual(shifts[0].labor_strength, 5)


class AdministrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite:///:memory:")
        init_database(self.engine)
        self.session = make_session_factory(self.engine)()

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _pharmacy(self, code: str = "NTH", **extra):
        return create_pharmacy(
            self.session, name="North", code=code, operating_start_time="09:00", operating_end_time="12:00", **extra
        )

    def test_duplicate_code_is_rejected(self) -> None:
        self._pharmacy()
        with self.assertRaises(ValidationError):
            self._pharmacy()

    def test_code_longer_than_three_characters_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._pharmacy(code="LONG")

    def test_initial_shifts_are_created_with_pharmacy(self) -> None:
        pharmacy = self._pharmacy(
            shifts=[{"day_of_week": 0, "start_time": "09:00", "end_time": "11:00", "default_labor_strength": 3}]
        )

        shifts = list_shifts(self.session, pharmacy.id)

        self.assertEqual(len(shifts), 1)
        self.assertEqual(shifts[0].day_of_week, 0)
        self.assertEqual(shifts[0].default_labor_strength, 3)

    def test_listing_hides_past_dated_shifts_unless_asked(self) -> None:
        pharmacy = self._pharmacy()
        save_shift(self.session, pharmacy.id, ByDate(MONDAY - datetime.timedelta(days=1)), start_time="09:00", end_time="10:00")
        save_shift(self.session, pharmacy.id, ByDate(MONDAY), start_time="09:00", end_time="10:00")
        save_shift(self.session, pharmacy.id, ByWeekday(3), start_time="09:00", end_time="10:00")

        self.assertEqual(len(list_shifts(self.session, pharmacy.id, today=MONDAY)), 2)
        self.assertEqual(len(list_shifts(self.session, pharmacy.id, show_all=True)), 3)

    def test_delete_override_checks_owner(self) -> None:
        first = self._pharmacy()
        second = self._pharmacy(code="STH")
        override = save_override(self.session, first.id, ByWeekday(2), capacity_factor=8)

        with self.assertRaises(NotFoundError):
            delete_override(self.session, second.id, override.id)
        delete_override(self.session, first.id, override.id)
        self.assertEqual(list_overrides(self.session, first.id, show_all=True), [])

    def test_deleting_pharmacy_removes_its_rows(self) -> None:
        pharmacy = self._pharmacy()
        save_shift(self.session, pharmacy.id, ByWeekday(0), start_time="09:00", end_time="10:00")
        CapacityStore(self.session).upsert_slot(pharmacy.id, MONDAY, datetime.time(9, 0), 10, 1)
        self.session.commit()

        delete_pharmacy(self.session, pharmacy.id)

        self.assertEqual(self.session.query(CapacitySlot).count(), 0)
        with self.assertRaises(NotFoundError):
            CapacityStore(self.session).get_pharmacy(pharmacy.id)


if __name__ == "__main__":
    unittest.main()
