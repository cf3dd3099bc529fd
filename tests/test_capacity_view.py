from __future__ import annotations

import datetime
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import create_pharmacy, init_database, make_engine, make_session_factory  # noqa: E402
from capacity.api import CapacityService  # noqa: E402

NOW = datetime.datetime(2024, 4, 1, 8, 0)


def _service():
    engine = make_engine("sqlite:///:memory:")
    init_database(engine)
    session_factory = make_session_factory(engine)
    with session_factory() as session:
        pharmacy = create_pharmacy(
            session,
            name="Central",
            code="CEN",
            operating_start_time="09:00",
            operating_end_time="12:00",
            default_labor_strength=3,
            capacity_factor=10,
        )
    return CapacityService(session_factory, clock=lambda: NOW), pharmacy.id


def test_view_plans_every_day_of_horizon() -> None:
    service, pharmacy_id = _service()

    view = service.get_capacity_view(pharmacy_id)

    assert len(view) == 14
    assert view[0].date == NOW.date()
    assert view[-1].date == NOW.date() + datetime.timedelta(days=13)
    assert all(len(day.slots) == 3 for day in view)


def test_view_reports_counters_and_shortfall() -> None:
    service, pharmacy_id = _service()
    service.consume(pharmacy_id, 4)
    service.fulfill(pharmacy_id, 1, NOW.date(), "09:00")

    today = service.get_capacity_view(pharmacy_id, horizon_days=1)[0].to_dict()

    first = today["slots"][0]
    assert first == {
        "time": "09:00",
        "configured": 10,
        "consumed": 4,
        "fulfilled": 1,
        "headroom": 6,
        "available": True,
        "hasReassignableShortfall": True,
    }
    assert today["slots"][1]["hasReassignableShortfall"] is False
