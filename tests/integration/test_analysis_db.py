"""Integration tests for lap-time analytics against seeded laps."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from endurance_etl.analysis import (
    LapTimeAnalysis,
    driver_lap_analysis_for_event,
    event_lap_analysis,
    top_laps_for_driver,
)
from endurance_etl.models import CarEntry, Lap
from endurance_etl.store import PgTimingStore

FAST_DRIVER_LAPS = ["100.000", "101.000", "102.000", "103.000", "110.000"]
SLOW_DRIVER_LAPS = ["105.000", "106.000"]


@pytest.fixture
def seeded(db_conn, race_session):
    """One GTP car with two drivers and seven laps between them."""
    conn, _ = db_conn
    store = PgTimingStore(conn)
    event = store.find_event(race_session.event_id)
    entry = store.insert_car_entry(CarEntry(
        None, race_session.id, "7",
        store.insert_team("Porsche Penske Motorsport").id,
        store.insert_class(event.series_id, "GTP").id,
        store.insert_car_model("Porsche 963").id,
        "Michelin",
    ))
    fast = store.insert_driver("Felipe", "Nasr")
    slow = store.insert_driver("Dane", "Cameron")
    store.insert_car_driver(entry.id, fast.id, 1)
    store.insert_car_driver(entry.id, slow.id, 2)

    laps = []
    elapsed = Decimal(0)
    for driver, times in ((fast, FAST_DRIVER_LAPS), (slow, SLOW_DRIVER_LAPS)):
        for n, t in enumerate(times, 1):
            elapsed += Decimal(t)
            laps.append(Lap(
                entry.id, driver.id, n, Decimal(t), elapsed,
                race_session.start_datetime + timedelta(seconds=float(elapsed)),
                Decimal("180.0"),
            ))
    store.insert_laps(laps)
    conn.commit()
    return conn, event, fast, slow


class TestTopLaps:
    def test_top_percentage_rounds_up(self, seeded):
        conn, _, fast, _ = seeded
        rows = top_laps_for_driver(conn, fast.id, 40)
        assert [r.lap_time_seconds for r in rows] == [Decimal("100.000"), Decimal("101.000")]
        assert rows[0].lap_time == "1:40.000"
        assert rows[0].driver_name == "Felipe Nasr"
        assert rows[0].team_name == "Porsche Penske Motorsport"
        assert rows[0].event_name == "Rolex 24 At Daytona"
        assert rows[0].year == 2024

    def test_filters_narrow_the_set(self, seeded):
        conn, event, fast, _ = seeded
        assert len(top_laps_for_driver(conn, fast.id, 100, event_id=event.id)) == 5
        assert top_laps_for_driver(conn, fast.id, 100, year=1999) == []


class TestEventAnalysis:
    def test_average_over_top_slice_median_over_all(self, seeded):
        conn, event, _, _ = seeded
        result = event_lap_analysis(conn, event.id, 50)
        assert result.total_lap_count == 7
        assert result.fastest_seconds == Decimal("100.000")
        assert result.average_seconds == Decimal("101.5")
        assert result.median_seconds == Decimal("103")
        assert result.median_lap_time == "1:43.000"

    def test_unknown_event_is_empty(self, seeded):
        conn, _, _, _ = seeded
        assert event_lap_analysis(conn, 9999, 50) == LapTimeAnalysis.empty()

    def test_per_driver_sorted_by_average(self, seeded):
        conn, event, fast, slow = seeded
        rows = driver_lap_analysis_for_event(conn, event.id, 100)
        assert [r.driver_id for r in rows] == [fast.id, slow.id]
        assert rows[0].car_number == "7"
        assert rows[0].class_name == "GTP"
        assert rows[0].car_model == "Porsche 963"
        assert rows[0].analysis.total_lap_count == 5
        assert rows[1].analysis.average_seconds == Decimal("105.5")
