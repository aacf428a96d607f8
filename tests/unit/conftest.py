"""Unit test fixtures.

FakeStore is an in-memory TimingStore so importer and resolver tests run
without a database.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest

from endurance_etl.models import (
    CarClass,
    CarDriver,
    CarEntry,
    CarModel,
    Driver,
    Event,
    Session,
    Team,
)


SESSION_START = datetime(2024, 1, 27, 13, 40, 0)


class FakeStore:
    def __init__(self) -> None:
        self._next_id = 100
        self.events: dict[int, Event] = {}
        self.sessions: dict[int, Session] = {}
        self.teams: list[Team] = []
        self.classes: list[CarClass] = []
        self.car_models: list[CarModel] = []
        self.car_entries: list[CarEntry] = []
        self.drivers: list[Driver] = []
        self.car_drivers: list[CarDriver] = []
        self.results = []
        self.laps = []
        self.sectors = []
        self.calls: list[str] = []
        # reverse RETURNING order to prove correlation is by key, not position
        self.reverse_lap_returning = False

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    # -- seeding ------------------------------------------------------------

    def add_session(self, session_id: int = 1, event_id: int = 10, series_id: int = 5,
                    start: datetime = SESSION_START) -> Session:
        self.events[event_id] = Event(event_id, series_id, "Rolex 24", 2024)
        session = Session(session_id, event_id, "Race", "RACE", start)
        self.sessions[session_id] = session
        return session

    def add_car(self, session_id: int, number: str, drivers: list[tuple[str, str]]) -> CarEntry:
        entry = CarEntry(self._id(), session_id, number, 1, 1, 1, None)
        self.car_entries.append(entry)
        for slot, (first, last) in enumerate(drivers, start=1):
            driver = self.find_driver(first, last) or self.insert_driver(first, last)
            self.car_drivers.append(CarDriver(self._id(), entry.id, driver.id, slot))
        return entry

    # -- TimingStore --------------------------------------------------------

    def find_session(self, session_id):
        return self.sessions.get(session_id)

    def find_event(self, event_id):
        return self.events.get(event_id)

    def find_team(self, name):
        self.calls.append(f"find_team:{name}")
        return next((t for t in self.teams if t.name == name), None)

    def insert_team(self, name):
        team = Team(self._id(), name)
        self.teams.append(team)
        return team

    def find_class(self, series_id, name):
        self.calls.append(f"find_class:{series_id}:{name}")
        return next(
            (c for c in self.classes if c.series_id == series_id and c.name == name), None
        )

    def insert_class(self, series_id, name):
        car_class = CarClass(self._id(), series_id, name)
        self.classes.append(car_class)
        return car_class

    def find_car_model(self, name):
        self.calls.append(f"find_car_model:{name}")
        return next((m for m in self.car_models if m.name == name), None)

    def insert_car_model(self, name):
        model = CarModel(self._id(), name)
        self.car_models.append(model)
        return model

    def find_car_entry(self, session_id, number):
        self.calls.append(f"find_car_entry:{session_id}:{number}")
        return next(
            (e for e in self.car_entries if e.session_id == session_id and e.number == number),
            None,
        )

    def insert_car_entry(self, entry):
        saved = replace(entry, id=self._id())
        self.car_entries.append(saved)
        return saved

    def list_car_entries(self, session_id):
        return [e for e in self.car_entries if e.session_id == session_id]

    def find_driver(self, first_name, last_name):
        return next(
            (d for d in self.drivers if d.first_name == first_name and d.last_name == last_name),
            None,
        )

    def insert_driver(self, first_name, last_name):
        driver = Driver(self._id(), first_name, last_name)
        self.drivers.append(driver)
        return driver

    def find_car_driver(self, car_entry_id, driver_id):
        return next(
            (cd for cd in self.car_drivers
             if cd.car_entry_id == car_entry_id and cd.driver_id == driver_id),
            None,
        )

    def insert_car_driver(self, car_entry_id, driver_id, driver_number):
        car_driver = CarDriver(self._id(), car_entry_id, driver_id, driver_number)
        self.car_drivers.append(car_driver)
        return car_driver

    def find_car_driver_by_number(self, car_entry_id, driver_number):
        return next(
            (cd for cd in self.car_drivers
             if cd.car_entry_id == car_entry_id and cd.driver_number == driver_number),
            None,
        )

    def list_car_drivers(self, car_entry_id):
        by_id = {d.id: d for d in self.drivers}
        return [
            (cd, by_id[cd.driver_id])
            for cd in self.car_drivers
            if cd.car_entry_id == car_entry_id
        ]

    def insert_results(self, results):
        self.calls.append("insert_results")
        self.results.extend(results)
        return len(results)

    def insert_laps(self, laps):
        self.calls.append("insert_laps")
        saved = [replace(lap, id=self._id()) for lap in laps]
        self.laps.extend(saved)
        return list(reversed(saved)) if self.reverse_lap_returning else saved

    def insert_sectors(self, sectors):
        self.calls.append("insert_sectors")
        assert all(s.lap_id is not None for s in sectors)
        self.sectors.extend(sectors)
        return len(sectors)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
