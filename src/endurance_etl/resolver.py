"""endurance_etl.resolver

Per-import find-or-create for the natural-key entities a CSV row refers to.

Team, class, car model and car entry are cached for the life of one
EntityResolver (one import job); drivers and car-driver associations always
go to the store.  A resolver is never shared between jobs.
"""

from __future__ import annotations

from endurance_etl.models import CarClass, CarDriver, CarEntry, CarModel, Driver, Team
from endurance_etl.shared import RunCounters
from endurance_etl.store import TimingStore


class EntityResolver:
    def __init__(self, store: TimingStore, counters: RunCounters | None = None) -> None:
        self.store = store
        self.counters = counters if counters is not None else RunCounters()
        self._teams: dict[str, Team] = {}
        self._classes: dict[str, CarClass] = {}
        self._car_models: dict[str, CarModel] = {}
        self._car_entries: dict[tuple[int, str], CarEntry] = {}

    def team(self, name: str) -> Team:
        cached = self._teams.get(name)
        if cached is not None:
            return cached
        team = self.store.find_team(name)
        if team is not None:
            self.counters.teams_matched_existing += 1
        else:
            team = self.store.insert_team(name)
            self.counters.teams_inserted += 1
        self._teams[name] = team
        return team

    def car_class(self, series_id: int, name: str) -> CarClass:
        key = f"{series_id}:{name}"
        cached = self._classes.get(key)
        if cached is not None:
            return cached
        car_class = self.store.find_class(series_id, name)
        if car_class is not None:
            self.counters.classes_matched_existing += 1
        else:
            car_class = self.store.insert_class(series_id, name)
            self.counters.classes_inserted += 1
        self._classes[key] = car_class
        return car_class

    def car_model(self, name: str) -> CarModel:
        cached = self._car_models.get(name)
        if cached is not None:
            return cached
        model = self.store.find_car_model(name)
        if model is not None:
            self.counters.car_models_matched_existing += 1
        else:
            model = self.store.insert_car_model(name)
            self.counters.car_models_inserted += 1
        self._car_models[name] = model
        return model

    def car_entry(
        self,
        session_id: int,
        number: str,
        team: Team,
        car_class: CarClass,
        car_model: CarModel,
        tire_supplier: str | None,
    ) -> CarEntry:
        """Return the session's entry for `number`, creating it on first sight.

        An existing entry is returned unchanged even when team, class, model
        or tires differ in a later row.
        """
        key = (session_id, number)
        cached = self._car_entries.get(key)
        if cached is not None:
            return cached
        entry = self.store.find_car_entry(session_id, number)
        if entry is not None:
            self.counters.car_entries_matched_existing += 1
        else:
            entry = self.store.insert_car_entry(
                CarEntry(
                    id=None,
                    session_id=session_id,
                    number=number,
                    team_id=team.id,
                    class_id=car_class.id,
                    car_model_id=car_model.id,
                    tire_supplier=tire_supplier,
                )
            )
            self.counters.car_entries_inserted += 1
        self._car_entries[key] = entry
        return entry

    def driver(self, first_name: str, last_name: str) -> Driver:
        driver = self.store.find_driver(first_name, last_name)
        if driver is not None:
            self.counters.drivers_matched_existing += 1
            return driver
        self.counters.drivers_inserted += 1
        return self.store.insert_driver(first_name, last_name)

    def car_driver(self, car_entry_id: int, driver_id: int, driver_number: int) -> CarDriver:
        # first write wins; a later slot number never creates a second row
        car_driver = self.store.find_car_driver(car_entry_id, driver_id)
        if car_driver is not None:
            self.counters.car_drivers_matched_existing += 1
            return car_driver
        self.counters.car_drivers_inserted += 1
        return self.store.insert_car_driver(car_entry_id, driver_id, driver_number)
