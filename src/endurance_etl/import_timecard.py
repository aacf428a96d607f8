"""endurance_etl.import_timecard

Timecard importer: one Lap per (car, driver, lap number) plus up to three
Sectors per lap.  Car entries and car-driver associations must already exist
(created by a prior results import for the same session).

Laps and sectors are accumulated for the whole file and written with two
batch inserts at the end, laps first.  Staged sectors are tied to their lap
by LapKey; the lap insert returns each row's key columns with its id, so the
key → lap_id map does not depend on insert order.
"""

from __future__ import annotations

import logging
from typing import Iterable

from endurance_etl.csv_source import HeaderIndex, iter_rows
from endurance_etl.errors import (
    CarDriverAssociationNotFound,
    CarEntryNotFound,
    MissingField,
    SessionNotFound,
    TimingImportError,
)
from endurance_etl.models import CarDriver, CarEntry, ImportOutcome, Lap, LapKey, Sector
from endurance_etl.normalize import (
    normalize_space,
    parse_decimal,
    parse_elapsed_seconds,
    parse_int,
    parse_lap_time,
    parse_large_sector_time,
    parse_wall_clock,
    trim,
)
from endurance_etl.shared import RunCounters
from endurance_etl.store import TimingStore

log = logging.getLogger(__name__)

SECTOR_COUNT = 3


# ---------------------------------------------------------------------------
# Car-driver lookup
# ---------------------------------------------------------------------------

class _DriverLookup:
    """Resolve a timecard row's driver against one session's car entries."""

    def __init__(self, store: TimingStore) -> None:
        self.store = store
        self._rosters: dict[int, list[tuple[CarDriver, str]]] = {}

    def _roster(self, car_entry_id: int) -> list[tuple[CarDriver, str]]:
        roster = self._rosters.get(car_entry_id)
        if roster is None:
            roster = [
                (car_driver, normalize_space(driver.full_name) or "")
                for car_driver, driver in self.store.list_car_drivers(car_entry_id)
            ]
            self._rosters[car_entry_id] = roster
        return roster

    def resolve(
        self,
        entry: CarEntry,
        driver_number: int | None,
        driver_name: str | None,
    ) -> CarDriver:
        if driver_number is not None:
            car_driver = self.store.find_car_driver_by_number(entry.id, driver_number)
            if car_driver is None:
                raise CarDriverAssociationNotFound(
                    f"No driver #{driver_number} for car {entry.number}"
                )
            return car_driver

        name = normalize_space(driver_name)
        if name is not None:
            for car_driver, full_name in self._roster(entry.id):
                if full_name == name:
                    return car_driver
        raise CarDriverAssociationNotFound(
            f"No driver {driver_name!r} for car {entry.number}"
        )


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------

def parse_sectors(header: HeaderIndex, values: list[str]) -> list[Sector]:
    sectors: list[Sector] = []
    for n in range(1, SECTOR_COUNT + 1):
        raw = trim(header.get(values, f"S{n}_LARGE"))
        if raw is None:
            continue
        sectors.append(Sector(sector_number=n, sector_time_seconds=parse_large_sector_time(raw)))
    return sectors


# ---------------------------------------------------------------------------
# Importer
# ---------------------------------------------------------------------------

def _process_timecard(
    store: TimingStore,
    lines: Iterable[str],
    session_id: int,
    counters: RunCounters,
) -> tuple[int, int]:
    session = store.find_session(session_id)
    if session is None:
        raise SessionNotFound(f"Session not found with id: {session_id}")

    entries = {e.number: e for e in store.list_car_entries(session_id)}
    drivers = _DriverLookup(store)
    laps: dict[LapKey, Lap] = {}
    staged_sectors: dict[LapKey, list[Sector]] = {}

    for header, values in iter_rows(lines):
        counters.rows_read += 1

        number = trim(header.get(values, "NUMBER"))
        entry = entries.get(number) if number is not None else None
        if entry is None:
            raise CarEntryNotFound(
                f"Car entry not found for car number {number!r} in session {session_id}"
            )

        car_driver = drivers.resolve(
            entry,
            parse_int(header.get(values, "DRIVER_NUMBER")),
            header.get(values, "DRIVER_NAME"),
        )

        lap_number = parse_int(header.get(values, "LAP_NUMBER"))
        if lap_number is None:
            raise MissingField(f"LAP_NUMBER is missing for car {number}")

        elapsed = parse_elapsed_seconds(header.get(values, "ELAPSED"))
        lap = Lap(
            car_entry_id=entry.id,
            driver_id=car_driver.driver_id,
            lap_number=lap_number,
            lap_time_seconds=parse_lap_time(header.get(values, "LAP_TIME")),
            session_elapsed_seconds=elapsed,
            timestamp=parse_wall_clock(
                header.get(values, "HOUR"), elapsed, session.start_datetime
            ),
            average_speed_kph=parse_decimal(header.get(values, "KPH")),
        )
        sectors = parse_sectors(header, values)

        if lap.key in laps:
            msg = (
                f"Duplicate lap {lap_number} for car {number} driver "
                f"{car_driver.driver_id}; keeping the later row"
            )
            log.warning(msg)
            counters.warnings.append(msg)
            counters.lap_key_collisions += 1
        laps[lap.key] = lap
        staged_sectors[lap.key] = sectors

    saved = store.insert_laps(list(laps.values()))
    lap_ids = {lap.key: lap.id for lap in saved}

    pending: list[Sector] = []
    for key, sectors in staged_sectors.items():
        lap_id = lap_ids.get(key)
        if lap_id is None:
            raise TimingImportError(f"Lap insert returned no row for {key}")
        for sector in sectors:
            sector.lap_id = lap_id
            pending.append(sector)
    sector_count = store.insert_sectors(pending)

    counters.laps_inserted += len(saved)
    counters.sectors_inserted += sector_count
    return len(saved), sector_count


def import_timecard(
    store: TimingStore,
    lines: Iterable[str],
    session_id: int,
    counters: RunCounters | None = None,
) -> ImportOutcome:
    """Import a timecard CSV into `session_id`.

    Never raises: any failure aborts the import and is reported as a FAILED
    outcome.  The caller owns the transaction and must roll back on failure.
    """
    counters = counters if counters is not None else RunCounters()
    try:
        lap_count, sector_count = _process_timecard(store, lines, session_id, counters)
    except Exception as exc:
        log.exception("Timecard import failed for session %s", session_id)
        return ImportOutcome.failed(str(exc))
    log.info(
        "Imported %d laps and %d sectors into session %s",
        lap_count, sector_count, session_id,
    )
    return ImportOutcome.success(session_id)
