"""endurance_etl.import_results

Results importer: one Result row per classified car, plus find-or-create of
the team, class, car model, car entry, drivers and car-driver associations
each row refers to.

Column layout (';'-delimited, header first):
  NUMBER, TEAM, CLASS, VEHICLE          required
  TYRES (WEC) / TIRES (IMSA)            tire supplier
  DRIVER_1..DRIVER_6                    WEC: "First LAST" in one field
  DRIVER1_FIRSTNAME / DRIVER1_SECONDNAME .. DRIVER6_*   IMSA
  STATUS, LAPS, TOTAL_TIME, GAP_FIRST, GAP_PREVIOUS,
  FL_LAPNUM, FL_TIME, FL_KPH            optional
  column 0                              finishing position
"""

from __future__ import annotations

import logging
from typing import Iterable

from endurance_etl.csv_source import HeaderIndex, iter_rows
from endurance_etl.errors import MissingField, SessionNotFound
from endurance_etl.models import Dialect, ImportOutcome, Result, Session
from endurance_etl.normalize import parse_decimal, parse_int, split_wec_name, trim
from endurance_etl.resolver import EntityResolver
from endurance_etl.shared import RunCounters
from endurance_etl.store import TimingStore

log = logging.getLogger(__name__)

MAX_DRIVER_SLOTS = 6


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _required(header: HeaderIndex, values: list[str], name: str) -> str:
    value = trim(header.get(values, name))
    if value is None:
        raise MissingField(f"Required column {name} is missing or blank")
    return value


def _driver_names(
    header: HeaderIndex, values: list[str], dialect: Dialect
) -> list[tuple[int, str, str]]:
    """Return (slot, first_name, last_name) for every populated driver slot."""
    names: list[tuple[int, str, str]] = []
    for slot in range(1, MAX_DRIVER_SLOTS + 1):
        if dialect is Dialect.WEC:
            full_name = trim(header.get(values, f"DRIVER_{slot}"))
            if full_name is None:
                continue
            first, last = split_wec_name(full_name)
        else:
            first = trim(header.get(values, f"DRIVER{slot}_FIRSTNAME"))
            last = trim(header.get(values, f"DRIVER{slot}_SECONDNAME"))
            if first is None or last is None:
                continue
        names.append((slot, first, last))
    return names


def build_result(
    header: HeaderIndex,
    values: list[str],
    session_id: int,
    car_entry_id: int,
    car_number: str,
    tires: str | None,
) -> Result:
    # position comes from raw column 0: the first header can carry a BOM
    return Result(
        session_id=session_id,
        car_entry_id=car_entry_id,
        car_number=car_number,
        tires=tires,
        status=trim(header.get(values, "STATUS")),
        laps=parse_int(header.get(values, "LAPS")),
        total_time=trim(header.get(values, "TOTAL_TIME")),
        gap_first=trim(header.get(values, "GAP_FIRST")),
        gap_previous=trim(header.get(values, "GAP_PREVIOUS")),
        fl_lapnum=parse_int(header.get(values, "FL_LAPNUM")),
        fl_time=trim(header.get(values, "FL_TIME")),
        fl_kph=parse_decimal(header.get(values, "FL_KPH")),
        position=parse_int(values[0]) if values else None,
    )


def load_session_context(store: TimingStore, session_id: int) -> tuple[Session, int]:
    """Return the session and the series id of its parent event."""
    session = store.find_session(session_id)
    if session is None:
        raise SessionNotFound(f"Session not found with id: {session_id}")
    event = store.find_event(session.event_id)
    if event is None:
        raise SessionNotFound(
            f"Event {session.event_id} for session {session_id} not found"
        )
    return session, event.series_id


# ---------------------------------------------------------------------------
# Importer
# ---------------------------------------------------------------------------

def _process_results(
    store: TimingStore,
    lines: Iterable[str],
    session_id: int,
    dialect: Dialect,
    counters: RunCounters,
) -> int:
    _, series_id = load_session_context(store, session_id)
    resolver = EntityResolver(store, counters)
    tire_header = dialect.tire_header
    results: list[Result] = []

    for header, values in iter_rows(lines):
        counters.rows_read += 1
        team = resolver.team(_required(header, values, "TEAM"))
        car_class = resolver.car_class(series_id, _required(header, values, "CLASS"))
        car_model = resolver.car_model(_required(header, values, "VEHICLE"))
        number = _required(header, values, "NUMBER")
        tires = trim(header.get(values, tire_header))

        entry = resolver.car_entry(session_id, number, team, car_class, car_model, tires)

        for slot, first, last in _driver_names(header, values, dialect):
            driver = resolver.driver(first, last)
            resolver.car_driver(entry.id, driver.id, slot)

        results.append(build_result(header, values, session_id, entry.id, number, tires))

    inserted = store.insert_results(results)
    counters.results_inserted += inserted
    return inserted


def import_results(
    store: TimingStore,
    lines: Iterable[str],
    session_id: int,
    dialect: Dialect | str,
    counters: RunCounters | None = None,
) -> ImportOutcome:
    """Import a results CSV into `session_id`.

    Never raises: any failure aborts the import and is reported as a FAILED
    outcome.  The caller owns the transaction and must roll back on failure.
    """
    counters = counters if counters is not None else RunCounters()
    try:
        inserted = _process_results(
            store, lines, session_id, Dialect.parse(dialect), counters
        )
    except Exception as exc:
        log.exception("Results import failed for session %s", session_id)
        return ImportOutcome.failed(str(exc))
    log.info("Imported %d results into session %s", inserted, session_id)
    return ImportOutcome.success(session_id)
