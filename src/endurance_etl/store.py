"""endurance_etl.store

Persistence collaborator for the importers.

TimingStore is the interface the importers depend on; PgTimingStore is the
PostgreSQL implementation.  It works over two connections:

  conn         results, laps and sectors.  The caller owns this transaction,
               so the timing rows of an import are all-or-nothing.
  entity_conn  teams, classes, models, car entries, drivers and car-drivers.
               Opened in autocommit mode by the orchestrator, so each
               find-or-create commits on its own and concurrent imports never
               wait on each other's uncommitted natural-key rows.

Natural-key inserts use INSERT ... ON CONFLICT DO NOTHING followed by a
re-select, so a row created concurrently by another import always wins over
ours (find-or-create, never upsert).  These rows are never updated.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import psycopg

from endurance_etl.errors import TimingImportError
from endurance_etl.models import (
    CarClass,
    CarDriver,
    CarEntry,
    CarModel,
    Driver,
    Event,
    Lap,
    Result,
    Sector,
    Session,
    Team,
)


class TimingStore(Protocol):
    # sessions / events (must pre-exist)
    def find_session(self, session_id: int) -> Session | None: ...
    def find_event(self, event_id: int) -> Event | None: ...

    # natural-key entities
    def find_team(self, name: str) -> Team | None: ...
    def insert_team(self, name: str) -> Team: ...
    def find_class(self, series_id: int, name: str) -> CarClass | None: ...
    def insert_class(self, series_id: int, name: str) -> CarClass: ...
    def find_car_model(self, name: str) -> CarModel | None: ...
    def insert_car_model(self, name: str) -> CarModel: ...
    def find_car_entry(self, session_id: int, number: str) -> CarEntry | None: ...
    def insert_car_entry(self, entry: CarEntry) -> CarEntry: ...
    def list_car_entries(self, session_id: int) -> list[CarEntry]: ...
    def find_driver(self, first_name: str, last_name: str) -> Driver | None: ...
    def insert_driver(self, first_name: str, last_name: str) -> Driver: ...
    def find_car_driver(self, car_entry_id: int, driver_id: int) -> CarDriver | None: ...
    def insert_car_driver(
        self, car_entry_id: int, driver_id: int, driver_number: int
    ) -> CarDriver: ...
    def find_car_driver_by_number(
        self, car_entry_id: int, driver_number: int
    ) -> CarDriver | None: ...
    def list_car_drivers(self, car_entry_id: int) -> list[tuple[CarDriver, Driver]]: ...

    # batch inserts
    def insert_results(self, results: Sequence[Result]) -> int: ...
    def insert_laps(self, laps: Sequence[Lap]) -> list[Lap]: ...
    def insert_sectors(self, sectors: Sequence[Sector]) -> int: ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

_CAR_ENTRY_COLS = "id, session_id, number, team_id, class_id, car_model_id, tire_supplier"
_LAP_COLS = (
    "id, car_entry_id, driver_id, lap_number, lap_time_seconds, "
    "session_elapsed_seconds, timestamp, average_speed_kph"
)


def _car_entry(row) -> CarEntry:
    return CarEntry(
        id=row[0], session_id=row[1], number=row[2], team_id=row[3],
        class_id=row[4], car_model_id=row[5], tire_supplier=row[6],
    )


def _found(value, table: str):
    if value is None:
        raise TimingImportError(f"{table} row missing after insert")
    return value


def _lap(row) -> Lap:
    return Lap(
        id=row[0], car_entry_id=row[1], driver_id=row[2], lap_number=row[3],
        lap_time_seconds=row[4], session_elapsed_seconds=row[5],
        timestamp=row[6], average_speed_kph=row[7],
    )


class PgTimingStore:
    """TimingStore over psycopg.  Caller manages the transaction of `conn`.

    Without `entity_conn` everything goes through `conn` (dry runs, tests).
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        entity_conn: psycopg.Connection | None = None,
    ) -> None:
        self.conn = conn
        self.entity_conn = entity_conn if entity_conn is not None else conn

    # -- sessions / events --------------------------------------------------

    def find_session(self, session_id: int) -> Session | None:
        row = self.conn.execute(
            """
            SELECT id, event_id, name, session_type, start_datetime,
                   duration_seconds, import_url, circuit_id
            FROM session WHERE id = %s
            """,
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return Session(
            id=row[0], event_id=row[1], name=row[2], session_type=row[3],
            start_datetime=row[4], duration_seconds=row[5], import_url=row[6],
            circuit_id=row[7],
        )

    def find_event(self, event_id: int) -> Event | None:
        row = self.conn.execute(
            "SELECT id, series_id, name, year, start_date, end_date, circuit_id "
            "FROM event WHERE id = %s",
            (event_id,),
        ).fetchone()
        if row is None:
            return None
        return Event(
            id=row[0], series_id=row[1], name=row[2], year=row[3],
            start_date=row[4], end_date=row[5], circuit_id=row[6],
        )

    # -- team ---------------------------------------------------------------

    def find_team(self, name: str) -> Team | None:
        row = self.entity_conn.execute(
            "SELECT id, name FROM team WHERE name = %s", (name,)
        ).fetchone()
        return Team(id=row[0], name=row[1]) if row else None

    def insert_team(self, name: str) -> Team:
        self.entity_conn.execute(
            "INSERT INTO team (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
            (name,),
        )
        return _found(self.find_team(name), "team")

    # -- class --------------------------------------------------------------

    def find_class(self, series_id: int, name: str) -> CarClass | None:
        row = self.entity_conn.execute(
            "SELECT id, series_id, name FROM car_class WHERE series_id = %s AND name = %s",
            (series_id, name),
        ).fetchone()
        return CarClass(id=row[0], series_id=row[1], name=row[2]) if row else None

    def insert_class(self, series_id: int, name: str) -> CarClass:
        self.entity_conn.execute(
            """
            INSERT INTO car_class (series_id, name) VALUES (%s, %s)
            ON CONFLICT (series_id, name) DO NOTHING
            """,
            (series_id, name),
        )
        return _found(self.find_class(series_id, name), "car_class")

    # -- car model ----------------------------------------------------------

    def find_car_model(self, name: str) -> CarModel | None:
        row = self.entity_conn.execute(
            "SELECT id, name FROM car_model WHERE name = %s", (name,)
        ).fetchone()
        return CarModel(id=row[0], name=row[1]) if row else None

    def insert_car_model(self, name: str) -> CarModel:
        self.entity_conn.execute(
            """
            INSERT INTO car_model (name, full_name) VALUES (%s, %s)
            ON CONFLICT (name) DO NOTHING
            """,
            (name, name),
        )
        return _found(self.find_car_model(name), "car_model")

    # -- car entry ----------------------------------------------------------

    def find_car_entry(self, session_id: int, number: str) -> CarEntry | None:
        row = self.entity_conn.execute(
            f"SELECT {_CAR_ENTRY_COLS} FROM car_entry WHERE session_id = %s AND number = %s",
            (session_id, number),
        ).fetchone()
        return _car_entry(row) if row else None

    def insert_car_entry(self, entry: CarEntry) -> CarEntry:
        self.entity_conn.execute(
            """
            INSERT INTO car_entry
              (session_id, number, team_id, class_id, car_model_id, tire_supplier)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (session_id, number) DO NOTHING
            """,
            (entry.session_id, entry.number, entry.team_id, entry.class_id,
             entry.car_model_id, entry.tire_supplier),
        )
        return _found(self.find_car_entry(entry.session_id, entry.number), "car_entry")

    def list_car_entries(self, session_id: int) -> list[CarEntry]:
        rows = self.entity_conn.execute(
            f"SELECT {_CAR_ENTRY_COLS} FROM car_entry WHERE session_id = %s ORDER BY id",
            (session_id,),
        ).fetchall()
        return [_car_entry(r) for r in rows]

    # -- driver -------------------------------------------------------------

    def find_driver(self, first_name: str, last_name: str) -> Driver | None:
        row = self.entity_conn.execute(
            """
            SELECT id, first_name, last_name FROM driver
            WHERE first_name = %s AND last_name = %s
            """,
            (first_name, last_name),
        ).fetchone()
        return Driver(id=row[0], first_name=row[1], last_name=row[2]) if row else None

    def insert_driver(self, first_name: str, last_name: str) -> Driver:
        self.entity_conn.execute(
            """
            INSERT INTO driver (first_name, last_name) VALUES (%s, %s)
            ON CONFLICT (first_name, last_name) DO NOTHING
            """,
            (first_name, last_name),
        )
        return _found(self.find_driver(first_name, last_name), "driver")

    # -- car driver ---------------------------------------------------------

    def find_car_driver(self, car_entry_id: int, driver_id: int) -> CarDriver | None:
        row = self.entity_conn.execute(
            """
            SELECT id, car_entry_id, driver_id, driver_number FROM car_driver
            WHERE car_entry_id = %s AND driver_id = %s
            """,
            (car_entry_id, driver_id),
        ).fetchone()
        return CarDriver(*row) if row else None

    def insert_car_driver(
        self, car_entry_id: int, driver_id: int, driver_number: int
    ) -> CarDriver:
        self.entity_conn.execute(
            """
            INSERT INTO car_driver (car_entry_id, driver_id, driver_number)
            VALUES (%s, %s, %s)
            ON CONFLICT (car_entry_id, driver_id) DO NOTHING
            """,
            (car_entry_id, driver_id, driver_number),
        )
        return _found(self.find_car_driver(car_entry_id, driver_id), "car_driver")

    def find_car_driver_by_number(
        self, car_entry_id: int, driver_number: int
    ) -> CarDriver | None:
        row = self.entity_conn.execute(
            """
            SELECT id, car_entry_id, driver_id, driver_number FROM car_driver
            WHERE car_entry_id = %s AND driver_number = %s
            ORDER BY id ASC LIMIT 1
            """,
            (car_entry_id, driver_number),
        ).fetchone()
        return CarDriver(*row) if row else None

    def list_car_drivers(self, car_entry_id: int) -> list[tuple[CarDriver, Driver]]:
        rows = self.entity_conn.execute(
            """
            SELECT cd.id, cd.car_entry_id, cd.driver_id, cd.driver_number,
                   d.first_name, d.last_name
            FROM car_driver cd
            JOIN driver d ON d.id = cd.driver_id
            WHERE cd.car_entry_id = %s
            ORDER BY cd.driver_number, cd.id
            """,
            (car_entry_id,),
        ).fetchall()
        return [
            (CarDriver(r[0], r[1], r[2], r[3]), Driver(r[2], r[4], r[5]))
            for r in rows
        ]

    # -- batch inserts ------------------------------------------------------

    def insert_results(self, results: Sequence[Result]) -> int:
        if not results:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO result
                  (session_id, car_entry_id, car_number, tires, status, laps,
                   total_time, gap_first, gap_previous, fl_lapnum, fl_time,
                   fl_kph, position)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (r.session_id, r.car_entry_id, r.car_number, r.tires, r.status,
                     r.laps, r.total_time, r.gap_first, r.gap_previous,
                     r.fl_lapnum, r.fl_time, r.fl_kph, r.position)
                    for r in results
                ],
            )
        return len(results)

    def insert_laps(self, laps: Sequence[Lap]) -> list[Lap]:
        """Insert laps and return them as stored, ids and key columns included."""
        if not laps:
            return []
        saved: list[Lap] = []
        with self.conn.cursor() as cur:
            cur.executemany(
                f"""
                INSERT INTO lap
                  (car_entry_id, driver_id, lap_number, lap_time_seconds,
                   session_elapsed_seconds, timestamp, average_speed_kph)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_LAP_COLS}
                """,
                [
                    (lap.car_entry_id, lap.driver_id, lap.lap_number,
                     lap.lap_time_seconds, lap.session_elapsed_seconds,
                     lap.timestamp, lap.average_speed_kph)
                    for lap in laps
                ],
                returning=True,
            )
            while True:
                saved.append(_lap(cur.fetchone()))
                if not cur.nextset():
                    break
        return saved

    def insert_sectors(self, sectors: Sequence[Sector]) -> int:
        if not sectors:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO sector (lap_id, sector_number, sector_time_seconds)
                VALUES (%s, %s, %s)
                """,
                [(s.lap_id, s.sector_number, s.sector_time_seconds) for s in sectors],
            )
        return len(sectors)
