"""endurance_etl.catalog

Circuit, series, event and session registration.  Importers never create
sessions: a session must be registered here (or by hand) before its CSVs can
be imported.  Functions take a psycopg connection and do not commit.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import psycopg

from endurance_etl.errors import ResourceExists
from endurance_etl.models import Circuit, Event, Series, Session

_CIRCUIT_COLS = "id, name, length_meters, country, location, description"


def _circuit(row) -> Circuit:
    return Circuit(
        id=row[0], name=row[1], length_meters=row[2], country=row[3],
        location=row[4], description=row[5],
    )


# ---------------------------------------------------------------------------
# Circuits
# ---------------------------------------------------------------------------

def find_or_create_circuit(
    conn: psycopg.Connection,
    name: str,
    length_meters: Decimal | None = None,
    country: str | None = None,
    location: str | None = None,
    description: str | None = None,
) -> Circuit:
    """Return the circuit called `name`, creating it if absent.

    Details are only written on creation; an existing circuit keeps its own.
    """
    conn.execute(
        """
        INSERT INTO circuit (name, length_meters, country, location, description)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (name) DO NOTHING
        """,
        (name, length_meters, country, location, description),
    )
    row = conn.execute(
        f"SELECT {_CIRCUIT_COLS} FROM circuit WHERE name = %s", (name,)
    ).fetchone()
    return _circuit(row)


def list_circuits(conn: psycopg.Connection, name: str | None = None) -> list[Circuit]:
    """All circuits by name, optionally filtered by a case-insensitive substring."""
    if name:
        rows = conn.execute(
            f"SELECT {_CIRCUIT_COLS} FROM circuit WHERE name ILIKE %s ORDER BY name",
            (f"%{name}%",),
        ).fetchall()
    else:
        rows = conn.execute(
            f"SELECT {_CIRCUIT_COLS} FROM circuit ORDER BY name"
        ).fetchall()
    return [_circuit(r) for r in rows]


# ---------------------------------------------------------------------------
# Series / events / sessions
# ---------------------------------------------------------------------------

def find_or_create_series(conn: psycopg.Connection, name: str) -> Series:
    conn.execute(
        "INSERT INTO series (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
        (name,),
    )
    row = conn.execute("SELECT id, name FROM series WHERE name = %s", (name,)).fetchone()
    return Series(id=row[0], name=row[1])


def find_or_create_event(
    conn: psycopg.Connection,
    series_id: int,
    name: str,
    year: int,
    start_date: date | None = None,
    end_date: date | None = None,
    circuit_id: int | None = None,
) -> Event:
    """Return the (series, name, year) event, creating it if absent.

    Dates and circuit are only written on creation; an existing event keeps
    its own.
    """
    conn.execute(
        """
        INSERT INTO event (series_id, circuit_id, name, year, start_date, end_date)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (series_id, name, year) DO NOTHING
        """,
        (series_id, circuit_id, name, year, start_date, end_date),
    )
    row = conn.execute(
        """
        SELECT id, series_id, name, year, start_date, end_date, circuit_id FROM event
        WHERE series_id = %s AND name = %s AND year = %s
        """,
        (series_id, name, year),
    ).fetchone()
    return Event(
        id=row[0], series_id=row[1], name=row[2], year=row[3],
        start_date=row[4], end_date=row[5], circuit_id=row[6],
    )


def create_session(
    conn: psycopg.Connection,
    event_id: int,
    name: str,
    session_type: str,
    start_datetime: datetime,
    duration_seconds: int | None = None,
    import_url: str | None = None,
    circuit_id: int | None = None,
) -> Session:
    """Register a new session under `event_id`.

    Without an explicit `circuit_id` the session inherits the event's circuit.
    Raises ResourceExists when the event already has a session of that name.
    """
    row = conn.execute(
        """
        INSERT INTO session
          (event_id, circuit_id, name, session_type, start_datetime,
           duration_seconds, import_url)
        VALUES (%s, COALESCE(%s, (SELECT circuit_id FROM event WHERE id = %s)),
                %s, %s, %s, %s, %s)
        ON CONFLICT (event_id, name) DO NOTHING
        RETURNING id, circuit_id
        """,
        (event_id, circuit_id, event_id, name, session_type, start_datetime,
         duration_seconds, import_url),
    ).fetchone()
    if row is None:
        raise ResourceExists(f"Session {name!r} already exists for event {event_id}")
    return Session(
        id=row[0], event_id=event_id, name=name, session_type=session_type,
        start_datetime=start_datetime, duration_seconds=duration_seconds,
        import_url=import_url, circuit_id=row[1],
    )
