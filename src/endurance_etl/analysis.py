"""endurance_etl.analysis

Read-side lap-time analytics.

"Top percentage" means the fastest ceil(total * pct / 100) laps of the
filtered set, never fewer than one.  Averages are taken over that top slice
only; fastest lap, median and lap count cover the whole filtered set.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

import psycopg

from endurance_etl.normalize import format_lap_time


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class LapTimeRow:
    lap_id: int
    lap_number: int
    lap_time_seconds: Decimal
    average_speed_kph: Decimal | None
    timestamp: datetime | None
    event_name: str
    year: int
    car_number: str
    team_name: str
    driver_name: str

    @property
    def lap_time(self) -> str:
        return format_lap_time(self.lap_time_seconds)


@dataclass
class LapTimeAnalysis:
    average_seconds: Decimal
    fastest_seconds: Decimal
    median_seconds: Decimal
    total_lap_count: int

    @property
    def average_lap_time(self) -> str:
        return format_lap_time(self.average_seconds)

    @property
    def fastest_lap_time(self) -> str:
        return format_lap_time(self.fastest_seconds)

    @property
    def median_lap_time(self) -> str:
        return format_lap_time(self.median_seconds)

    @classmethod
    def empty(cls) -> LapTimeAnalysis:
        return cls(Decimal(0), Decimal(0), Decimal(0), 0)


@dataclass
class DriverLapTimeAnalysis:
    driver_id: int
    driver_name: str
    car_number: str
    car_model: str
    team_name: str
    class_name: str
    analysis: LapTimeAnalysis


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def top_count(total: int, percentage: int) -> int:
    """Number of laps in the top `percentage` of `total`, at least one."""
    return max(1, math.ceil(total * percentage / 100))


def _check_percentage(percentage: int) -> None:
    if not 1 <= percentage <= 100:
        raise ValueError(f"percentage must be between 1 and 100, got {percentage}")


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    # percentile_cont returns double precision
    return Decimal(str(value))


_LAP_FROM = """
    FROM lap l
    JOIN car_entry ce ON ce.id = l.car_entry_id
    JOIN session s ON s.id = ce.session_id
    JOIN event e ON e.id = s.event_id
"""


def _event_filters(
    event_id: int,
    class_id: int | None,
    car_model_id: int | None,
    session_id: int | None,
) -> tuple[list[str], list[Any]]:
    clauses = ["s.event_id = %s"]
    params: list[Any] = [event_id]
    if class_id is not None:
        clauses.append("ce.class_id = %s")
        params.append(class_id)
    if car_model_id is not None:
        clauses.append("ce.car_model_id = %s")
        params.append(car_model_id)
    if session_id is not None:
        clauses.append("ce.session_id = %s")
        params.append(session_id)
    return clauses, params


def _analyse(
    conn: psycopg.Connection,
    clauses: list[str],
    params: list[Any],
    percentage: int,
) -> LapTimeAnalysis:
    where = " AND ".join(clauses)
    row = conn.execute(
        f"""
        SELECT count(*), min(l.lap_time_seconds),
               percentile_cont(0.5) WITHIN GROUP (ORDER BY l.lap_time_seconds)
        {_LAP_FROM}
        WHERE {where}
        """,
        params,
    ).fetchone()
    total = row[0]
    if total == 0:
        return LapTimeAnalysis.empty()

    avg_row = conn.execute(
        f"""
        SELECT avg(t.lap_time_seconds) FROM (
            SELECT l.lap_time_seconds
            {_LAP_FROM}
            WHERE {where}
            ORDER BY l.lap_time_seconds ASC
            LIMIT %s
        ) t
        """,
        [*params, top_count(total, percentage)],
    ).fetchone()
    return LapTimeAnalysis(
        average_seconds=_to_decimal(avg_row[0]),
        fastest_seconds=_to_decimal(row[1]),
        median_seconds=_to_decimal(row[2]),
        total_lap_count=total,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def top_laps_for_driver(
    conn: psycopg.Connection,
    driver_id: int,
    percentage: int,
    session_id: int | None = None,
    event_id: int | None = None,
    year: int | None = None,
    series_id: int | None = None,
) -> list[LapTimeRow]:
    """Return a driver's fastest top-percentage laps, fastest first."""
    _check_percentage(percentage)
    clauses = ["l.driver_id = %s"]
    params: list[Any] = [driver_id]
    for column, value in (
        ("ce.session_id", session_id),
        ("s.event_id", event_id),
        ("e.year", year),
        ("e.series_id", series_id),
    ):
        if value is not None:
            clauses.append(f"{column} = %s")
            params.append(value)
    where = " AND ".join(clauses)

    total = conn.execute(
        f"SELECT count(*) {_LAP_FROM} WHERE {where}", params
    ).fetchone()[0]
    if total == 0:
        return []

    rows = conn.execute(
        f"""
        SELECT l.id, l.lap_number, l.lap_time_seconds, l.average_speed_kph,
               l.timestamp, e.name, e.year, ce.number, t.name,
               concat_ws(' ', NULLIF(d.first_name, ''), NULLIF(d.last_name, ''))
        {_LAP_FROM}
        JOIN team t ON t.id = ce.team_id
        JOIN driver d ON d.id = l.driver_id
        WHERE {where}
        ORDER BY l.lap_time_seconds ASC, l.id ASC
        LIMIT %s
        """,
        [*params, top_count(total, percentage)],
    ).fetchall()
    return [LapTimeRow(*r) for r in rows]


def event_lap_analysis(
    conn: psycopg.Connection,
    event_id: int,
    percentage: int,
    class_id: int | None = None,
    car_model_id: int | None = None,
    session_id: int | None = None,
) -> LapTimeAnalysis:
    """Average of the top-percentage laps plus fastest, median and count."""
    _check_percentage(percentage)
    clauses, params = _event_filters(event_id, class_id, car_model_id, session_id)
    return _analyse(conn, clauses, params, percentage)


def driver_lap_analysis_for_event(
    conn: psycopg.Connection,
    event_id: int,
    percentage: int,
    class_id: int | None = None,
    car_model_id: int | None = None,
    session_id: int | None = None,
) -> list[DriverLapTimeAnalysis]:
    """Per-driver lap analysis for an event, fastest average first.

    Car, team, class and model come from the driver's first car entry in the
    filtered set.
    """
    _check_percentage(percentage)
    clauses, params = _event_filters(event_id, class_id, car_model_id, session_id)
    where = " AND ".join(clauses)
    drivers = conn.execute(
        f"""
        SELECT DISTINCT ON (d.id)
               d.id,
               concat_ws(' ', NULLIF(d.first_name, ''), NULLIF(d.last_name, '')),
               ce.number, cm.name, t.name, cc.name
        {_LAP_FROM}
        JOIN driver d ON d.id = l.driver_id
        JOIN team t ON t.id = ce.team_id
        JOIN car_class cc ON cc.id = ce.class_id
        JOIN car_model cm ON cm.id = ce.car_model_id
        WHERE {where}
        ORDER BY d.id, ce.id
        """,
        params,
    ).fetchall()

    analyses = [
        DriverLapTimeAnalysis(
            driver_id=row[0],
            driver_name=row[1],
            car_number=row[2],
            car_model=row[3],
            team_name=row[4],
            class_name=row[5],
            analysis=_analyse(
                conn, [*clauses, "l.driver_id = %s"], [*params, row[0]], percentage
            ),
        )
        for row in drivers
    ]
    analyses.sort(key=lambda a: (a.analysis.average_seconds, a.driver_id))
    return analyses
