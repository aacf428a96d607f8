"""endurance_etl.session_results

Read-side classification for one session: every imported Result row with
its car entry, team, class, car model and driver line-up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import psycopg


@dataclass
class SessionResultRow:
    result_id: int
    position: int | None
    car_number: str
    status: str | None
    laps: int | None
    total_time: str | None
    gap_first: str | None
    gap_previous: str | None
    fl_lapnum: int | None
    fl_time: str | None
    fl_kph: Decimal | None
    tires: str | None
    car_entry_id: int
    team_name: str
    class_name: str
    car_model: str
    drivers: list[str] = field(default_factory=list)


def session_results(conn: psycopg.Connection, session_id: int) -> list[SessionResultRow]:
    """Return a session's results by finishing position (unclassified last).

    Drivers are listed in driver-number order.  An unknown session, or one
    with no results imported yet, yields an empty list.
    """
    rows = conn.execute(
        """
        SELECT r.id, r.position, r.car_number, r.status, r.laps, r.total_time,
               r.gap_first, r.gap_previous, r.fl_lapnum, r.fl_time, r.fl_kph,
               r.tires, ce.id, t.name, cc.name, cm.name,
               COALESCE((
                   SELECT array_agg(
                              concat_ws(' ', NULLIF(d.first_name, ''), NULLIF(d.last_name, ''))
                              ORDER BY cd.driver_number, cd.id)
                   FROM car_driver cd
                   JOIN driver d ON d.id = cd.driver_id
                   WHERE cd.car_entry_id = ce.id
               ), '{}')
        FROM result r
        JOIN car_entry ce ON ce.id = r.car_entry_id
        JOIN team t ON t.id = ce.team_id
        JOIN car_class cc ON cc.id = ce.class_id
        JOIN car_model cm ON cm.id = ce.car_model_id
        WHERE r.session_id = %s
        ORDER BY r.position ASC NULLS LAST, r.id ASC
        """,
        (session_id,),
    ).fetchall()
    return [SessionResultRow(*r[:16], drivers=list(r[16])) for r in rows]
