"""Integration test fixtures.

Applies migrations/*.sql against an ephemeral PostgreSQL database provided
by pytest-postgresql.  Tests are skipped when no PostgreSQL server binaries
are installed.
"""

from __future__ import annotations

import shutil
from datetime import datetime
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from endurance_etl.catalog import create_session, find_or_create_event, find_or_create_series

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = sorted((PROJECT_ROOT / "migrations").glob("*.sql"))

SESSION_START = datetime(2024, 1, 27, 13, 40, 0)

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


def _have_postgres() -> bool:
    return shutil.which("pg_ctl") is not None or shutil.which("pg_config") is not None


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(request):
    """Return (connection, dsn) with schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    if not _have_postgres():
        pytest.skip("PostgreSQL binaries not available")
    pg = request.getfixturevalue("postgresql")
    dsn = (
        f"host={pg.info.host} "
        f"port={pg.info.port} "
        f"dbname={pg.info.dbname} "
        f"user={pg.info.user} "
        f"password={pg.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def race_session(db_conn):
    """A committed IMSA series/event/session; returns the Session."""
    conn, _ = db_conn
    series = find_or_create_series(conn, "IMSA")
    event = find_or_create_event(conn, series.id, "Rolex 24 At Daytona", 2024)
    session = create_session(conn, event.id, "Race", "RACE", SESSION_START, 86400)
    conn.commit()
    return session
