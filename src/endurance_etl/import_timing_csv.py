"""endurance_etl.import_timing_csv

Unified CLI entrypoint for endurance timing ingestion and analysis.

Modes (--mode):
  import           import one results or timecard CSV into a session (default)
  import_batch     run every import listed in a YAML manifest concurrently
  create_session   register series/event (find-or-create) and a new session
  job_status       show one import job, or the most recent jobs
  top_laps         a driver's fastest top-percentage laps
  lap_analysis     event lap analysis, overall or per driver
  session_results  a session's classification with teams and drivers
  circuits         list registered circuits

Usage (import):
    python -m endurance_etl.import_timing_csv \\
        --mode import \\
        --db-dsn "$DB_DSN" \\
        --url "https://fiawec.alkamelsystems.com/.../03_Classification_Race.CSV" \\
        --session-id 12 \\
        --import-type WEC \\
        --process-type RESULTS

Usage (import_batch):
    python -m endurance_etl.import_timing_csv \\
        --mode import_batch \\
        --manifest imports/daytona_2024.yaml \\
        --max-workers 4

Usage (create_session):
    python -m endurance_etl.import_timing_csv \\
        --mode create_session \\
        --series-name IMSA --event-name "Rolex 24 At Daytona" --year 2024 \\
        --session-name Race --session-type RACE \\
        --start-datetime 2024-01-27T13:40:00 --duration-seconds 86400 \\
        --circuit-name "Daytona International Speedway" --circuit-country USA
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import click
import psycopg

from endurance_etl.analysis import (
    driver_lap_analysis_for_event,
    event_lap_analysis,
    top_laps_for_driver,
)
from endurance_etl.catalog import (
    create_session,
    find_or_create_circuit,
    find_or_create_event,
    find_or_create_series,
    list_circuits,
)
from endurance_etl.errors import ResourceExists, UnsupportedDialect
from endurance_etl.jobs import (
    DEFAULT_MAX_WORKERS,
    ManifestValidationError,
    PgJobTracker,
    dispatch_import_jobs,
    load_manifest,
    run_import_job,
)
from endurance_etl.models import Dialect, ImportRequest, JobStatus, ProcessType
from endurance_etl.session_results import session_results
from endurance_etl.shared import RunCounters, write_run_report


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fail(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] ERROR: {message}", err=True)
    sys.exit(1)


def _require(run_id: str, mode: str, **flags) -> None:
    missing = [f"--{name.replace('_', '-')}" for name, value in flags.items() if value is None]
    if missing:
        _fail(run_id, f"--mode {mode} requires {', '.join(missing)}")


def _parse_datetime(value: str | None, flag: str, run_id: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _fail(run_id, f"{flag} must be ISO-8601, got {value!r}")


def _parse_length(value: str | None, run_id: str) -> Decimal | None:
    if value is None:
        return None
    try:
        length = Decimal(value)
    except ArithmeticError:
        _fail(run_id, f"--circuit-length-meters must be a number, got {value!r}")
    if not length.is_finite() or length <= 0:
        _fail(run_id, f"--circuit-length-meters must be positive, got {value!r}")
    return length


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_import(
    run_id: str,
    db_dsn: str,
    counters: RunCounters,
    *,
    url: str,
    session_id: int,
    import_type: str,
    process_type: str,
    dry_run: bool,
) -> bool:
    try:
        request = ImportRequest(
            url=url,
            session_id=session_id,
            import_type=Dialect.parse(import_type),
            process_type=ProcessType.parse(process_type),
        )
    except UnsupportedDialect as exc:
        _fail(run_id, str(exc))

    tracker = PgJobTracker(db_dsn)
    job_id = tracker.create_job(request)
    click.echo(
        f"[{run_id}] Job {job_id}: {request.process_type.value} {request.import_type.value} "
        f"session={session_id} url={url}"
    )
    outcome = run_import_job(
        db_dsn, job_id, request, tracker, dry_run=dry_run, counters=counters
    )
    if outcome.ok:
        counters.jobs_completed += 1
        suffix = " (dry run, rolled back)" if dry_run else ""
        click.echo(f"[{run_id}] Job {job_id}: SUCCESS{suffix}")
    else:
        counters.jobs_failed += 1
        click.echo(f"[{run_id}] Job {job_id}: FAILED: {outcome.error}", err=True)
    return outcome.ok


def _run_import_batch(
    run_id: str,
    db_dsn: str,
    counters: RunCounters,
    *,
    manifest: str,
    max_workers: int,
    dry_run: bool,
) -> bool:
    try:
        requests_ = load_manifest(Path(manifest))
    except (ManifestValidationError, FileNotFoundError) as exc:
        _fail(run_id, f"invalid manifest {manifest}: {exc}")

    click.echo(f"[{run_id}] Dispatching {len(requests_)} imports (max_workers={max_workers})")
    results = dispatch_import_jobs(
        db_dsn, requests_, PgJobTracker(db_dsn), max_workers,
        dry_run=dry_run, counters=counters,
    )
    for (job_id, outcome), request in zip(results, requests_):
        if outcome.ok:
            click.echo(f"[{run_id}] Job {job_id}: SUCCESS {request.url}")
        else:
            click.echo(f"[{run_id}] Job {job_id}: FAILED {request.url}: {outcome.error}", err=True)
    click.echo(
        f"[{run_id}] {counters.jobs_completed} completed, {counters.jobs_failed} failed"
    )
    return counters.jobs_failed == 0


def _run_create_session(
    run_id: str,
    db_dsn: str,
    *,
    series_name: str,
    event_name: str,
    year: int,
    event_start_date: date | None,
    event_end_date: date | None,
    session_name: str,
    session_type: str,
    start_datetime: datetime,
    duration_seconds: int | None,
    url: str | None,
    circuit_name: str | None,
    circuit_country: str | None,
    circuit_length_meters: Decimal | None,
    dry_run: bool,
) -> None:
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        circuit_id = None
        if circuit_name:
            circuit_id = find_or_create_circuit(
                conn, circuit_name,
                length_meters=circuit_length_meters, country=circuit_country,
            ).id
        series = find_or_create_series(conn, series_name)
        event = find_or_create_event(
            conn, series.id, event_name, year, event_start_date, event_end_date,
            circuit_id,
        )
        session = create_session(
            conn, event.id, session_name, session_type, start_datetime,
            duration_seconds, url, circuit_id,
        )
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] DRY RUN: rolled back.")
        else:
            conn.commit()
        click.echo(
            f"[{run_id}] series={series.id} event={event.id} session={session.id} "
            f"circuit={session.circuit_id}"
        )
    except ResourceExists as exc:
        conn.rollback()
        _fail(run_id, str(exc))
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _run_job_status(run_id: str, db_dsn: str, job_id: int | None, status: str | None) -> None:
    tracker = PgJobTracker(db_dsn)
    if job_id is not None:
        job = tracker.get_job(job_id)
        if job is None:
            _fail(run_id, f"job {job_id} not found")
        jobs = [job]
    else:
        jobs = tracker.list_jobs(JobStatus(status) if status else None)
    for job in jobs:
        line = (
            f"{job.id}\t{job.status.value}\t{job.process_type}\t{job.import_type}\t"
            f"session={job.session_id}\tcreated={job.created_at:%Y-%m-%d %H:%M:%S}"
        )
        if job.error:
            line += f"\terror={job.error}"
        click.echo(line)


def _run_top_laps(
    db_dsn: str,
    *,
    driver_id: int,
    percentage: int,
    session_id: int | None,
    event_id: int | None,
    year: int | None,
    series_id: int | None,
) -> None:
    with psycopg.connect(db_dsn) as conn:
        rows = top_laps_for_driver(
            conn, driver_id, percentage,
            session_id=session_id, event_id=event_id, year=year, series_id=series_id,
        )
    for r in rows:
        click.echo(
            f"{r.lap_time}\tlap {r.lap_number}\t{r.event_name} {r.year}\t"
            f"#{r.car_number} {r.team_name}\t{r.driver_name}"
        )


def _run_lap_analysis(
    db_dsn: str,
    *,
    event_id: int,
    percentage: int,
    class_id: int | None,
    car_model_id: int | None,
    session_id: int | None,
    by_driver: bool,
) -> None:
    with psycopg.connect(db_dsn) as conn:
        if by_driver:
            for d in driver_lap_analysis_for_event(
                conn, event_id, percentage,
                class_id=class_id, car_model_id=car_model_id, session_id=session_id,
            ):
                a = d.analysis
                click.echo(
                    f"{d.driver_name}\t#{d.car_number} {d.team_name} ({d.class_name}, {d.car_model})\t"
                    f"avg={a.average_lap_time} best={a.fastest_lap_time} "
                    f"median={a.median_lap_time} laps={a.total_lap_count}"
                )
            return
        a = event_lap_analysis(
            conn, event_id, percentage,
            class_id=class_id, car_model_id=car_model_id, session_id=session_id,
        )
    click.echo(
        f"avg={a.average_lap_time} best={a.fastest_lap_time} "
        f"median={a.median_lap_time} laps={a.total_lap_count}"
    )


def _run_session_results(db_dsn: str, session_id: int) -> None:
    with psycopg.connect(db_dsn) as conn:
        rows = session_results(conn, session_id)
    if not rows:
        click.echo(f"No results for session {session_id}")
        return
    for r in rows:
        position = r.position if r.position is not None else "-"
        click.echo(
            f"{position}\t#{r.car_number}\t{r.class_name}\t{r.team_name}\t{r.car_model}\t"
            f"{', '.join(r.drivers)}\t{r.status or ''}\tlaps={r.laps}\t"
            f"{r.total_time or r.gap_first or ''}"
        )


def _run_circuits(db_dsn: str, name: str | None) -> None:
    with psycopg.connect(db_dsn) as conn:
        circuits = list_circuits(conn, name)
    for c in circuits:
        length = f"{c.length_meters}m" if c.length_meters is not None else ""
        click.echo(f"{c.id}\t{c.name}\t{c.country or ''}\t{length}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    type=click.Choice([
        "import",
        "import_batch",
        "create_session",
        "job_status",
        "top_laps",
        "lap_analysis",
        "session_results",
        "circuits",
    ]),
    default="import",
    show_default=True,
    help="Run mode",
)
@click.option("--db-dsn", envvar="DB_DSN", required=True, help="PostgreSQL DSN (or $DB_DSN)")
# import
@click.option("--url", default=None, help="[import|create_session] CSV URL or local path")
@click.option("--session-id", default=None, type=int, help="[import|top_laps|lap_analysis|session_results] Target session")
@click.option("--import-type", default=None, type=click.Choice(["IMSA", "WEC"], case_sensitive=False), help="[import] CSV dialect")
@click.option("--process-type", default=None, type=click.Choice(["RESULTS", "TIMECARD"], case_sensitive=False), help="[import] CSV kind")
# import_batch
@click.option("--manifest", default=None, type=click.Path(), help="[import_batch] YAML list of imports")
@click.option("--max-workers", default=DEFAULT_MAX_WORKERS, type=int, show_default=True, help="[import_batch] Concurrent jobs")
# create_session
@click.option("--series-name", default=None, help="[create_session]")
@click.option("--event-name", default=None, help="[create_session]")
@click.option("--year", default=None, type=int, help="[create_session|top_laps]")
@click.option("--event-start-date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]), help="[create_session]")
@click.option("--event-end-date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]), help="[create_session]")
@click.option("--session-name", default=None, help="[create_session]")
@click.option("--session-type", default=None, help="[create_session] e.g. RACE, QUALIFYING, PRACTICE")
@click.option("--start-datetime", default=None, help="[create_session] Local session start, ISO-8601")
@click.option("--duration-seconds", default=None, type=int, help="[create_session]")
@click.option("--circuit-name", default=None, help="[create_session|circuits] Circuit (find-or-create; substring filter for circuits)")
@click.option("--circuit-country", default=None, help="[create_session]")
@click.option("--circuit-length-meters", default=None, type=str, help="[create_session] Track length in metres")
# job_status
@click.option("--job-id", default=None, type=int, help="[job_status] Show one job")
@click.option("--status", default=None, type=click.Choice([s.value for s in JobStatus]), help="[job_status] Filter listed jobs")
# analysis
@click.option("--driver-id", default=None, type=int, help="[top_laps]")
@click.option("--event-id", default=None, type=int, help="[top_laps|lap_analysis]")
@click.option("--series-id", default=None, type=int, help="[top_laps]")
@click.option("--class-id", default=None, type=int, help="[lap_analysis]")
@click.option("--car-model-id", default=None, type=int, help="[lap_analysis]")
@click.option("--percentage", default=100, type=click.IntRange(1, 100), show_default=True, help="[top_laps|lap_analysis] Top share of laps")
@click.option("--by-driver", is_flag=True, default=False, help="[lap_analysis] One line per driver")
# shared
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    mode: str,
    db_dsn: str,
    url: str | None,
    session_id: int | None,
    import_type: str | None,
    process_type: str | None,
    manifest: str | None,
    max_workers: int,
    series_name: str | None,
    event_name: str | None,
    year: int | None,
    event_start_date: datetime | None,
    event_end_date: datetime | None,
    session_name: str | None,
    session_type: str | None,
    start_datetime: str | None,
    duration_seconds: int | None,
    circuit_name: str | None,
    circuit_country: str | None,
    circuit_length_meters: str | None,
    job_id: int | None,
    status: str | None,
    driver_id: int | None,
    event_id: int | None,
    series_id: int | None,
    class_id: int | None,
    car_model_id: int | None,
    percentage: int,
    by_driver: bool,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
) -> None:
    """Endurance timing ingestion CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    if mode == "job_status":
        _run_job_status(run_id, db_dsn, job_id, status)
        return
    if mode == "top_laps":
        _require(run_id, mode, driver_id=driver_id)
        _run_top_laps(
            db_dsn, driver_id=driver_id, percentage=percentage,  # type: ignore[arg-type]
            session_id=session_id, event_id=event_id, year=year, series_id=series_id,
        )
        return
    if mode == "lap_analysis":
        _require(run_id, mode, event_id=event_id)
        _run_lap_analysis(
            db_dsn, event_id=event_id, percentage=percentage,  # type: ignore[arg-type]
            class_id=class_id, car_model_id=car_model_id, session_id=session_id,
            by_driver=by_driver,
        )
        return
    if mode == "create_session":
        _require(
            run_id, mode,
            series_name=series_name, event_name=event_name, year=year,
            session_name=session_name, session_type=session_type,
            start_datetime=start_datetime,
        )
        _run_create_session(
            run_id, db_dsn,
            series_name=series_name,  # type: ignore[arg-type]
            event_name=event_name,  # type: ignore[arg-type]
            year=year,  # type: ignore[arg-type]
            event_start_date=event_start_date.date() if event_start_date else None,
            event_end_date=event_end_date.date() if event_end_date else None,
            session_name=session_name,  # type: ignore[arg-type]
            session_type=session_type.upper(),  # type: ignore[union-attr]
            start_datetime=_parse_datetime(start_datetime, "--start-datetime", run_id),  # type: ignore[arg-type]
            duration_seconds=duration_seconds,
            url=url,
            circuit_name=circuit_name,
            circuit_country=circuit_country,
            circuit_length_meters=_parse_length(circuit_length_meters, run_id),
            dry_run=dry_run,
        )
        return
    if mode == "session_results":
        _require(run_id, mode, session_id=session_id)
        _run_session_results(db_dsn, session_id)  # type: ignore[arg-type]
        return
    if mode == "circuits":
        _run_circuits(db_dsn, circuit_name)
        return

    counters = RunCounters()
    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")
    if mode == "import_batch":
        _require(run_id, mode, manifest=manifest)
        ok = _run_import_batch(
            run_id, db_dsn, counters,
            manifest=manifest,  # type: ignore[arg-type]
            max_workers=max_workers,
            dry_run=dry_run,
        )
        sources = {"manifest": manifest}
    else:
        _require(
            run_id, mode,
            url=url, session_id=session_id,
            import_type=import_type, process_type=process_type,
        )
        ok = _run_import(
            run_id, db_dsn, counters,
            url=url,  # type: ignore[arg-type]
            session_id=session_id,  # type: ignore[arg-type]
            import_type=import_type,  # type: ignore[arg-type]
            process_type=process_type,  # type: ignore[arg-type]
            dry_run=dry_run,
        )
        sources = {"url": url, "session_id": session_id}

    click.echo(
        f"[{run_id}] rows_read={counters.rows_read} results={counters.results_inserted} "
        f"laps={counters.laps_inserted} sectors={counters.sectors_inserted} "
        f"lap_key_collisions={counters.lap_key_collisions}"
    )
    report_path = write_run_report(run_id, started_at, mode, dry_run, sources, counters)
    click.echo(f"[{run_id}] Run report: {report_path}")
    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
