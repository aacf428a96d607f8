"""endurance_etl.jobs

Import job orchestration.

A job moves PENDING → IN_PROGRESS → {COMPLETED, FAILED}.  The orchestrator
does no parsing: it fetches the CSV, hands it to the matching importer (timing rows in
one transaction, natural-key entities committed as found), and records the outcome on the job row.  FAILED is terminal;
there is no retry.

The tracker writes through its own autocommit connection so job status
survives the rollback of a failed import.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

import psycopg
import yaml

from endurance_etl.csv_source import fetch_csv_lines
from endurance_etl.errors import TimingImportError, UnsupportedDialect
from endurance_etl.import_results import import_results
from endurance_etl.import_timecard import import_timecard
from endurance_etl.models import (
    Dialect,
    ImportJob,
    ImportOutcome,
    ImportRequest,
    JobStatus,
    ProcessType,
)
from endurance_etl.shared import RunCounters
from endurance_etl.store import PgTimingStore

log = logging.getLogger(__name__)

Fetcher = Callable[[str], list[str]]

DEFAULT_MAX_WORKERS = 4


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ManifestValidationError(ValueError):
    """Raised when a batch manifest does not match the required schema."""


class JobStateError(RuntimeError):
    """Raised when a job transition is not allowed from its current state."""


# ---------------------------------------------------------------------------
# Job tracker
# ---------------------------------------------------------------------------

class JobTracker(Protocol):
    def create_job(self, request: ImportRequest) -> int: ...
    def mark_started(self, job_id: int) -> None: ...
    def mark_completed(self, job_id: int) -> None: ...
    def mark_failed(self, job_id: int, error: str) -> None: ...


_JOB_COLS = (
    "id, status, created_at, updated_at, started_at, ended_at, error, "
    "source_url, session_id, import_type, process_type"
)


def _job(row) -> ImportJob:
    return ImportJob(
        id=row[0], status=JobStatus(row[1]), created_at=row[2], updated_at=row[3],
        started_at=row[4], ended_at=row[5], error=row[6], source_url=row[7],
        session_id=row[8], import_type=row[9], process_type=row[10],
    )


class PgJobTracker:
    """Job tracker over the import_job table.

    Each call opens a short-lived autocommit connection, so one tracker can
    be shared by every worker thread of a batch run.
    """

    def __init__(self, db_dsn: str) -> None:
        self.db_dsn = db_dsn

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.db_dsn, autocommit=True)

    def create_job(self, request: ImportRequest) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO import_job
                  (status, source_url, session_id, import_type, process_type)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (JobStatus.PENDING.value, request.url, request.session_id,
                 request.import_type.value, request.process_type.value),
            ).fetchone()
        return row[0]

    def _transition(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        error: str | None = None,
    ) -> None:
        ts_col = "started_at" if to_status is JobStatus.IN_PROGRESS else "ended_at"
        with self._connect() as conn:
            cur = conn.execute(
                f"""
                UPDATE import_job
                SET status = %s, error = %s, {ts_col} = now(), updated_at = now()
                WHERE id = %s AND status = %s
                """,
                (to_status.value, error, job_id, from_status.value),
            )
            if cur.rowcount == 0:
                raise JobStateError(
                    f"Job {job_id} cannot move to {to_status.value}: "
                    f"not found or not {from_status.value}"
                )

    def mark_started(self, job_id: int) -> None:
        self._transition(job_id, JobStatus.PENDING, JobStatus.IN_PROGRESS)

    def mark_completed(self, job_id: int) -> None:
        self._transition(job_id, JobStatus.IN_PROGRESS, JobStatus.COMPLETED)

    def mark_failed(self, job_id: int, error: str) -> None:
        self._transition(job_id, JobStatus.IN_PROGRESS, JobStatus.FAILED, error)

    def get_job(self, job_id: int) -> ImportJob | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_JOB_COLS} FROM import_job WHERE id = %s", (job_id,)
            ).fetchone()
        return _job(row) if row else None

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[ImportJob]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute(
                    f"SELECT {_JOB_COLS} FROM import_job ORDER BY id DESC LIMIT %s",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"""
                    SELECT {_JOB_COLS} FROM import_job
                    WHERE status = %s ORDER BY id DESC LIMIT %s
                    """,
                    (status.value, limit),
                ).fetchall()
        return [_job(r) for r in rows]


# ---------------------------------------------------------------------------
# Import execution
# ---------------------------------------------------------------------------

def execute_import(
    db_dsn: str,
    request: ImportRequest,
    *,
    fetch: Fetcher = fetch_csv_lines,
    dry_run: bool = False,
    counters: RunCounters | None = None,
) -> ImportOutcome:
    """Fetch one CSV and import it.

    Results, laps and sectors are written in one transaction that commits
    only when the importer succeeds and dry_run is off, so a failed import
    leaves no timing rows behind.  Natural-key entities are found or created
    through a second, autocommit connection and stay once created; a dry run
    keeps them in the rolled-back transaction instead.

    Counts for rows that were rolled back are dropped before merging into
    `counters`.
    """
    try:
        lines = fetch(request.url)
    except TimingImportError as exc:
        log.error("Fetch failed for %s: %s", request.url, exc)
        return ImportOutcome.failed(str(exc))

    job_counters = RunCounters()
    committed = False
    conn = psycopg.connect(db_dsn, autocommit=False)
    entity_conn: psycopg.Connection | None = None
    try:
        if not dry_run:
            entity_conn = psycopg.connect(db_dsn, autocommit=True)
        store = PgTimingStore(conn, entity_conn)
        if request.process_type is ProcessType.RESULTS:
            outcome = import_results(
                store, lines, request.session_id, request.import_type, job_counters
            )
        else:
            outcome = import_timecard(store, lines, request.session_id, job_counters)

        if outcome.ok and not dry_run:
            conn.commit()
            committed = True
        else:
            conn.rollback()
            if dry_run:
                log.info("Dry run for %s rolled back", request.url)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
        if entity_conn is not None:
            entity_conn.close()
        if not committed:
            job_counters.discard_rolled_back(entities=entity_conn is None)
        if counters is not None:
            counters.merge(job_counters)
    return outcome


def run_import_job(
    db_dsn: str,
    job_id: int,
    request: ImportRequest,
    tracker: JobTracker,
    *,
    fetch: Fetcher = fetch_csv_lines,
    dry_run: bool = False,
    counters: RunCounters | None = None,
) -> ImportOutcome:
    """Drive one job through IN_PROGRESS to its terminal state."""
    tracker.mark_started(job_id)
    try:
        outcome = execute_import(
            db_dsn, request, fetch=fetch, dry_run=dry_run, counters=counters
        )
    except Exception as exc:
        log.exception("Import job %s crashed", job_id)
        outcome = ImportOutcome.failed(str(exc))

    if outcome.ok:
        tracker.mark_completed(job_id)
        log.info("Import job %s completed", job_id)
    else:
        tracker.mark_failed(job_id, outcome.error or "unknown error")
        log.warning("Import job %s failed: %s", job_id, outcome.error)
    return outcome


def _outcome(job_id: int, future: Future) -> ImportOutcome:
    try:
        return future.result()
    except Exception as exc:
        # the tracker itself failed; the job row may be left IN_PROGRESS
        log.exception("Import job %s could not be recorded", job_id)
        return ImportOutcome.failed(str(exc))


def dispatch_import_jobs(
    db_dsn: str,
    requests: Sequence[ImportRequest],
    tracker: JobTracker,
    max_workers: int = DEFAULT_MAX_WORKERS,
    *,
    fetch: Fetcher = fetch_csv_lines,
    dry_run: bool = False,
    counters: RunCounters | None = None,
) -> list[tuple[int, ImportOutcome]]:
    """Create one job per request and run them concurrently.

    Every job gets its own connection, resolver cache and RunCounters; the
    per-job counters are merged into `counters` once all jobs finish.
    Results are returned in request order as (job_id, outcome).
    """
    job_ids = [tracker.create_job(r) for r in requests]
    job_counters = [RunCounters() for _ in requests]

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = [
            pool.submit(
                run_import_job, db_dsn, job_id, request, tracker,
                fetch=fetch, dry_run=dry_run, counters=ctrs,
            )
            for job_id, request, ctrs in zip(job_ids, requests, job_counters)
        ]
        outcomes = [_outcome(job_id, f) for job_id, f in zip(job_ids, futures)]

    if counters is not None:
        for ctrs, outcome in zip(job_counters, outcomes):
            counters.merge(ctrs)
            if outcome.ok:
                counters.jobs_completed += 1
            else:
                counters.jobs_failed += 1
    return list(zip(job_ids, outcomes))


# ---------------------------------------------------------------------------
# Batch manifest
# ---------------------------------------------------------------------------

_MANIFEST_KEYS = {"url", "session_id", "import_type", "process_type"}


def load_manifest(path: Path) -> list[ImportRequest]:
    """Load and validate a YAML batch manifest.

    The document is either a list of imports or a mapping with an `imports`
    list.  Each import needs url, session_id, import_type (IMSA|WEC) and
    process_type (RESULTS|TIMECARD).

    Raises:
        ManifestValidationError: If any entry is missing or invalid.
        FileNotFoundError: If the manifest does not exist.
    """
    data: Any = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("imports")
    if not isinstance(data, list) or not data:
        raise ManifestValidationError("Manifest must contain a non-empty list of imports.")
    return [_manifest_entry(i, item) for i, item in enumerate(data)]


def _manifest_entry(index: int, item: Any) -> ImportRequest:
    if not isinstance(item, dict):
        raise ManifestValidationError(f"Import #{index} must be a mapping.")
    missing = _MANIFEST_KEYS - item.keys()
    if missing:
        raise ManifestValidationError(f"Import #{index} missing keys: {sorted(missing)}")

    url = item["url"]
    if not isinstance(url, str) or not url.strip():
        raise ManifestValidationError(f"Import #{index} url must be a non-empty string.")
    session_id = item["session_id"]
    if isinstance(session_id, bool) or not isinstance(session_id, int):
        raise ManifestValidationError(f"Import #{index} session_id must be an integer.")
    try:
        import_type = Dialect.parse(item["import_type"])
        process_type = ProcessType.parse(item["process_type"])
    except UnsupportedDialect as exc:
        raise ManifestValidationError(f"Import #{index}: {exc}") from exc

    return ImportRequest(
        url=url.strip(),
        session_id=session_id,
        import_type=import_type,
        process_type=process_type,
    )
