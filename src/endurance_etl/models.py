"""endurance_etl.models

Plain dataclass records for the timing schema plus the request/outcome types
that cross the importer boundary.  IDs are None until the row is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import NamedTuple

from endurance_etl.errors import UnsupportedDialect


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Dialect(str, Enum):
    IMSA = "IMSA"
    WEC = "WEC"

    @classmethod
    def parse(cls, value: str | Dialect) -> Dialect:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnsupportedDialect(f"Unsupported import type: {value!r}") from None

    @property
    def tire_header(self) -> str:
        return "TYRES" if self is Dialect.WEC else "TIRES"


class ProcessType(str, Enum):
    RESULTS = "RESULTS"
    TIMECARD = "TIMECARD"

    @classmethod
    def parse(cls, value: str | ProcessType) -> ProcessType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnsupportedDialect(f"Unsupported process type: {value!r}") from None


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Catalog records (pre-exist before an import)
# ---------------------------------------------------------------------------

@dataclass
class Circuit:
    id: int | None
    name: str
    length_meters: Decimal | None = None
    country: str | None = None
    location: str | None = None
    description: str | None = None


@dataclass
class Series:
    id: int | None
    name: str


@dataclass
class Event:
    id: int | None
    series_id: int
    name: str
    year: int
    start_date: date | None = None
    end_date: date | None = None
    circuit_id: int | None = None


@dataclass
class Session:
    id: int | None
    event_id: int
    name: str
    session_type: str
    start_datetime: datetime
    duration_seconds: int | None = None
    import_url: str | None = None
    circuit_id: int | None = None


# ---------------------------------------------------------------------------
# Natural-key entities (find-or-create)
# ---------------------------------------------------------------------------

@dataclass
class Team:
    id: int | None
    name: str


@dataclass
class CarClass:
    id: int | None
    series_id: int
    name: str


@dataclass
class CarModel:
    id: int | None
    name: str


@dataclass
class CarEntry:
    id: int | None
    session_id: int
    number: str
    team_id: int
    class_id: int
    car_model_id: int
    tire_supplier: str | None = None


@dataclass
class Driver:
    id: int | None
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass
class CarDriver:
    id: int | None
    car_entry_id: int
    driver_id: int
    driver_number: int


# ---------------------------------------------------------------------------
# Timing rows (batch inserted)
# ---------------------------------------------------------------------------

@dataclass
class Result:
    session_id: int
    car_entry_id: int
    car_number: str
    tires: str | None = None
    status: str | None = None
    laps: int | None = None
    total_time: str | None = None
    gap_first: str | None = None
    gap_previous: str | None = None
    fl_lapnum: int | None = None
    fl_time: str | None = None
    fl_kph: Decimal | None = None
    position: int | None = None
    id: int | None = None


class LapKey(NamedTuple):
    """Correlation key tying staged sectors to their lap across the insert."""

    car_entry_id: int
    driver_id: int
    lap_number: int


@dataclass
class Lap:
    car_entry_id: int
    driver_id: int
    lap_number: int
    lap_time_seconds: Decimal
    session_elapsed_seconds: Decimal | None = None
    timestamp: datetime | None = None
    average_speed_kph: Decimal | None = None
    id: int | None = None

    @property
    def key(self) -> LapKey:
        return LapKey(self.car_entry_id, self.driver_id, self.lap_number)


@dataclass
class Sector:
    sector_number: int
    sector_time_seconds: Decimal
    lap_id: int | None = None


# ---------------------------------------------------------------------------
# Jobs, requests, outcomes
# ---------------------------------------------------------------------------

@dataclass
class ImportRequest:
    url: str
    session_id: int
    import_type: Dialect
    process_type: ProcessType


@dataclass
class ImportOutcome:
    session_id: int | None
    status: str
    error: str | None = None

    @classmethod
    def success(cls, session_id: int) -> ImportOutcome:
        return cls(session_id=session_id, status="SUCCESS")

    @classmethod
    def failed(cls, error: str) -> ImportOutcome:
        return cls(session_id=None, status="FAILED", error=error)

    @property
    def ok(self) -> bool:
        return self.status == "SUCCESS"


@dataclass
class ImportJob:
    id: int
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    ended_at: datetime | None
    error: str | None
    source_url: str
    session_id: int
    import_type: str
    process_type: str
