"""endurance_etl.errors

Error taxonomy for timing CSV imports.

Every error raised while processing a CSV aborts the whole import for that
job.  Importers convert these into a FAILED ImportOutcome at their boundary;
the job orchestrator stores the message on the job record.
"""

from __future__ import annotations


class TimingImportError(Exception):
    """Base class for all import failures."""


# ---------------------------------------------------------------------------
# Scalar parse failures
# ---------------------------------------------------------------------------

class MalformedLapTime(TimingImportError, ValueError):
    """Lap time is not mm:ss.sss or h:mm:ss.sss."""


class MalformedSectorTime(TimingImportError, ValueError):
    """Sector time is blank or not mm:ss.sss."""


class MalformedElapsedTime(TimingImportError, ValueError):
    """Elapsed time is not (h)h:mm:ss.SSS or (m)m:ss.SSS."""


class MalformedTimestamp(TimingImportError, ValueError):
    """Wall-clock time of day is not HH:MM:SS.mmm or MM:SS.mmm."""


class MissingField(TimingImportError, ValueError):
    """A column required to build a row is absent or blank."""


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------

class SessionNotFound(TimingImportError, LookupError):
    """The caller-supplied session (or its event) does not exist."""


class CarEntryNotFound(TimingImportError, LookupError):
    """A timecard row references a car number with no entry in the session."""


class CarDriverAssociationNotFound(TimingImportError, LookupError):
    """A timecard row references a driver not associated with the car."""


# ---------------------------------------------------------------------------
# Input / transport failures
# ---------------------------------------------------------------------------

class UnsupportedDialect(TimingImportError, ValueError):
    """Import type is neither IMSA nor WEC (or process type is unknown)."""


class EmptyCsv(TimingImportError):
    """The CSV has no header line."""


class TransportError(TimingImportError):
    """HTTP fetch failed or returned a non-2xx status."""


# ---------------------------------------------------------------------------
# Catalog failures
# ---------------------------------------------------------------------------

class ResourceExists(Exception):
    """A session with the same event and name is already registered."""
