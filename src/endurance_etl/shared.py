"""endurance_etl.shared

Shared utilities used by the importers, the job orchestrator and the CLI:
RunCounters and JSON run-report writing.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

_ENTITY_INSERT_COUNTERS = (
    "teams_inserted",
    "classes_inserted",
    "car_models_inserted",
    "car_entries_inserted",
    "drivers_inserted",
    "car_drivers_inserted",
)


@dataclass
class RunCounters:
    rows_read: int = 0
    teams_inserted: int = 0
    teams_matched_existing: int = 0
    classes_inserted: int = 0
    classes_matched_existing: int = 0
    car_models_inserted: int = 0
    car_models_matched_existing: int = 0
    car_entries_inserted: int = 0
    car_entries_matched_existing: int = 0
    drivers_inserted: int = 0
    drivers_matched_existing: int = 0
    car_drivers_inserted: int = 0
    car_drivers_matched_existing: int = 0
    results_inserted: int = 0
    laps_inserted: int = 0
    sectors_inserted: int = 0
    lap_key_collisions: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    warnings: list[str] = field(default_factory=list)

    def merge(self, other: RunCounters) -> None:
        """Add another run's counts into this one (batch runs)."""
        for name, value in asdict(other).items():
            if name == "warnings":
                self.warnings.extend(value)
            else:
                setattr(self, name, getattr(self, name) + value)

    def discard_rolled_back(self, entities: bool) -> None:
        """Zero the insert counts of rows a rollback removed.

        Timing rows always share the import transaction.  Entity rows only do
        when no separate entity connection was used (`entities=True`).
        """
        self.results_inserted = 0
        self.laps_inserted = 0
        self.sectors_inserted = 0
        if entities:
            for name in _ENTITY_INSERT_COUNTERS:
                setattr(self, name, 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    sources: dict[str, Any],
    counters: RunCounters,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **sources,
        "counters": counters.to_dict(),
    }
    report_path = Path(f"./artifacts/reports/{run_id}.json")
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
