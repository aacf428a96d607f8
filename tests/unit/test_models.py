"""Unit tests for endurance_etl.models enums and outcome helpers."""

import pytest

from endurance_etl.errors import UnsupportedDialect
from endurance_etl.models import (
    Dialect,
    Driver,
    ImportOutcome,
    Lap,
    LapKey,
    ProcessType,
)
from decimal import Decimal


class TestDialect:
    def test_parse_case_insensitive(self):
        assert Dialect.parse(" wec ") is Dialect.WEC
        assert Dialect.parse("IMSA") is Dialect.IMSA

    def test_parse_passthrough(self):
        assert Dialect.parse(Dialect.IMSA) is Dialect.IMSA

    def test_unknown_raises(self):
        with pytest.raises(UnsupportedDialect):
            Dialect.parse("ELMS")

    def test_tire_header(self):
        assert Dialect.WEC.tire_header == "TYRES"
        assert Dialect.IMSA.tire_header == "TIRES"


class TestProcessType:
    def test_parse(self):
        assert ProcessType.parse("timecard") is ProcessType.TIMECARD

    def test_unknown_raises(self):
        with pytest.raises(UnsupportedDialect):
            ProcessType.parse("PITSTOPS")


class TestImportOutcome:
    def test_success(self):
        outcome = ImportOutcome.success(12)
        assert outcome.ok
        assert outcome.session_id == 12
        assert outcome.error is None

    def test_failed_has_no_session(self):
        outcome = ImportOutcome.failed("boom")
        assert not outcome.ok
        assert outcome.session_id is None
        assert outcome.status == "FAILED"
        assert outcome.error == "boom"


def test_lap_key():
    lap = Lap(car_entry_id=1, driver_id=2, lap_number=3, lap_time_seconds=Decimal("100"))
    assert lap.key == LapKey(1, 2, 3)


def test_driver_full_name_skips_blank_first_name():
    assert Driver(1, "", "JEAN-ERIC VERGNE").full_name == "JEAN-ERIC VERGNE"
    assert Driver(2, "Connor", "DE PHILLIPPI").full_name == "Connor DE PHILLIPPI"
