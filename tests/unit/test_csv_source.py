"""Unit tests for the CSV tokenizer and transport.

No network access: requests.Session is replaced with a MagicMock.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from endurance_etl.csv_source import (
    CONNECT_TIMEOUT_SECONDS,
    READ_TIMEOUT_SECONDS,
    HeaderIndex,
    fetch_csv_lines,
    iter_rows,
    split_line,
)
from endurance_etl.errors import EmptyCsv, TransportError


# ---------------------------------------------------------------------------
# split_line / HeaderIndex
# ---------------------------------------------------------------------------

class TestSplitLine:
    def test_splits_and_strips(self):
        assert split_line(" 1 ;7; Porsche 963 ;\r\n") == ["1", "7", "Porsche 963", ""]

    def test_single_column(self):
        assert split_line("NUMBER") == ["NUMBER"]


class TestHeaderIndex:
    def test_case_insensitive_lookup(self):
        header = HeaderIndex.from_header_line("Number;Team;Class")
        assert header.get(["7", "Porsche Penske", "GTP"], "TEAM") == "Porsche Penske"
        assert header.get(["7", "Porsche Penske", "GTP"], "class") == "GTP"

    def test_strips_bom_from_first_header(self):
        header = HeaderIndex.from_header_line("\ufeffPOSITION;NUMBER")
        assert "POSITION" in header
        assert header.get(["1", "7"], "POSITION") == "1"

    def test_strips_padding_around_names(self):
        header = HeaderIndex.from_header_line(" NUMBER ; TEAM ")
        assert header.get(["7", "X"], "TEAM") == "X"

    def test_first_occurrence_wins(self):
        header = HeaderIndex.from_header_line("KPH;LAP_TIME;KPH")
        assert header.get(["180.1", "1:48.656", "999"], "KPH") == "180.1"

    def test_missing_header_returns_none(self):
        header = HeaderIndex.from_header_line("NUMBER")
        assert header.get(["7"], "TEAM") is None
        assert "TEAM" not in header

    def test_short_row_returns_none(self):
        header = HeaderIndex.from_header_line("NUMBER;TEAM;CLASS")
        assert header.get(["7"], "CLASS") is None


class TestIterRows:
    def test_yields_data_rows_and_skips_blank_lines(self):
        rows = list(iter_rows(["NUMBER;TEAM", "7;A", "", "   ", "8;B"]))
        assert [values for _, values in rows] == [["7", "A"], ["8", "B"]]
        header = rows[0][0]
        assert header.get(rows[1][1], "TEAM") == "B"

    def test_header_only_yields_nothing(self):
        assert list(iter_rows(["NUMBER;TEAM"])) == []

    def test_empty_input_raises(self):
        with pytest.raises(EmptyCsv):
            list(iter_rows([]))

    def test_blank_header_raises(self):
        with pytest.raises(EmptyCsv):
            list(iter_rows(["", "7;A"]))


# ---------------------------------------------------------------------------
# fetch_csv_lines
# ---------------------------------------------------------------------------

def _response(status: int, body: bytes = b"") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.content = body
    return resp


class TestFetchCsvLines:
    URL = "https://results.example.com/03_Classification_Race.CSV"

    def test_returns_lines_and_uses_timeouts(self):
        http = MagicMock()
        http.get.return_value = _response(200, b"\xef\xbb\xbfNUMBER;TEAM\r\n7;A\r\n")
        lines = fetch_csv_lines(self.URL, session=http)
        assert lines == ["NUMBER;TEAM", "7;A"]
        http.get.assert_called_once_with(
            self.URL, timeout=(CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS)
        )

    def test_timeouts_are_30_and_60_seconds(self):
        assert (CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS) == (30, 60)

    def test_non_2xx_raises_transport_error(self):
        http = MagicMock()
        http.get.return_value = _response(404)
        with pytest.raises(TransportError, match="HTTP 404"):
            fetch_csv_lines(self.URL, session=http)

    def test_request_exception_raises_transport_error(self):
        http = MagicMock()
        http.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError, match="refused"):
            fetch_csv_lines(self.URL, session=http)

    def test_caller_session_is_not_closed(self):
        http = MagicMock()
        http.get.return_value = _response(200, b"NUMBER\n")
        fetch_csv_lines(self.URL, session=http)
        http.close.assert_not_called()

    def test_local_path(self, tmp_path):
        path = tmp_path / "timecard.csv"
        path.write_text("\ufeffNUMBER;LAP_NUMBER\n7;1\n", encoding="utf-8")
        assert fetch_csv_lines(str(path)) == ["NUMBER;LAP_NUMBER", "7;1"]

    def test_file_url(self, tmp_path):
        path = tmp_path / "results.csv"
        path.write_text("NUMBER\n7\n", encoding="utf-8")
        assert fetch_csv_lines(path.as_uri()) == ["NUMBER", "7"]

    def test_missing_local_file_raises_transport_error(self, tmp_path):
        with pytest.raises(TransportError):
            fetch_csv_lines(str(tmp_path / "nope.csv"))
