"""endurance_etl.csv_source

Line/field tokenizer and transport for semicolon-delimited timing exports.

Timing exports are fetched with a single blocking GET and read line by line.
Columns are located by header name (case-insensitive) through a HeaderIndex
built once per file.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

import requests

from endurance_etl.errors import EmptyCsv, TransportError

log = logging.getLogger(__name__)

DELIMITER = ";"
CONNECT_TIMEOUT_SECONDS = 30
READ_TIMEOUT_SECONDS = 60

_BOM = "\ufeff"


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def split_line(line: str) -> list[str]:
    """Split a raw CSV line on ';' and strip each value."""
    return [v.strip() for v in line.rstrip("\r\n").split(DELIMITER)]


@dataclass
class HeaderIndex:
    """Header-name → column-index map with case-insensitive lookup."""

    columns: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_header_line(cls, line: str) -> HeaderIndex:
        columns: dict[str, int] = {}
        for idx, name in enumerate(split_line(line)):
            key = name.lstrip(_BOM).strip().upper()
            if key and key not in columns:
                columns[key] = idx
        return cls(columns)

    def __contains__(self, name: str) -> bool:
        return name.upper() in self.columns

    def get(self, values: list[str], name: str) -> str | None:
        """Return the value under header `name`, or None if absent/short row."""
        idx = self.columns.get(name.upper())
        if idx is None or idx >= len(values):
            return None
        return values[idx]


def iter_rows(lines: Iterable[str]) -> Iterator[tuple[HeaderIndex, list[str]]]:
    """Yield (HeaderIndex, values) for every non-blank data line.

    Raises EmptyCsv when there is no header line.
    """
    it = iter(lines)
    header_line = next(it, None)
    if header_line is None or not header_line.strip():
        raise EmptyCsv("CSV is empty")
    header = HeaderIndex.from_header_line(header_line)
    for line in it:
        if not line.strip():
            continue
        yield header, split_line(line)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def _is_remote(url: str) -> bool:
    return urllib.parse.urlparse(url).scheme in ("http", "https")


def _local_path(url: str) -> Path:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme == "file":
        return Path(urllib.parse.unquote(parsed.path))
    return Path(url)


def fetch_csv_lines(
    url: str,
    session: requests.Session | None = None,
) -> list[str]:
    """Fetch a timing export and return its lines.

    http(s) URLs are fetched with one GET (30s connect / 60s read).  Anything
    else is treated as a local file path, which is how exports saved to disk
    are re-imported.
    """
    if not _is_remote(url):
        path = _local_path(url)
        try:
            text = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise TransportError(f"Failed to read CSV {path}: {exc}") from exc
        return text.splitlines()

    http = session or requests.Session()
    try:
        resp = http.get(url, timeout=(CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS))
    except requests.RequestException as exc:
        log.error("CSV GET failed for %s: %s", url, exc)
        raise TransportError(f"Failed to fetch CSV: {exc}") from exc
    finally:
        if session is None:
            http.close()

    if not 200 <= resp.status_code < 300:
        raise TransportError(f"Failed to fetch CSV: HTTP {resp.status_code}")

    text = resp.content.decode("utf-8-sig", errors="replace")
    log.info("Fetched %d bytes from %s", len(resp.content), url)
    return text.splitlines()
