"""Raw delimited text -> rectangular grid of string cells.

Parsing follows RFC 4180 quoting via the stdlib :mod:`csv` module (quoted
fields may contain the delimiter, doubled quotes are un-escaped), one line at
a time so a quoted field never spans a line break. The delimiter is sniffed
from the first line: ``;``, then tab, then ``|``, with ``,`` as the default.
"""

from __future__ import annotations

import csv
import dataclasses
import re
from collections.abc import Iterable
from dataclasses import dataclass

from ..errors import EmptyInputError
from ..logging_setup import get_logger
from .field_mapping import HEADER_VOCABULARY

_logger = get_logger("ledger_import.ingest.tabular")

_DELIMITER_CANDIDATES: tuple[str, ...] = (";", "\t", "|")
_DEFAULT_DELIMITER = ","

_HEADER_TOKEN_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(t) for t in sorted(HEADER_VOCABULARY, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class ParsedTable:
    """Grid produced by :func:`parse_table`.

    ``rows`` includes the header row when ``has_header`` is true; use
    :attr:`data_rows` for the records themselves.
    """

    rows: tuple[tuple[str, ...], ...]
    delimiter: str
    has_header: bool

    @property
    def header(self) -> tuple[str, ...] | None:
        return self.rows[0] if self.has_header else None

    @property
    def data_rows(self) -> tuple[tuple[str, ...], ...]:
        return self.rows[1:] if self.has_header else self.rows

    @property
    def column_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)

    def column_labels(self) -> list[str]:
        """Header cells, padded with synthetic ``Column N`` labels (1-based)."""

        header = self.header or ()
        return [
            header[i] if i < len(header) and header[i] else f"Column {i + 1}"
            for i in range(self.column_count)
        ]

    def with_header(self, has_header: bool) -> ParsedTable:
        """Return a copy with the header flag overridden by the operator."""

        return dataclasses.replace(self, has_header=has_header)


def detect_delimiter(first_line: str) -> str:
    for candidate in _DELIMITER_CANDIDATES:
        if candidate in first_line:
            return candidate
    return _DEFAULT_DELIMITER


def detect_header(first_row: Iterable[str]) -> bool:
    """True when any cell contains a known field alias as a whole word."""

    return any(_HEADER_TOKEN_RE.search(cell) for cell in first_row)


def _clean_cell(cell: str) -> str:
    s = cell.strip()
    # Quotes that survive csv parsing (e.g. preceded by a tab) are stripped here.
    if len(s) >= 2 and s[0] == '"' and s[-1] == '"':
        s = s[1:-1].replace('""', '"').strip()
    return s


def _keep_row(cells: list[str]) -> bool:
    return len(cells) >= 2 and any(cells)


def parse_table(text: str) -> ParsedTable:
    """Parse raw text into a :class:`ParsedTable`.

    Rows with fewer than two cells or only empty cells are dropped.

    Raises
    ------
    EmptyInputError
        When no valid rows remain.
    """

    body = text.lstrip("\ufeff")
    first_line = next((line for line in body.splitlines() if line.strip()), "")
    if not first_line:
        raise EmptyInputError()
    delimiter = detect_delimiter(first_line)

    rows: list[tuple[str, ...]] = []
    dropped = 0
    # One reader per line: an unpaired quote must not swallow the rows after it.
    for line in body.splitlines():
        raw = next(
            csv.reader([line], delimiter=delimiter, skipinitialspace=True, strict=False), []
        )
        cells = [_clean_cell(c) for c in raw]
        if _keep_row(cells):
            rows.append(tuple(cells))
        elif raw:
            dropped += 1

    if not rows:
        raise EmptyInputError()

    has_header = detect_header(rows[0])
    _logger.info(
        "parse:done rows=%d dropped=%d delimiter=%r header=%s",
        len(rows),
        dropped,
        delimiter,
        has_header,
    )
    return ParsedTable(rows=tuple(rows), delimiter=delimiter, has_header=has_header)


__all__ = ["ParsedTable", "detect_delimiter", "detect_header", "parse_table"]
