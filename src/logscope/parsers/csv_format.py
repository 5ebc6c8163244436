"""Comma-separated logs with a header row."""

import csv

from logscope.errors import ParseError
from logscope.models import LogEntry

from .base import LEVEL_KEYS, MESSAGE_KEYS, SOURCE_KEYS, TIMESTAMP_KEYS, LineFormat, normalize_level, parse_timestamp


def _split(text: str) -> list[str]:
    rows = list(csv.reader([text]))
    return [cell.strip() for cell in rows[0]] if rows else []


def _column(header: list[str], keys: tuple[str, ...]) -> int | None:
    lowered = [h.lower() for h in header]
    for key in keys:
        if key in lowered:
            return lowered.index(key)
    return None


class CsvFormat(LineFormat):
    """Parses CSV logs.

    The first non-blank line is taken as the header and produces no entry.
    Columns are mapped by name; when no message column exists the remaining
    cells are joined to form the message.
    """

    def __init__(self):
        self.header: list[str] | None = None
        self._ts_col = self._level_col = self._source_col = self._msg_col = None

    @property
    def name(self) -> str:
        return 'csv'

    @staticmethod
    def looks_like_header(text: str) -> bool:
        cells = _split(text)
        return len(cells) >= 2 and _column(cells, TIMESTAMP_KEYS) is not None

    def set_header(self, cells: list[str]):
        self.header = cells
        self._ts_col = _column(cells, TIMESTAMP_KEYS)
        self._level_col = _column(cells, LEVEL_KEYS)
        self._source_col = _column(cells, SOURCE_KEYS)
        self._msg_col = _column(cells, MESSAGE_KEYS)

    def parse(self, text: str, line_number: int, file_id: str) -> LogEntry | None:
        try:
            cells = _split(text)
        except csv.Error as e:
            raise ParseError(f'invalid CSV: {e}', line_number=line_number) from e

        if self.header is None:
            self.set_header(cells)
            return None

        def cell(col: int | None) -> str | None:
            if col is None or col >= len(cells):
                return None
            return cells[col] or None

        timestamp = parse_timestamp(cell(self._ts_col))
        if timestamp is None:
            raise ParseError('no timestamp column value', line_number=line_number)

        mapped = {self._ts_col, self._level_col, self._source_col, self._msg_col}
        fields = {
            name: cells[i] for i, name in enumerate(self.header) if i < len(cells) and i not in mapped and cells[i]
        }
        if self._msg_col is not None:
            message = cell(self._msg_col) or ''
        else:
            message = ' '.join(fields.values())

        return self.entry(
            file_id,
            line_number,
            text,
            timestamp=timestamp,
            level=normalize_level(cell(self._level_col)),
            source=cell(self._source_col),
            message=message,
            fields=fields,
        )
