"""Base class and shared helpers for line formats."""

import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from logscope.errors import ParseError
from logscope.models import LogEntry, ensure_utc


ISO_TIMESTAMP_RE = re.compile(
    r'\b(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?)(?![\d:])'
)
LEVEL_RE = re.compile(r'\b(DEBUG|INFO|NOTICE|WARN(?:ING)?|ERROR|CRITICAL|FATAL|SEVERE|TRACE)\b', re.IGNORECASE)
SOURCE_RE = re.compile(r'\[([\w\-.]+)\]')
KEY_VALUE_RE = re.compile(r'\b([A-Za-z_][\w.\-]*)=("(?:[^"\\]|\\.)*"|\S+)')

# Column/key names recognized in structured formats (CSV, JSON lines)
TIMESTAMP_KEYS = (
    'timestamp', 'time', 'date', 'datetime', 'ts', '@timestamp',
    'event_time', 'log_time', 'created_at', 'occurred_at', 'event_date',
)
LEVEL_KEYS = ('level', 'log_level', 'severity', 'priority', 'loglevel', 'lvl', 'type')
SOURCE_KEYS = ('source', 'logger', 'component', 'service', 'application', 'app', 'module', 'class', 'function')
MESSAGE_KEYS = ('message', 'msg', 'description', 'details', 'event', 'log', 'text')


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 string or an epoch number (seconds or milliseconds) into UTC.

    Returns:
        Aware UTC datetime, or None when the value is not a recognizable timestamp
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Anything past year 2286 in seconds is treated as milliseconds
        seconds = value / 1000 if abs(value) >= 1e10 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    if re.fullmatch(r'\d{10}(?:\.\d+)?|\d{13}', text):
        return parse_timestamp(float(text))
    text = text.replace(',', '.', 1) if re.search(r':\d{2},\d', text) else text
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def normalize_level(value) -> str | None:
    if value is None:
        return None
    level = str(value).strip().upper()
    return level or None


def pick(record: dict, keys: tuple[str, ...]):
    """Return (key, value) for the first key of keys present in record (case-insensitive)."""
    lowered = {str(k).lower(): k for k in record}
    for key in keys:
        original = lowered.get(key)
        if original is not None and record[original] not in (None, ''):
            return original, record[original]
    return None, None


class LineFormat(ABC):
    """Base class for all line formats.

    A format instance is bound to a single file: formats that learn
    configuration from the file (the CSV header) keep it on the instance.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Format identifier (e.g., 'generic', 'jsonl')."""
        pass

    @abstractmethod
    def parse(self, text: str, line_number: int, file_id: str) -> LogEntry | None:
        """Parse one line.

        Args:
            text: Line content without terminator
            line_number: 1-based line number
            file_id: Owning file id

        Returns:
            The structured entry, or None when the line carries format
            configuration only (e.g., a CSV header).

        Raises:
            ParseError: The line has no parseable timestamp.
        """
        pass

    def matches(self, text: str) -> bool:
        """Return True if a sample line looks like this format."""
        try:
            entry = self.parse(text, 1, '_sample')
        except ParseError:
            return False
        return entry is None or entry.timestamp is not None

    @staticmethod
    def entry(file_id: str, line_number: int, raw: str, **kwargs) -> LogEntry:
        return LogEntry(id=LogEntry.make_id(file_id, line_number), file_id=file_id, line_number=line_number, raw=raw, **kwargs)
