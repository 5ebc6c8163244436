"""Per-file line parsing and format detection."""

import itertools
import logging
import os
import re
from collections.abc import Iterable, Iterator, Sequence

from logscope.chunk_reader import ChunkReader, RawLine
from logscope.errors import ParseError
from logscope.models import LogEntry

from .base import ISO_TIMESTAMP_RE, LineFormat
from .csv_format import CsvFormat
from .generic import GenericFormat
from .jsonl import JsonLinesFormat
from .syslog import SyslogFormat


logger = logging.getLogger(__name__)

FORMATS: dict[str, type[LineFormat]] = {
    'generic': GenericFormat,
    'syslog': SyslogFormat,
    'jsonl': JsonLinesFormat,
    'csv': CsvFormat,
}

# Indented lines and stack-trace frames that belong to the previous record
CONTINUATION_RE = re.compile(
    r'^(?:\s+\S|\s*at\s+[\w$.<>]+\(|Caused by:|Traceback \(most recent call last\)|\s*\.\.\. \d+ more)'
)

SNIFF_CHUNK_SIZE = 64 * 1024


def get_format(name: str) -> LineFormat:
    """Instantiate a line format by name.

    Raises:
        ValueError: Unknown format name
    """
    try:
        return FORMATS[name]()
    except KeyError:
        raise ValueError(f'Unknown log format {name!r}, expected one of {sorted(FORMATS)}') from None


def detect_format(sample: Sequence[str]) -> LineFormat:
    """Pick the line format that parses the most sample lines.

    A CSV header on the first non-blank line wins outright. Ties between
    other formats go to the more specific one (jsonl, then syslog, then generic).
    """
    lines = [line for line in sample if line.strip()]
    if not lines:
        return GenericFormat()
    if CsvFormat.looks_like_header(lines[0]):
        return CsvFormat()

    best: LineFormat | None = None
    best_hits = 0
    for candidate in (JsonLinesFormat(), SyslogFormat(), GenericFormat()):
        hits = sum(1 for line in lines if candidate.matches(line))
        if hits > best_hits:
            best, best_hits = candidate, hits
    return best or GenericFormat()


def sniff_file(path: str | os.PathLike, sample_lines: int = 50) -> LineFormat:
    """Detect the line format of a file from its first lines."""
    reader = ChunkReader(path, '_sniff', chunk_size=SNIFF_CHUNK_SIZE)
    sample = [raw.text for raw in itertools.islice(reader.iter_lines(), sample_lines)]
    fmt = detect_format(sample)
    logger.debug(f'[PARSE] Detected format {fmt.name!r} for {path} from {len(sample)} lines')
    return fmt


class LineParser:
    """Turns raw lines of one file into LogEntry values.

    The line format is fixed for the lifetime of the parser. Lines without a
    parseable timestamp become raw-only entries. Blank lines produce nothing
    but still consume their line number.

    With ``merge_continuations`` enabled, indented and stack-frame lines that
    directly follow a timestamped entry are folded into it; the merged entry
    is held back until the next record starts or ``flush`` is called.
    """

    def __init__(self, file_id: str, line_format: LineFormat, merge_continuations: bool = False):
        self.file_id = file_id
        self.format = line_format
        self.merge_continuations = merge_continuations
        self.parsed = 0
        self.unparsed = 0
        self.blank = 0
        self.merged = 0
        self._pending: LogEntry | None = None

    def parse_line(self, line_number: int, text: str) -> LogEntry | None:
        """Parse a single line with no cross-line state."""
        if not text.strip():
            self.blank += 1
            return None
        try:
            entry = self.format.parse(text, line_number, self.file_id)
        except ParseError as e:
            self.unparsed += 1
            logger.debug(f'[PARSE] {self.file_id}:{line_number} kept raw ({e})')
            return LineFormat.entry(self.file_id, line_number, text)
        if entry is not None:
            self.parsed += 1
        return entry

    def push(self, line_number: int, text: str) -> list[LogEntry]:
        """Feed one line; return the entries that are now complete."""
        if self.merge_continuations and self._pending is not None and self._is_continuation(text):
            self._pending = self._pending.model_copy(
                update={
                    'message': f'{self._pending.message}\n{text.strip()}',
                    'raw': f'{self._pending.raw}\n{text}',
                }
            )
            self.merged += 1
            return []

        entry = self.parse_line(line_number, text)
        if entry is None:
            return []
        if not self.merge_continuations:
            return [entry]

        out = []
        if self._pending is not None:
            out.append(self._pending)
            self._pending = None
        if entry.timestamp is not None:
            self._pending = entry
        else:
            out.append(entry)
        return out

    def flush(self) -> list[LogEntry]:
        """Return the held-back entry, if any."""
        if self._pending is None:
            return []
        pending, self._pending = self._pending, None
        return [pending]

    def feed(self, lines: Iterable[RawLine]) -> Iterator[LogEntry]:
        for raw in lines:
            yield from self.push(raw.line_number, raw.text)
        yield from self.flush()

    @staticmethod
    def _is_continuation(text: str) -> bool:
        return bool(text.strip()) and CONTINUATION_RE.match(text) is not None and not ISO_TIMESTAMP_RE.search(text)


def parse_file(
    path: str | os.PathLike,
    file_id: str,
    format_name: str | None = None,
    chunk_size: int | None = None,
    merge_continuations: bool = False,
    sample_lines: int = 50,
) -> Iterator[LogEntry]:
    """Stream the entries of a whole file."""
    fmt = get_format(format_name) if format_name else sniff_file(path, sample_lines)
    reader = ChunkReader(path, file_id, **({'chunk_size': chunk_size} if chunk_size else {}))
    parser = LineParser(file_id, fmt, merge_continuations=merge_continuations)
    yield from parser.feed(reader.iter_lines())
