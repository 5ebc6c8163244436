"""Pydantic models shared by the core, the CLI and the HTTP API"""

import re
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from logscope.utils import human_readable_size


# ============================================================================
# Levels and severities
# ============================================================================

ERROR_LEVELS = frozenset({'ERROR', 'FATAL', 'CRITICAL', 'SEVERE', 'CRIT', 'EMERG', 'ALERT'})
WARNING_LEVELS = frozenset({'WARN', 'WARNING'})
INFO_LEVELS = frozenset({'INFO', 'NOTICE'})
DEBUG_LEVELS = frozenset({'DEBUG', 'TRACE'})

SEVERITY_CLASSES = ('error', 'warning', 'info', 'debug', 'other')


def classify_level(level: str | None) -> str:
    """Map a raw level string onto one of the severity classes.

    Anything unrecognized, including a missing level, is 'other'.
    """
    if not level:
        return 'other'
    level = level.upper()
    if level in ERROR_LEVELS:
        return 'error'
    if level in WARNING_LEVELS:
        return 'warning'
    if level in INFO_LEVELS:
        return 'info'
    if level in DEBUG_LEVELS:
        return 'debug'
    return 'other'


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
MILLISECOND = timedelta(milliseconds=1)


def to_epoch_ms(value: datetime) -> int:
    """Whole milliseconds since the epoch, floored without going through a float."""
    return (ensure_utc(value) - EPOCH) // MILLISECOND


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + ms * MILLISECOND


class Severity(str, Enum):
    """Anomaly severity, ordered low < medium < high < critical."""

    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3, Severity.CRITICAL: 4}


class ZoomLevel(str, Enum):
    """Display granularity of the timeline."""

    SECOND = 'second'
    MINUTE = 'minute'
    HOUR = 'hour'
    DAY = 'day'

    @property
    def width_ms(self) -> int:
        return _ZOOM_WIDTH_MS[self]


_ZOOM_WIDTH_MS = {
    ZoomLevel.SECOND: 1_000,
    ZoomLevel.MINUTE: 60_000,
    ZoomLevel.HOUR: 3_600_000,
    ZoomLevel.DAY: 86_400_000,
}


# ============================================================================
# Entries and files
# ============================================================================


class LogEntry(BaseModel):
    """One structured log record.

    Entries whose timestamp could not be parsed are raw-only: timestamp,
    level and source are None and message is empty. They are never placed
    in the time index.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., example='f1:42', description='Unique id, "<file_id>:<line_number>"')
    file_id: str = Field(..., example='f1')
    line_number: int = Field(..., example=42, description='1-based physical line of the record')
    timestamp: datetime | None = Field(None, description='UTC timestamp, None when unparseable')
    level: str | None = Field(None, example='ERROR')
    source: str | None = Field(None, example='db-pool')
    message: str = Field('', example='Connection refused')
    raw: str = Field(..., description='Original text of the record')
    fields: dict[str, str] = Field(default_factory=dict, description='Extra key/value pairs found in the line')

    @field_validator('level')
    @classmethod
    def _upper_level(cls, v: str | None) -> str | None:
        return v.upper() if v else None

    @staticmethod
    def make_id(file_id: str, line_number: int) -> str:
        return f'{file_id}:{line_number}'

    @property
    def timestamp_ms(self) -> int | None:
        if self.timestamp is None:
            return None
        return to_epoch_ms(self.timestamp)

    @property
    def display_message(self) -> str:
        return self.message or self.raw

    @property
    def severity_class(self) -> str:
        return classify_level(self.level)

    def sort_key(self) -> tuple:
        """Ordering used wherever entries must be processed chronologically."""
        ts = self.timestamp_ms
        return (ts is None, ts or 0, self.file_id, self.line_number)


class FileStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    ERROR = 'error'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.COMPLETED, FileStatus.ERROR, FileStatus.CANCELLED)


class FileMetadata(BaseModel):
    """Per-file state. Derived fields are populated once processing completes."""

    id: str = Field(..., example='f1')
    name: str = Field(..., example='/var/log/app.log')
    size: int = Field(..., example=1_048_576, description='File size in bytes')
    type: str = Field('text/plain', example='generic', description='Detected line format')
    last_modified: int = Field(0, description='Modification time, epoch milliseconds')
    total_chunks: int = Field(0, description='ceil(size / chunk_size)')
    status: FileStatus = FileStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    error: str | None = None

    start_time: datetime | None = None
    end_time: datetime | None = None
    log_count: int | None = None
    log_levels: dict[str, int] | None = None
    sources: list[str] | None = None
    unparsed_lines: int | None = None

    def to_cli(self, colorize: bool = False) -> str:
        status = self.status.value
        if colorize:
            color = {'completed': '\033[32m', 'error': '\033[31m', 'cancelled': '\033[33m'}.get(status, '\033[36m')
            status = f'{color}{status}\033[0m'
        line = f'{self.id}  {self.name} ({human_readable_size(self.size)})  [{status}] {self.progress}%'
        if self.log_count is not None:
            line += f'  {self.log_count:,} entries'
        if self.start_time and self.end_time:
            line += f'  {self.start_time.isoformat()} .. {self.end_time.isoformat()}'
        if self.error:
            line += f'  error: {self.error}'
        return line


# ============================================================================
# Filters
# ============================================================================

SEARCHABLE_FIELDS = ('message', 'raw', 'source', 'level')

REGEX_FLAGS = {'i': re.IGNORECASE, 'm': re.MULTILINE, 's': re.DOTALL, 'x': re.VERBOSE}


def regex_flags(flags: str) -> int:
    """Translate a flag string such as 'im' into re module flags."""
    value = 0
    for flag in flags:
        if flag not in REGEX_FLAGS:
            raise ValueError(f'Unknown regex flag {flag!r}, expected any of {"".join(REGEX_FLAGS)}')
        value |= REGEX_FLAGS[flag]
    return value


class TimeSelection(BaseModel):
    """Inclusive time range."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator('start', 'end')
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode='after')
    def _ordered(self):
        if self.start > self.end:
            raise ValueError('start must not be after end')
        return self

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end


class _FilterBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    enabled: bool = True
    name: str = ''


def _check_fields(fields: list[str]) -> list[str]:
    if not fields:
        raise ValueError('fields must not be empty')
    unknown = [f for f in fields if f not in SEARCHABLE_FIELDS]
    if unknown:
        raise ValueError(f'Unknown fields {unknown}, expected any of {list(SEARCHABLE_FIELDS)}')
    return list(dict.fromkeys(fields))


class LogLevelFilter(_FilterBase):
    type: Literal['logLevel'] = 'logLevel'
    levels: list[str]

    @field_validator('levels')
    @classmethod
    def _levels(cls, v: list[str]) -> list[str]:
        levels = [level.strip().upper() for level in v if level and level.strip()]
        if not levels:
            raise ValueError('levels must not be empty')
        return list(dict.fromkeys(levels))


class SourceFilter(_FilterBase):
    type: Literal['source'] = 'source'
    sources: list[str]

    @field_validator('sources')
    @classmethod
    def _sources(cls, v: list[str]) -> list[str]:
        sources = [s.strip() for s in v if s and s.strip()]
        if not sources:
            raise ValueError('sources must not be empty')
        return list(dict.fromkeys(sources))


class TimestampFilter(_FilterBase):
    type: Literal['timestamp'] = 'timestamp'
    range: TimeSelection


class TextFilter(_FilterBase):
    type: Literal['text'] = 'text'
    text: str
    case_sensitive: bool = False
    fields: list[str] = Field(default_factory=lambda: ['message'])

    @field_validator('text')
    @classmethod
    def _text(cls, v: str) -> str:
        if not v:
            raise ValueError('text must not be empty')
        return v

    @field_validator('fields')
    @classmethod
    def _fields(cls, v: list[str]) -> list[str]:
        return _check_fields(v)


class RegexFilter(_FilterBase):
    type: Literal['regex'] = 'regex'
    pattern: str
    flags: str = ''
    fields: list[str] = Field(default_factory=lambda: ['message'])

    @field_validator('fields')
    @classmethod
    def _fields(cls, v: list[str]) -> list[str]:
        return _check_fields(v)

    @model_validator(mode='after')
    def _compiles(self):
        if not self.pattern:
            raise ValueError('pattern must not be empty')
        try:
            re.compile(self.pattern, regex_flags(self.flags))
        except re.error as e:
            raise ValueError(f'Invalid regex {self.pattern!r}: {e}') from e
        return self


class SavedFilter(_FilterBase):
    """A named group of filters, combined with AND unless combine='or'."""

    type: Literal['saved'] = 'saved'
    filters: list['Filter'] = Field(default_factory=list)
    combine: Literal['and', 'or'] = 'and'

    @model_validator(mode='after')
    def _acyclic(self):
        _check_no_cycle(self, frozenset())
        return self


def _check_no_cycle(node: 'Filter', ancestors: frozenset[str]):
    if not isinstance(node, SavedFilter):
        return
    if node.id in ancestors:
        raise ValueError(f'Saved filter {node.id} contains itself')
    inner_ancestors = ancestors | {node.id}
    for inner in node.filters:
        _check_no_cycle(inner, inner_ancestors)


Filter = Annotated[
    Union[LogLevelFilter, SourceFilter, TimestampFilter, TextFilter, RegexFilter, SavedFilter],
    Field(discriminator='type'),
]

SavedFilter.model_rebuild()


class FilterPreset(BaseModel):
    """A named, persisted filter configuration."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    filters: list[Filter] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_used: datetime | None = None

    def to_cli(self, colorize: bool = False) -> str:
        title = f'\033[1m{self.name}\033[0m' if colorize else self.name
        used = self.last_used.isoformat() if self.last_used else 'never'
        lines = [f'{title}  ({self.id})', f'  created: {self.created_at.isoformat()}  last used: {used}']
        for f in self.filters:
            state = 'on' if f.enabled else 'off'
            lines.append(f'  - [{state}] {f.type} {f.name or f.id}')
        return '\n'.join(lines)


# ============================================================================
# Query results
# ============================================================================


class EntriesResponse(BaseModel):
    """A page of entries matching a filter set."""

    total: int = Field(..., description='Number of matching entries')
    offset: int = 0
    entries: list[LogEntry] = Field(default_factory=list)
    store_version: int = 0

    def to_cli(self, colorize: bool = False) -> str:
        RED = '\033[31m'
        YELLOW = '\033[33m'
        GREY = '\033[90m'
        RESET = '\033[0m'

        lines = []
        for entry in self.entries:
            ts = entry.timestamp.isoformat() if entry.timestamp else '-'
            level = entry.level or '-'
            source = f'[{entry.source}] ' if entry.source else ''
            text = f'{ts} {level:<8} {source}{entry.display_message}'
            if colorize:
                cls = entry.severity_class
                if cls == 'error':
                    text = f'{RED}{text}{RESET}'
                elif cls == 'warning':
                    text = f'{YELLOW}{text}{RESET}'
                text = f'{GREY}{entry.id}{RESET} {text}'
            else:
                text = f'{entry.id} {text}'
            lines.append(text)
        lines.append(f'{len(self.entries)} of {self.total} matching entries')
        return '\n'.join(lines)


class TimelineDataPoint(BaseModel):
    timestamp: datetime = Field(..., description='Bucket start (UTC)')
    count: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    debug_count: int = 0
    other_count: int = 0
    sources: dict[str, int] = Field(default_factory=dict)


class AggregatedTimelineData(BaseModel):
    """Dense, epoch-aligned timeline buckets plus totals."""

    points: list[TimelineDataPoint] = Field(default_factory=list)
    zoom_level: ZoomLevel
    bucket_width_ms: int
    max_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    total_logs: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    debug_count: int = 0
    other_count: int = 0
    condition: str | None = Field(None, example='bucket_width_widened')

    def to_cli(self, colorize: bool = False, width: int = 50) -> str:
        RED = '\033[31m'
        RESET = '\033[0m'

        lines = [
            f'Timeline ({self.zoom_level.value}, bucket {self.bucket_width_ms:,} ms): '
            f'{self.total_logs:,} entries, {self.error_count:,} errors, {self.warning_count:,} warnings'
        ]
        if self.condition:
            lines.append(f'Note: {self.condition}')
        for point in self.points:
            bar_len = round(point.count / self.max_count * width) if self.max_count else 0
            bar = '#' * bar_len
            if colorize and point.error_count:
                bar = f'{RED}{bar}{RESET}'
            lines.append(f'{point.timestamp.isoformat()} {point.count:>8,} {bar}')
        return '\n'.join(lines)


class CountItem(BaseModel):
    name: str
    count: int


class StatisticalSummary(BaseModel):
    """Aggregate statistics over a set of entries."""

    total_logs: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    debug_count: int = 0
    other_count: int = 0
    unparsed_count: int = Field(0, description='Raw-only entries without a timestamp')
    start_time: datetime | None = None
    end_time: datetime | None = None
    levels: dict[str, int] = Field(default_factory=dict)
    top_sources: list[CountItem] = Field(default_factory=list)
    top_errors: list[CountItem] = Field(default_factory=list)
    hourly_distribution: list[int] = Field(default_factory=lambda: [0] * 24)
    weekday_distribution: list[int] = Field(default_factory=lambda: [0] * 7, description='Monday first')

    def to_cli(self, colorize: bool = False) -> str:
        BOLD = '\033[1m'
        RESET = '\033[0m'

        lines = [f'{BOLD}Summary{RESET}' if colorize else 'Summary']
        lines.append(f'Entries: {self.total_logs:,} ({self.unparsed_count:,} without timestamp)')
        if self.start_time and self.end_time:
            lines.append(f'Range: {self.start_time.isoformat()} .. {self.end_time.isoformat()}')
        lines.append(
            f'Errors: {self.error_count:,}  Warnings: {self.warning_count:,}  Info: {self.info_count:,}  '
            f'Debug: {self.debug_count:,}  Other: {self.other_count:,}'
        )
        if self.top_sources:
            lines.append('Top sources:')
            lines.extend(f'  {item.count:>8,}  {item.name}' for item in self.top_sources)
        if self.top_errors:
            lines.append('Top errors:')
            lines.extend(f'  {item.count:>8,}  {item.name}' for item in self.top_errors)
        return '\n'.join(lines)


# ============================================================================
# Anomalies
# ============================================================================


class Anomaly(BaseModel):
    """A detected irregularity, referencing the entries that constitute it."""

    id: str = Field(..., example='rate-3')
    title: str
    description: str = ''
    severity: Severity
    affected_entry_ids: list[str] = Field(default_factory=list)
    strategy: str = Field(
        ..., example='rate', description='rate, content, sequence, security, correlation or burst'
    )
    timestamp: datetime | None = None
    sources: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator('affected_entry_ids')
    @classmethod
    def _unique_ids(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class ScorePoint(BaseModel):
    timestamp: datetime
    score: float


class AnomalyReport(BaseModel):
    """Merged output of all anomaly strategies for one store snapshot."""

    anomalies: list[Anomaly] = Field(default_factory=list)
    by_strategy: dict[str, int] = Field(default_factory=dict)
    entry_severity: dict[str, Severity] = Field(default_factory=dict)
    scores: list[ScorePoint] = Field(default_factory=list, description='Rate deviation per window')
    store_version: int = 0
    condition: str | None = Field(None, example='stale')
    time: float = 0.0

    @property
    def total(self) -> int:
        return len(self.anomalies)

    def to_cli(self, colorize: bool = False) -> str:
        colors = {
            Severity.LOW: '\033[36m',
            Severity.MEDIUM: '\033[33m',
            Severity.HIGH: '\033[31m',
            Severity.CRITICAL: '\033[1;31m',
        }
        RESET = '\033[0m'

        lines = [f'Anomalies: {self.total} ({", ".join(f"{k}={v}" for k, v in self.by_strategy.items())})']
        if self.condition:
            lines.append(f'Note: {self.condition}')
        for anomaly in self.anomalies:
            sev = anomaly.severity.value.upper()
            if colorize:
                sev = f'{colors[anomaly.severity]}{sev}{RESET}'
            when = anomaly.timestamp.isoformat() if anomaly.timestamp else '-'
            lines.append(f'[{sev}] {when} {anomaly.title} ({len(anomaly.affected_entry_ids)} entries)')
            if anomaly.description:
                lines.append(f'    {anomaly.description}')
        return '\n'.join(lines)


# ============================================================================
# API requests
# ============================================================================


class IngestRequest(BaseModel):
    path: str = Field(..., example='/var/log/app.log', description='File to ingest')
    format: str | None = Field(None, example='generic', description='Line format; detected when omitted')
    wait: bool = Field(False, description='Block until the file is fully processed')


class QueryRequest(BaseModel):
    filters: list[dict[str, Any]] | None = Field(
        None,
        example=[{'type': 'logLevel', 'levels': ['ERROR']}],
        description='Filters (AND); the active filter set when omitted',
    )
    offset: int = Field(0, ge=0)
    limit: int | None = Field(100, ge=1, le=100_000)


class RemoveRequest(BaseModel):
    ids: list[str] = Field(default_factory=list, description='Entry ids to remove')
    filters: list[dict[str, Any]] = Field(default_factory=list, description='Remove entries matching all filters')


class TimelineRequest(BaseModel):
    zoom: ZoomLevel = ZoomLevel.HOUR
    start: datetime | None = None
    end: datetime | None = None
    filters: list[dict[str, Any]] | None = Field(None, description='The active filter set when omitted')


class AnomalyRequest(BaseModel):
    filters: list[dict[str, Any]] | None = Field(None, description='The active filter set when omitted')
    rules: list[dict[str, Any]] = Field(default_factory=list, description='Sequence rules')
    sensitivity: float | None = Field(None, gt=0)


class PresetRequest(BaseModel):
    name: str = Field(..., example='errors only')
    filters: list[dict[str, Any]] = Field(default_factory=list)
    id: str | None = Field(None, description='Overwrite this preset instead of creating one')
