"""Exception hierarchy for logscope."""


class LogscopeError(Exception):
    """Base class for all logscope errors."""


class ParseError(LogscopeError):
    """A single line could not be parsed into a structured entry.

    Always recovered locally: the line is kept as a raw-only entry.
    """

    def __init__(self, message: str, line_number: int | None = None):
        super().__init__(message)
        self.line_number = line_number


class ProcessingError(LogscopeError):
    """A file could not be read or processed as a whole."""

    def __init__(self, message: str, file_id: str | None = None):
        super().__init__(message)
        self.file_id = file_id


class FilterValidationError(LogscopeError, ValueError):
    """A filter definition was rejected at creation time."""


class AggregationError(LogscopeError):
    """Timeline aggregation could not produce buckets."""


class EmptyRangeError(AggregationError):
    """No entry with a timestamp falls inside the requested range."""


class DuplicateEntryError(LogscopeError):
    """An entry id was inserted into the indexes twice."""

    def __init__(self, entry_id: str):
        super().__init__(f'Entry {entry_id} is already indexed')
        self.entry_id = entry_id


class StaleSnapshotError(LogscopeError):
    """The store changed while a read-only computation was running."""


class CancelledError(LogscopeError):
    """A long-running computation was cancelled by its caller."""
