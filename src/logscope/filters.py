"""Filter validation and evaluation.

Only enabled filters take part; enabled filters at the same level combine
with AND. A saved filter evaluates its own enabled children with its declared
rule (AND unless ``combine='or'``) and passes everything when none of its
children are enabled.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from functools import lru_cache
from typing import TYPE_CHECKING, Any, assert_never

from pydantic import TypeAdapter, ValidationError

from logscope.errors import FilterValidationError
from logscope.models import (
    Filter,
    LogEntry,
    LogLevelFilter,
    RegexFilter,
    SavedFilter,
    SourceFilter,
    TextFilter,
    TimestampFilter,
    regex_flags,
    to_epoch_ms,
)


if TYPE_CHECKING:
    from logscope.store import Snapshot

logger = logging.getLogger(__name__)

FILTER_ADAPTER: TypeAdapter = TypeAdapter(Filter)
FILTER_LIST_ADAPTER: TypeAdapter = TypeAdapter(list[Filter])


def _error_text(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ()))
        parts.append(f'{loc}: {err["msg"]}' if loc else err['msg'])
    return '; '.join(parts)


def parse_filter(data: Any) -> Filter:
    """Build a validated filter from a dict (camelCase or snake_case keys) or a filter instance.

    Raises:
        FilterValidationError: The definition is invalid
    """
    if isinstance(data, (LogLevelFilter, SourceFilter, TimestampFilter, TextFilter, RegexFilter, SavedFilter)):
        return data
    try:
        return FILTER_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise FilterValidationError(_error_text(e)) from e


def parse_filters(data: Iterable[Any]) -> list[Filter]:
    filters = [parse_filter(item) for item in data]
    ids = [f.id for f in filters]
    if len(ids) != len(set(ids)):
        raise FilterValidationError('filter ids must be unique')
    return filters


@lru_cache(maxsize=256)
def compile_pattern(pattern: str, flags: str) -> re.Pattern:
    return re.compile(pattern, regex_flags(flags))


def _field_values(entry: LogEntry, fields: Sequence[str]) -> Iterable[str]:
    for name in fields:
        if name == 'message':
            yield entry.display_message
        elif name == 'raw':
            yield entry.raw
        elif name == 'source':
            if entry.source:
                yield entry.source
        elif name == 'level':
            if entry.level:
                yield entry.level


def matches_filter(f: Filter, entry: LogEntry) -> bool:
    """Evaluate one filter against one entry, ignoring its enabled flag."""
    if isinstance(f, LogLevelFilter):
        return entry.level is not None and entry.level in f.levels
    elif isinstance(f, SourceFilter):
        return entry.source is not None and entry.source in f.sources
    elif isinstance(f, TimestampFilter):
        return entry.timestamp is not None and f.range.contains(entry.timestamp)
    elif isinstance(f, TextFilter):
        if f.case_sensitive:
            return any(f.text in value for value in _field_values(entry, f.fields))
        needle = f.text.casefold()
        return any(needle in value.casefold() for value in _field_values(entry, f.fields))
    elif isinstance(f, RegexFilter):
        regex = compile_pattern(f.pattern, f.flags)
        return any(regex.search(value) for value in _field_values(entry, f.fields))
    elif isinstance(f, SavedFilter):
        inner = [child for child in f.filters if child.enabled]
        if not inner:
            return True
        if f.combine == 'or':
            return any(matches_filter(child, entry) for child in inner)
        return all(matches_filter(child, entry) for child in inner)
    else:
        assert_never(f)


class FilterEngine:
    """Evaluates a list of filters against entries.

    Args:
        filters: Filter instances or dicts; validated on construction
    """

    def __init__(self, filters: Iterable[Any] = ()):
        self.filters: list[Filter] = parse_filters(filters)
        self.active: list[Filter] = [f for f in self.filters if f.enabled]

    def __bool__(self) -> bool:
        return bool(self.active)

    def matches(self, entry: LogEntry) -> bool:
        return all(matches_filter(f, entry) for f in self.active)

    def apply(self, entries: Iterable[LogEntry]) -> list[LogEntry]:
        if not self.active:
            return list(entries)
        return [e for e in entries if self.matches(e)]

    def filter_ids(self, snapshot: 'Snapshot', candidate_ids: Iterable[str] | None = None) -> list[str]:
        """Ids of the snapshot entries passing every enabled filter.

        Top-level level, source and timestamp filters are answered from the
        indexes first; remaining filters are evaluated only on that candidate set.
        Result order follows the snapshot.
        """
        candidates: set[str] | None = set(candidate_ids) if candidate_ids is not None else None
        residual: list[Filter] = []

        for f in self.active:
            if isinstance(f, LogLevelFilter):
                ids = snapshot.index.ids_for_levels(f.levels)
            elif isinstance(f, SourceFilter):
                ids = snapshot.index.ids_for_sources(f.sources)
            elif isinstance(f, TimestampFilter):
                ids = set(snapshot.index.ids_in_range(to_epoch_ms(f.range.start), to_epoch_ms(f.range.end)))
                # Millisecond keys can admit an entry a few microseconds outside the range
                residual.append(f)
            else:
                residual.append(f)
                continue
            candidates = ids if candidates is None else candidates & ids
            if not candidates:
                return []

        if candidates is None:
            pool: Iterable[LogEntry] = snapshot
        else:
            pool = (e for e in snapshot if e.id in candidates)

        result = [e.id for e in pool if all(matches_filter(f, e) for f in residual)]
        logger.debug(f'[FILTER] {len(self.active)} filters matched {len(result)} of {len(snapshot)} entries')
        return result
