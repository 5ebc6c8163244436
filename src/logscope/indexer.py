"""Derived lookup indexes over log entries.

The time index is keyed by the entry timestamp in epoch milliseconds, the
finest resolution available, independent of any display zoom. The level,
source and file indexes map discrete values to ordered id lists. All of them
are rebuilt-able from the entries alone and are never a source of truth.
"""

import bisect
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from logscope.errors import DuplicateEntryError
from logscope.models import LogEntry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexView:
    """Immutable copy of the indexes, handed out with store snapshots."""

    time: Mapping[int, tuple[str, ...]]
    time_keys: tuple[int, ...]
    level: Mapping[str, tuple[str, ...]]
    source: Mapping[str, tuple[str, ...]]
    file: Mapping[str, tuple[str, ...]]

    def ids_in_range(self, start_ms: int, end_ms: int) -> list[str]:
        """Ids of every timestamped entry with start_ms <= ts <= end_ms, in time order."""
        lo = bisect.bisect_left(self.time_keys, start_ms)
        hi = bisect.bisect_right(self.time_keys, end_ms)
        ids = []
        for key in self.time_keys[lo:hi]:
            ids.extend(self.time[key])
        return ids

    def ids_for_levels(self, levels: Iterable[str]) -> set[str]:
        ids = set()
        for level in levels:
            ids.update(self.level.get(level, ()))
        return ids

    def ids_for_sources(self, sources: Iterable[str]) -> set[str]:
        ids = set()
        for source in sources:
            ids.update(self.source.get(source, ()))
        return ids


class IndexBuilder:
    """Maintains the time, level, source and file indexes.

    Batches are applied atomically: a batch that would index an id twice is
    rejected as a whole with DuplicateEntryError before anything changes.
    """

    def __init__(self):
        self.time: dict[int, list[str]] = {}
        self.level: dict[str, list[str]] = {}
        self.source: dict[str, list[str]] = {}
        self.file: dict[str, list[str]] = {}
        self._time_keys: list[int] = []
        self._ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._ids

    def add_batch(self, entries: Iterable[LogEntry]) -> int:
        """Index a batch of new entries.

        Returns:
            Number of entries indexed

        Raises:
            DuplicateEntryError: An id is already indexed or repeats within the batch
        """
        batch = list(entries)
        seen = set()
        for entry in batch:
            if entry.id in self._ids or entry.id in seen:
                raise DuplicateEntryError(entry.id)
            seen.add(entry.id)

        for entry in batch:
            self._ids.add(entry.id)
            self.file.setdefault(entry.file_id, []).append(entry.id)
            if entry.level:
                self.level.setdefault(entry.level, []).append(entry.id)
            if entry.source:
                self.source.setdefault(entry.source, []).append(entry.id)
            ts = entry.timestamp_ms
            if ts is not None:
                bucket = self.time.get(ts)
                if bucket is None:
                    bucket = self.time[ts] = []
                    bisect.insort(self._time_keys, ts)
                bucket.append(entry.id)
        return len(batch)

    def remove(self, entries: Iterable[LogEntry]) -> int:
        """Drop entries from every index. Unknown ids are ignored."""
        removed = [e for e in entries if e.id in self._ids]
        if not removed:
            return 0
        gone = {e.id for e in removed}
        self._ids -= gone

        def prune(index: dict, key):
            ids = index.get(key)
            if ids is None:
                return
            kept = [i for i in ids if i not in gone]
            if kept:
                index[key] = kept
            else:
                del index[key]
                if index is self.time:
                    pos = bisect.bisect_left(self._time_keys, key)
                    del self._time_keys[pos]

        for key in {e.file_id for e in removed}:
            prune(self.file, key)
        for key in {e.level for e in removed if e.level}:
            prune(self.level, key)
        for key in {e.source for e in removed if e.source}:
            prune(self.source, key)
        for key in {e.timestamp_ms for e in removed if e.timestamp is not None}:
            prune(self.time, key)
        return len(removed)

    def freeze(self) -> IndexView:
        def frozen(index: dict) -> Mapping:
            return MappingProxyType({k: tuple(v) for k, v in index.items()})

        return IndexView(
            time=frozen(self.time),
            time_keys=tuple(self._time_keys),
            level=frozen(self.level),
            source=frozen(self.source),
            file=frozen(self.file),
        )

    def verify(self, entries: Mapping[str, LogEntry]) -> list[str]:
        """Check the indexes against the entries they were derived from.

        Returns:
            Human-readable descriptions of every violation (empty when consistent)
        """
        problems = []
        timed = {eid for eid, e in entries.items() if e.timestamp is not None}

        seen: dict[str, int] = {}
        for key, ids in self.time.items():
            for eid in ids:
                if eid in seen:
                    problems.append(f'{eid} appears in time buckets {seen[eid]} and {key}')
                seen[eid] = key
                entry = entries.get(eid)
                if entry is None:
                    problems.append(f'time bucket {key} references missing entry {eid}')
                elif entry.timestamp_ms != key:
                    problems.append(f'{eid} is in bucket {key} but has timestamp {entry.timestamp_ms}')
        if set(seen) != timed:
            missing = timed - set(seen)
            extra = set(seen) - timed
            if missing:
                problems.append(f'{len(missing)} timestamped entries missing from the time index')
            if extra:
                problems.append(f'{len(extra)} time index ids have no timestamped entry')

        for name, index in (('level', self.level), ('source', self.source), ('file', self.file)):
            for key, ids in index.items():
                for eid in ids:
                    if eid not in entries:
                        problems.append(f'{name} index {key!r} references missing entry {eid}')

        if sorted(self.time) != self._time_keys:
            problems.append('time keys out of order')

        if problems:
            logger.warning(f'[INDEX] {len(problems)} consistency problems found')
        return problems
