"""The shared entry store.

All mutations are executed by a single writer thread that drains an
operation queue, so entries and their indexes always change together and
in order. Readers never see the live dictionaries: ``snapshot()`` returns an
immutable, versioned copy that stays valid while later batches arrive.
"""

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import Future
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType

from logscope.errors import LogscopeError
from logscope.indexer import IndexBuilder, IndexView
from logscope.models import LogEntry


logger = logging.getLogger(__name__)

MAX_REMOVAL_HISTORY = 10


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of the store at one version."""

    version: int
    entries: Mapping[str, LogEntry]
    index: IndexView

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.entries.values())

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self.entries

    def get(self, entry_id: str) -> LogEntry | None:
        return self.entries.get(entry_id)

    def select(self, ids: Iterable[str]) -> list[LogEntry]:
        return [self.entries[i] for i in ids if i in self.entries]

    def for_file(self, file_id: str) -> list[LogEntry]:
        return self.select(self.index.file.get(file_id, ()))


@dataclass(frozen=True)
class StoreChange:
    """Notification passed to subscribers after every applied mutation."""

    version: int
    kind: str  # added, removed, restored, purged
    count: int


@dataclass(frozen=True)
class RemovalRecord:
    entries: tuple[LogEntry, ...]


class EntryStore:
    """Owns every LogEntry of a session together with its indexes."""

    def __init__(self):
        self._entries: dict[str, LogEntry] = {}
        self._index = IndexBuilder()
        self._version = 0
        self._lock = threading.Lock()
        self._ops: queue.Queue = queue.Queue()
        self._writer: threading.Thread | None = None
        self._writer_lock = threading.Lock()
        self._subscribers: list[Callable[[StoreChange], None]] = []
        self._removals: deque[RemovalRecord] = deque(maxlen=MAX_REMOVAL_HISTORY)
        self._snapshot: Snapshot | None = None
        self._failures: list[Exception] = []
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @property
    def can_undo_removal(self) -> bool:
        with self._lock:
            return bool(self._removals)

    def get(self, entry_id: str) -> LogEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    # ------------------------------------------------------------------
    # Writer thread
    # ------------------------------------------------------------------

    def _ensure_writer(self):
        with self._writer_lock:
            if self._writer is None:
                self._writer = threading.Thread(target=self._run_writer, name='logscope-store-writer', daemon=True)
                self._writer.start()

    def _run_writer(self):
        while True:
            item = self._ops.get()
            try:
                if item is None:
                    return
                fn, future = item
                try:
                    result = fn()
                except Exception as e:
                    if future is not None:
                        future.set_exception(e)
                    else:
                        logger.error(f'[STORE] Failed to apply batch: {e}')
                        self._failures.append(e)
                else:
                    if future is not None:
                        future.set_result(result)
            finally:
                self._ops.task_done()

    def _on_writer(self) -> bool:
        return threading.current_thread() is self._writer

    def _submit(self, fn: Callable, wait: bool):
        if self._closed:
            raise LogscopeError('Entry store is closed')
        if self._on_writer():
            # Called from a subscriber: the writer is busy notifying, apply in place
            result = fn()
            return result if wait else None
        self._ensure_writer()
        future = Future() if wait else None
        self._ops.put((fn, future))
        if future is not None:
            return future.result()
        return None

    def flush(self):
        """Block until every queued mutation has been applied.

        Raises:
            LogscopeError: The first failure among fire-and-forget appends
        """
        if not self._on_writer():
            self._ops.join()
        if self._failures:
            failures, self._failures = self._failures, []
            raise failures[0]

    def close(self):
        if self._closed:
            return
        if self._writer is not None:
            self._ops.put(None)
            if not self._on_writer():
                self._writer.join()
        self._closed = True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, entries: Iterable[LogEntry]):
        """Queue a batch for insertion without waiting for it."""
        batch = tuple(entries)
        if batch:
            self._submit(partial(self._apply_add, batch, 'added'), wait=False)

    def add(self, entries: Iterable[LogEntry]) -> int:
        """Insert a batch and wait until it is visible to snapshots."""
        batch = tuple(entries)
        if not batch:
            return 0
        return self._submit(partial(self._apply_add, batch, 'added'), wait=True)

    def remove_entries(self, entry_ids: Iterable[str]) -> int:
        """Remove entries by id. The removal can be undone."""
        ids = tuple(entry_ids)
        return self._submit(partial(self._apply_remove, ids, 'removed', True), wait=True)

    def remove_by_filters(self, filters: Sequence) -> int:
        """Remove every entry matching all enabled filters. The removal can be undone."""
        from logscope.filters import FilterEngine

        engine = FilterEngine(filters)

        def op():
            ids = tuple(e.id for e in self._entries.values() if engine.matches(e))
            return self._apply_remove(ids, 'removed', True)

        return self._submit(op, wait=True)

    def undo_removal(self) -> int:
        """Restore the most recent removal (up to the last ten are kept)."""

        def op():
            with self._lock:
                if not self._removals:
                    return 0
                record = self._removals.pop()
            batch = tuple(e for e in record.entries if e.id not in self._entries)
            if not batch:
                return 0
            return self._apply_add(batch, 'restored')

        return self._submit(op, wait=True)

    def purge_file(self, file_id: str) -> int:
        """Drop every entry of a file. Not recorded in the removal history."""

        def op():
            with self._lock:
                ids = tuple(self._index.file.get(file_id, ()))
                history = [
                    RemovalRecord(tuple(e for e in r.entries if e.file_id != file_id)) for r in self._removals
                ]
                self._removals.clear()
                self._removals.extend(r for r in history if r.entries)
            return self._apply_remove(ids, 'purged', False)

        return self._submit(op, wait=True)

    def _apply_add(self, batch: tuple[LogEntry, ...], kind: str) -> int:
        with self._lock:
            self._index.add_batch(batch)
            for entry in batch:
                self._entries[entry.id] = entry
            self._version += 1
            change = StoreChange(self._version, kind, len(batch))
        self._notify(change)
        return len(batch)

    def _apply_remove(self, ids: tuple[str, ...], kind: str, record: bool) -> int:
        with self._lock:
            removed = [self._entries[i] for i in dict.fromkeys(ids) if i in self._entries]
            if not removed:
                return 0
            self._index.remove(removed)
            for entry in removed:
                del self._entries[entry.id]
            if record:
                self._removals.append(RemovalRecord(tuple(removed)))
            self._version += 1
            change = StoreChange(self._version, kind, len(removed))
        logger.debug(f'[STORE] {kind} {len(removed)} entries (version {change.version})')
        self._notify(change)
        return len(removed)

    # ------------------------------------------------------------------
    # Reads and observers
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Return an immutable view of the current version."""
        with self._lock:
            if self._snapshot is None or self._snapshot.version != self._version:
                self._snapshot = Snapshot(
                    version=self._version,
                    entries=MappingProxyType(dict(self._entries)),
                    index=self._index.freeze(),
                )
            return self._snapshot

    def verify(self) -> list[str]:
        with self._lock:
            return self._index.verify(self._entries)

    def subscribe(self, callback: Callable[[StoreChange], None]) -> Callable[[], None]:
        """Register a change observer.

        Returns:
            A function that unregisters the observer
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, change: StoreChange):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(change)
            except Exception as e:
                logger.error(f'[STORE] Subscriber {callback!r} failed on version {change.version}: {e}')
