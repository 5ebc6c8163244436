"""File workers and the coordinator that owns their results.

Each file is processed by one worker task on a thread pool. Workers share
no mutable state: they receive a ProcessRequest and report back through an
event queue with PROGRESS, COMPLETED or ERROR events. Every event carries
a per-file sequence number and the entries produced since the previous
event. The coordinator is the only consumer of that queue; it applies each
event once (replays are dropped by sequence number), forwards the entries to
the store, and tracks per-file metadata.
"""

import itertools
import logging
import os
import queue
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from time import time
from typing import assert_never

from logscope import prometheus as prom
from logscope.chunk_reader import ChunkReader, chunk_count
from logscope.config import Settings, load_settings
from logscope.errors import ProcessingError
from logscope.models import FileMetadata, FileStatus, LogEntry
from logscope.parsers import LineParser, get_format, sniff_file
from logscope.store import EntryStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessRequest:
    file_id: str
    path: str
    format: str | None = None


@dataclass(frozen=True)
class ProgressEvent:
    file_id: str
    seq: int
    progress: int  # 0-100
    entries: tuple[LogEntry, ...] = ()


@dataclass(frozen=True)
class CompletedEvent:
    file_id: str
    seq: int
    metadata: FileMetadata
    entries: tuple[LogEntry, ...] = ()


@dataclass(frozen=True)
class ErrorEvent:
    file_id: str
    seq: int
    message: str


WorkerEvent = ProgressEvent | CompletedEvent | ErrorEvent


@dataclass
class _FileStats:
    count: int = 0
    start: datetime | None = None
    end: datetime | None = None
    levels: Counter = field(default_factory=Counter)
    sources: dict[str, None] = field(default_factory=dict)

    def add(self, entries: Iterable[LogEntry]):
        for entry in entries:
            self.count += 1
            if entry.level:
                self.levels[entry.level] += 1
            if entry.source:
                self.sources.setdefault(entry.source, None)
            ts = entry.timestamp
            if ts is not None:
                if self.start is None or ts < self.start:
                    self.start = ts
                if self.end is None or ts > self.end:
                    self.end = ts


def process_file(
    request: ProcessRequest,
    emit: Callable[[WorkerEvent], None],
    settings: Settings,
    cancel: threading.Event | None = None,
):
    """Read, parse and report one file.

    Emits one PROGRESS event per chunk that produced entries, then exactly
    one COMPLETED or ERROR event. When cancelled, stops after the current
    chunk and emits nothing further.
    """
    cancel = cancel or threading.Event()
    seq = itertools.count(1)
    start_time = time()
    parser = None
    size = 0
    try:
        size = os.path.getsize(request.path)
        if request.format:
            fmt = get_format(request.format)
        else:
            fmt = sniff_file(request.path, settings.format_sample_lines)
        logger.debug(f'[INGEST] {request.file_id}: {request.path} ({size:,} bytes, format {fmt.name})')

        reader = ChunkReader(request.path, request.file_id, settings.chunk_size, cancel)
        parser = LineParser(request.file_id, fmt, settings.merge_continuations)
        stats = _FileStats()
        pending: list[LogEntry] = []
        reported_chunks = 0

        def progress() -> int:
            return min(99, reader.bytes_read * 100 // size) if size else 99

        for raw in reader.iter_lines():
            if reader.chunks_read > reported_chunks and pending:
                stats.add(pending)
                emit(ProgressEvent(request.file_id, next(seq), progress(), tuple(pending)))
                pending = []
            reported_chunks = reader.chunks_read
            pending.extend(parser.push(raw.line_number, raw.text))

        if cancel.is_set():
            logger.info(f'[INGEST] {request.file_id}: cancelled at {reader.bytes_read:,} bytes')
            prom.record_file_ingested('cancelled', time() - start_time, reader.bytes_read, parser.parsed, parser.unparsed)
            return

        pending.extend(parser.flush())
        stats.add(pending)
        metadata = FileMetadata(
            id=request.file_id,
            name=request.path,
            size=size,
            type=fmt.name,
            last_modified=int(os.path.getmtime(request.path) * 1000),
            total_chunks=chunk_count(size, settings.chunk_size),
            status=FileStatus.COMPLETED,
            progress=100,
            start_time=stats.start,
            end_time=stats.end,
            log_count=stats.count,
            log_levels=dict(stats.levels),
            sources=list(stats.sources),
            unparsed_lines=parser.unparsed,
        )
        emit(CompletedEvent(request.file_id, next(seq), metadata, tuple(pending)))
        duration = time() - start_time
        prom.record_file_ingested('completed', duration, size, parser.parsed, parser.unparsed)
        logger.debug(f'[INGEST] {request.file_id}: {stats.count:,} entries in {duration:.2f}s')
    except Exception as e:
        logger.error(f'Failed to process {request.path}: {e}')
        prom.record_error('processing_error')
        prom.record_file_ingested(
            'error', time() - start_time, size, parser.parsed if parser else 0, parser.unparsed if parser else 0
        )
        emit(ErrorEvent(request.file_id, next(seq), str(e)))


class Coordinator:
    """Schedules file workers and applies their events.

    Requests travel to a dispatcher thread over one queue; worker events come
    back over another and are applied by a single consumer thread.
    """

    def __init__(self, store: EntryStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or load_settings()
        self._requests: queue.Queue[ProcessRequest | None] = queue.Queue()
        self._events: queue.Queue[WorkerEvent | None] = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=self.settings.max_workers, thread_name_prefix='logscope-worker')
        self._files: dict[str, FileMetadata] = {}
        self._applied: dict[str, int] = {}
        self._cancel: dict[str, threading.Event] = {}
        self._cond = threading.Condition()
        self._ids = itertools.count(1)
        self._closed = False

        self._dispatcher = threading.Thread(target=self._dispatch_loop, name='logscope-dispatcher', daemon=True)
        self._consumer = threading.Thread(target=self._event_loop, name='logscope-events', daemon=True)
        self._dispatcher.start()
        self._consumer.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit(self, path: str | os.PathLike, format_name: str | None = None, file_id: str | None = None) -> str:
        """Queue a file for processing.

        Returns:
            The file id (f1, f2, ... unless given)

        Raises:
            ProcessingError: path is not a readable file
            ValueError: unknown format name or duplicate file id
        """
        if self._closed:
            raise ProcessingError('coordinator is shut down')
        path = os.path.abspath(path)
        if not os.path.isfile(path):
            raise ProcessingError(f'Not a file: {path}')
        if format_name:
            get_format(format_name)

        stat = os.stat(path)
        with self._cond:
            if file_id is None:
                file_id = f'f{next(self._ids)}'
                while file_id in self._files:
                    file_id = f'f{next(self._ids)}'
            elif file_id in self._files:
                raise ValueError(f'file id {file_id} already in use')
            self._files[file_id] = FileMetadata(
                id=file_id,
                name=path,
                size=stat.st_size,
                type=format_name or 'auto',
                last_modified=int(stat.st_mtime * 1000),
                total_chunks=chunk_count(stat.st_size, self.settings.chunk_size),
            )
            self._cancel[file_id] = threading.Event()
        self._requests.put(ProcessRequest(file_id, path, format_name))
        return file_id

    def _dispatch_loop(self):
        while True:
            request = self._requests.get()
            if request is None:
                return
            cancel = self._cancel[request.file_id]
            if cancel.is_set():
                continue
            self._executor.submit(self._run_worker, request, cancel)

    def _run_worker(self, request: ProcessRequest, cancel: threading.Event):
        prom.active_workers.inc()
        try:
            process_file(request, self._events.put, self.settings, cancel)
        finally:
            prom.active_workers.dec()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _event_loop(self):
        while True:
            event = self._events.get()
            if event is None:
                return
            self.handle_event(event)

    def handle_event(self, event: WorkerEvent) -> bool:
        """Apply a worker event once.

        Returns:
            False when the event was dropped (unknown file, file already in a
            terminal state, or a sequence number that was already applied)
        """
        with self._cond:
            meta = self._files.get(event.file_id)
            if meta is None:
                logger.warning(f'Dropping event for unknown file {event.file_id}')
                return False
            if meta.status.is_terminal or event.seq <= self._applied.get(event.file_id, 0):
                return False
            self._applied[event.file_id] = event.seq

            if isinstance(event, ProgressEvent):
                self.store.append(event.entries)
                meta = meta.model_copy(
                    update={'status': FileStatus.PROCESSING, 'progress': max(meta.progress, event.progress)}
                )
            elif isinstance(event, CompletedEvent):
                self.store.append(event.entries)
                meta = event.metadata.model_copy(update={'status': FileStatus.COMPLETED, 'progress': 100})
            elif isinstance(event, ErrorEvent):
                meta = meta.model_copy(update={'status': FileStatus.ERROR, 'error': event.message})
            else:
                assert_never(event)

            self._files[event.file_id] = meta
            self._cond.notify_all()
        return True

    # ------------------------------------------------------------------
    # Control and queries
    # ------------------------------------------------------------------

    def cancel(self, file_id: str) -> bool:
        """Stop processing a file. Entries already ingested are kept."""
        with self._cond:
            meta = self._files.get(file_id)
            if meta is None or meta.status.is_terminal:
                return False
            self._cancel[file_id].set()
            self._files[file_id] = meta.model_copy(update={'status': FileStatus.CANCELLED})
            self._cond.notify_all()
        logger.info(f'[INGEST] Cancelled {file_id}')
        return True

    def forget(self, file_id: str) -> bool:
        """Drop the metadata of a file in a terminal state."""
        with self._cond:
            meta = self._files.get(file_id)
            if meta is None or not meta.status.is_terminal:
                return False
            del self._files[file_id]
            self._applied.pop(file_id, None)
            self._cancel.pop(file_id, None)
        return True

    def wait(self, file_ids: Iterable[str] | None = None, timeout: float | None = None) -> bool:
        """Block until the given files (all by default) reach a terminal state.

        Returns:
            True if they did before the timeout; entries are then visible in snapshots
        """
        with self._cond:
            ids = list(file_ids) if file_ids is not None else list(self._files)

            def done() -> bool:
                return all(self._files[i].status.is_terminal for i in ids if i in self._files)

            finished = self._cond.wait_for(done, timeout=timeout)
        if finished:
            self.store.flush()
        return finished

    def get(self, file_id: str) -> FileMetadata | None:
        with self._cond:
            return self._files.get(file_id)

    def files(self) -> list[FileMetadata]:
        with self._cond:
            return list(self._files.values())

    def shutdown(self):
        if self._closed:
            return
        self._closed = True
        with self._cond:
            for event in self._cancel.values():
                event.set()
        self._requests.put(None)
        self._dispatcher.join()
        self._executor.shutdown(wait=True)
        self._events.put(None)
        self._consumer.join()
