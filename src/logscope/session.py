"""AnalysisSession: the query surface used by the CLI and the HTTP API."""

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from time import time
from typing import Any

from logscope import prometheus as prom
from logscope.anomaly import AnomalyDetector, SequenceRule, default_strategies
from logscope.config import Settings, load_settings
from logscope.filters import FilterEngine
from logscope.models import (
    AggregatedTimelineData,
    AnomalyReport,
    EntriesResponse,
    FileMetadata,
    LogEntry,
    StatisticalSummary,
    TimeSelection,
    ZoomLevel,
)
from logscope.presets import FilterSet, PresetStore
from logscope.processing import Coordinator
from logscope.stats import summarize
from logscope.store import EntryStore, StoreChange
from logscope.timeline import TimelineAggregator


logger = logging.getLogger(__name__)


class AnalysisSession:
    """Owns the store, the coordinator and the saved presets of one analysis.

    Query methods take an explicit filter list; when omitted, the session's
    active filter set is used. Every query runs against a single snapshot.
    """

    def __init__(self, settings: Settings | None = None, presets: PresetStore | None = None):
        self.settings = settings or load_settings()
        self.store = EntryStore()
        self.coordinator = Coordinator(self.store, self.settings)
        self.filter_set = FilterSet()
        self.presets = presets or PresetStore()
        self.aggregator = TimelineAggregator(self.settings.max_timeline_buckets)
        self._anomaly_lock = threading.Lock()
        self._anomaly_cancel: threading.Event | None = None
        self.store.subscribe(self._on_store_change)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.cancel_anomalies()
        self.coordinator.shutdown()
        self.store.close()

    def _on_store_change(self, change: StoreChange):
        prom.entries_in_store.set(len(self.store))

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def ingest(
        self,
        paths: Iterable[str],
        format_name: str | None = None,
        wait: bool = True,
        timeout: float | None = None,
    ) -> list[str]:
        """Submit files for processing; by default block until all are done."""
        file_ids = [self.coordinator.submit(path, format_name) for path in paths]
        if wait:
            self.coordinator.wait(file_ids, timeout=timeout)
        return file_ids

    def wait(self, timeout: float | None = None) -> bool:
        return self.coordinator.wait(timeout=timeout)

    def files(self) -> list[FileMetadata]:
        return self.coordinator.files()

    def cancel_file(self, file_id: str) -> bool:
        return self.coordinator.cancel(file_id)

    def purge_file(self, file_id: str) -> int:
        """Cancel a file if needed, drop all its entries and forget it."""
        self.coordinator.cancel(file_id)
        self.store.flush()
        removed = self.store.purge_file(file_id)
        self.coordinator.forget(file_id)
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _engine(self, filters: Sequence[Any] | None) -> FilterEngine:
        return FilterEngine(self.filter_set.filters if filters is None else filters)

    def matching_entries(self, filters: Sequence[Any] | None = None) -> tuple[int, list[LogEntry]]:
        snapshot = self.store.snapshot()
        engine = self._engine(filters)
        if not engine:
            return snapshot.version, list(snapshot)
        return snapshot.version, snapshot.select(engine.filter_ids(snapshot))

    def query(
        self, filters: Sequence[Any] | None = None, offset: int = 0, limit: int | None = 100
    ) -> EntriesResponse:
        start_time = time()
        try:
            version, entries = self.matching_entries(filters)
        except ValueError:
            prom.record_filter_request('invalid', time() - start_time)
            raise
        entries.sort(key=LogEntry.sort_key)
        page = entries[offset : offset + limit] if limit is not None else entries[offset:]
        prom.record_filter_request('success', time() - start_time)
        return EntriesResponse(total=len(entries), offset=offset, entries=page, store_version=version)

    def timeline(
        self,
        zoom: ZoomLevel | str = ZoomLevel.MINUTE,
        selection: TimeSelection | None = None,
        filters: Sequence[Any] | None = None,
    ) -> AggregatedTimelineData:
        start_time = time()
        _, entries = self.matching_entries(filters)
        result = self.aggregator.aggregate(entries, zoom, selection)
        prom.record_timeline_request(result.zoom_level.value, time() - start_time)
        return result

    def summary(self, filters: Sequence[Any] | None = None) -> StatisticalSummary:
        _, entries = self.matching_entries(filters)
        return summarize(entries)

    def anomalies(
        self,
        filters: Sequence[Any] | None = None,
        rules: Sequence[SequenceRule] = (),
        sensitivity: float | None = None,
    ) -> AnomalyReport:
        """Run anomaly detection. A newer call cancels one still in progress."""
        settings = self.settings
        if sensitivity is not None:
            settings = replace(settings, anomaly_sensitivity=sensitivity)
        detector = AnomalyDetector(default_strategies(settings, rules))
        cancel = threading.Event()
        with self._anomaly_lock:
            if self._anomaly_cancel is not None:
                self._anomaly_cancel.set()
            self._anomaly_cancel = cancel
        try:
            return detector.run(self.store, cancel=cancel, engine=self._engine(filters))
        finally:
            with self._anomaly_lock:
                if self._anomaly_cancel is cancel:
                    self._anomaly_cancel = None

    def cancel_anomalies(self) -> bool:
        with self._anomaly_lock:
            if self._anomaly_cancel is None:
                return False
            self._anomaly_cancel.set()
            return True

    # ------------------------------------------------------------------
    # Entry removal
    # ------------------------------------------------------------------

    def remove_entries(self, entry_ids: Iterable[str]) -> int:
        return self.store.remove_entries(entry_ids)

    def remove_matching(self, filters: Sequence[Any]) -> int:
        return self.store.remove_by_filters(filters)

    def undo_removal(self) -> int:
        return self.store.undo_removal()

    def subscribe(self, callback: Callable[[StoreChange], None]) -> Callable[[], None]:
        return self.store.subscribe(callback)
