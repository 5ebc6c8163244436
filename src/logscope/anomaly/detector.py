"""Runs the anomaly strategies over a store snapshot and merges their output."""

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from functools import reduce
from time import time
from typing import TYPE_CHECKING

from logscope import prometheus as prom
from logscope.config import Settings
from logscope.errors import CancelledError, StaleSnapshotError
from logscope.models import Anomaly, AnomalyReport, LogEntry, ScorePoint, Severity

from .base import AnomalyStrategy
from .burst import ErrorBurstStrategy
from .content import ContentClusterStrategy
from .correlation import CrossFileCorrelationStrategy
from .rate import RateAnomalyStrategy
from .security import SecurityKeywordStrategy
from .sequence import SequenceRule, SequenceRuleStrategy


if TYPE_CHECKING:
    from logscope.filters import FilterEngine
    from logscope.store import EntryStore

logger = logging.getLogger(__name__)

STRATEGY_ORDER = ('rate', 'content', 'sequence', 'security', 'correlation', 'burst')


def highest_severity(anomalies: Iterable[Anomaly]) -> Anomaly | None:
    """The most severe anomaly; on a tie the one found first wins."""
    return reduce(lambda best, a: a if best is None or a.severity.rank > best.severity.rank else best, anomalies, None)


def resolve_entry_severity(anomalies: Iterable[Anomaly]) -> dict[str, Anomaly]:
    """Map every affected entry id to the most severe anomaly referencing it.

    Ties keep the anomaly that came first in detection order.
    """
    best: dict[str, Anomaly] = {}
    for anomaly in anomalies:
        for entry_id in anomaly.affected_entry_ids:
            current = best.get(entry_id)
            if current is None or anomaly.severity.rank > current.severity.rank:
                best[entry_id] = anomaly
    return best


def default_strategies(
    settings: Settings | None = None,
    rules: Sequence[SequenceRule] = (),
    window: timedelta = timedelta(hours=1),
) -> list[AnomalyStrategy]:
    sensitivity = settings.anomaly_sensitivity if settings else 0.7
    return [
        RateAnomalyStrategy(window=window, sensitivity=sensitivity),
        ContentClusterStrategy(),
        SequenceRuleStrategy(rules),
        SecurityKeywordStrategy(),
        CrossFileCorrelationStrategy(),
        ErrorBurstStrategy(window=window),
    ]


def _strategy_rank(strategy: AnomalyStrategy) -> int:
    try:
        return STRATEGY_ORDER.index(strategy.name)
    except ValueError:
        return len(STRATEGY_ORDER)


class AnomalyDetector:
    """Runs independent strategies concurrently over the same entries.

    Results are always merged in STRATEGY_ORDER (rate, content, sequence,
    then the security, correlation and burst checks), no matter which
    strategy finishes first.
    """

    def __init__(self, strategies: Sequence[AnomalyStrategy] | None = None, max_workers: int = 3):
        chosen = list(strategies) if strategies is not None else default_strategies()
        self.strategies = sorted(chosen, key=_strategy_rank)
        self.max_workers = max(1, max_workers)

    def detect_entries(self, entries: Iterable[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        """Run every strategy and return the merged anomalies.

        Raises:
            CancelledError: cancel was set during the run
        """
        ordered = sorted(entries, key=LogEntry.sort_key)
        if not self.strategies:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.strategies))) as executor:
            futures = [executor.submit(s.detect, ordered, cancel) for s in self.strategies]
            results = [future.result() for future in futures]
        merged = []
        for strategy, found in zip(self.strategies, results):
            logger.debug(f'[ANOMALY] {strategy.name}: {len(found)} anomalies')
            merged.extend(found)
        return merged

    def run(
        self,
        store: 'EntryStore',
        cancel: threading.Event | None = None,
        engine: 'FilterEngine | None' = None,
        raise_on_stale: bool = False,
    ) -> AnomalyReport:
        """Detect anomalies over a snapshot of the store.

        When the store changes while detection runs the result is discarded
        and an empty report with ``condition='stale'`` is returned (or
        StaleSnapshotError raised). A cancelled run yields ``condition='cancelled'``.
        """
        start_time = time()
        snapshot = store.snapshot()
        entries = list(snapshot)
        if engine:
            entries = engine.apply(entries)

        try:
            anomalies = self.detect_entries(entries, cancel)
        except CancelledError:
            logger.info(f'[ANOMALY] Run over version {snapshot.version} cancelled')
            prom.record_anomaly_run('cancelled', time() - start_time, [])
            return AnomalyReport(store_version=snapshot.version, condition='cancelled')

        if store.version != snapshot.version:
            logger.info(f'[ANOMALY] Store moved from version {snapshot.version} to {store.version}, discarding')
            prom.record_anomaly_run('stale', time() - start_time, [])
            if raise_on_stale:
                raise StaleSnapshotError(f'store changed during detection (version {snapshot.version})')
            return AnomalyReport(store_version=snapshot.version, condition='stale')

        report = self.build_report(anomalies, entries)
        report.store_version = snapshot.version
        report.time = time() - start_time
        prom.record_anomaly_run('success', report.time, anomalies)
        return report

    def build_report(self, anomalies: list[Anomaly], entries: Sequence[LogEntry]) -> AnomalyReport:
        by_strategy = {s.name: 0 for s in self.strategies}
        for anomaly in anomalies:
            by_strategy[anomaly.strategy] = by_strategy.get(anomaly.strategy, 0) + 1

        entry_severity: dict[str, Severity] = {
            entry_id: anomaly.severity for entry_id, anomaly in resolve_entry_severity(anomalies).items()
        }

        scores = []
        rate = next((s for s in self.strategies if isinstance(s, RateAnomalyStrategy)), None)
        if rate is not None:
            scores = [ScorePoint(timestamp=ts, score=score) for ts, score in rate.window_scores(entries)]

        return AnomalyReport(
            anomalies=anomalies,
            by_strategy=by_strategy,
            entry_severity=entry_severity,
            scores=scores,
        )
