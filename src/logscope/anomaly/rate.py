"""Volume and error-rate deviations across fixed time windows."""

import math
import statistics
import threading
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta

from logscope.models import Anomaly, LogEntry, Severity, from_epoch_ms

from .base import AnomalyStrategy, check_cancelled


def severity_for_ratio(ratio: float) -> Severity:
    """Map how far past the threshold a deviation is onto a severity."""
    if ratio < 1.5:
        return Severity.LOW
    if ratio < 2.5:
        return Severity.MEDIUM
    if ratio < 4:
        return Severity.HIGH
    return Severity.CRITICAL


def deviation(value: float, baseline: Sequence[float]) -> float:
    """Signed deviation of value from baseline, in units of max(stdev, sqrt(mean), 1)."""
    mean = statistics.fmean(baseline)
    sigma = max(statistics.pstdev(baseline), math.sqrt(mean), 1.0)
    return (value - mean) / sigma


class RateAnomalyStrategy(AnomalyStrategy):
    """Flags windows whose volume or error count departs from the recent baseline.

    Entries are counted per fixed window (one hour by default) over a dense
    axis, so quiet windows count as zero. Each window is compared against the
    previous ``baseline_windows`` windows and flagged when the deviation
    exceeds ``2 * sensitivity``. Volume is flagged in both directions; error
    counts only upwards.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=1),
        baseline_windows: int = 6,
        sensitivity: float = 0.7,
        min_baseline: int = 2,
    ):
        if window.total_seconds() <= 0:
            raise ValueError('window must be positive')
        if sensitivity <= 0:
            raise ValueError('sensitivity must be positive')
        self.window_ms = int(window.total_seconds() * 1000)
        self.baseline_windows = max(1, baseline_windows)
        self.sensitivity = sensitivity
        self.min_baseline = max(1, min(min_baseline, self.baseline_windows))

    @property
    def name(self) -> str:
        return 'rate'

    @property
    def threshold(self) -> float:
        return 2 * self.sensitivity

    def _windows(self, entries: Sequence[LogEntry]) -> tuple[dict[int, list[LogEntry]], list[int]]:
        """Group entries by window start and list the windows worth scoring.

        Only occupied windows and the ``baseline_windows`` windows after each
        one can deviate from their baseline. Every other window on the axis
        counts zero against an all-zero baseline and scores 0, so it is skipped.
        """
        windows: dict[int, list[LogEntry]] = {}
        for entry in entries:
            if entry.timestamp is not None:
                key = entry.timestamp_ms // self.window_ms * self.window_ms
                windows.setdefault(key, []).append(entry)
        if not windows:
            return windows, []
        last = max(windows)
        active = set()
        for key in windows:
            for k in range(key, min(key + self.baseline_windows * self.window_ms, last) + 1, self.window_ms):
                active.add(k)
        return windows, sorted(active)

    def _baseline(self, counts: dict[int, int], key: int, first: int) -> list[int]:
        start = max(first, key - self.baseline_windows * self.window_ms)
        return [counts.get(k, 0) for k in range(start, key, self.window_ms)]

    def window_scores(self, entries: Sequence[LogEntry]) -> list[tuple[datetime, float]]:
        """Volume deviation per window.

        Windows without enough history score 0. Windows that are left out
        (empty, with an empty baseline) score 0 as well.
        """
        windows, active = self._windows(entries)
        if not active:
            return []
        counts = {key: len(w) for key, w in windows.items()}
        first = active[0]
        scores = []
        for key in active:
            baseline = self._baseline(counts, key, first)
            score = deviation(counts.get(key, 0), baseline) if len(baseline) >= self.min_baseline else 0.0
            scores.append((from_epoch_ms(key), round(score, 3)))
        return scores

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        windows, active = self._windows(entries)
        if not active:
            return []
        first = active[0]
        counts = {key: len(w) for key, w in windows.items()}
        error_entries = {key: [e for e in w if e.severity_class == 'error'] for key, w in windows.items()}
        error_counts = {key: len(w) for key, w in error_entries.items()}

        anomalies: list[Anomaly] = []
        for i, key in enumerate(active):
            if i % 256 == 0:
                check_cancelled(cancel)
            baseline = self._baseline(counts, key, first)
            if len(baseline) < self.min_baseline:
                continue
            start = from_epoch_ms(key)
            window = windows.get(key, [])
            count = counts.get(key, 0)
            errors = error_entries.get(key, [])

            z = deviation(count, baseline)
            if abs(z) > self.threshold:
                direction = 'spike' if z > 0 else 'drop'
                anomalies.append(
                    Anomaly(
                        id=self.anomaly_id(len(anomalies) + 1),
                        title=f'Log volume {direction}',
                        description=(
                            f'{count} entries in window vs baseline mean '
                            f'{statistics.fmean(baseline):.1f} (deviation {z:+.2f})'
                        ),
                        severity=severity_for_ratio(abs(z) / self.threshold),
                        affected_entry_ids=[e.id for e in window],
                        strategy=self.name,
                        timestamp=start,
                        sources=_top_sources(window),
                        metadata={'kind': f'volume_{direction}', 'count': count, 'score': round(z, 3)},
                    )
                )

            error_baseline = self._baseline(error_counts, key, first)
            ez = deviation(len(errors), error_baseline)
            if ez > self.threshold:
                anomalies.append(
                    Anomaly(
                        id=self.anomaly_id(len(anomalies) + 1),
                        title='Error rate spike',
                        description=(
                            f'{len(errors)} errors in window vs baseline mean '
                            f'{statistics.fmean(error_baseline):.1f} (deviation {ez:+.2f})'
                        ),
                        severity=severity_for_ratio(ez / self.threshold),
                        affected_entry_ids=[e.id for e in errors],
                        strategy=self.name,
                        timestamp=start,
                        sources=_top_sources(errors),
                        metadata={
                            'kind': 'error_rate',
                            'count': len(errors),
                            'error_rate': round(len(errors) / count, 4) if count else 0.0,
                            'score': round(ez, 3),
                        },
                    )
                )
        return anomalies


def _top_sources(entries: Sequence[LogEntry], n: int = 5) -> list[str]:
    counter = Counter(e.source for e in entries if e.source)
    return [source for source, _ in counter.most_common(n)]
