"""Warnings and errors from different files close together in time."""

import threading
from collections.abc import Sequence
from datetime import timedelta

from logscope.models import Anomaly, LogEntry, Severity

from .base import AnomalyStrategy, check_cancelled


CORRELATED_CLASSES = ('error', 'warning')


class CrossFileCorrelationStrategy(AnomalyStrategy):
    """Flags warnings or errors from two or more files within ``window`` of each other.

    Entries are swept in time order. Each group starts at one entry and takes
    every following one up to ``window`` after it; a group spanning at least
    two files is reported and the sweep resumes after its last member.
    """

    def __init__(self, window: timedelta = timedelta(seconds=5)):
        if window.total_seconds() < 0:
            raise ValueError('window must not be negative')
        self.window_ms = int(window.total_seconds() * 1000)

    @property
    def name(self) -> str:
        return 'correlation'

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        candidates = sorted(
            (e for e in entries if e.timestamp is not None and e.severity_class in CORRELATED_CLASSES),
            key=LogEntry.sort_key,
        )
        anomalies: list[Anomaly] = []

        i = steps = 0
        while i < len(candidates) - 1:
            if steps % 256 == 0:
                check_cancelled(cancel)
            steps += 1
            first = candidates[i]
            limit = first.timestamp_ms + self.window_ms
            j = i + 1
            while j < len(candidates) and candidates[j].timestamp_ms <= limit:
                j += 1
            group = candidates[i:j]
            file_ids = list(dict.fromkeys(e.file_id for e in group))
            if len(file_ids) < 2:
                i += 1
                continue

            anomalies.append(
                Anomaly(
                    id=self.anomaly_id(len(anomalies) + 1),
                    title='Correlated events across files',
                    description=(
                        f'{len(group)} warnings or errors in {len(file_ids)} files '
                        f'within {self.window_ms / 1000:g} seconds'
                    ),
                    severity=Severity.MEDIUM,
                    affected_entry_ids=[e.id for e in group],
                    strategy=self.name,
                    timestamp=first.timestamp,
                    sources=list(dict.fromkeys(e.source for e in group if e.source)),
                    metadata={
                        'kind': 'cross_file',
                        'file_ids': file_ids,
                        'offsets_ms': [e.timestamp_ms - first.timestamp_ms for e in group],
                    },
                )
            )
            i = j
        return anomalies
