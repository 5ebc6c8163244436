"""Bursts of similar errors inside one time window."""

import threading
from collections.abc import Sequence
from datetime import timedelta

from logscope.models import Anomaly, LogEntry, from_epoch_ms

from .base import AnomalyStrategy, check_cancelled
from .content import ContentClusterStrategy, severity_for_size


class ErrorBurstStrategy(AnomalyStrategy):
    """Flags groups of similar errors concentrated in one window.

    Error-level entries are bucketed per ``window`` (aligned to the epoch).
    Windows holding at least ``min_window_errors`` errors are clustered like
    the content strategy does, and each cluster of ``min_group_size`` or more
    is reported with a severity scaled by its size.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=1),
        min_window_errors: int = 5,
        min_group_size: int = 3,
        similarity_threshold: float = 0.7,
    ):
        if window.total_seconds() <= 0:
            raise ValueError('window must be positive')
        self.window_ms = int(window.total_seconds() * 1000)
        self.min_window_errors = max(1, min_window_errors)
        self.min_group_size = max(1, min_group_size)
        self.clusterer = ContentClusterStrategy(similarity_threshold=similarity_threshold)

    @property
    def name(self) -> str:
        return 'burst'

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        windows: dict[int, list[LogEntry]] = {}
        for entry in entries:
            if entry.timestamp is not None and entry.severity_class == 'error':
                windows.setdefault(entry.timestamp_ms // self.window_ms * self.window_ms, []).append(entry)

        anomalies: list[Anomaly] = []
        minutes = self.window_ms / 60_000
        for key in sorted(windows):
            check_cancelled(cancel)
            errors = windows[key]
            if len(errors) < self.min_window_errors:
                continue
            for group in self.clusterer.cluster(errors, cancel):
                members = group.members
                if len(members) < self.min_group_size:
                    continue
                anomalies.append(
                    Anomaly(
                        id=self.anomaly_id(len(anomalies) + 1),
                        title=f'Frequent error: {members[0].display_message[:50]}',
                        description=f'{len(members)} similar errors within a {minutes:g} minute window',
                        severity=severity_for_size(len(members)),
                        affected_entry_ids=[e.id for e in members],
                        strategy=self.name,
                        timestamp=from_epoch_ms(key),
                        sources=list(dict.fromkeys(e.source for e in members if e.source)),
                        metadata={
                            'kind': 'error_burst',
                            'pattern': group.pattern,
                            'count': len(members),
                            'window_errors': len(errors),
                            'samples': [e.display_message for e in members[:3]],
                        },
                    )
                )
        return anomalies
