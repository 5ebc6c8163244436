"""Time-bucketed aggregation of entries for timeline display."""

import logging
import math
from collections.abc import Iterable

from logscope.config import DEFAULT_MAX_TIMELINE_BUCKETS
from logscope.errors import AggregationError, EmptyRangeError
from logscope.models import (
    AggregatedTimelineData,
    LogEntry,
    TimelineDataPoint,
    TimeSelection,
    ZoomLevel,
    from_epoch_ms,
    to_epoch_ms,
)


logger = logging.getLogger(__name__)


def bucket_start(ts_ms: int, width_ms: int) -> int:
    """Epoch-aligned start of the bucket containing ts_ms."""
    return (ts_ms // width_ms) * width_ms


class TimelineAggregator:
    """Counts entries per fixed-width bucket, per severity class.

    The output axis is dense: every bucket between the first and last one is
    present, zero-count buckets included. When that axis would hold more
    than ``max_buckets`` points the width is widened to the smallest multiple
    of the zoom width that fits, and the result reports
    ``condition='bucket_width_widened'``.
    """

    def __init__(self, max_buckets: int = DEFAULT_MAX_TIMELINE_BUCKETS):
        if max_buckets < 1:
            raise ValueError('max_buckets must be at least 1')
        self.max_buckets = max_buckets

    def aggregate(
        self,
        entries: Iterable[LogEntry],
        zoom: ZoomLevel | str = ZoomLevel.MINUTE,
        selection: TimeSelection | None = None,
    ) -> AggregatedTimelineData:
        zoom = ZoomLevel(zoom)
        try:
            return self._aggregate(entries, zoom, selection)
        except EmptyRangeError as e:
            logger.debug(f'[TIMELINE] {e}')
            return AggregatedTimelineData(
                zoom_level=zoom,
                bucket_width_ms=zoom.width_ms,
                start_time=selection.start if selection else None,
                end_time=selection.end if selection else None,
                condition='empty_range',
            )

    def _aggregate(
        self, entries: Iterable[LogEntry], zoom: ZoomLevel, selection: TimeSelection | None
    ) -> AggregatedTimelineData:
        if selection is not None:
            lo, hi = to_epoch_ms(selection.start), to_epoch_ms(selection.end)
            stamped = [
                (e.timestamp_ms, e) for e in entries if e.timestamp is not None and selection.contains(e.timestamp)
            ]
        else:
            stamped = [(e.timestamp_ms, e) for e in entries if e.timestamp is not None]
            if stamped:
                lo = min(ts for ts, _ in stamped)
                hi = max(ts for ts, _ in stamped)
        if not stamped:
            raise EmptyRangeError('no timestamped entries in range')

        width = zoom.width_ms
        condition = None
        n_buckets = (bucket_start(hi, width) - bucket_start(lo, width)) // width + 1
        if n_buckets > self.max_buckets:
            factor = math.ceil(n_buckets / self.max_buckets)
            width *= factor
            n_buckets = (bucket_start(hi, width) - bucket_start(lo, width)) // width + 1
            # Realignment can add one bucket at the edges
            while n_buckets > self.max_buckets:
                width += zoom.width_ms
                n_buckets = (bucket_start(hi, width) - bucket_start(lo, width)) // width + 1
            condition = 'bucket_width_widened'
            logger.debug(f'[TIMELINE] Widened buckets to {width} ms ({n_buckets} buckets)')

        first = bucket_start(lo, width)
        if n_buckets <= 0:
            raise AggregationError(f'invalid bucket axis from {lo} to {hi}')

        rows = [
            {'count': 0, 'error': 0, 'warning': 0, 'info': 0, 'debug': 0, 'other': 0, 'sources': {}}
            for _ in range(n_buckets)
        ]
        for ts, entry in stamped:
            row = rows[(ts - first) // width]
            row['count'] += 1
            row[entry.severity_class] += 1
            if entry.source:
                row['sources'][entry.source] = row['sources'].get(entry.source, 0) + 1

        points = [
            TimelineDataPoint(
                timestamp=from_epoch_ms(first + i * width),
                count=row['count'],
                error_count=row['error'],
                warning_count=row['warning'],
                info_count=row['info'],
                debug_count=row['debug'],
                other_count=row['other'],
                sources=row['sources'],
            )
            for i, row in enumerate(rows)
        ]

        return AggregatedTimelineData(
            points=points,
            zoom_level=zoom,
            bucket_width_ms=width,
            max_count=max(p.count for p in points),
            start_time=selection.start if selection else from_epoch_ms(lo),
            end_time=selection.end if selection else from_epoch_ms(hi),
            total_logs=len(stamped),
            error_count=sum(p.error_count for p in points),
            warning_count=sum(p.warning_count for p in points),
            info_count=sum(p.info_count for p in points),
            debug_count=sum(p.debug_count for p in points),
            other_count=sum(p.other_count for p in points),
            condition=condition,
        )
