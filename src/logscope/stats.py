"""Statistical summary of a set of entries."""

from collections import Counter
from collections.abc import Iterable

from logscope.models import CountItem, LogEntry, StatisticalSummary


TOP_N = 10


def summarize(entries: Iterable[LogEntry], top_n: int = TOP_N) -> StatisticalSummary:
    """Totals per severity class, top sources and error messages, and time-of-day distributions.

    Severity totals and distributions count only timestamped entries, so they
    agree with the timeline totals over the same entries.
    """
    classes: Counter[str] = Counter()
    levels: Counter[str] = Counter()
    sources: Counter[str] = Counter()
    errors: Counter[str] = Counter()
    hourly = [0] * 24
    weekday = [0] * 7
    total = 0
    unparsed = 0
    start = end = None

    for entry in entries:
        if entry.timestamp is None:
            unparsed += 1
            continue
        total += 1
        cls = entry.severity_class
        classes[cls] += 1
        if entry.level:
            levels[entry.level] += 1
        if entry.source:
            sources[entry.source] += 1
        if cls == 'error':
            errors[entry.message or entry.raw] += 1
        hourly[entry.timestamp.hour] += 1
        weekday[entry.timestamp.weekday()] += 1
        if start is None or entry.timestamp < start:
            start = entry.timestamp
        if end is None or entry.timestamp > end:
            end = entry.timestamp

    return StatisticalSummary(
        total_logs=total,
        error_count=classes['error'],
        warning_count=classes['warning'],
        info_count=classes['info'],
        debug_count=classes['debug'],
        other_count=classes['other'],
        unparsed_count=unparsed,
        start_time=start,
        end_time=end,
        levels=dict(levels),
        top_sources=[CountItem(name=name, count=count) for name, count in sources.most_common(top_n)],
        top_errors=[CountItem(name=msg, count=count) for msg, count in errors.most_common(top_n)],
        hourly_distribution=hourly,
        weekday_distribution=weekday,
    )
