"""Expected start/end pairs that fail to complete."""

import re
import threading
from collections import deque
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logscope.models import Anomaly, LogEntry, Severity

from .base import AnomalyStrategy, check_cancelled


class SequenceRule(BaseModel):
    """A start event that must be followed by an end event with the same correlation key.

    Patterns are matched against the raw line. ``key_pattern`` must contain one
    capture group; entries it does not match share the empty key.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., example='job')
    start_pattern: str = Field(..., example=r'job \d+ started')
    end_pattern: str = Field(..., example=r'job \d+ (finished|failed)')
    key_pattern: str | None = Field(None, example=r'job (\d+)')
    max_gap_seconds: float | None = Field(None, gt=0, description='Flag pairs further apart than this')
    severity: Severity = Severity.MEDIUM

    @field_validator('start_pattern', 'end_pattern')
    @classmethod
    def _compiles(cls, v: str) -> str:
        if not v:
            raise ValueError('pattern must not be empty')
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f'Invalid regex {v!r}: {e}') from e
        return v

    @field_validator('key_pattern')
    @classmethod
    def _one_group(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            compiled = re.compile(v)
        except re.error as e:
            raise ValueError(f'Invalid regex {v!r}: {e}') from e
        if compiled.groups < 1:
            raise ValueError('key_pattern needs a capture group')
        return v

    def key_for(self, text: str) -> str:
        if self.key_pattern is None:
            return ''
        m = re.search(self.key_pattern, text)
        if m is None:
            return ''
        return m.group(1) or ''


class SequenceRuleStrategy(AnomalyStrategy):
    """Checks configured start/end rules in chronological order.

    Per rule and correlation key, starts are matched to ends first-in
    first-out. Reported:

    - a start never followed by its end (one anomaly per start)
    - an end with no open start
    - a pair further apart than ``max_gap_seconds`` (references both entries)

    Entries without a timestamp cannot be ordered and are skipped.
    """

    def __init__(self, rules: Sequence[SequenceRule] = ()):
        self.rules = list(rules)

    @property
    def name(self) -> str:
        return 'sequence'

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        if not self.rules:
            return []
        ordered = sorted((e for e in entries if e.timestamp is not None), key=LogEntry.sort_key)
        anomalies: list[Anomaly] = []
        for rule in self.rules:
            anomalies.extend(self._check_rule(rule, ordered, cancel, len(anomalies)))
        return anomalies

    def _check_rule(
        self, rule: SequenceRule, ordered: list[LogEntry], cancel: threading.Event | None, offset: int
    ) -> list[Anomaly]:
        start_re = re.compile(rule.start_pattern)
        end_re = re.compile(rule.end_pattern)
        open_starts: dict[str, deque[LogEntry]] = {}
        found: list[Anomaly] = []

        def report(title: str, description: str, severity: Severity, involved: list[LogEntry], kind: str, key: str):
            found.append(
                Anomaly(
                    id=self.anomaly_id(offset + len(found) + 1),
                    title=title,
                    description=description,
                    severity=severity,
                    affected_entry_ids=[e.id for e in involved],
                    strategy=self.name,
                    timestamp=involved[0].timestamp,
                    sources=list(dict.fromkeys(e.source for e in involved if e.source)),
                    metadata={'rule': rule.name, 'kind': kind, 'key': key},
                )
            )

        for n, entry in enumerate(ordered):
            if n % 256 == 0:
                check_cancelled(cancel)
            if start_re.search(entry.raw):
                open_starts.setdefault(rule.key_for(entry.raw), deque()).append(entry)
            elif end_re.search(entry.raw):
                key = rule.key_for(entry.raw)
                pending = open_starts.get(key)
                if not pending:
                    report(
                        f'{rule.name}: end without start',
                        f'End event for key {key!r} has no preceding start',
                        Severity.LOW,
                        [entry],
                        'unexpected_end',
                        key,
                    )
                    continue
                start = pending.popleft()
                if rule.max_gap_seconds is not None:
                    gap = (entry.timestamp - start.timestamp).total_seconds()
                    if gap > rule.max_gap_seconds:
                        report(
                            f'{rule.name}: completed late',
                            f'Key {key!r} took {gap:.1f}s, limit {rule.max_gap_seconds:g}s',
                            rule.severity,
                            [start, entry],
                            'gap_exceeded',
                            key,
                        )

        unmatched = sorted(
            (start for pending in open_starts.values() for start in pending), key=LogEntry.sort_key
        )
        for start in unmatched:
            key = rule.key_for(start.raw)
            report(
                f'{rule.name}: never completed',
                f'Start event for key {key!r} has no matching end',
                rule.severity,
                [start],
                'unmatched_start',
                key,
            )
        return found
