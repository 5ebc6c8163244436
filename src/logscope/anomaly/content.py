"""Clusters of similar error messages."""

import re
import threading
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from logscope.models import Anomaly, LogEntry, Severity

from .base import AnomalyStrategy, check_cancelled


# Variable parts masked before comparing messages, most specific first
MASKS = [
    re.compile(r'\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b', re.IGNORECASE),
    re.compile(r'\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?\b'),
    re.compile(r'\b0x[0-9a-f]+\b', re.IGNORECASE),
    re.compile(r'\b[0-9a-f]{16,}\b', re.IGNORECASE),
    re.compile(r'\b\d+(?:\.\d+)?(?:ms|s|kb|mb|gb|%)?\b', re.IGNORECASE),
]
TOKEN_RE = re.compile(r'<\*>|\w+')
MAX_LEVENSHTEIN_LEN = 500


def normalize_message(message: str) -> str:
    for mask in MASKS:
        message = mask.sub('<*>', message)
    return ' '.join(message.lower().split())


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    a, b = a[:MAX_LEVENSHTEIN_LEN], b[:MAX_LEVENSHTEIN_LEN]
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(a, b) / longest


def severity_for_size(size: int) -> Severity:
    if size >= 20:
        return Severity.CRITICAL
    if size >= 10:
        return Severity.HIGH
    if size >= 5:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass
class MessageCluster:
    """Error entries whose normalized messages resemble ``pattern``."""

    pattern: str
    tokens: frozenset[str]
    members: list[LogEntry] = field(default_factory=list)


class ContentClusterStrategy(AnomalyStrategy):
    """Groups error-level messages that differ only in variable details.

    Messages are normalized (ids, addresses, numbers masked) and assigned
    greedily to the first cluster whose representative is at least
    ``similarity_threshold`` similar. Clusters with ``min_cluster_size``
    or more members are reported, largest first.
    """

    def __init__(self, similarity_threshold: float = 0.7, min_cluster_size: int = 3, metric: str = 'jaccard'):
        if not 0 < similarity_threshold <= 1:
            raise ValueError('similarity_threshold must be in (0, 1]')
        if metric not in ('jaccard', 'levenshtein'):
            raise ValueError(f'Unknown similarity metric {metric!r}')
        self.similarity_threshold = similarity_threshold
        self.min_cluster_size = max(1, min_cluster_size)
        self.metric = metric

    @property
    def name(self) -> str:
        return 'content'

    def _similarity(self, cluster: MessageCluster, pattern: str, tokens: frozenset[str]) -> float:
        if self.metric == 'levenshtein':
            return levenshtein_similarity(cluster.pattern, pattern)
        return jaccard(cluster.tokens, tokens)

    def cluster(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[MessageCluster]:
        """Assign every error-level entry to a cluster, in first-seen order."""
        clusters: list[MessageCluster] = []
        exact: dict[str, MessageCluster] = {}

        for n, entry in enumerate(entries):
            if n % 256 == 0:
                check_cancelled(cancel)
            if entry.severity_class != 'error':
                continue
            pattern = normalize_message(entry.display_message)
            cluster = exact.get(pattern)
            if cluster is None:
                tokens = frozenset(TOKEN_RE.findall(pattern))
                cluster = next(
                    (c for c in clusters if self._similarity(c, pattern, tokens) >= self.similarity_threshold),
                    None,
                )
                if cluster is None:
                    cluster = MessageCluster(pattern, tokens)
                    clusters.append(cluster)
                exact[pattern] = cluster
            cluster.members.append(entry)
        return clusters

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        reported = [c for c in self.cluster(entries, cancel) if len(c.members) >= self.min_cluster_size]
        reported.sort(key=lambda c: len(c.members), reverse=True)

        anomalies = []
        for i, cluster in enumerate(reported, 1):
            members = cluster.members
            sources = Counter(e.source for e in members if e.source)
            anomalies.append(
                Anomaly(
                    id=self.anomaly_id(i),
                    title=f'Repeated error: {members[0].display_message[:80]}',
                    description=f'{len(members)} similar error messages',
                    severity=severity_for_size(len(members)),
                    affected_entry_ids=[e.id for e in members],
                    strategy=self.name,
                    timestamp=members[0].timestamp,
                    sources=[s for s, _ in sources.most_common(5)],
                    metadata={'pattern': cluster.pattern, 'count': len(members), 'metric': self.metric},
                )
            )
        return anomalies
