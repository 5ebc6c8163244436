"""Anomaly detection strategies.

Independent strategies run over the same snapshot: time-window rate
deviations, clusters of similar error messages, configured start/end
sequence rules, security keywords, cross-file correlations and bursts of
similar errors.
"""

from .base import AnomalyStrategy
from .burst import ErrorBurstStrategy
from .content import ContentClusterStrategy, levenshtein_similarity, normalize_message
from .correlation import CrossFileCorrelationStrategy
from .detector import AnomalyDetector, default_strategies, highest_severity, resolve_entry_severity
from .rate import RateAnomalyStrategy
from .security import SecurityKeywordStrategy
from .sequence import SequenceRule, SequenceRuleStrategy


__all__ = [
    # Base classes
    'AnomalyStrategy',
    # Strategies
    'ContentClusterStrategy',
    'CrossFileCorrelationStrategy',
    'ErrorBurstStrategy',
    'RateAnomalyStrategy',
    'SecurityKeywordStrategy',
    'SequenceRule',
    'SequenceRuleStrategy',
    # Orchestration
    'AnomalyDetector',
    'default_strategies',
    'highest_severity',
    'resolve_entry_severity',
    # Helpers
    'levenshtein_similarity',
    'normalize_message',
]
