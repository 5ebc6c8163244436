"""Security-relevant keywords in log messages."""

import re
import threading
from collections.abc import Sequence

from logscope.models import Anomaly, LogEntry, Severity

from .base import AnomalyStrategy, check_cancelled


class SecurityKeywordStrategy(AnomalyStrategy):
    """Reports every entry mentioning an authentication, access or attack keyword.

    Each matching entry becomes one high-severity anomaly listing every
    keyword found in it. Any entry is checked, whatever its level.
    """

    # Keyword label and the pattern that finds it
    SECURITY_KEYWORDS = [
        ('authentication failure', re.compile(r'\bauthentication fail', re.IGNORECASE)),
        ('login failure', re.compile(r'\blogin fail', re.IGNORECASE)),
        ('invalid credentials', re.compile(r'\binvalid credentials\b', re.IGNORECASE)),
        ('unauthorized', re.compile(r'\bunauthori[sz]ed\b', re.IGNORECASE)),
        ('permission denied', re.compile(r'\bpermission denied\b', re.IGNORECASE)),
        ('access denied', re.compile(r'\baccess denied\b', re.IGNORECASE)),
        ('invalid token', re.compile(r'\binvalid token\b', re.IGNORECASE)),
        ('expired token', re.compile(r'\bexpired token\b|\btoken (?:has )?expired\b', re.IGNORECASE)),
        ('csrf', re.compile(r'\bcsrf\b', re.IGNORECASE)),
        ('xss', re.compile(r'\bxss\b', re.IGNORECASE)),
        ('sql injection', re.compile(r'\bsql injection\b', re.IGNORECASE)),
        ('injection', re.compile(r'\binjection\b', re.IGNORECASE)),
        ('brute force', re.compile(r'\bbrute[ -]?force\b', re.IGNORECASE)),
        ('firewall', re.compile(r'\bfirewall\b', re.IGNORECASE)),
        ('blocked', re.compile(r'\bblocked\b', re.IGNORECASE)),
        ('suspicious', re.compile(r'\bsuspicious\b', re.IGNORECASE)),
        ('malicious', re.compile(r'\bmalicious\b', re.IGNORECASE)),
        ('exploit', re.compile(r'\bexploit', re.IGNORECASE)),
        ('vulnerability', re.compile(r'\bvulnerabilit(?:y|ies)\b', re.IGNORECASE)),
        ('breach', re.compile(r'\bbreach', re.IGNORECASE)),
        ('attack', re.compile(r'\battack', re.IGNORECASE)),
        ('intrusion', re.compile(r'\bintrusion\b', re.IGNORECASE)),
        ('backdoor', re.compile(r'\bbackdoor\b', re.IGNORECASE)),
        ('trojan', re.compile(r'\btrojan\b', re.IGNORECASE)),
        ('malware', re.compile(r'\bmalware\b', re.IGNORECASE)),
        ('ransomware', re.compile(r'\bransomware\b', re.IGNORECASE)),
        ('phishing', re.compile(r'\bphishing\b', re.IGNORECASE)),
    ]

    @property
    def name(self) -> str:
        return 'security'

    def keywords(self, text: str) -> list[str]:
        """Labels of every security keyword found in text, in table order."""
        return [label for label, pattern in self.SECURITY_KEYWORDS if pattern.search(text)]

    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        anomalies = []
        for n, entry in enumerate(entries):
            if n % 256 == 0:
                check_cancelled(cancel)
            found = self.keywords(entry.display_message)
            if not found:
                continue
            anomalies.append(
                Anomaly(
                    id=self.anomaly_id(len(anomalies) + 1),
                    title=f'Security issue: {found[0]}',
                    description=f'Potential security issue: {", ".join(found)}',
                    severity=Severity.HIGH,
                    affected_entry_ids=[entry.id],
                    strategy=self.name,
                    timestamp=entry.timestamp,
                    sources=[entry.source] if entry.source else [],
                    metadata={'kind': 'security_keyword', 'keywords': found},
                )
            )
        return anomalies
