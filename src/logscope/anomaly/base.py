"""Base class for anomaly strategies."""

import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence

from logscope.errors import CancelledError
from logscope.models import Anomaly, LogEntry


class AnomalyStrategy(ABC):
    """Base class for all anomaly strategies.

    A strategy is a pure function of the entries it is given: it must not
    mutate them or keep state between runs.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy identifier, e.g. 'rate' or 'content'."""
        pass

    @abstractmethod
    def detect(self, entries: Sequence[LogEntry], cancel: threading.Event | None = None) -> list[Anomaly]:
        """Find anomalies.

        Args:
            entries: Entries sorted chronologically (see LogEntry.sort_key)
            cancel: Checked periodically; when set the run stops with CancelledError

        Returns:
            Anomalies in detection order.
        """
        pass

    def anomaly_id(self, n: int) -> str:
        return f'{self.name}-{n}'


def check_cancelled(cancel: threading.Event | None):
    if cancel is not None and cancel.is_set():
        raise CancelledError('anomaly detection cancelled')
