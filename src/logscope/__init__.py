"""logscope - streaming log analysis core.

Turns large raw log files into structured, indexed entries and answers
filter, timeline, summary and anomaly queries against them.
"""

from logscope.__version__ import __version__


__all__ = ['__version__']
