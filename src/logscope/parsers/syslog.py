"""BSD syslog (RFC 3164) lines."""

import re
from datetime import UTC, datetime

from logscope.errors import ParseError
from logscope.models import LogEntry

from .base import LEVEL_RE, LineFormat


SYSLOG_RE = re.compile(
    r'^(?:<(?P<pri>\d{1,3})>)?'
    r'(?P<ts>[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+'
    r'(?P<host>\S+)\s+'
    r'(?P<app>[^\s:\[]+)(?:\[(?P<pid>\d+)\])?:\s?'
    r'(?P<msg>.*)$'
)

# PRI severity 0..7 mapped onto level names
PRI_LEVELS = ('FATAL', 'FATAL', 'CRITICAL', 'ERROR', 'WARN', 'NOTICE', 'INFO', 'DEBUG')


class SyslogFormat(LineFormat):
    """Parses ``Jan 15 10:30:45 host app[123]: message``.

    RFC 3164 timestamps carry no year; ``year`` supplies it (current UTC year
    by default). Severity comes from the PRI prefix when present, otherwise
    from a level keyword inside the message.
    """

    def __init__(self, year: int | None = None):
        self.year = year or datetime.now(UTC).year

    @property
    def name(self) -> str:
        return 'syslog'

    def parse(self, text: str, line_number: int, file_id: str) -> LogEntry | None:
        m = SYSLOG_RE.match(text)
        if not m:
            raise ParseError('not a syslog line', line_number=line_number)
        try:
            naive = datetime.strptime(f'{self.year} {" ".join(m.group("ts").split())}', '%Y %b %d %H:%M:%S')
        except ValueError as e:
            raise ParseError(f'bad syslog timestamp: {e}', line_number=line_number) from e

        message = m.group('msg').strip()
        fields = {'host': m.group('host')}
        if m.group('pid'):
            fields['pid'] = m.group('pid')

        level = None
        if m.group('pri') is not None:
            pri = int(m.group('pri'))
            level = PRI_LEVELS[pri % 8]
            fields['facility'] = str(pri // 8)
        else:
            level_match = LEVEL_RE.search(message)
            if level_match:
                level = level_match.group(1).upper()

        return self.entry(
            file_id,
            line_number,
            text,
            timestamp=naive.replace(tzinfo=UTC),
            level=level,
            source=m.group('app'),
            message=message,
            fields=fields,
        )
