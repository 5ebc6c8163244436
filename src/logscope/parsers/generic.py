"""Free-form lines with an embedded ISO timestamp."""

from logscope.errors import ParseError
from logscope.models import LogEntry

from .base import ISO_TIMESTAMP_RE, KEY_VALUE_RE, LEVEL_RE, SOURCE_RE, LineFormat, parse_timestamp


class GenericFormat(LineFormat):
    """Parses lines such as ``2024-01-15T10:30:45Z ERROR [db] Connection lost retry=3``.

    The timestamp, level and bracketed source may appear anywhere in the line;
    the first occurrence of each is used. The message is what remains once
    those three tokens are cut out. ``key=value`` pairs are copied into
    ``fields`` but left in the message.
    """

    @property
    def name(self) -> str:
        return 'generic'

    def parse(self, text: str, line_number: int, file_id: str) -> LogEntry | None:
        ts_match = ISO_TIMESTAMP_RE.search(text)
        timestamp = parse_timestamp(ts_match.group(1)) if ts_match else None
        if timestamp is None:
            raise ParseError('no timestamp found', line_number=line_number)

        spans = [ts_match.span()]
        level = None
        level_match = LEVEL_RE.search(text)
        if level_match:
            level = level_match.group(1).upper()
            spans.append(level_match.span())

        source = None
        source_match = SOURCE_RE.search(text)
        if source_match:
            source = source_match.group(1)
            spans.append(source_match.span())

        fields = {}
        for key, value in KEY_VALUE_RE.findall(text):
            if len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            fields.setdefault(key, value)

        return self.entry(
            file_id,
            line_number,
            text,
            timestamp=timestamp,
            level=level,
            source=source,
            message=_strip_spans(text, spans),
            fields=fields,
        )


def _strip_spans(text: str, spans: list[tuple[int, int]]) -> str:
    parts = []
    pos = 0
    for start, end in sorted(spans):
        if start < pos:
            continue
        parts.append(text[pos:start])
        pos = end
    parts.append(text[pos:])
    message = ' '.join(' '.join(parts).split())
    return message.lstrip('-:| ').strip()
