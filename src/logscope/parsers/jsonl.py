"""JSON-lines logs (one JSON object per line)."""

import json

from logscope.errors import ParseError
from logscope.models import LogEntry

from .base import LEVEL_KEYS, MESSAGE_KEYS, SOURCE_KEYS, TIMESTAMP_KEYS, LineFormat, normalize_level, parse_timestamp, pick


class JsonLinesFormat(LineFormat):
    """Parses structured JSON records.

    Timestamp, level, source and message are looked up under their common
    key names; every other top-level key is kept in ``fields`` as a string.
    """

    @property
    def name(self) -> str:
        return 'jsonl'

    def parse(self, text: str, line_number: int, file_id: str) -> LogEntry | None:
        stripped = text.strip()
        if not stripped.startswith('{'):
            raise ParseError('not a JSON object', line_number=line_number)
        try:
            record = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ParseError(f'invalid JSON: {e.msg}', line_number=line_number) from e
        if not isinstance(record, dict):
            raise ParseError('not a JSON object', line_number=line_number)

        ts_key, ts_value = pick(record, TIMESTAMP_KEYS)
        timestamp = parse_timestamp(ts_value)
        if timestamp is None:
            raise ParseError('no timestamp key', line_number=line_number)

        level_key, level_value = pick(record, LEVEL_KEYS)
        source_key, source_value = pick(record, SOURCE_KEYS)
        msg_key, msg_value = pick(record, MESSAGE_KEYS)

        used = {ts_key, level_key, source_key, msg_key}
        fields = {
            str(k): v if isinstance(v, str) else json.dumps(v, sort_keys=True)
            for k, v in record.items()
            if k not in used
        }

        return self.entry(
            file_id,
            line_number,
            text,
            timestamp=timestamp,
            level=normalize_level(level_value),
            source=str(source_value) if source_value is not None else None,
            message=str(msg_value) if msg_value is not None else '',
            fields=fields,
        )
