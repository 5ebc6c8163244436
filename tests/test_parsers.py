"""Tests for line formats, format detection and the per-file LineParser."""

import os
import tempfile
from datetime import UTC, datetime

import pytest

from logscope.errors import ParseError
from logscope.parsers import (
    CsvFormat,
    GenericFormat,
    JsonLinesFormat,
    LineParser,
    SyslogFormat,
    detect_format,
    get_format,
    parse_file,
)
from logscope.parsers.base import normalize_level, parse_timestamp


class TestParseTimestamp:
    def test_iso_with_zulu(self):
        assert parse_timestamp('2024-01-15T10:30:45Z') == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)

    def test_iso_with_offset_is_converted_to_utc(self):
        assert parse_timestamp('2024-01-15T12:30:45+02:00') == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)

    def test_naive_iso_is_taken_as_utc(self):
        assert parse_timestamp('2024-01-15 10:30:45') == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)

    def test_comma_fraction(self):
        ts = parse_timestamp('2024-01-15 10:30:45,123')
        assert ts.microsecond == 123000

    def test_epoch_seconds_and_millis(self):
        expected = datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)
        assert parse_timestamp(1705314645) == expected
        assert parse_timestamp(1705314645000) == expected
        assert parse_timestamp('1705314645') == expected

    def test_garbage(self):
        assert parse_timestamp('yesterday') is None
        assert parse_timestamp('') is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(True) is None


def test_normalize_level():
    assert normalize_level(' warn ') == 'WARN'
    assert normalize_level('') is None
    assert normalize_level(None) is None


class TestGenericFormat:
    def setup_method(self):
        self.fmt = GenericFormat()

    def test_full_line(self):
        entry = self.fmt.parse('2024-01-15T10:30:45Z ERROR [db] Connection lost retry=3', 7, 'f1')
        assert entry.id == 'f1:7'
        assert entry.timestamp == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)
        assert entry.level == 'ERROR'
        assert entry.source == 'db'
        assert entry.message == 'Connection lost retry=3'
        assert entry.fields == {'retry': '3'}
        assert entry.raw == '2024-01-15T10:30:45Z ERROR [db] Connection lost retry=3'

    def test_level_is_uppercased(self):
        entry = self.fmt.parse('2024-01-15 10:30:45 warning disk almost full', 1, 'f1')
        assert entry.level == 'WARNING'
        assert entry.source is None
        assert entry.message == 'disk almost full'

    def test_quoted_field_values(self):
        entry = self.fmt.parse('2024-01-15T10:30:45Z INFO login user="jane doe" ok', 1, 'f1')
        assert entry.fields['user'] == 'jane doe'

    def test_no_timestamp_raises(self):
        with pytest.raises(ParseError) as exc_info:
            self.fmt.parse('just some text', 3, 'f1')
        assert exc_info.value.line_number == 3


class TestSyslogFormat:
    def setup_method(self):
        self.fmt = SyslogFormat(year=2024)

    def test_basic_line(self):
        entry = self.fmt.parse('Jan 15 10:30:45 web01 nginx[1234]: upstream timed out ERROR', 1, 'f1')
        assert entry.timestamp == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)
        assert entry.source == 'nginx'
        assert entry.level == 'ERROR'
        assert entry.fields == {'host': 'web01', 'pid': '1234'}
        assert entry.message == 'upstream timed out ERROR'

    def test_priority_sets_level_and_facility(self):
        entry = self.fmt.parse('<11>Jan  5 01:02:03 host sshd: Failed password', 1, 'f1')
        assert entry.level == 'ERROR'
        assert entry.fields['facility'] == '1'
        assert entry.timestamp == datetime(2024, 1, 5, 1, 2, 3, tzinfo=UTC)

    def test_non_syslog_line(self):
        with pytest.raises(ParseError):
            self.fmt.parse('2024-01-15T10:30:45Z INFO hello', 1, 'f1')


class TestJsonLinesFormat:
    def setup_method(self):
        self.fmt = JsonLinesFormat()

    def test_common_keys(self):
        line = '{"ts": "2024-01-15T10:30:45Z", "level": "warn", "logger": "api", "msg": "slow", "ms": 950, "user": "u1"}'
        entry = self.fmt.parse(line, 2, 'f2')
        assert entry.level == 'WARN'
        assert entry.source == 'api'
        assert entry.message == 'slow'
        assert entry.fields == {'ms': '950', 'user': 'u1'}

    def test_epoch_millis_timestamp(self):
        entry = self.fmt.parse('{"timestamp": 1705314645000, "message": "x"}', 1, 'f1')
        assert entry.timestamp == datetime(2024, 1, 15, 10, 30, 45, tzinfo=UTC)

    def test_missing_timestamp(self):
        with pytest.raises(ParseError):
            self.fmt.parse('{"message": "no time"}', 1, 'f1')

    def test_invalid_json(self):
        with pytest.raises(ParseError):
            self.fmt.parse('{"message": ', 1, 'f1')

    def test_array_is_not_a_record(self):
        with pytest.raises(ParseError):
            self.fmt.parse('[1, 2]', 1, 'f1')


class TestCsvFormat:
    def test_header_then_rows(self):
        fmt = CsvFormat()
        assert fmt.parse('timestamp,level,service,message,request_id', 1, 'f1') is None
        entry = fmt.parse('2024-01-15T10:30:45Z,ERROR,billing,"charge failed, retrying",r-9', 2, 'f1')
        assert entry.level == 'ERROR'
        assert entry.source == 'billing'
        assert entry.message == 'charge failed, retrying'
        assert entry.fields == {'request_id': 'r-9'}

    def test_message_falls_back_to_remaining_cells(self):
        fmt = CsvFormat()
        fmt.parse('time,level,user,action', 1, 'f1')
        entry = fmt.parse('2024-01-15T10:30:45Z,INFO,alice,login', 2, 'f1')
        assert entry.message == 'alice login'

    def test_row_without_timestamp(self):
        fmt = CsvFormat()
        fmt.parse('time,message', 1, 'f1')
        with pytest.raises(ParseError):
            fmt.parse('not-a-date,hello', 2, 'f1')

    def test_looks_like_header(self):
        assert CsvFormat.looks_like_header('Timestamp,Level,Message')
        assert not CsvFormat.looks_like_header('2024-01-15T10:30:45Z,INFO,hi')


class TestDetectFormat:
    def test_jsonl(self):
        sample = ['{"time": "2024-01-15T10:30:45Z", "msg": "a"}'] * 3
        assert detect_format(sample).name == 'jsonl'

    def test_syslog(self):
        sample = ['Jan 15 10:30:45 host app: started', 'Jan 15 10:30:46 host app: ready']
        assert detect_format(sample).name == 'syslog'

    def test_csv_header_wins(self):
        assert detect_format(['timestamp,level,message', '2024-01-15T10:30:45Z,INFO,hi']).name == 'csv'

    def test_generic(self):
        assert detect_format(['2024-01-15T10:30:45Z INFO hi', 'garbage']).name == 'generic'

    def test_empty_sample_falls_back_to_generic(self):
        assert detect_format(['', '   ']).name == 'generic'

    def test_unknown_format_name(self):
        with pytest.raises(ValueError, match='Unknown log format'):
            get_format('xml')


class TestLineParser:
    def setup_method(self):
        self.parser = LineParser('f1', GenericFormat())

    def test_unparseable_line_becomes_raw_only_entry(self):
        entry = self.parser.parse_line(4, 'no timestamp here ERROR')
        assert entry.id == 'f1:4'
        assert entry.timestamp is None
        assert entry.level is None
        assert entry.source is None
        assert entry.message == ''
        assert entry.raw == 'no timestamp here ERROR'
        assert entry.display_message == 'no timestamp here ERROR'
        assert self.parser.unparsed == 1

    def test_blank_lines_produce_nothing(self):
        assert self.parser.parse_line(1, '   ') is None
        assert self.parser.blank == 1

    def test_counters(self):
        self.parser.push(1, '2024-01-15T10:30:45Z INFO ok')
        self.parser.push(2, 'junk')
        self.parser.push(3, '')
        assert (self.parser.parsed, self.parser.unparsed, self.parser.blank) == (1, 1, 1)

    def test_continuations_are_merged(self):
        parser = LineParser('f1', GenericFormat(), merge_continuations=True)
        out = []
        out += parser.push(1, '2024-01-15T10:30:45Z ERROR [api] Unhandled exception')
        out += parser.push(2, 'Traceback (most recent call last):')
        out += parser.push(3, '  File "app.py", line 3, in main')
        assert out == []
        out += parser.push(4, '2024-01-15T10:30:46Z INFO [api] recovered')
        out += parser.flush()

        assert [e.line_number for e in out] == [1, 4]
        assert out[0].message.splitlines() == [
            'Unhandled exception',
            'Traceback (most recent call last):',
            'File "app.py", line 3, in main',
        ]
        assert out[0].raw.count('\n') == 2
        assert parser.merged == 2

    def test_continuations_kept_separate_by_default(self):
        out = self.parser.push(1, '2024-01-15T10:30:45Z ERROR boom') + self.parser.push(2, '    at Foo.bar(Foo.java:1)')
        assert [e.line_number for e in out] == [1, 2]
        assert out[1].timestamp is None


class TestParseFile:
    def setup_method(self):
        fd, self.path = tempfile.mkstemp(suffix='.log')
        with os.fdopen(fd, 'w') as f:
            f.write('2024-01-15T10:00:00Z INFO [web] started\n')
            f.write('\n')
            f.write('stray line\n')
            f.write('2024-01-15T10:00:05Z ERROR [db] timeout')

    def teardown_method(self):
        os.unlink(self.path)

    def test_detects_and_parses(self):
        entries = list(parse_file(self.path, 'f1', chunk_size=8))
        assert [e.line_number for e in entries] == [1, 3, 4]
        assert [e.level for e in entries] == ['INFO', None, 'ERROR']

    def test_same_result_for_any_chunk_size(self):
        small = list(parse_file(self.path, 'f1', chunk_size=3))
        large = list(parse_file(self.path, 'f1'))
        assert small == large
