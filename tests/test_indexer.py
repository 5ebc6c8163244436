"""Tests for IndexBuilder and IndexView."""

from datetime import UTC, datetime

import pytest
from conftest import BASE_TIME, make_entry

from logscope.errors import DuplicateEntryError
from logscope.indexer import IndexBuilder
from logscope.models import from_epoch_ms, to_epoch_ms


class TestIndexBuilder:
    def setup_method(self):
        self.entries = [
            make_entry(1, 0, 'INFO', 'web'),
            make_entry(2, 0, 'ERROR', 'db'),
            make_entry(3, 30, 'WARN', 'web'),
            make_entry(4, None),
            make_entry(5, 90, 'ERROR', 'web', file_id='f2'),
        ]
        self.builder = IndexBuilder()
        self.builder.add_batch(self.entries)

    def by_id(self) -> dict:
        return {e.id: e for e in self.entries}

    def test_indexes(self):
        assert len(self.builder) == 5
        assert self.builder.level['ERROR'] == ['f1:2', 'f2:5']
        assert self.builder.source['web'] == ['f1:1', 'f1:3', 'f2:5']
        assert self.builder.file['f1'] == ['f1:1', 'f1:2', 'f1:3', 'f1:4']
        assert 'f1:4' in self.builder

    def test_raw_only_entries_are_not_time_indexed(self):
        view = self.builder.freeze()
        timed = [eid for ids in view.time.values() for eid in ids]
        assert 'f1:4' not in timed
        assert sorted(timed) == ['f1:1', 'f1:2', 'f1:3', 'f2:5']

    def test_same_millisecond_shares_a_bucket(self):
        key = self.entries[0].timestamp_ms
        assert self.builder.time[key] == ['f1:1', 'f1:2']

    def test_range_lookup_is_inclusive_and_ordered(self):
        view = self.builder.freeze()
        start = to_epoch_ms(self.entries[0].timestamp)
        assert view.ids_in_range(start, start + 30_000) == ['f1:1', 'f1:2', 'f1:3']
        assert view.ids_in_range(start + 1, start + 29_999) == []

    @pytest.mark.parametrize('millis', [1, 7, 123, 999])
    def test_sub_second_timestamps_keep_their_millisecond(self, millis):
        entry = make_entry(9, 45 + millis / 1000)
        assert entry.timestamp_ms == to_epoch_ms(BASE_TIME) + 45_000 + millis
        assert from_epoch_ms(entry.timestamp_ms) == entry.timestamp

        builder = IndexBuilder()
        builder.add_batch([entry])
        assert builder.freeze().ids_in_range(entry.timestamp_ms, entry.timestamp_ms) == ['f1:9']

    def test_epoch_ms_before_1970(self):
        moment = datetime(1969, 12, 31, 23, 59, 59, 999_500, tzinfo=UTC)
        assert to_epoch_ms(moment) == -1

    def test_level_and_source_lookups(self):
        view = self.builder.freeze()
        assert view.ids_for_levels(['ERROR', 'WARN']) == {'f1:2', 'f1:3', 'f2:5'}
        assert view.ids_for_sources(['db', 'missing']) == {'f1:2'}

    def test_duplicate_id_rejects_whole_batch(self):
        with pytest.raises(DuplicateEntryError) as exc_info:
            self.builder.add_batch([make_entry(6, 10), make_entry(1, 10)])
        assert exc_info.value.entry_id == 'f1:1'
        assert 'f1:6' not in self.builder
        assert len(self.builder) == 5

    def test_duplicate_within_batch(self):
        with pytest.raises(DuplicateEntryError):
            IndexBuilder().add_batch([make_entry(1), make_entry(1)])

    def test_verify_consistent(self):
        assert self.builder.verify(self.by_id()) == []

    def test_verify_reports_missing_entries(self):
        entries = self.by_id()
        del entries['f1:3']
        problems = self.builder.verify(entries)
        assert any('f1:3' in p for p in problems)

    def test_remove_prunes_every_index(self):
        removed = self.builder.remove([self.entries[2], self.entries[4]])
        assert removed == 2
        assert 'WARN' not in self.builder.level
        assert self.builder.source['web'] == ['f1:1']
        assert 'f2' not in self.builder.file
        remaining = {e.id: e for e in self.entries[:2] + self.entries[3:4]}
        assert self.builder.verify(remaining) == []

    def test_remove_unknown_is_ignored(self):
        assert self.builder.remove([make_entry(99)]) == 0

    def test_frozen_view_is_independent(self):
        view = self.builder.freeze()
        self.builder.add_batch([make_entry(7, 500, 'DEBUG', 'cron')])
        assert 'DEBUG' not in view.level
        with pytest.raises(TypeError):
            view.level['DEBUG'] = ('x',)
