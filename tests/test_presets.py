"""Tests for the active FilterSet and persisted presets."""

import json

import pytest

from logscope.errors import FilterValidationError, LogscopeError
from logscope.models import FilterPreset, LogLevelFilter, SavedFilter, TextFilter
from logscope.presets import MAX_FILTER_HISTORY, FilterSet, PresetStore, dump_preset, get_presets_path, load_preset


class TestFilterSet:
    def setup_method(self):
        self.filters = FilterSet()

    def test_add_and_undo_redo(self):
        first = self.filters.add({'type': 'logLevel', 'levels': ['ERROR']})
        self.filters.add({'type': 'text', 'text': 'timeout'})
        assert len(self.filters) == 2

        assert self.filters.undo()
        assert [f.id for f in self.filters.filters] == [first.id]
        assert self.filters.redo()
        assert len(self.filters) == 2
        assert not self.filters.redo()

    def test_new_change_clears_redo(self):
        self.filters.add({'type': 'text', 'text': 'a'})
        self.filters.undo()
        self.filters.add({'type': 'text', 'text': 'b'})
        assert not self.filters.can_redo

    def test_invalid_add_leaves_state_untouched(self):
        self.filters.add({'type': 'text', 'text': 'a'})
        with pytest.raises(FilterValidationError):
            self.filters.add({'type': 'regex', 'pattern': '['})
        assert len(self.filters) == 1
        assert self.filters.undo()
        assert len(self.filters) == 0

    def test_duplicate_id_rejected(self):
        self.filters.add({'type': 'text', 'text': 'a', 'id': 'x'})
        with pytest.raises(FilterValidationError):
            self.filters.add({'type': 'text', 'text': 'b', 'id': 'x'})

    def test_toggle_update_remove(self):
        f = self.filters.add({'type': 'text', 'text': 'a'})
        assert not self.filters.toggle(f.id).enabled
        assert self.filters.enabled == []

        updated = self.filters.update(f.id, {'text': 'b'})
        assert updated.id == f.id
        assert updated.text == 'b'
        assert not updated.enabled

        self.filters.remove(f.id)
        assert len(self.filters) == 0
        with pytest.raises(KeyError):
            self.filters.remove(f.id)

    def test_invalid_update_rejected(self):
        f = self.filters.add({'type': 'text', 'text': 'a'})
        with pytest.raises(FilterValidationError):
            self.filters.update(f.id, {'text': ''})
        assert self.filters.get(f.id).text == 'a'

    def test_reset_and_set(self):
        self.filters.set([{'type': 'text', 'text': 'a'}, {'type': 'text', 'text': 'b'}])
        self.filters.reset()
        assert len(self.filters) == 0
        self.filters.undo()
        assert len(self.filters) == 2

    def test_history_is_bounded(self):
        for i in range(MAX_FILTER_HISTORY + 5):
            self.filters.add({'type': 'text', 'text': f't{i}'})
        undone = 0
        while self.filters.undo():
            undone += 1
        assert undone == MAX_FILTER_HISTORY
        assert len(self.filters) == 5


class TestPresetPayload:
    def test_round_trip_is_exact(self):
        preset = FilterPreset(
            name='db errors',
            filters=[
                LogLevelFilter(levels=['ERROR'], name='errors'),
                TextFilter(text='Timeout', case_sensitive=True, enabled=False),
                SavedFilter(filters=[LogLevelFilter(levels=['WARN'])], combine='or'),
            ],
        )
        assert load_preset(dump_preset(preset)) == preset

    def test_payload_uses_camel_case(self):
        preset = FilterPreset(name='p', filters=[TextFilter(text='x', case_sensitive=True)])
        data = json.loads(dump_preset(preset))
        assert set(data) == {'id', 'name', 'filters', 'createdAt', 'lastUsed'}
        assert data['filters'][0]['caseSensitive'] is True

    def test_invalid_payload(self):
        with pytest.raises(FilterValidationError):
            load_preset('{"name": "p", "filters": [{"type": "logLevel", "levels": []}]}')


class TestPresetStore:
    def test_default_path_is_in_cache_dir(self, temp_cache_dir):
        assert str(get_presets_path()).startswith(temp_cache_dir)

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / 'presets.json'
        store = PresetStore(path)
        saved = store.save('errors', [{'type': 'logLevel', 'levels': ['ERROR']}])

        reloaded = PresetStore(path)
        assert reloaded.get(saved.id) == saved
        assert reloaded.find('errors').id == saved.id
        assert [p.name for p in reloaded.presets()] == ['errors']

    def test_overwrite_by_id(self, tmp_path):
        store = PresetStore(tmp_path / 'presets.json')
        first = store.save('a', [{'type': 'text', 'text': 'x'}])
        second = store.save('renamed', [{'type': 'text', 'text': 'y'}], preset_id=first.id)
        assert second.id == first.id
        assert second.created_at == first.created_at
        assert len(store.presets()) == 1

    def test_apply_sets_last_used_and_filter_set(self, tmp_path):
        store = PresetStore(tmp_path / 'presets.json')
        preset = store.save('errors', [{'type': 'logLevel', 'levels': ['ERROR']}])
        assert preset.last_used is None

        filter_set = FilterSet()
        applied = store.apply(preset.id, filter_set)
        assert applied.last_used is not None
        assert [f.id for f in filter_set.filters] == [f.id for f in preset.filters]
        assert PresetStore(tmp_path / 'presets.json').get(preset.id).last_used == applied.last_used

    def test_apply_unknown(self, tmp_path):
        with pytest.raises(KeyError):
            PresetStore(tmp_path / 'presets.json').apply('missing')

    def test_delete(self, tmp_path):
        store = PresetStore(tmp_path / 'presets.json')
        preset = store.save('x', [{'type': 'text', 'text': 'x'}])
        assert store.delete(preset.id)
        assert not store.delete(preset.id)
        assert PresetStore(tmp_path / 'presets.json').presets() == []

    def test_invalid_filters_are_not_saved(self, tmp_path):
        store = PresetStore(tmp_path / 'presets.json')
        with pytest.raises(FilterValidationError):
            store.save('bad', [{'type': 'regex', 'pattern': '('}])
        with pytest.raises(FilterValidationError):
            store.save('  ', [])
        assert store.presets() == []

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / 'presets.json'
        path.write_text('{not json')
        with pytest.raises(LogscopeError):
            PresetStore(path)
