"""Active filter set with undo/redo, and persisted filter presets.

Presets are stored as a single JSON document in the cache directory
(``$LOGSCOPE_CACHE_DIR/presets/presets.json``), serialized with camelCase
keys so the payload reads ``{id, name, filters, createdAt, lastUsed}``.
"""

import json
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from logscope.errors import FilterValidationError, LogscopeError
from logscope.filters import parse_filter, parse_filters
from logscope.models import Filter, FilterPreset
from logscope.utils import get_cache_dir


logger = logging.getLogger(__name__)

MAX_FILTER_HISTORY = 50
PRESETS_FILENAME = 'presets.json'

_PRESET_LIST_ADAPTER = TypeAdapter(list[FilterPreset])


class FilterSet:
    """The ordered list of filters currently applied, with undo/redo.

    Every mutation validates first; a rejected change leaves the set and
    its history untouched.
    """

    def __init__(self, filters: list[Any] | None = None):
        self._filters: tuple[Filter, ...] = tuple(parse_filters(filters or []))
        self._past: list[tuple[Filter, ...]] = []
        self._future: list[tuple[Filter, ...]] = []

    @property
    def filters(self) -> list[Filter]:
        return list(self._filters)

    @property
    def enabled(self) -> list[Filter]:
        return [f for f in self._filters if f.enabled]

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    def __len__(self) -> int:
        return len(self._filters)

    def get(self, filter_id: str) -> Filter | None:
        return next((f for f in self._filters if f.id == filter_id), None)

    def _commit(self, filters: tuple[Filter, ...]):
        self._past.append(self._filters)
        if len(self._past) > MAX_FILTER_HISTORY:
            del self._past[0]
        self._future.clear()
        self._filters = filters

    def _position(self, filter_id: str) -> int:
        for i, f in enumerate(self._filters):
            if f.id == filter_id:
                return i
        raise KeyError(filter_id)

    def add(self, data: Any) -> Filter:
        new = parse_filter(data)
        if self.get(new.id) is not None:
            raise FilterValidationError(f'filter id {new.id} already exists')
        self._commit(self._filters + (new,))
        return new

    def update(self, filter_id: str, changes: dict[str, Any]) -> Filter:
        """Replace fields of an existing filter; the result is revalidated."""
        pos = self._position(filter_id)
        current = self._filters[pos]
        data = current.model_dump(by_alias=False)
        data.update(changes)
        data['id'] = filter_id
        updated = parse_filter(data)
        self._commit(self._filters[:pos] + (updated,) + self._filters[pos + 1 :])
        return updated

    def remove(self, filter_id: str) -> Filter:
        pos = self._position(filter_id)
        removed = self._filters[pos]
        self._commit(self._filters[:pos] + self._filters[pos + 1 :])
        return removed

    def toggle(self, filter_id: str) -> Filter:
        pos = self._position(filter_id)
        toggled = self._filters[pos].model_copy(update={'enabled': not self._filters[pos].enabled})
        self._commit(self._filters[:pos] + (toggled,) + self._filters[pos + 1 :])
        return toggled

    def set(self, filters: list[Any]):
        self._commit(tuple(parse_filters(filters)))

    def reset(self):
        if self._filters:
            self._commit(())

    def undo(self) -> bool:
        if not self._past:
            return False
        self._future.append(self._filters)
        self._filters = self._past.pop()
        return True

    def redo(self) -> bool:
        if not self._future:
            return False
        self._past.append(self._filters)
        self._filters = self._future.pop()
        return True


def get_presets_path() -> Path:
    return get_cache_dir('presets') / PRESETS_FILENAME


def dump_preset(preset: FilterPreset) -> str:
    """Serialize a preset to its JSON wire form."""
    return preset.model_dump_json(by_alias=True)


def load_preset(payload: str | bytes | dict) -> FilterPreset:
    """Parse a preset from its JSON wire form (or an already-decoded dict)."""
    try:
        if isinstance(payload, dict):
            return FilterPreset.model_validate(payload)
        return FilterPreset.model_validate_json(payload)
    except ValidationError as e:
        raise FilterValidationError(f'Invalid preset: {e.error_count()} errors: {e.errors()[0]["msg"]}') from e


class PresetStore:
    """Named filter presets persisted as JSON.

    Args:
        path: Storage file; defaults to the presets file in the cache directory
    """

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path) if path else get_presets_path()
        self._lock = threading.Lock()
        self._presets: dict[str, FilterPreset] = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
            presets = _PRESET_LIST_ADAPTER.validate_python(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise LogscopeError(f'Cannot load presets from {self.path}: {e}') from e
        self._presets = {p.id: p for p in presets}
        logger.debug(f'Loaded {len(self._presets)} presets from {self.path}')

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix('.tmp')
        data = [p.model_dump(mode='json', by_alias=True) for p in self._presets.values()]
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def presets(self) -> list[FilterPreset]:
        with self._lock:
            return sorted(self._presets.values(), key=lambda p: p.created_at)

    def get(self, preset_id: str) -> FilterPreset | None:
        with self._lock:
            return self._presets.get(preset_id)

    def find(self, id_or_name: str) -> FilterPreset | None:
        with self._lock:
            if id_or_name in self._presets:
                return self._presets[id_or_name]
            return next((p for p in self._presets.values() if p.name == id_or_name), None)

    def save(self, name: str, filters: list[Any], preset_id: str | None = None) -> FilterPreset:
        """Create a preset, or overwrite the filters of an existing one."""
        if not name.strip():
            raise FilterValidationError('preset name must not be empty')
        validated = parse_filters(filters)
        with self._lock:
            existing = self._presets.get(preset_id) if preset_id else None
            if existing is not None:
                preset = existing.model_copy(update={'name': name, 'filters': validated})
            else:
                kwargs = {'id': preset_id} if preset_id else {}
                preset = FilterPreset(name=name, filters=validated, **kwargs)
            self._presets[preset.id] = preset
            self._save()
        logger.info(f'Saved preset {preset.name!r} ({preset.id}) with {len(validated)} filters')
        return preset

    def apply(self, preset_id: str, filter_set: FilterSet | None = None) -> FilterPreset:
        """Mark a preset as used and, if given, load its filters into filter_set.

        Raises:
            KeyError: Unknown preset id
        """
        with self._lock:
            preset = self._presets.get(preset_id)
            if preset is None:
                raise KeyError(preset_id)
            preset = preset.model_copy(update={'last_used': datetime.now(UTC)})
            self._presets[preset_id] = preset
            self._save()
        if filter_set is not None:
            filter_set.set(preset.filters)
        return preset

    def delete(self, preset_id: str) -> bool:
        with self._lock:
            if preset_id not in self._presets:
                return False
            del self._presets[preset_id]
            self._save()
        return True
