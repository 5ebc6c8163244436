"""Tests for LOGSCOPE_* environment configuration."""

import tempfile
from pathlib import Path

from logscope.config import MB, Settings, load_settings
from logscope.presets import get_presets_path
from logscope.utils import get_bool_env, get_cache_base, get_cache_dir, get_int_env


class TestCacheDirConfig:
    """LOGSCOPE_CACHE_DIR is used as given; otherwise the XDG location is used."""

    def test_default(self, monkeypatch):
        monkeypatch.delenv('LOGSCOPE_CACHE_DIR', raising=False)
        monkeypatch.delenv('XDG_CACHE_HOME', raising=False)
        assert get_cache_base() == Path.home() / '.cache' / 'logscope'

    def test_explicit_dir_takes_priority(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.setenv('LOGSCOPE_CACHE_DIR', tmpdir)
            monkeypatch.setenv('XDG_CACHE_HOME', '/should/be/ignored')
            assert get_cache_base() == Path(tmpdir)

    def test_xdg_cache_home(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.delenv('LOGSCOPE_CACHE_DIR', raising=False)
            monkeypatch.setenv('XDG_CACHE_HOME', tmpdir)
            assert get_cache_base() == Path(tmpdir) / 'logscope'

    def test_subdirectory_is_created(self, temp_cache_dir):
        result = get_cache_dir('test_subdir')
        assert result == Path(temp_cache_dir) / 'test_subdir'
        assert result.exists()

    def test_presets_live_in_cache_dir(self, temp_cache_dir):
        assert get_presets_path() == Path(temp_cache_dir) / 'presets' / 'presets.json'


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            'LOG_LEVEL',
            'CHUNK_SIZE_MB',
            'MAX_WORKERS',
            'FORMAT_SAMPLE_LINES',
            'MERGE_CONTINUATIONS',
            'MAX_TIMELINE_BUCKETS',
            'ANOMALY_SENSITIVITY',
        ):
            monkeypatch.delenv(f'LOGSCOPE_{name}', raising=False)
        settings = load_settings()
        assert settings == Settings()
        assert settings.chunk_size == 5 * MB

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('LOGSCOPE_CHUNK_SIZE_MB', '0.5')
        monkeypatch.setenv('LOGSCOPE_MAX_WORKERS', '8')
        monkeypatch.setenv('LOGSCOPE_MERGE_CONTINUATIONS', 'yes')
        monkeypatch.setenv('LOGSCOPE_ANOMALY_SENSITIVITY', '1.5')
        monkeypatch.setenv('LOGSCOPE_LOG_LEVEL', 'debug')
        settings = load_settings()
        assert settings.chunk_size == MB // 2
        assert settings.max_workers == 8
        assert settings.merge_continuations
        assert settings.anomaly_sensitivity == 1.5
        assert settings.log_level == 'DEBUG'

    def test_bad_values_fall_back(self, monkeypatch):
        monkeypatch.setenv('LOGSCOPE_MAX_WORKERS', 'many')
        monkeypatch.setenv('LOGSCOPE_MAX_TIMELINE_BUCKETS', '-3')
        settings = load_settings()
        assert settings.max_workers == 4
        assert settings.max_timeline_buckets == 1

    def test_to_dict_includes_cache_dir(self, temp_cache_dir):
        assert Settings().to_dict()['cache_dir'] == temp_cache_dir


class TestEnvHelpers:
    def test_get_int_env(self, monkeypatch):
        monkeypatch.setenv('LOGSCOPE_TEST_INT', ' 12 ')
        assert get_int_env('LOGSCOPE_TEST_INT', 1) == 12
        monkeypatch.setenv('LOGSCOPE_TEST_INT', '')
        assert get_int_env('LOGSCOPE_TEST_INT', 1) == 1

    def test_get_bool_env(self, monkeypatch):
        for value, expected in [('true', True), ('ON', True), ('0', False), ('no', False), ('maybe', True)]:
            monkeypatch.setenv('LOGSCOPE_TEST_BOOL', value)
            assert get_bool_env('LOGSCOPE_TEST_BOOL', True) is expected
