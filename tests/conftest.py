"""Pytest configuration and shared fixtures for logscope tests.

The auto-use fixture keeps presets and other cache files of every test in
its own temporary directory.
"""

import shutil
import tempfile
from datetime import UTC, datetime, timedelta

import pytest

from logscope.models import LogEntry


@pytest.fixture(autouse=True)
def isolate_cache_directory(monkeypatch):
    """Point LOGSCOPE_CACHE_DIR at a fresh temporary directory for each test.

    This ensures:
    - Tests don't pollute the user's ~/.cache/logscope directory
    - Tests don't interfere with each other through saved presets
    """
    temp_cache_dir = tempfile.mkdtemp(prefix='logscope_test_cache_')
    monkeypatch.setenv('LOGSCOPE_CACHE_DIR', temp_cache_dir)

    yield temp_cache_dir

    shutil.rmtree(temp_cache_dir, ignore_errors=True)


@pytest.fixture
def temp_cache_dir(isolate_cache_directory):
    """Path of the isolated cache directory for this test."""
    return isolate_cache_directory


BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)


def make_entry(
    line_number: int,
    seconds: float | None = 0,
    level: str | None = 'INFO',
    source: str | None = 'app',
    message: str = 'hello',
    file_id: str = 'f1',
    raw: str | None = None,
) -> LogEntry:
    """Build a LogEntry at BASE_TIME + seconds (None makes it raw-only)."""
    timestamp = BASE_TIME + timedelta(seconds=seconds) if seconds is not None else None
    if timestamp is None:
        level = source = None
    return LogEntry(
        id=LogEntry.make_id(file_id, line_number),
        file_id=file_id,
        line_number=line_number,
        timestamp=timestamp,
        level=level,
        source=source,
        message=message if timestamp is not None else '',
        raw=raw if raw is not None else f'{level} [{source}] {message}',
    )
