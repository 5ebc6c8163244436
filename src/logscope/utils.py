"""Environment and filesystem helpers for logscope"""

import logging
import os
from pathlib import Path


ENV_PREFIX = 'LOGSCOPE_'


def get_int_env(key: str, default: int) -> int:
    """Read an integer environment variable, falling back to default when unset or malformed."""
    val = os.getenv(key)
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        logging.getLogger(__name__).warning(f'Ignoring non-integer value for {key}: {val!r}')
        return default


def get_float_env(key: str, default: float) -> float:
    """Read a float environment variable, falling back to default when unset or malformed."""
    val = os.getenv(key)
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        logging.getLogger(__name__).warning(f'Ignoring non-numeric value for {key}: {val!r}')
        return default


def get_str_env(key: str, default: str) -> str:
    return os.getenv(key, default)


def get_bool_env(key: str, default: bool) -> bool:
    """
    Read a boolean environment variable.

    Recognizes: true/false, yes/no, on/off, 1/0 (case-insensitive)

    Args:
        key: Environment variable name
        default: Value used when the variable is unset or unrecognized

    Returns:
        Boolean value or default
    """
    val = os.getenv(key)
    if val is None:
        return default
    val_lower = val.strip().lower()
    if val_lower in ('true', 'yes', 'on', '1'):
        return True
    elif val_lower in ('false', 'no', 'off', '0'):
        return False
    return default


def get_app_env_variables() -> dict[str, str]:
    """Collect every LOGSCOPE_* variable currently set."""
    return {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}


class ShutdownFilter(logging.Filter):
    """Drops the tracebacks uvicorn logs when the server is interrupted."""

    NOISE = ('KeyboardInterrupt', 'CancelledError', 'Shutting down')

    def filter(self, record):
        if record.levelname != 'ERROR':
            return True
        if any(x in str(record.getMessage()) for x in self.NOISE):
            return False
        if record.exc_info and record.exc_info[0]:
            if record.exc_info[0].__name__ in ('KeyboardInterrupt', 'CancelledError', 'SystemExit'):
                return False
        return True


def setup_shutdown_filter():
    shutdown_filter = ShutdownFilter()
    for logger_name in ['uvicorn.error', 'uvicorn', 'asyncio']:
        logging.getLogger(logger_name).addFilter(shutdown_filter)


def get_cache_base() -> Path:
    """Get the base cache directory for logscope.

    Priority:
    1. LOGSCOPE_CACHE_DIR environment variable (if set)
    2. XDG_CACHE_HOME environment variable (if set)
    3. ~/.cache (default)

    Returns:
        Path to the base cache directory (e.g., ~/.cache/logscope)
    """
    explicit = os.environ.get('LOGSCOPE_CACHE_DIR')
    if explicit:
        return Path(explicit)

    xdg_cache = os.environ.get('XDG_CACHE_HOME')
    base = Path(xdg_cache) if xdg_cache else Path.home() / '.cache'
    return base / 'logscope'


def get_cache_dir(subdir: str) -> Path:
    """Get a cache subdirectory, creating it if necessary.

    Args:
        subdir: Subdirectory name (e.g., 'presets')

    Returns:
        Path to the cache subdirectory
    """
    cache_dir = get_cache_base() / subdir
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def human_readable_size(size_bytes: float) -> str:
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024:
            return f'{size_bytes:.2f} {unit}'
        size_bytes /= 1024
    return f'{size_bytes:.2f} PB'
