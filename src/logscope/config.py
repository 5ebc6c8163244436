"""Runtime settings, read from LOGSCOPE_* environment variables."""

import logging
from dataclasses import asdict, dataclass

from logscope.utils import get_bool_env, get_cache_base, get_float_env, get_int_env, get_str_env


MB = 1024 * 1024

DEFAULT_CHUNK_SIZE_MB = 5
DEFAULT_MAX_WORKERS = 4
DEFAULT_FORMAT_SAMPLE_LINES = 50
DEFAULT_MAX_TIMELINE_BUCKETS = 10_000
DEFAULT_ANOMALY_SENSITIVITY = 0.7


@dataclass(frozen=True)
class Settings:
    """Effective configuration for one analysis session.

    Attributes:
        log_level: Name of the logging level (DEBUG, INFO, ...)
        chunk_size: ChunkReader read size in bytes
        max_workers: Number of files processed concurrently
        format_sample_lines: Lines inspected when detecting a file's line format
        merge_continuations: Fold indented/stack-frame lines into the previous entry
        max_timeline_buckets: Upper bound on the dense timeline axis
        anomaly_sensitivity: Rate strategy sensitivity (threshold is 2x this value)
    """

    log_level: str = 'INFO'
    chunk_size: int = DEFAULT_CHUNK_SIZE_MB * MB
    max_workers: int = DEFAULT_MAX_WORKERS
    format_sample_lines: int = DEFAULT_FORMAT_SAMPLE_LINES
    merge_continuations: bool = False
    max_timeline_buckets: int = DEFAULT_MAX_TIMELINE_BUCKETS
    anomaly_sensitivity: float = DEFAULT_ANOMALY_SENSITIVITY

    def to_dict(self) -> dict:
        data = asdict(self)
        data['cache_dir'] = str(get_cache_base())
        return data


def load_settings() -> Settings:
    """Build Settings from the environment, clamping values to sane minimums."""
    chunk_mb = get_float_env('LOGSCOPE_CHUNK_SIZE_MB', DEFAULT_CHUNK_SIZE_MB)
    return Settings(
        log_level=get_str_env('LOGSCOPE_LOG_LEVEL', 'INFO').upper(),
        chunk_size=max(1, int(chunk_mb * MB)),
        max_workers=max(1, get_int_env('LOGSCOPE_MAX_WORKERS', DEFAULT_MAX_WORKERS)),
        format_sample_lines=max(1, get_int_env('LOGSCOPE_FORMAT_SAMPLE_LINES', DEFAULT_FORMAT_SAMPLE_LINES)),
        merge_continuations=get_bool_env('LOGSCOPE_MERGE_CONTINUATIONS', False),
        max_timeline_buckets=max(1, get_int_env('LOGSCOPE_MAX_TIMELINE_BUCKETS', DEFAULT_MAX_TIMELINE_BUCKETS)),
        anomaly_sensitivity=max(0.01, get_float_env('LOGSCOPE_ANOMALY_SENSITIVITY', DEFAULT_ANOMALY_SENSITIVITY)),
    )


def configure_logging(level_name: str | None = None):
    """Configure root logging once, using LOGSCOPE_LOG_LEVEL unless a level is given."""
    name = (level_name or get_str_env('LOGSCOPE_LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, name, logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logging.getLogger('logscope').setLevel(level)
    return level
