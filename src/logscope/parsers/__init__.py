"""Line formats and the per-file LineParser."""

from .base import LineFormat, parse_timestamp
from .csv_format import CsvFormat
from .generic import GenericFormat
from .jsonl import JsonLinesFormat
from .line_parser import FORMATS, LineParser, detect_format, get_format, parse_file, sniff_file
from .syslog import SyslogFormat


__all__ = [
    'LineFormat',
    'LineParser',
    'CsvFormat',
    'GenericFormat',
    'JsonLinesFormat',
    'SyslogFormat',
    'FORMATS',
    'detect_format',
    'get_format',
    'parse_file',
    'parse_timestamp',
    'sniff_file',
]
