"""Prometheus metrics for logscope"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Ingestion Metrics
# ============================================================================

files_ingested_total = Counter(
    'logscope_files_ingested_total',
    'Files whose processing reached a terminal state',
    ['status'],  # completed, error, cancelled
)

lines_parsed_total = Counter('logscope_lines_parsed_total', 'Lines turned into structured entries')

lines_unparsed_total = Counter('logscope_lines_unparsed_total', 'Lines kept as raw-only entries (no timestamp)')

bytes_read_total = Counter('logscope_bytes_read_total', 'Bytes read from log files')

ingest_duration_seconds = Histogram(
    'logscope_ingest_duration_seconds',
    'Time to process one file end to end',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    # 10ms to 5 minutes - small files up to multi-GB logs
)

file_size_bytes = Histogram(
    'logscope_file_size_bytes',
    'Size of files being ingested',
    buckets=[
        1024,  # 1KB
        102_400,  # 100KB
        1_048_576,  # 1MB
        10_485_760,  # 10MB
        104_857_600,  # 100MB
        1_073_741_824,  # 1GB
        10_737_418_240,  # 10GB
    ],
)

active_workers = Gauge('logscope_active_workers', 'File workers currently running')

entries_in_store = Gauge('logscope_entries_in_store', 'Entries held by the session store')


# ============================================================================
# Query Metrics
# ============================================================================

filter_requests_total = Counter('logscope_filter_requests_total', 'Filter queries', ['status'])

filter_duration_seconds = Histogram(
    'logscope_filter_duration_seconds',
    'Time spent evaluating filter queries',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

timeline_requests_total = Counter('logscope_timeline_requests_total', 'Timeline aggregations', ['zoom_level'])

timeline_duration_seconds = Histogram(
    'logscope_timeline_duration_seconds',
    'Time spent aggregating timelines',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


# ============================================================================
# Anomaly Metrics
# ============================================================================

anomaly_runs_total = Counter(
    'logscope_anomaly_runs_total',
    'Anomaly detection runs',
    ['status'],  # success, cancelled, stale
)

anomaly_duration_seconds = Histogram(
    'logscope_anomaly_duration_seconds',
    'Time spent in anomaly detection',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

anomalies_found_total = Counter('logscope_anomalies_found_total', 'Anomalies reported', ['strategy', 'severity'])


# ============================================================================
# Error Metrics
# ============================================================================

errors_total = Counter(
    'logscope_errors_total',
    'Total errors by type',
    ['error_type'],  # invalid_filter, file_not_found, processing_error, internal_error
)

http_responses_total = Counter(
    'logscope_http_responses_total', 'HTTP responses by status code', ['method', 'endpoint', 'status_code']
)


# ============================================================================
# Helper Functions
# ============================================================================


def record_file_ingested(status: str, duration: float, size_bytes: int, parsed: int, unparsed: int):
    """
    Record metrics for one processed file.

    Args:
        status: Terminal status (completed, error, cancelled)
        duration: Processing time in seconds
        size_bytes: Bytes read
        parsed: Lines parsed into structured entries
        unparsed: Lines kept raw-only
    """
    files_ingested_total.labels(status=status).inc()
    ingest_duration_seconds.observe(duration)
    file_size_bytes.observe(size_bytes)
    bytes_read_total.inc(size_bytes)
    lines_parsed_total.inc(parsed)
    lines_unparsed_total.inc(unparsed)


def record_filter_request(status: str, duration: float):
    filter_requests_total.labels(status=status).inc()
    filter_duration_seconds.observe(duration)


def record_timeline_request(zoom_level: str, duration: float):
    timeline_requests_total.labels(zoom_level=zoom_level).inc()
    timeline_duration_seconds.observe(duration)


def record_anomaly_run(status: str, duration: float, anomalies):
    """
    Record metrics for an anomaly detection run.

    Args:
        status: Run status (success, cancelled, stale)
        duration: Run duration in seconds
        anomalies: Anomalies reported by the run
    """
    anomaly_runs_total.labels(status=status).inc()
    anomaly_duration_seconds.observe(duration)
    for anomaly in anomalies:
        anomalies_found_total.labels(strategy=anomaly.strategy, severity=anomaly.severity.value).inc()


def record_error(error_type: str):
    errors_total.labels(error_type=error_type).inc()


def record_http_response(method: str, endpoint: str, status_code: int):
    """
    Record HTTP response.

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Endpoint path
        status_code: HTTP status code
    """
    http_responses_total.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
