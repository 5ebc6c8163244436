import logging
import os
import platform
from contextlib import asynccontextmanager
from functools import partial

import anyio
import psutil
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import TypeAdapter, ValidationError

from logscope import prometheus as prom
from logscope.__version__ import __version__
from logscope.anomaly import SequenceRule
from logscope.config import configure_logging, load_settings
from logscope.errors import FilterValidationError, LogscopeError, ProcessingError
from logscope.models import (
    AggregatedTimelineData,
    AnomalyReport,
    AnomalyRequest,
    EntriesResponse,
    FileMetadata,
    FilterPreset,
    IngestRequest,
    PresetRequest,
    QueryRequest,
    RemoveRequest,
    StatisticalSummary,
    TimelineRequest,
    TimeSelection,
)
from logscope.session import AnalysisSession
from logscope.utils import get_app_env_variables, get_cache_base


log_level = configure_logging()

logger = logging.getLogger(__name__)

_RULES_ADAPTER = TypeAdapter(list[SequenceRule])


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: one analysis session per process
    settings = load_settings()
    session = AnalysisSession(settings)
    app.state.session = session
    app.state.settings = settings

    preload = os.getenv('LOGSCOPE_PRELOAD')
    if preload:
        paths = [p for p in preload.split(os.pathsep) if p.strip()]
        file_ids = session.ingest(paths, format_name=os.getenv('LOGSCOPE_PRELOAD_FORMAT') or None, wait=False)
        logger.info(f'Preloading {len(file_ids)} files: {", ".join(file_ids)}')

    yield

    # Shutdown
    await anyio.to_thread.run_sync(session.close)


app = FastAPI(
    title='logscope API',
    version=__version__,
    description="""
    Streaming log analysis over HTTP.

    1. **Ingest** files with `POST /v1/files`; they are chunked, parsed and indexed in the background
    2. **Query** entries with composable filters
    3. **Aggregate** them into timelines and summaries
    4. **Detect** rate, content and sequence anomalies
    """,
    license_info={'name': 'MIT'},
    lifespan=lifespan,
    docs_url='/docs',
    redoc_url='/redoc',
)


def get_session() -> AnalysisSession:
    return app.state.session


def get_os_info() -> dict:
    return {
        'system': platform.system(),
        'release': platform.release(),
        'machine': platform.machine(),
    }


def get_system_resources() -> dict:
    mem = psutil.virtual_memory()
    return {
        'cpu_cores': psutil.cpu_count(logical=True),
        'ram_total_gb': round(mem.total / (1024**3), 2),
        'ram_available_gb': round(mem.available / (1024**3), 2),
        'ram_percent_used': mem.percent,
        'process_rss_mb': round(psutil.Process().memory_info().rss / (1024**2), 1),
    }


def get_python_packages() -> dict:
    import importlib.metadata

    python_packages = {}
    for package in ['fastapi', 'pydantic', 'uvicorn', 'click', 'psutil', 'prometheus-client', 'anyio']:
        try:
            python_packages[package] = importlib.metadata.version(package)
        except importlib.metadata.PackageNotFoundError:
            pass
    return python_packages


def _bad_request(endpoint: str, method: str, e: Exception):
    prom.record_error('invalid_filter')
    prom.record_http_response(method, endpoint, 400)
    raise HTTPException(status_code=400, detail=str(e))


@app.get('/health', tags=['General'])
async def health():
    """
    Health check and system introspection endpoint.

    Returns service status, version, platform and resource information,
    effective settings and the number of loaded entries.
    """
    session = get_session()
    prom.record_http_response('GET', '/health', 200)
    return {
        'status': 'ok',
        'app_version': __version__,
        'python_version': platform.python_version(),
        'os_info': get_os_info(),
        'system_resources': get_system_resources(),
        'python_packages': get_python_packages(),
        'constants': {**app.state.settings.to_dict(), 'CACHE_DIR': str(get_cache_base())},
        'environment': get_app_env_variables(),
        'files': len(session.files()),
        'entries': len(session.store),
    }


@app.get('/metrics', tags=['Monitoring'], include_in_schema=True)
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes ingestion throughput, query latencies, anomaly counts and errors.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ============================================================================
# Files
# ============================================================================


@app.post('/v1/files', tags=['Files'], response_model=FileMetadata)
async def ingest_file(request: IngestRequest) -> FileMetadata:
    """Queue a file for chunked parsing and indexing."""
    session = get_session()
    try:
        file_ids = await anyio.to_thread.run_sync(
            partial(session.ingest, [request.path], format_name=request.format, wait=request.wait)
        )
    except ProcessingError as e:
        prom.record_error('file_not_found')
        prom.record_http_response('POST', '/v1/files', 404)
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        _bad_request('/v1/files', 'POST', e)
    prom.record_http_response('POST', '/v1/files', 200)
    return session.coordinator.get(file_ids[0])


@app.get('/v1/files', tags=['Files'], response_model=list[FileMetadata])
async def list_files() -> list[FileMetadata]:
    prom.record_http_response('GET', '/v1/files', 200)
    return get_session().files()


@app.get('/v1/files/{file_id}', tags=['Files'], response_model=FileMetadata)
async def get_file(file_id: str) -> FileMetadata:
    meta = get_session().coordinator.get(file_id)
    if meta is None:
        prom.record_http_response('GET', '/v1/files/{file_id}', 404)
        raise HTTPException(status_code=404, detail=f'Unknown file {file_id}')
    prom.record_http_response('GET', '/v1/files/{file_id}', 200)
    return meta


@app.delete('/v1/files/{file_id}', tags=['Files'])
async def delete_file(
    file_id: str, purge: bool = Query(False, description='Also drop every entry of the file')
) -> dict:
    """Cancel processing of a file; with purge, remove its entries as well."""
    session = get_session()
    if session.coordinator.get(file_id) is None:
        prom.record_http_response('DELETE', '/v1/files/{file_id}', 404)
        raise HTTPException(status_code=404, detail=f'Unknown file {file_id}')
    if purge:
        removed = await anyio.to_thread.run_sync(session.purge_file, file_id)
        result = {'file_id': file_id, 'cancelled': True, 'removed_entries': removed}
    else:
        result = {'file_id': file_id, 'cancelled': session.cancel_file(file_id), 'removed_entries': 0}
    prom.record_http_response('DELETE', '/v1/files/{file_id}', 200)
    return result


# ============================================================================
# Entries
# ============================================================================


@app.post('/v1/entries/query', tags=['Entries'], response_model=EntriesResponse)
async def query_entries(request: QueryRequest) -> EntriesResponse:
    """Return a page of entries matching every enabled filter."""
    session = get_session()
    try:
        result = await anyio.to_thread.run_sync(
            partial(session.query, request.filters, offset=request.offset, limit=request.limit)
        )
    except FilterValidationError as e:
        _bad_request('/v1/entries/query', 'POST', e)
    prom.record_http_response('POST', '/v1/entries/query', 200)
    return result


@app.post('/v1/entries/remove', tags=['Entries'])
async def remove_entries(request: RemoveRequest) -> dict:
    """Remove entries by id or by filters. Undo with /v1/entries/undo."""
    session = get_session()
    if not request.ids and not request.filters:
        _bad_request('/v1/entries/remove', 'POST', ValueError('give ids or filters'))
    try:
        if request.ids:
            removed = await anyio.to_thread.run_sync(session.remove_entries, request.ids)
        else:
            removed = await anyio.to_thread.run_sync(session.remove_matching, request.filters)
    except FilterValidationError as e:
        _bad_request('/v1/entries/remove', 'POST', e)
    prom.record_http_response('POST', '/v1/entries/remove', 200)
    return {'removed': removed, 'store_version': session.store.version}


@app.post('/v1/entries/undo', tags=['Entries'])
async def undo_removal() -> dict:
    session = get_session()
    restored = await anyio.to_thread.run_sync(session.undo_removal)
    prom.record_http_response('POST', '/v1/entries/undo', 200)
    return {'restored': restored, 'store_version': session.store.version}


# ============================================================================
# Analysis
# ============================================================================


@app.post('/v1/summary', tags=['Analysis'], response_model=StatisticalSummary)
async def summary(request: QueryRequest) -> StatisticalSummary:
    session = get_session()
    try:
        result = await anyio.to_thread.run_sync(session.summary, request.filters)
    except FilterValidationError as e:
        _bad_request('/v1/summary', 'POST', e)
    prom.record_http_response('POST', '/v1/summary', 200)
    return result


@app.post('/v1/timeline', tags=['Analysis'], response_model=AggregatedTimelineData)
async def timeline(request: TimelineRequest) -> AggregatedTimelineData:
    """Dense, epoch-aligned bucket counts per severity class."""
    session = get_session()
    try:
        selection = None
        if request.start is not None or request.end is not None:
            if request.start is None or request.end is None:
                raise ValueError('start and end must be given together')
            selection = TimeSelection(start=request.start, end=request.end)
        result = await anyio.to_thread.run_sync(
            partial(session.timeline, request.zoom, selection, request.filters)
        )
    except (ValidationError, ValueError) as e:
        _bad_request('/v1/timeline', 'POST', e)
    prom.record_http_response('POST', '/v1/timeline', 200)
    return result


@app.post('/v1/anomalies', tags=['Analysis'], response_model=AnomalyReport)
async def anomalies(request: AnomalyRequest) -> AnomalyReport:
    """Run rate, content and sequence detection over the current entries.

    A result computed over entries that changed meanwhile comes back empty
    with ``condition='stale'``.
    """
    session = get_session()
    try:
        rules = _RULES_ADAPTER.validate_python(request.rules)
        report = await anyio.to_thread.run_sync(
            partial(session.anomalies, request.filters, rules=rules, sensitivity=request.sensitivity)
        )
    except (ValidationError, ValueError) as e:
        _bad_request('/v1/anomalies', 'POST', e)
    except LogscopeError as e:
        logger.error(f'Anomaly detection failed: {e!s}')
        prom.record_error('internal_error')
        prom.record_http_response('POST', '/v1/anomalies', 500)
        raise HTTPException(status_code=500, detail=f'Internal error: {e!s}')
    prom.record_http_response('POST', '/v1/anomalies', 200)
    return report


# ============================================================================
# Presets
# ============================================================================


@app.get('/v1/presets', tags=['Presets'], response_model=list[FilterPreset], response_model_by_alias=True)
async def list_presets() -> list[FilterPreset]:
    prom.record_http_response('GET', '/v1/presets', 200)
    return get_session().presets.presets()


@app.post('/v1/presets', tags=['Presets'], response_model=FilterPreset, response_model_by_alias=True)
async def save_preset(request: PresetRequest) -> FilterPreset:
    try:
        preset = get_session().presets.save(request.name, request.filters, preset_id=request.id)
    except FilterValidationError as e:
        _bad_request('/v1/presets', 'POST', e)
    prom.record_http_response('POST', '/v1/presets', 200)
    return preset


@app.post(
    '/v1/presets/{preset_id}/apply', tags=['Presets'], response_model=FilterPreset, response_model_by_alias=True
)
async def apply_preset(preset_id: str) -> FilterPreset:
    """Make the preset's filters the session's active filter set."""
    session = get_session()
    try:
        preset = session.presets.apply(preset_id, session.filter_set)
    except KeyError:
        prom.record_http_response('POST', '/v1/presets/{preset_id}/apply', 404)
        raise HTTPException(status_code=404, detail=f'Unknown preset {preset_id}')
    prom.record_http_response('POST', '/v1/presets/{preset_id}/apply', 200)
    return preset


@app.delete('/v1/presets/{preset_id}', tags=['Presets'])
async def delete_preset(preset_id: str) -> dict:
    if not get_session().presets.delete(preset_id):
        prom.record_http_response('DELETE', '/v1/presets/{preset_id}', 404)
        raise HTTPException(status_code=404, detail=f'Unknown preset {preset_id}')
    prom.record_http_response('DELETE', '/v1/presets/{preset_id}', 200)
    return {'deleted': preset_id}
