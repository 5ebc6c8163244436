"""Tests for FastAPI endpoints"""

import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient

from logscope.web import app


LOG = """2024-01-15T10:00:00Z INFO [web] server started
2024-01-15T10:00:10Z ERROR [db] connection to 10.0.0.1 refused
2024-01-15T10:00:20Z ERROR [db] connection to 10.0.0.2 refused
2024-01-15T10:01:05Z WARN [web] slow response
2024-01-15T10:02:00Z ERROR [db] connection to 10.0.0.3 refused
no timestamp on this one
"""


@pytest.fixture
def temp_dir():
    tmp_dir = os.path.realpath(tempfile.mkdtemp())
    yield tmp_dir
    shutil.rmtree(tmp_dir, ignore_errors=True)


@pytest.fixture
def log_file(temp_dir):
    path = os.path.join(temp_dir, 'app.log')
    with open(path, 'w') as f:
        f.write(LOG)
    return path


@pytest.fixture
def client(temp_dir):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def loaded(client, log_file):
    """Client with app.log fully ingested as f1."""
    response = client.post('/v1/files', json={'path': log_file, 'wait': True})
    assert response.status_code == 200
    return client


class TestHealthEndpoint:
    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ok'
        assert 'app_version' in data
        assert 'system_resources' in data
        assert data['constants']['chunk_size'] > 0
        assert data['entries'] == 0

    def test_environment_lists_logscope_variables(self, client):
        data = client.get('/health').json()
        assert 'LOGSCOPE_CACHE_DIR' in data['environment']

    def test_metrics(self, loaded):
        response = loaded.get('/metrics')
        assert response.status_code == 200
        assert 'logscope_files_ingested_total' in response.text


class TestFilesEndpoints:
    def test_ingest_and_wait(self, loaded):
        files = loaded.get('/v1/files').json()
        assert len(files) == 1
        meta = files[0]
        assert meta['id'] == 'f1'
        assert meta['status'] == 'completed'
        assert meta['log_count'] == 6
        assert meta['unparsed_lines'] == 1

    def test_get_file(self, loaded):
        assert loaded.get('/v1/files/f1').json()['type'] == 'generic'
        assert loaded.get('/v1/files/f9').status_code == 404

    def test_missing_path(self, client, temp_dir):
        response = client.post('/v1/files', json={'path': os.path.join(temp_dir, 'nope.log')})
        assert response.status_code == 404

    def test_unknown_format(self, client, log_file):
        response = client.post('/v1/files', json={'path': log_file, 'format': 'xml'})
        assert response.status_code == 400

    def test_purge(self, loaded):
        response = loaded.delete('/v1/files/f1', params={'purge': True})
        assert response.status_code == 200
        assert response.json()['removed_entries'] == 6
        assert loaded.get('/v1/files').json() == []
        assert loaded.post('/v1/entries/query', json={}).json()['total'] == 0

    def test_delete_unknown(self, client):
        assert client.delete('/v1/files/f42').status_code == 404


class TestEntriesEndpoints:
    def test_query_all(self, loaded):
        data = loaded.post('/v1/entries/query', json={}).json()
        assert data['total'] == 6
        assert data['entries'][0]['id'] == 'f1:1'
        assert data['entries'][-1]['timestamp'] is None

    def test_query_with_filters(self, loaded):
        response = loaded.post(
            '/v1/entries/query',
            json={'filters': [{'type': 'logLevel', 'levels': ['ERROR']}, {'type': 'text', 'text': '10.0.0.2'}]},
        )
        data = response.json()
        assert data['total'] == 1
        assert data['entries'][0]['line_number'] == 3

    def test_query_paging(self, loaded):
        data = loaded.post('/v1/entries/query', json={'offset': 4, 'limit': 10}).json()
        assert data['total'] == 6
        assert len(data['entries']) == 2

    def test_invalid_filter(self, loaded):
        response = loaded.post('/v1/entries/query', json={'filters': [{'type': 'regex', 'pattern': '('}]})
        assert response.status_code == 400
        assert 'Invalid regex' in response.json()['detail']

    def test_remove_and_undo(self, loaded):
        response = loaded.post('/v1/entries/remove', json={'filters': [{'type': 'source', 'sources': ['db']}]})
        assert response.json()['removed'] == 3
        assert loaded.post('/v1/entries/query', json={}).json()['total'] == 3

        assert loaded.post('/v1/entries/undo').json()['restored'] == 3
        assert loaded.post('/v1/entries/query', json={}).json()['total'] == 6

    def test_remove_by_ids(self, loaded):
        assert loaded.post('/v1/entries/remove', json={'ids': ['f1:1', 'f1:2']}).json()['removed'] == 2

    def test_remove_requires_criteria(self, loaded):
        assert loaded.post('/v1/entries/remove', json={}).status_code == 400


class TestAnalysisEndpoints:
    def test_summary(self, loaded):
        data = loaded.post('/v1/summary', json={}).json()
        assert data['total_logs'] == 5
        assert data['error_count'] == 3

    def test_timeline(self, loaded):
        data = loaded.post('/v1/timeline', json={'zoom': 'minute'}).json()
        assert [p['count'] for p in data['points']] == [3, 1, 1]
        assert data['total_logs'] == 5

    def test_timeline_with_range(self, loaded):
        response = loaded.post(
            '/v1/timeline',
            json={'zoom': 'minute', 'start': '2024-01-15T10:00:00Z', 'end': '2024-01-15T10:00:59Z'},
        )
        data = response.json()
        assert [p['count'] for p in data['points']] == [3]

    def test_timeline_half_open_range(self, loaded):
        response = loaded.post('/v1/timeline', json={'start': '2024-01-15T10:00:00Z'})
        assert response.status_code == 400

    def test_timeline_empty_range(self, loaded):
        response = loaded.post(
            '/v1/timeline', json={'start': '2030-01-01T00:00:00Z', 'end': '2030-01-02T00:00:00Z'}
        )
        assert response.json()['condition'] == 'empty_range'

    def test_anomalies(self, loaded):
        data = loaded.post('/v1/anomalies', json={}).json()
        assert data['by_strategy']['content'] == 1
        assert set(data['entry_severity']) == {'f1:2', 'f1:3', 'f1:5'}

    def test_anomalies_invalid_rule(self, loaded):
        response = loaded.post('/v1/anomalies', json={'rules': [{'name': 'x', 'start_pattern': '('}]})
        assert response.status_code == 400


class TestPresetEndpoints:
    def test_preset_lifecycle(self, client):
        response = client.post(
            '/v1/presets', json={'name': 'errors', 'filters': [{'type': 'logLevel', 'levels': ['ERROR']}]}
        )
        assert response.status_code == 200
        preset = response.json()
        assert preset['lastUsed'] is None
        assert 'createdAt' in preset

        assert [p['name'] for p in client.get('/v1/presets').json()] == ['errors']

        applied = client.post(f'/v1/presets/{preset["id"]}/apply').json()
        assert applied['lastUsed'] is not None

        assert client.delete(f'/v1/presets/{preset["id"]}').status_code == 200
        assert client.get('/v1/presets').json() == []

    def test_applied_preset_becomes_active_filter_set(self, loaded):
        preset = loaded.post(
            '/v1/presets', json={'name': 'db', 'filters': [{'type': 'source', 'sources': ['db']}]}
        ).json()
        loaded.post(f'/v1/presets/{preset["id"]}/apply')

        assert loaded.post('/v1/entries/query', json={}).json()['total'] == 3
        assert loaded.post('/v1/summary', json={}).json()['total_logs'] == 3
        timeline = loaded.post('/v1/timeline', json={'zoom': 'minute'}).json()
        assert timeline['total_logs'] == 3
        # An explicit filter list replaces the active filter set
        assert loaded.post('/v1/entries/query', json={'filters': []}).json()['total'] == 6

    def test_invalid_preset(self, client):
        response = client.post('/v1/presets', json={'name': 'bad', 'filters': [{'type': 'logLevel', 'levels': []}]})
        assert response.status_code == 400

    def test_unknown_preset(self, client):
        assert client.post('/v1/presets/nope/apply').status_code == 404
        assert client.delete('/v1/presets/nope').status_code == 404


class TestPreload:
    def test_preload_from_environment(self, log_file, monkeypatch):
        monkeypatch.setenv('LOGSCOPE_PRELOAD', log_file)
        with TestClient(app) as c:
            app.state.session.wait(timeout=10)
            files = c.get('/v1/files').json()
        assert [f['name'] for f in files] == [log_file]
