"""Tests for the logscope command line."""

import json
import os
import shutil
import tempfile

from click.testing import CliRunner

from logscope.cli.main import cli


LOG = """2024-01-15T10:00:00Z INFO [web] server started
2024-01-15T10:00:10Z ERROR [db] connection to 10.0.0.1 refused
2024-01-15T10:00:20Z ERROR [db] connection to 10.0.0.2 refused
2024-01-15T10:01:05Z WARN [web] slow response
2024-01-15T10:02:00Z ERROR [db] connection to 10.0.0.3 refused
no timestamp on this one
2024-01-15T10:03:30Z INFO [jobs] job 7 started
"""


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()
        self.temp_dir = tempfile.mkdtemp()
        self.log = os.path.join(self.temp_dir, 'app.log')
        with open(self.log, 'w') as f:
            f.write(LOG)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def invoke(self, *args):
        return self.runner.invoke(cli, list(args))

    def test_version(self):
        result = self.invoke('--version')
        assert result.exit_code == 0
        assert 'logscope' in result.output

    def test_summary_is_default_command(self):
        result = self.invoke(self.log, '--no-color')
        assert result.exit_code == 0, result.output
        assert 'Entries: 6 (1 without timestamp)' in result.output
        assert 'Errors: 3' in result.output

    def test_summary_json(self):
        result = self.invoke('summary', self.log, '--json')
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data['total_logs'] == 6
        assert data['top_sources'][0] == {'name': 'db', 'count': 3}

    def test_filter_levels_and_source(self):
        result = self.invoke('filter', self.log, '--level', 'error', '--source', 'db', '--json')
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data['total'] == 3
        assert [e['line_number'] for e in data['entries']] == [2, 3, 5]

    def test_filter_text_output(self):
        result = self.invoke('filter', self.log, '--text', 'SLOW', '--no-color')
        assert result.exit_code == 0
        assert 'slow response' in result.output
        assert '1 of 1 matching entries' in result.output

    def test_filter_since_until(self):
        result = self.invoke(
            'filter', self.log, '--since', '2024-01-15T10:00:05', '--until', '2024-01-15T10:01:30', '--json'
        )
        assert json.loads(result.stdout)['total'] == 3

    def test_filter_limit(self):
        result = self.invoke('filter', self.log, '--limit', '2', '--json')
        data = json.loads(result.stdout)
        assert data['total'] == 7
        assert len(data['entries']) == 2

    def test_invalid_regex(self):
        result = self.invoke('filter', self.log, '--regex', '(unclosed')
        assert result.exit_code == 2
        assert 'Invalid regex' in result.output

    def test_negative_limit(self):
        result = self.invoke('filter', self.log, '--limit', '-1')
        assert result.exit_code == 1

    def test_verbose_reports_file_status(self):
        result = self.invoke('summary', self.log, '--verbose', '--no-color')
        assert result.exit_code == 0
        assert '[completed] 100%  7 entries' in result.output
        assert ' B)' in result.output

    def test_missing_file(self):
        result = self.invoke('filter', os.path.join(self.temp_dir, 'nope.log'))
        assert result.exit_code == 2

    def test_timeline(self):
        result = self.invoke('timeline', self.log, '--zoom', 'minute', '--json')
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [p['count'] for p in data['points']] == [3, 1, 1, 1]
        assert data['zoom_level'] == 'minute'

    def test_timeline_text(self):
        result = self.invoke('timeline', self.log, '-z', 'hour', '--no-color')
        assert result.exit_code == 0
        assert 'Timeline (hour' in result.output

    def test_anomalies_with_rules(self):
        rules = os.path.join(self.temp_dir, 'rules.json')
        with open(rules, 'w') as f:
            json.dump(
                [{'name': 'job', 'start_pattern': r'job \d+ started', 'end_pattern': r'job \d+ done', 'key_pattern': r'job (\d+)'}],
                f,
            )
        result = self.invoke('anomalies', self.log, '--rules', rules, '--json')
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data['by_strategy'] == {
            'rate': 0,
            'content': 1,
            'sequence': 1,
            'security': 0,
            'correlation': 0,
            'burst': 0,
        }

    def test_anomalies_bad_rules_file(self):
        rules = os.path.join(self.temp_dir, 'rules.json')
        with open(rules, 'w') as f:
            f.write('[{"name": "x"}]')
        result = self.invoke('anomalies', self.log, '--rules', rules)
        assert result.exit_code == 1
        assert 'invalid rules file' in result.output


class TestPresetCommands:
    def setup_method(self):
        self.runner = CliRunner()
        self.temp_dir = tempfile.mkdtemp()
        self.log = os.path.join(self.temp_dir, 'app.log')
        with open(self.log, 'w') as f:
            f.write(LOG)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_save_list_show_delete(self):
        result = self.runner.invoke(cli, ['presets', 'save', 'db-errors', '--level', 'ERROR', '--source', 'db'])
        assert result.exit_code == 0, result.output
        assert 'Saved preset db-errors' in result.output

        listed = json.loads(self.runner.invoke(cli, ['presets', 'list', '--json']).stdout)
        assert [p['name'] for p in listed] == ['db-errors']
        assert listed[0]['lastUsed'] is None

        shown = self.runner.invoke(cli, ['presets', 'show', 'db-errors', '--no-color'])
        assert 'logLevel' in shown.output

        assert self.runner.invoke(cli, ['presets', 'delete', 'db-errors']).exit_code == 0
        assert 'No presets saved' in self.runner.invoke(cli, ['presets', 'list']).output

    def test_filter_with_preset_marks_it_used(self):
        self.runner.invoke(cli, ['presets', 'save', 'errors', '--level', 'ERROR'])
        result = self.runner.invoke(cli, ['filter', self.log, '--preset', 'errors', '--text', '10.0.0.2', '--json'])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)['total'] == 1

        listed = json.loads(self.runner.invoke(cli, ['presets', 'list', '--json']).stdout)
        assert listed[0]['lastUsed'] is not None

    def test_unknown_preset(self):
        result = self.runner.invoke(cli, ['filter', self.log, '--preset', 'ghost'])
        assert result.exit_code == 2
        assert 'no preset named' in result.output

    def test_save_requires_filters(self):
        result = self.runner.invoke(cli, ['presets', 'save', 'empty'])
        assert result.exit_code == 1

    def test_import(self):
        payload = {
            'id': 'abc123',
            'name': 'imported',
            'filters': [{'type': 'text', 'text': 'refused', 'caseSensitive': False}],
            'createdAt': '2024-01-01T00:00:00Z',
            'lastUsed': None,
        }
        path = os.path.join(self.temp_dir, 'preset.json')
        with open(path, 'w') as f:
            json.dump(payload, f)
        result = self.runner.invoke(cli, ['presets', 'import', path])
        assert result.exit_code == 0, result.output
        shown = json.loads(self.runner.invoke(cli, ['presets', 'show', 'abc123', '--json']).stdout)
        assert shown['name'] == 'imported'
