"""Analysis commands: summary, filter, timeline and anomalies."""

import json
import sys

import click
from pydantic import TypeAdapter, ValidationError

from logscope.anomaly import SequenceRule
from logscope.cli.common import build_filters, echo_model, filter_options, input_options, open_session, time_selection
from logscope.models import ZoomLevel


@click.command('summary')
@input_options
@filter_options
def summary_command(paths, format_name, json_output, no_color, verbose, **filter_args):
    """Show totals, top sources and top errors.

    \b
    Examples:
        logscope summary /var/log/app.log
        logscope summary app.log worker.log --level ERROR --json
    """
    filters = build_filters(**filter_args)
    with open_session(paths, format_name, verbose) as session:
        echo_model(session.summary(filters), json_output, no_color)


@click.command('filter')
@input_options
@filter_options
@click.option('--limit', '-n', type=int, default=100, show_default=True, help='Maximum entries to print (0 = all)')
@click.option('--offset', type=int, default=0, help='Skip this many matching entries')
def filter_command(paths, format_name, json_output, no_color, verbose, limit, offset, **filter_args):
    """Print the entries matching every given filter.

    \b
    Examples:
        logscope filter app.log --level ERROR --level FATAL
        logscope filter app.log --source db --text timeout
        logscope filter app.log --regex 'user=\\d+' --since 2024-01-15
    """
    if limit < 0 or offset < 0:
        click.echo('Error: --limit and --offset must be non-negative', err=True)
        sys.exit(1)
    filters = build_filters(**filter_args)
    with open_session(paths, format_name, verbose) as session:
        echo_model(session.query(filters, offset=offset, limit=limit or None), json_output, no_color)


@click.command('timeline')
@input_options
@filter_options
@click.option(
    '--zoom',
    '-z',
    type=click.Choice([z.value for z in ZoomLevel]),
    default=ZoomLevel.HOUR.value,
    show_default=True,
    help='Bucket width',
)
def timeline_command(paths, format_name, json_output, no_color, verbose, zoom, **filter_args):
    """Count entries per time bucket.

    --since/--until also fix the timeline range, so empty buckets at the
    edges are shown.

    \b
    Examples:
        logscope timeline app.log --zoom minute
        logscope timeline app.log --zoom hour --since 2024-01-15 --until 2024-01-16
    """
    filters = build_filters(**filter_args)
    selection = time_selection(filter_args.get('since'), filter_args.get('until'))
    with open_session(paths, format_name, verbose) as session:
        echo_model(session.timeline(ZoomLevel(zoom), selection, filters), json_output, no_color)


@click.command('anomalies')
@input_options
@filter_options
@click.option('--sensitivity', type=float, default=None, help='Rate sensitivity (default 0.7; threshold is 2x)')
@click.option(
    '--rules',
    'rules_file',
    type=click.Path(exists=True, dir_okay=False),
    help='JSON file with a list of sequence rules',
)
def anomalies_command(paths, format_name, json_output, no_color, verbose, sensitivity, rules_file, **filter_args):
    """Detect volume spikes, repeated errors and broken sequences.

    \b
    Rules file example:
        [{"name": "job", "start_pattern": "job \\\\d+ started",
          "end_pattern": "job \\\\d+ finished", "key_pattern": "job (\\\\d+)",
          "max_gap_seconds": 300}]
    """
    rules = []
    if rules_file:
        try:
            with open(rules_file, encoding='utf-8') as f:
                rules = TypeAdapter(list[SequenceRule]).validate_python(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            click.echo(f'Error: invalid rules file {rules_file}: {e}', err=True)
            sys.exit(1)
    if sensitivity is not None and sensitivity <= 0:
        click.echo('Error: --sensitivity must be positive', err=True)
        sys.exit(1)

    filters = build_filters(**filter_args)
    with open_session(paths, format_name, verbose) as session:
        report = session.anomalies(filters, rules=rules, sensitivity=sensitivity)
        echo_model(report, json_output, no_color)
