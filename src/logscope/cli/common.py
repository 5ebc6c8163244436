"""Options and helpers shared by the analysis commands."""

import json
import sys
from datetime import UTC, datetime

import click

from logscope.config import configure_logging, load_settings
from logscope.errors import LogscopeError
from logscope.models import (
    Filter,
    LogLevelFilter,
    RegexFilter,
    SourceFilter,
    TextFilter,
    TimeSelection,
    TimestampFilter,
)
from logscope.parsers import FORMATS
from logscope.presets import PresetStore
from logscope.session import AnalysisSession


DATETIME_FORMATS = ['%Y-%m-%d', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S', '%Y-%m-%dT%H:%M:%S%z']
EARLIEST = datetime(1970, 1, 1, tzinfo=UTC)
LATEST = datetime(9999, 12, 31, 23, 59, 59, tzinfo=UTC)


def input_options(f):
    """Paths to analyze plus format and output switches."""
    options = [
        click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False)),
        click.option(
            '--format', '-f', 'format_name', type=click.Choice(sorted(FORMATS)), help='Line format (default: detect)'
        ),
        click.option('--json', 'json_output', is_flag=True, help='Output in JSON format'),
        click.option('--no-color', is_flag=True, help='Disable colored output'),
        click.option('--verbose', '-v', is_flag=True, help='Enable debug logging'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def filter_options(f):
    """Options that build the filter list of a query."""
    options = [
        click.option('--level', '-l', 'levels', multiple=True, help='Keep entries with this level (repeatable)'),
        click.option('--source', '-s', 'sources', multiple=True, help='Keep entries from this source (repeatable)'),
        click.option('--text', '-t', help='Keep entries whose message contains this text'),
        click.option('--case-sensitive', is_flag=True, help='Make --text case-sensitive'),
        click.option('--regex', '-e', help='Keep entries whose message matches this regex'),
        click.option('--ignore-case', '-i', is_flag=True, help='Make --regex case-insensitive'),
        click.option('--since', type=click.DateTime(DATETIME_FORMATS), help='Earliest timestamp (UTC unless offset given)'),
        click.option('--until', type=click.DateTime(DATETIME_FORMATS), help='Latest timestamp (inclusive)'),
        click.option('--preset', '-p', help='Prepend the filters of a saved preset (id or name)'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def time_selection(since: datetime | None, until: datetime | None) -> TimeSelection | None:
    if since is None and until is None:
        return None
    return TimeSelection(start=since or EARLIEST, end=until or LATEST)


def build_filters(
    levels: tuple[str, ...] = (),
    sources: tuple[str, ...] = (),
    text: str | None = None,
    case_sensitive: bool = False,
    regex: str | None = None,
    ignore_case: bool = False,
    since: datetime | None = None,
    until: datetime | None = None,
    preset: str | None = None,
    presets: PresetStore | None = None,
) -> list[Filter]:
    """Translate command-line options into filters.

    Raises:
        click.BadParameter: Unknown preset or invalid filter value
    """
    filters: list[Filter] = []
    if preset:
        store = presets or PresetStore()
        found = store.find(preset)
        if found is None:
            raise click.BadParameter(f'no preset named {preset!r}', param_hint='--preset')
        store.apply(found.id)
        filters.extend(found.filters)
    try:
        if levels:
            filters.append(LogLevelFilter(levels=list(levels), name='--level'))
        if sources:
            filters.append(SourceFilter(sources=list(sources), name='--source'))
        if text:
            filters.append(TextFilter(text=text, case_sensitive=case_sensitive, name='--text'))
        if regex:
            filters.append(RegexFilter(pattern=regex, flags='i' if ignore_case else '', name='--regex'))
        selection = time_selection(since, until)
        if selection is not None:
            filters.append(TimestampFilter(range=selection, name='--since/--until'))
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return filters


def open_session(paths: tuple[str, ...], format_name: str | None, verbose: bool) -> AnalysisSession:
    """Create a session and ingest every path, reporting failed files on stderr."""
    configure_logging('DEBUG' if verbose else None)
    session = AnalysisSession(load_settings())
    try:
        session.ingest(paths, format_name=format_name)
    except (LogscopeError, ValueError) as e:
        session.close()
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)
    for meta in session.files():
        if meta.error:
            click.echo(f'Error: {meta.name}: {meta.error}', err=True)
        elif verbose:
            click.echo(meta.to_cli(colorize=sys.stderr.isatty()), err=True)
    return session


def colorize_output(no_color: bool) -> bool:
    return not no_color and sys.stdout.isatty()


def echo_model(model, json_output: bool, no_color: bool):
    if json_output:
        click.echo(json.dumps(model.model_dump(mode='json'), indent=2))
    else:
        click.echo(model.to_cli(colorize=colorize_output(no_color)))
