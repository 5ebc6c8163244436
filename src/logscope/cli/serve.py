"""CLI command for the HTTP API server."""

import os

import click
import uvicorn

from logscope.utils import setup_shutdown_filter


@click.command('serve')
@click.argument('paths', nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option('--host', default='127.0.0.1', show_default=True, help='Interface to bind')
@click.option('--port', '-p', type=int, default=8000, show_default=True, help='Port to listen on')
@click.option('--format', '-f', 'format_name', default=None, help='Line format for PATHS (default: detect)')
@click.option('--log-level', default=None, help='Override LOGSCOPE_LOG_LEVEL')
def serve_command(paths, host, port, format_name, log_level):
    """Start the JSON API, optionally preloading PATHS.

    \b
    Examples:
        logscope serve
        logscope serve /var/log/app.log --port 9000
    """
    if paths:
        os.environ['LOGSCOPE_PRELOAD'] = os.pathsep.join(os.path.abspath(p) for p in paths)
    if format_name:
        os.environ['LOGSCOPE_PRELOAD_FORMAT'] = format_name
    if log_level:
        os.environ['LOGSCOPE_LOG_LEVEL'] = log_level.upper()

    setup_shutdown_filter()
    click.echo(f'Serving logscope API on http://{host}:{port} (docs at /docs)')
    uvicorn.run('logscope.web:app', host=host, port=port, log_level=(log_level or 'info').lower())
