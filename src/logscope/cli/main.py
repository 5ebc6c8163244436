"""Main CLI entry point with command groups"""

import click

from logscope.__version__ import __version__
from logscope.cli.analyze import anomalies_command, filter_command, summary_command, timeline_command
from logscope.cli.presets import presets_command
from logscope.cli.serve import serve_command


class DefaultCommandGroup(click.Group):
    """Click Group that runs `summary` when the first argument is not a command"""

    default_command = 'summary'

    def parse_args(self, ctx, args):
        if ctx.resilient_parsing:
            return super().parse_args(ctx, args)
        if not args or args[0] in ('--help', '-h', '--version') or args[0] in self.commands:
            return super().parse_args(ctx, args)
        return super().parse_args(ctx, [self.default_command] + args)


@click.group(cls=DefaultCommandGroup, invoke_without_command=True)
@click.version_option(version=__version__, prog_name='logscope')
@click.pass_context
def cli(ctx):
    """
    logscope - structured analysis of large log files.

    \b
    Commands:
      logscope <path ...>            Summary of the files (default command)
      logscope filter <path ...>     Print entries matching filters
      logscope timeline <path ...>   Entry counts per time bucket
      logscope anomalies <path ...>  Rate, content and sequence anomalies
      logscope presets               Manage saved filter presets
      logscope serve                 Start the JSON API server

    \b
    Examples:
      logscope /var/log/app.log
      logscope filter app.log --level ERROR --source db
      logscope timeline app.log --zoom minute --since 2024-01-15
      logscope anomalies app.log --rules rules.json
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


cli.add_command(summary_command, name='summary')
cli.add_command(filter_command, name='filter')
cli.add_command(timeline_command, name='timeline')
cli.add_command(anomalies_command, name='anomalies')
cli.add_command(presets_command, name='presets')
cli.add_command(serve_command, name='serve')


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == '__main__':
    main()
