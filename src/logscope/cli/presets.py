"""CLI commands for saved filter presets."""

import json
import sys

import click

from logscope.cli.common import build_filters, colorize_output, filter_options
from logscope.errors import FilterValidationError
from logscope.presets import PresetStore, dump_preset, load_preset


@click.group('presets')
def presets_command():
    """Manage saved filter presets."""


@presets_command.command('list')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
def list_presets(json_output: bool):
    """List saved presets."""
    presets = PresetStore().presets()
    if json_output:
        click.echo(json.dumps([p.model_dump(mode='json', by_alias=True) for p in presets], indent=2))
        return
    if not presets:
        click.echo('No presets saved')
        return
    for preset in presets:
        click.echo(f'{preset.id}  {preset.name}  ({len(preset.filters)} filters)')


@presets_command.command('show')
@click.argument('preset')
@click.option('--json', 'json_output', is_flag=True, help='Output the preset payload')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def show_preset(preset: str, json_output: bool, no_color: bool):
    """Show one preset by id or name."""
    found = PresetStore().find(preset)
    if found is None:
        click.echo(f'Error: no preset named {preset!r}', err=True)
        sys.exit(1)
    if json_output:
        click.echo(dump_preset(found))
    else:
        click.echo(found.to_cli(colorize=colorize_output(no_color)))


@presets_command.command('save')
@click.argument('name')
@filter_options
def save_preset(name: str, **filter_args):
    """Save the given filter options under NAME (overwrites a preset of that name).

    \b
    Examples:
        logscope presets save errors --level ERROR --level FATAL
        logscope presets save slow-db --source db --regex 'took \\d{4,}ms'
    """
    store = PresetStore()
    filters = build_filters(presets=store, **filter_args)
    if not filters:
        click.echo('Error: give at least one filter option', err=True)
        sys.exit(1)
    existing = store.find(name)
    try:
        preset = store.save(name, filters, preset_id=existing.id if existing else None)
    except FilterValidationError as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)
    click.echo(f'Saved preset {preset.name} ({preset.id})')


@presets_command.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def import_preset(path: str):
    """Import a preset from a JSON payload file."""
    try:
        with open(path, encoding='utf-8') as f:
            preset = load_preset(f.read())
    except (OSError, FilterValidationError) as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)
    saved = PresetStore().save(preset.name, preset.filters, preset_id=preset.id)
    click.echo(f'Imported preset {saved.name} ({saved.id})')


@presets_command.command('delete')
@click.argument('preset')
def delete_preset(preset: str):
    """Delete a preset by id or name."""
    store = PresetStore()
    found = store.find(preset)
    if found is None or not store.delete(found.id):
        click.echo(f'Error: no preset named {preset!r}', err=True)
        sys.exit(1)
    click.echo(f'Deleted preset {found.name} ({found.id})')
