"""
Switchboard command line entry point.

Loads the configuration, sets up logging and hands a ``CLIContext`` to
the subcommands.
"""

import sys
from pathlib import Path
from typing import Optional

import click

from switchboard._version import __version__
from switchboard.config.settings import SwitchboardConfig, load_config
from switchboard.exceptions import ConfigurationError
from switchboard.logging_config import setup_logging


class CLIContext:
    """State shared by all subcommands."""

    def __init__(self):
        self.config: Optional[SwitchboardConfig] = None
        self.config_path: Optional[Path] = None
        self.verbose = False


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


@click.group()
@click.option(
    '--config',
    '-c',
    'config_path',
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help='Path to the configuration file (default: ~/.switchboard/config.yaml)',
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default=None,
    help='Override the configured log level',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Debug logging and full error details',
)
@click.version_option(version=__version__, prog_name='switchboard')
@click.pass_context
def cli(ctx, config_path: Optional[Path], log_level: Optional[str], verbose: bool):
    """
    Switchboard integration gateway.

    Calls operations on remote monitoring, backup, network and security
    systems with cached sessions and endpoint discovery.
    """
    cli_ctx = ctx.ensure_object(CLIContext)
    cli_ctx.config_path = config_path
    cli_ctx.verbose = verbose

    try:
        cli_ctx.config = load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    level = 'DEBUG' if verbose else (log_level or cli_ctx.config.logging.level)
    setup_logging(
        level=level,
        log_file=cli_ctx.config.logging.file,
        json_format=cli_ctx.config.logging.json_format,
    )


def register_commands() -> None:
    from switchboard.cli.gateway import diagnose, invoke, providers

    cli.add_command(invoke)
    cli.add_command(diagnose)
    cli.add_command(providers)


register_commands()


if __name__ == '__main__':
    cli()
