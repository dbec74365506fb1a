"""Novagate CLI — entry point for run, check-config, and commands."""

import click

from novagate import __version__


@click.group()
@click.version_option(version=__version__, package_name="novagate")
def main() -> None:
    """Novagate — messaging gateway with pluggable commands."""


# Register subcommands (lazy imports keep startup fast)
from .check_cmd import check_config
from .commands_cmd import commands
from .run_cmd import run

main.add_command(run)
main.add_command(check_config)
main.add_command(commands)
