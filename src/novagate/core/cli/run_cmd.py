"""novagate run — start the gateway."""

from __future__ import annotations

import asyncio
import sys

import click
from loguru import logger

from .common import EXIT_CONFIGURATION, EXIT_LOGGED_OUT, EXIT_RESTART_STORM, config_option, load_settings


@click.command()
@config_option
def run(config_path: str | None) -> None:
    """Connect the session and start handling commands."""
    from novagate.core.exceptions import ConfigurationError, RestartStormAbort, TerminalLogout
    from novagate.core.utils.logging import setup_logging
    from novagate.gateway.gateway import Gateway, load_session_factory

    config, settings = load_settings(config_path)
    setup_logging(level=settings.logging.level, log_file=settings.logging.file)
    config.ensure_directories()

    try:
        factory = load_session_factory(settings.session.factory)
        gateway = Gateway(settings, factory(settings))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIGURATION)

    click.echo(f"Starting {settings.bot.name} (session '{settings.session.id}', {settings.session.variant})...")
    click.echo("Press Ctrl+C to stop.\n")

    try:
        asyncio.run(gateway.run())
    except ConfigurationError as e:
        logger.error(f"Gateway could not start: {e}")
        sys.exit(EXIT_CONFIGURATION)
    except TerminalLogout as e:
        logger.error(str(e))
        sys.exit(EXIT_LOGGED_OUT)
    except RestartStormAbort as e:
        logger.error(str(e))
        sys.exit(EXIT_RESTART_STORM)
