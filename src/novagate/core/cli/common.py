"""Shared setup logic for CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from novagate.core.config import Config
from novagate.core.config_schema import GatewaySettings
from novagate.core.exceptions import ConfigurationError

NOVAGATE_DIR = Path.home() / ".novagate"
CONFIG_PATH = NOVAGATE_DIR / "config.yaml"

EXIT_CONFIGURATION = 1
EXIT_LOGGED_OUT = 2
EXIT_RESTART_STORM = 3

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="NOVAGATE_CONFIG",
    default=None,
    help=f"YAML or JSON config file (default: {CONFIG_PATH} if it exists).",
)


def resolve_config_path(config_path: str | None) -> str | None:
    """Explicit path wins; otherwise the default file, if present."""
    if config_path:
        return config_path
    return str(CONFIG_PATH) if CONFIG_PATH.exists() else None


def load_settings(config_path: str | None) -> tuple[Config, GatewaySettings]:
    """Load and validate configuration, exiting with status 1 on failure."""
    try:
        config = Config(config_file=resolve_config_path(config_path))
        return config, config.validated()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIGURATION)
