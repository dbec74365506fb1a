"""novagate check-config — validate configuration without connecting."""

from __future__ import annotations

import click

from .common import config_option, load_settings


@click.command("check-config")
@config_option
@click.option("--show", is_flag=True, help="Print the effective settings as JSON.")
def check_config(config_path: str | None, show: bool) -> None:
    """Validate the configuration and report problems."""
    _, settings = load_settings(config_path)

    click.echo(f"Configuration OK (session '{settings.session.id}', factory '{settings.session.factory}')")
    if not settings.access.elevated:
        click.echo("Warning: access.elevated is empty; nobody can run owner-only commands.")
    if show:
        click.echo(settings.model_dump_json(indent=2))
