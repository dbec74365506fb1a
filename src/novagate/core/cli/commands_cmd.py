"""novagate commands — list the commands the registry would load."""

from __future__ import annotations

import click

from .common import config_option, load_settings


@click.command()
@config_option
def commands(config_path: str | None) -> None:
    """Show every command, its aliases, and who may run it."""
    from rich.console import Console
    from rich.table import Table

    from novagate.gateway.gateway import build_registry

    _, settings = load_settings(config_path)
    generation = build_registry(settings).reload()

    table = Table(title=f"{settings.bot.name} commands")
    table.add_column("Command", style="bold")
    table.add_column("Aliases")
    table.add_column("Access")
    table.add_column("Description")
    for name in generation.names():
        spec = generation.commands[name]
        table.add_row(
            name,
            ", ".join(sorted(spec.aliases)),
            "owner" if spec.requires_elevated else "everyone",
            spec.description,
        )
    Console().print(table)
