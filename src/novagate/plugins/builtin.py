"""Built-in commands: ping, alive, help, reload, groupinfo.

Handlers reach shared components through ``ctx.services`` (filled in by the
gateway), so this module can be loaded by the registry like any other
plugin file.
"""

from __future__ import annotations

import time

from novagate.core.exceptions import MetadataUnavailable
from novagate.core.utils.identity import bare_id, is_group
from novagate.gateway.registry import command
from novagate.gateway.router import CommandContext, HandlerError, Success


@command("ping", aliases=["p"])
async def ping(ctx: CommandContext) -> Success:
    """Check that the bot is responding."""
    if ctx.message is None:
        return Success("_Pong!_")
    latency_ms = max(0.0, (time.time() - ctx.message.timestamp) * 1000)
    return Success(f"_Pong!_ ({latency_ms:.0f} ms)")


@command("alive")
async def alive(ctx: CommandContext) -> Success | HandlerError:
    """Show bot status: version, platform, uptime."""
    status = ctx.services.get("status")
    if status is None:
        return HandlerError("status reporter not available")
    return Success(status.message())


@command("help", aliases=["menu"])
async def help_(ctx: CommandContext) -> Success | HandlerError:
    """List the commands you can use."""
    registry = ctx.services.get("registry")
    if registry is None:
        return HandlerError("command registry not available")

    generation = registry.current()
    lines = ["*Commands*", ""]
    for name in generation.names():
        spec = generation.commands[name]
        if spec.requires_elevated and not ctx.is_elevated:
            continue
        aliases = f" ({', '.join(sorted(spec.aliases))})" if spec.aliases else ""
        suffix = " [owner]" if spec.requires_elevated else ""
        line = f"{name}{aliases}{suffix}"
        if spec.description:
            line += f": {spec.description}"
        lines.append(line)
    return Success("\n".join(lines))


@command("reload", elevated=True)
async def reload(ctx: CommandContext) -> Success | HandlerError:
    """Reload command plugins from disk."""
    gateway = ctx.services.get("gateway")
    if gateway is None:
        return HandlerError("gateway not available for reload")
    generation = await gateway.reload_commands()
    return Success(f"Reloaded {len(generation)} commands (generation {generation.number}).")


@command("groupinfo", aliases=["ginfo"])
async def groupinfo(ctx: CommandContext) -> Success | HandlerError:
    """Show subject, owner and member counts for this group."""
    if not ctx.group or not is_group(ctx.group):
        return Success("This command only works in groups.")
    cache = ctx.services.get("cache")
    if cache is None:
        return HandlerError("group cache not available")

    try:
        snapshot = await cache.get(ctx.group)
    except MetadataUnavailable as e:
        return HandlerError(str(e))

    owner = f"@{bare_id(snapshot.owner_id)}" if snapshot.owner_id else "unknown"
    lines = [
        f"*{snapshot.subject or bare_id(ctx.group)}*",
        f"Owner: {owner}",
        f"Members: {len(snapshot.participants)}",
        f"Admins: {len(snapshot.admins)}",
    ]
    if snapshot.description:
        lines.extend(["", snapshot.description])
    return Success("\n".join(lines))
