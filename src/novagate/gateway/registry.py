"""
Command plugin registry.

Commands come from three kinds of sources, collected into an immutable
:class:`RegistryGeneration`:

- modules (the built-ins in :mod:`novagate.plugins.builtin`),
- ``*.py`` files in configured plugin directories, imported fresh on every
  reload so edits are picked up without a restart,
- entry points in the ``novagate.commands`` group, so other packages can
  ship commands from their own ``pyproject.toml``::

    [project.entry-points."novagate.commands"]
    weather = "my_package.commands:weather"

A handler becomes a command by decorating it::

    from novagate.gateway.registry import command

    @command("ping", aliases=["p"])
    async def ping(ctx):
        return "pong"

:meth:`PluginRegistry.reload` builds a whole new generation and swaps the
pointer in one assignment; a dispatch that already holds the old generation
keeps using it.
"""

from __future__ import annotations

import importlib.util
import inspect
import sys
import threading
import types
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any

from loguru import logger

from novagate.core.exceptions import PluginLoadError

ENTRY_POINT_GROUP = "novagate.commands"
SPEC_ATTRIBUTE = "__novagate_command__"


@dataclass(frozen=True)
class CommandSpec:
    """An installed command: canonical name, aliases, access level, handler.

    ``handler`` receives a :class:`~novagate.gateway.router.CommandContext`
    and may be sync or async.
    """

    name: str
    handler: Callable[..., Any] = field(compare=False)
    aliases: frozenset[str] = frozenset()
    requires_elevated: bool = False
    description: str = ""
    source: str = ""

    def __post_init__(self) -> None:
        name = self.name.strip().lower()
        if not name or any(c.isspace() for c in name):
            raise ValueError(f"Invalid command name: {self.name!r}")
        if not callable(self.handler):
            raise TypeError(f"Handler for command {name!r} is not callable")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "aliases", frozenset(a.strip().lower() for a in self.aliases if a.strip()))


def command(
    name: str,
    *,
    aliases: Iterable[str] = (),
    elevated: bool = False,
    description: str | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator marking a function as a command handler.

    The description defaults to the first line of the handler's docstring.
    """

    def _decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        doc = (inspect.getdoc(func) or "").splitlines()
        spec = CommandSpec(
            name=name,
            handler=func,
            aliases=frozenset(aliases),
            requires_elevated=elevated,
            description=description if description is not None else (doc[0] if doc else ""),
            source=getattr(func, "__module__", "") or "",
        )
        setattr(func, SPEC_ATTRIBUTE, spec)
        return func

    return _decorate


def specs_from_module(module: types.ModuleType) -> list[CommandSpec]:
    """Collect the command specs declared in *module*, in definition order."""
    specs: list[CommandSpec] = []
    for value in vars(module).values():
        spec = getattr(value, SPEC_ATTRIBUTE, None)
        if isinstance(spec, CommandSpec):
            specs.append(spec)
        elif isinstance(value, CommandSpec):
            specs.append(value)
    return specs


@dataclass(frozen=True)
class RegistryGeneration:
    """Immutable name -> spec and alias -> name mapping."""

    number: int
    commands: Mapping[str, CommandSpec]
    aliases: Mapping[str, str]

    def resolve(self, word: str) -> CommandSpec | None:
        """Look up a command by name or alias (case-insensitive)."""
        key = word.lower()
        name = key if key in self.commands else self.aliases.get(key, key)
        return self.commands.get(name)

    def names(self) -> list[str]:
        return sorted(self.commands)

    def __len__(self) -> int:
        return len(self.commands)

    def __contains__(self, word: object) -> bool:
        return isinstance(word, str) and self.resolve(word) is not None


def build_generation(number: int, specs: Iterable[CommandSpec], disabled: Iterable[str] = ()) -> RegistryGeneration:
    """Index *specs* into a generation.

    The first spec registered under a name wins; later duplicates are
    skipped with a warning.  An alias never shadows a canonical name.
    """
    blocked = {d.strip().lower() for d in disabled}
    commands: dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in blocked:
            logger.debug(f"Command '{spec.name}' disabled by configuration")
            continue
        if spec.name in commands:
            logger.warning(
                f"Duplicate command '{spec.name}' from {spec.source or 'unknown'} ignored "
                f"(already provided by {commands[spec.name].source or 'unknown'})"
            )
            continue
        commands[spec.name] = spec

    aliases: dict[str, str] = {}
    for spec in commands.values():
        for alias in sorted(spec.aliases):
            if alias in commands:
                if alias != spec.name:
                    logger.warning(f"Alias '{alias}' of '{spec.name}' shadows a command name; ignored")
                continue
            if alias in aliases and aliases[alias] != spec.name:
                logger.warning(f"Alias '{alias}' already points to '{aliases[alias]}'; ignored for '{spec.name}'")
                continue
            aliases[alias] = spec.name

    return RegistryGeneration(
        number=number,
        commands=types.MappingProxyType(commands),
        aliases=types.MappingProxyType(aliases),
    )


# ── Sources ────────────────────────────────────────────────────────

CommandSource = Callable[[], list[CommandSpec]]
"""Callable returning the specs a source currently provides."""


def module_source(module_name: str) -> CommandSource:
    """Source reading the commands declared in an importable module."""

    def _load() -> list[CommandSpec]:
        module = importlib.import_module(module_name)
        return specs_from_module(module)

    _load.__name__ = f"module:{module_name}"
    return _load


def load_plugin_file(path: Path) -> list[CommandSpec]:
    """Import a plugin file as a fresh module and collect its commands."""
    module_name = f"novagate_plugin_{path.stem}_{abs(hash(str(path.resolve())))}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"Cannot import plugin file {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise PluginLoadError(f"Plugin {path.name} failed to import: {e}") from e
    return specs_from_module(module)


def directory_source(directory: str | Path) -> CommandSource:
    """Source loading every ``*.py`` file in *directory* (``_``-prefixed files skipped).

    A file that fails to import is logged and skipped; the rest still load.
    """
    root = Path(directory).expanduser()

    def _load() -> list[CommandSpec]:
        if not root.is_dir():
            logger.warning(f"Plugin directory not found: {root}")
            return []
        specs: list[CommandSpec] = []
        for path in sorted(root.glob("*.py")):
            if path.name.startswith("_"):
                continue
            try:
                found = load_plugin_file(path)
            except PluginLoadError as e:
                logger.error(str(e))
                continue
            logger.debug(f"Loaded {len(found)} command(s) from {path.name}")
            specs.extend(found)
        return specs

    _load.__name__ = f"directory:{root}"
    return _load


def entry_point_source(group: str = ENTRY_POINT_GROUP) -> CommandSource:
    """Source loading commands advertised by installed packages."""

    def _load() -> list[CommandSpec]:
        specs: list[CommandSpec] = []
        for ep in entry_points(group=group):
            try:
                obj = ep.load()
            except Exception as e:
                logger.warning(f"Failed to load command entry point '{ep.name}': {e}")
                continue
            if isinstance(obj, types.ModuleType):
                specs.extend(specs_from_module(obj))
            elif isinstance(obj, CommandSpec):
                specs.append(obj)
            elif isinstance(getattr(obj, SPEC_ATTRIBUTE, None), CommandSpec):
                specs.append(getattr(obj, SPEC_ATTRIBUTE))
            elif callable(obj):
                specs.append(CommandSpec(name=ep.name, handler=obj, source=ep.value))
            else:
                logger.warning(f"Entry point '{ep.name}' is not a command")
        return specs

    _load.__name__ = f"entry-points:{group}"
    return _load


def static_source(specs: Iterable[CommandSpec]) -> CommandSource:
    """Source returning a fixed list (useful for testing)."""
    fixed = list(specs)

    def _load() -> list[CommandSpec]:
        return list(fixed)

    _load.__name__ = "static"
    return _load


# ── Registry ───────────────────────────────────────────────────────


class PluginRegistry:
    """Hold the current command generation and rebuild it on demand.

    Readers call :meth:`current` once and use the returned generation for
    the whole dispatch.  Writers (:meth:`reload`) are serialized; the swap
    itself is a single reference assignment.
    """

    def __init__(self, sources: Iterable[CommandSource] = (), *, disabled: Iterable[str] = ()):
        self._sources: list[CommandSource] = list(sources)
        self._disabled = tuple(disabled)
        self._reload_lock = threading.Lock()
        self._generation = build_generation(0, ())

    def add_source(self, source: CommandSource) -> None:
        """Register another source; takes effect on the next reload."""
        self._sources.append(source)

    def current(self) -> RegistryGeneration:
        """Return the generation in effect right now."""
        return self._generation

    def reload(self) -> RegistryGeneration:
        """Rebuild from all sources and atomically swap in the new generation.

        A source that raises is logged and contributes nothing; the reload
        itself never fails.
        """
        with self._reload_lock:
            specs: list[CommandSpec] = []
            for source in self._sources:
                label = getattr(source, "__name__", repr(source))
                try:
                    specs.extend(source())
                except Exception as e:
                    logger.error(f"Command source {label} failed: {e}")
            generation = build_generation(self._generation.number + 1, specs, self._disabled)
            self._generation = generation
        logger.info(f"Command registry generation {generation.number}: {len(generation)} command(s)")
        return generation

    def swap(self, generation: RegistryGeneration) -> RegistryGeneration:
        """Install a prebuilt generation; returns the one it replaced."""
        with self._reload_lock:
            previous, self._generation = self._generation, generation
        return previous

    def resolve(self, word: str) -> CommandSpec | None:
        return self._generation.resolve(word)

    def list_names(self) -> list[str]:
        return self._generation.names()
