"""Signal bus for gateway lifecycle notifications.

The connection supervisor and the gateway publish signals here; status
broadcasts, tests and embedding applications subscribe without the
publisher knowing who listens.  Hooks may be plain functions or
coroutine functions.

Usage::

    from novagate.core.events import CONNECTION_READY, Event, EventBus

    bus = EventBus()

    async def announce(event: Event) -> None:
        print(f"Session open: {event.payload}")

    bus.on(CONNECTION_READY, announce)
    await bus.emit(Event(name=CONNECTION_READY, payload={"session": "main"}, source="supervisor"))
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import time
from typing import Any

from loguru import logger

# Signal names
CONNECTION_STATE = "connection.state"
CONNECTION_READY = "connection.ready"
CONNECTION_LOGGED_OUT = "connection.logged_out"
CONNECTION_RESTART_STORM = "connection.restart_storm"
REGISTRY_RELOADED = "registry.reloaded"
STARTUP = "startup"
SHUTDOWN = "shutdown"

WILDCARD = "*"


@dataclass(frozen=True)
class Event:
    """One published signal. Payloads are plain JSON-friendly dicts."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time)
    source: str = ""


Hook = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Publish/subscribe by event name, with ``*`` subscribers seeing everything.

    Hook failures are logged and never reach the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Hook]] = {}
        self._pending: set[asyncio.Task] = set()

    def on(self, event_name: str, hook: Hook) -> None:
        self._subscribers.setdefault(event_name, []).append(hook)

    def on_all(self, hook: Hook) -> None:
        self.on(WILDCARD, hook)

    def off(self, event_name: str, hook: Hook) -> None:
        hooks = self._subscribers.get(event_name, [])
        if hook in hooks:
            hooks.remove(hook)

    def _hooks_for(self, event: Event) -> list[Hook]:
        # Copy so hooks may (un)subscribe while the event is delivered
        return [*self._subscribers.get(event.name, ()), *self._subscribers.get(WILDCARD, ())]

    async def emit(self, event: Event) -> None:
        """Deliver *event* to every hook in subscription order, awaiting async ones."""
        for hook in self._hooks_for(event):
            if inspect.iscoroutinefunction(hook):
                await self._guarded(hook, event)
            else:
                self._call(hook, event)

    def emit_nowait(self, event: Event) -> None:
        """Deliver *event* without blocking the caller.

        Sync hooks run immediately.  Async hooks become tasks on the running
        loop; with no loop running they are skipped.
        """
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for hook in self._hooks_for(event):
            if not inspect.iscoroutinefunction(hook):
                self._call(hook, event)
            elif loop is None:
                logger.debug(f"No running loop; async hook {hook!r} skipped for {event.name}")
            else:
                task = loop.create_task(self._guarded(hook, event))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every task started by :meth:`emit_nowait` has finished."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    @staticmethod
    def _call(hook: Hook, event: Event) -> None:
        try:
            hook(event)
        except Exception as exc:
            logger.warning(f"Hook {getattr(hook, '__name__', hook)!s} failed on {event.name}: {exc}")

    @staticmethod
    async def _guarded(hook: Hook, event: Event) -> None:
        try:
            await hook(event)
        except Exception as exc:
            logger.warning(f"Hook {getattr(hook, '__name__', hook)!s} failed on {event.name}: {exc}")
