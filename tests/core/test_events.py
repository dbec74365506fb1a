"""Tests for novagate.core.events — EventBus and Event."""

from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError

import pytest

from novagate.core.events import CONNECTION_READY, Event, EventBus

pytestmark = pytest.mark.smoke


# ---------------------------------------------------------------------------
# 1. on / off / emit lifecycle
# ---------------------------------------------------------------------------


async def test_on_off_emit_lifecycle():
    bus = EventBus()
    received: list[Event] = []

    bus.on(CONNECTION_READY, received.append)
    evt = Event(name=CONNECTION_READY, payload={"session": "main"}, source="supervisor")
    await bus.emit(evt)
    assert received == [evt]

    bus.off(CONNECTION_READY, received.append)
    await bus.emit(evt)
    assert len(received) == 1


def test_off_unknown_hook_is_noop():
    EventBus().off("never.registered", print)


# ---------------------------------------------------------------------------
# 2. Wildcard hooks
# ---------------------------------------------------------------------------


async def test_wildcard_hooks_receive_all_events():
    bus = EventBus()
    received: list[str] = []
    bus.on_all(lambda event: received.append(event.name))

    await bus.emit(Event(name="alpha"))
    await bus.emit(Event(name="beta"))

    assert received == ["alpha", "beta"]


# ---------------------------------------------------------------------------
# 3. emit_nowait: sync inline, async scheduled
# ---------------------------------------------------------------------------


async def test_emit_nowait_runs_sync_hooks_inline():
    bus = EventBus()
    received: list[Event] = []
    bus.on("sync.event", received.append)

    bus.emit_nowait(Event(name="sync.event"))
    assert len(received) == 1


async def test_emit_nowait_schedules_async_hooks():
    bus = EventBus()
    received: list[str] = []

    async def slow_hook(event: Event) -> None:
        await asyncio.sleep(0.01)
        received.append(event.name)

    bus.on("async.event", slow_hook)
    bus.emit_nowait(Event(name="async.event"))
    assert received == []

    await bus.drain()
    assert received == ["async.event"]


def test_emit_nowait_without_loop_skips_async_hooks():
    bus = EventBus()
    received: list[str] = []

    async def async_hook(event: Event) -> None:
        received.append("async")

    bus.on("x", async_hook)
    bus.on("x", lambda event: received.append("sync"))
    bus.emit_nowait(Event(name="x"))
    assert received == ["sync"]


# ---------------------------------------------------------------------------
# 4. Failures are contained
# ---------------------------------------------------------------------------


async def test_hook_exception_does_not_block_others():
    bus = EventBus()
    received: list[str] = []

    def bad_hook(event: Event) -> None:
        raise RuntimeError("boom")

    bus.on("err.event", bad_hook)
    bus.on("err.event", lambda event: received.append("ok"))

    await bus.emit(Event(name="err.event"))
    bus.emit_nowait(Event(name="err.event"))
    assert received == ["ok", "ok"]


async def test_async_hook_exception_is_logged_not_raised():
    bus = EventBus()

    async def bad_hook(event: Event) -> None:
        raise RuntimeError("boom")

    bus.on("err.event", bad_hook)
    await bus.emit(Event(name="err.event"))
    bus.emit_nowait(Event(name="err.event"))
    await bus.drain()


# ---------------------------------------------------------------------------
# 5. Event model
# ---------------------------------------------------------------------------


def test_event_is_frozen():
    evt = Event(name="x")
    with pytest.raises(FrozenInstanceError):
        evt.name = "y"
    assert evt.payload == {}
    assert evt.timestamp > 0
