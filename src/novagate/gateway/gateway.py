"""Gateway — composition root that fans session events out to consumers.

One pump task reads the session's event stream and routes each event by
type.  The consumers never block each other:

- state changes go through an ordered queue to the connection supervisor,
- inbound messages each get their own dispatch task: the anti-link guard
  looks at group messages first, then the command router,
- membership changes invalidate the group cache inline, then go through a
  serial queue for the optional announcement,
- credential updates go through a serial queue to the credential store.

Queue consumers follow the same sentinel-terminated loop, so shutdown lets
whatever is already queued finish before the consumer exits.

Usage::

    settings = Config(config_file="config.yaml").validated()
    gateway = Gateway(settings, load_session_factory(settings.session.factory)(settings))
    await gateway.run()
"""

from __future__ import annotations

import asyncio
import importlib
import signal
import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from novagate.core.config_schema import GatewaySettings
from novagate.core.events import CONNECTION_READY, REGISTRY_RELOADED, SHUTDOWN, STARTUP, Event, EventBus
from novagate.core.exceptions import ConfigurationError, RestartStormAbort, TerminalLogout
from novagate.core.types import Clock
from novagate.gateway.antilink import AntiLinkGuard
from novagate.gateway.group_cache import GroupMetadataCache
from novagate.gateway.membership import MembershipAnnouncer
from novagate.gateway.notifier import Notifier
from novagate.gateway.registry import (
    PluginRegistry,
    RegistryGeneration,
    directory_source,
    entry_point_source,
    module_source,
)
from novagate.gateway.router import CommandRouter, DispatchOutcome, DispatchStatus
from novagate.gateway.status import StatusReporter
from novagate.gateway.supervisor import ConnectionSupervisor, SleepFn, TerminalReason
from novagate.session.base import SessionHandle
from novagate.session.credentials import CredentialStore, FileCredentialStore
from novagate.session.events import CredentialUpdate, InboundMessage, MembershipChange, StateChange

SessionFactory = Callable[[GatewaySettings], SessionHandle]
"""Builds the session handle for a validated configuration."""

BUILTIN_COMMANDS = "novagate.plugins.builtin"

_SENTINEL = object()


def _console_factory(settings: GatewaySettings) -> SessionHandle:
    from novagate.session.console import ConsoleSession

    return ConsoleSession(variant=settings.session.variant)


def load_session_factory(spec: str) -> SessionFactory:
    """Resolve ``session.factory``: ``"console"`` or ``"package.module:callable"``.

    Raises:
        ConfigurationError: If the factory cannot be imported or is not callable.
    """
    spec = spec.strip()
    if spec == "console":
        return _console_factory

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"session.factory must look like 'package.module:callable', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import session factory module {module_name!r}: {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"Session factory {spec!r} is not callable")
    return factory


def build_registry(settings: GatewaySettings, *, include_builtins: bool = True) -> PluginRegistry:
    """Registry over the built-in commands, installed entry points and plugin dirs."""
    sources = [module_source(BUILTIN_COMMANDS)] if include_builtins else []
    sources.append(entry_point_source())
    sources.extend(directory_source(d) for d in settings.commands.plugin_dirs)
    return PluginRegistry(sources, disabled=settings.commands.disabled)


class Gateway:
    """Own the session and wire it to supervisor, router and cache.

    Args:
        settings: Validated configuration.
        session: Transport handle (owned by the gateway from here on).
        credentials: Credential store; defaults to a file store under
            ``session.credentials_dir``.
        registry: Command registry; defaults to :func:`build_registry`.
        bus: Signal bus shared with the supervisor.
        clock: Monotonic clock for supervisor, router and cache.
        sleep: Async sleep used for reconnect delays.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        session: SessionHandle,
        *,
        credentials: CredentialStore | None = None,
        registry: PluginRegistry | None = None,
        bus: EventBus | None = None,
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        if session is None:
            raise ConfigurationError("Gateway requires a session handle")
        self.settings = settings
        self.session = session
        self.bus = bus or EventBus()
        self.credentials = credentials or FileCredentialStore(
            settings.session.credentials_dir, settings.session.credentials_key
        )
        self.registry = registry or build_registry(settings)
        self.status = StatusReporter(settings.bot.name, variant=settings.session.variant)

        self.notifier = Notifier(
            session.send,
            elevated=settings.access.elevated,
            user_suffix=settings.identity.user_suffix,
        )
        self.supervisor = ConnectionSupervisor(
            session,
            self.credentials,
            restart=settings.restart,
            connect_timeout=settings.session.connect_timeout,
            bus=self.bus,
            name=settings.session.id,
            clock=clock,
            sleep=sleep,
        )
        self.cache = GroupMetadataCache(
            session.group_metadata,
            ttl=settings.cache.ttl,
            refresh_timeout=settings.cache.refresh_timeout,
            clock=clock,
        )
        self.antilink = AntiLinkGuard(
            settings.antilink,
            self.cache,
            self.notifier,
            delete_message=session.delete_message,
            remove_participants=session.remove_participants,
            elevated=settings.access.elevated,
        )
        self.router = CommandRouter.from_settings(
            self.registry,
            settings,
            notifier=self.notifier,
            self_id=lambda: self.session.self_id,
            clock=clock,
        )
        self.router.services.update(
            {
                "antilink": self.antilink,
                "gateway": self,
                "bus": self.bus,
                "cache": self.cache,
                "notifier": self.notifier,
                "registry": self.registry,
                "status": self.status,
                "supervisor": self.supervisor,
            }
        )
        self.announcer = MembershipAnnouncer(
            self.notifier, settings.notifications, self_id=lambda: self.session.self_id
        )
        self.bus.on(CONNECTION_READY, self._on_ready)

        self._state_queue: asyncio.Queue[Any] = asyncio.Queue()
        self._membership_queue: asyncio.Queue[Any] = asyncio.Queue()
        self._credential_queue: asyncio.Queue[Any] = asyncio.Queue()
        self._consumers: list[asyncio.Task] = []
        self._pump_task: asyncio.Task | None = None
        self._dispatches: set[asyncio.Task] = set()
        self._shutdown = asyncio.Event()
        self._stream_ended = asyncio.Event()
        self._running = False
        self._stopped = False

    # ── Lifecycle ──────────────────────────────────────────────────

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        """Start everything and block until shutdown or a terminal condition.

        Raises:
            TerminalLogout: The session was logged out remotely.
            RestartStormAbort: The restart budget was exhausted.
            ConfigurationError: The session could not be set up at all.
        """
        await self.start()
        if install_signal_handlers:
            self._install_signal_handlers()

        waiters = [
            asyncio.create_task(self._shutdown.wait(), name="gateway-shutdown"),
            asyncio.create_task(self._stream_ended.wait(), name="gateway-stream-ended"),
            asyncio.create_task(self.supervisor.wait_terminated(), name="gateway-supervisor-terminated"),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
            await self.stop()

        self._raise_if_terminated()

    async def start(self) -> None:
        """Load commands, start the consumers and make the first connect attempt."""
        if self._running:
            return
        self._running = True
        self._stopped = False

        await self.reload_commands()
        self._consumers = [
            asyncio.create_task(self._consume(self._state_queue, self._handle_state), name="gateway-state"),
            asyncio.create_task(
                self._consume(self._membership_queue, self._handle_membership), name="gateway-membership"
            ),
            asyncio.create_task(
                self._consume(self._credential_queue, self._handle_credentials), name="gateway-credentials"
            ),
        ]
        self._pump_task = asyncio.create_task(self._pump(), name="gateway-pump")
        await self.bus.emit(Event(name=STARTUP, payload={"session": self.settings.session.id}, source="gateway"))

        logger.info(f"Starting {self.settings.bot.name} (session '{self.settings.session.id}')")
        try:
            await self.supervisor.start()
        except ConfigurationError:
            await self.stop()
            raise

    def request_shutdown(self) -> None:
        """Ask :meth:`run` to return (safe to call from a signal handler)."""
        self._shutdown.set()

    async def stop(self, grace: float | None = None) -> None:
        """Shut down: stop reconnecting, let dispatches finish, then close the session."""
        if self._stopped or not self._running:
            return
        self._stopped = True
        grace = self.settings.shutdown.grace if grace is None else grace
        logger.info("Gateway shutting down...")

        await self.supervisor.stop_reconnecting()

        if self._dispatches:
            pending_count = len(self._dispatches)
            _, pending = await asyncio.wait(set(self._dispatches), timeout=grace)
            if pending:
                logger.warning(f"Cancelling {len(pending)} of {pending_count} command(s) still running after {grace:g}s")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await self.supervisor.stop(logout=self.settings.session.logout_on_shutdown)

        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)

        for queue in (self._state_queue, self._membership_queue, self._credential_queue):
            queue.put_nowait(_SENTINEL)
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers = []

        await self.bus.emit(Event(name=SHUTDOWN, payload={"session": self.settings.session.id}, source="gateway"))
        await self.bus.drain()
        self._running = False
        logger.info("Gateway stopped")

    async def reload_commands(self) -> RegistryGeneration:
        """Rebuild the command registry and announce the new generation."""
        generation = await asyncio.to_thread(self.router.reload)
        await self.bus.emit(
            Event(
                name=REGISTRY_RELOADED,
                payload={"generation": generation.number, "commands": generation.names()},
                source="gateway",
            )
        )
        return generation

    def get_status(self) -> dict:
        """Return debug info about every component."""
        return {
            "running": self._running,
            "supervisor": self.supervisor.get_status(),
            "cache": self.cache.get_status(),
            "antilink": self.antilink.get_status(),
            "commands": self.registry.list_names(),
            "generation": self.registry.current().number,
            "dispatches_in_flight": len(self._dispatches),
            "uptime": self.status.uptime(),
        }

    def _raise_if_terminated(self) -> None:
        reason = self.supervisor.terminal_reason
        if reason is TerminalReason.LOGGED_OUT:
            raise TerminalLogout(
                f"Session '{self.settings.session.id}' was logged out; remove its credentials and pair again"
            )
        if reason is TerminalReason.RESTART_STORM:
            raise RestartStormAbort(
                f"Session '{self.settings.session.id}' exceeded {self.settings.restart.ceiling} restarts "
                f"within {self.settings.restart.window:g}s"
            )
        if reason is TerminalReason.FATAL_ERROR:
            error = self.supervisor.fatal_error
            if isinstance(error, ConfigurationError):
                raise error
            raise ConfigurationError(f"Session '{self.settings.session.id}' could not be configured: {error}")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                pass  # Windows

    # ── Event fan-out ──────────────────────────────────────────────

    async def _pump(self) -> None:
        """Read the session stream and route each event to its consumer."""
        try:
            async for event in self.session.events():
                self._route(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Session event stream failed")
        else:
            logger.info("Session event stream ended")
        self._stream_ended.set()

    def _route(self, event: Any) -> None:
        if isinstance(event, StateChange):
            self._state_queue.put_nowait(event)
        elif isinstance(event, InboundMessage):
            self._spawn_dispatch(event)
        elif isinstance(event, MembershipChange):
            # Invalidation must not wait behind announcements still being sent
            self.cache.handle_membership_change(event)
            self._membership_queue.put_nowait(event)
        elif isinstance(event, CredentialUpdate):
            self._credential_queue.put_nowait(event)
        else:
            logger.warning(f"Ignoring unknown session event {type(event).__name__}")

    def _spawn_dispatch(self, message: InboundMessage) -> None:
        if self._stopped:
            logger.debug(f"Shutting down; message {message.id} not dispatched")
            return
        task = asyncio.create_task(self._handle_inbound(message), name=f"dispatch-{message.id}")
        self._dispatches.add(task)
        task.add_done_callback(self._dispatch_done)

    async def _handle_inbound(self, message: InboundMessage) -> DispatchOutcome:
        if await self.antilink.check(message):
            return DispatchOutcome(DispatchStatus.IGNORED, detail="antilink")
        return await self.router.handle_message(message)

    def _dispatch_done(self, task: asyncio.Task[DispatchOutcome]) -> None:
        self._dispatches.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Dispatch task {task.get_name()} crashed")

    async def _consume(self, queue: asyncio.Queue[Any], handler: Callable[[Any], Awaitable[None]]) -> None:
        """Pull events one at a time until the sentinel arrives."""
        while True:
            item = await queue.get()
            if item is _SENTINEL:
                queue.task_done()
                break
            try:
                await handler(item)
            except Exception:
                logger.exception(f"Unhandled error processing {type(item).__name__}")
            finally:
                queue.task_done()

    async def _handle_state(self, event: StateChange) -> None:
        await self.supervisor.handle_state_change(event)

    async def _handle_membership(self, event: MembershipChange) -> None:
        await self.announcer.handle(event)

    async def _handle_credentials(self, event: CredentialUpdate) -> None:
        await self.credentials.save(event.blob)

    async def _on_ready(self, event: Event) -> None:
        if not self.settings.notifications.broadcast_ready:
            return
        delivered = await self.notifier.notify_elevated(self.status.message())
        logger.info(f"Ready notice delivered to {delivered}/{len(self.notifier.elevated_targets)} elevated identities")
