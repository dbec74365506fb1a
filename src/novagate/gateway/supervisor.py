"""Connection supervisor — state machine for (re)connecting a session.

Drives one Session Handle through::

    IDLE -> CONNECTING -> OPEN -> CLOSING -> CLOSED -> CONNECTING (loop)
                                                    \\-> CLOSED_PERMANENT

Close events are judged against two rolling counters:

- the **restart budget** (``restart.ceiling`` / ``restart.window_ms``): going
  past it is terminal (``RestartStormAbort``);
- the **primary tier** counter (``restart.primary_ceiling`` /
  ``restart.primary_window_ms``): while inside it, reconnects are immediate;
  past it the supervisor escalates to the fallback tier and waits
  ``restart.fallback_delay_ms`` before each reconnect.  When the primary
  window rolls over the supervisor drops back to the primary tier.

The restart budget is checked first, so a storm aborts even in the
fallback tier.  Connect attempts that fail before any state change are
retried after ``restart.connect_retry_delay_ms`` and never touch either
counter.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable

from loguru import logger

from novagate.core.config_schema import RestartSettings
from novagate.core.events import (
    CONNECTION_LOGGED_OUT,
    CONNECTION_READY,
    CONNECTION_RESTART_STORM,
    CONNECTION_STATE,
    Event,
    EventBus,
)
from novagate.core.exceptions import AlreadyRunning, ConfigurationError
from novagate.core.types import Clock
from novagate.gateway.restart_budget import RestartBudget, RestartBudgetConfig
from novagate.session.base import SessionHandle
from novagate.session.credentials import CredentialStore
from novagate.session.events import ConnectionPhase, StateChange

SleepFn = Callable[[float], Awaitable[None]]


class ConnectionState(enum.Enum):
    """Lifecycle state of the supervised session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    CLOSED_PERMANENT = "closed-permanent"


class RestartTier(enum.Enum):
    """Reconnect path currently in use."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class TerminalReason(enum.Enum):
    """Why the supervisor entered ``CLOSED_PERMANENT``."""

    LOGGED_OUT = "logged-out"
    RESTART_STORM = "restart-storm"
    FATAL_ERROR = "fatal-error"


_STARTABLE = (ConnectionState.IDLE, ConnectionState.CLOSED)


class ConnectionSupervisor:
    """Own the connection state machine for one logical session.

    Args:
        session: Transport to connect.
        credentials: Store the credential blob is loaded from on each attempt.
        restart: Budget, tier and delay settings.
        connect_timeout: Seconds a single connect attempt may take.
        bus: Signal bus for ready / terminal notifications.
        name: Label used in logs and signal payloads.
        clock: Monotonic clock (injectable for tests).
        sleep: Async sleep (injectable for tests).
    """

    def __init__(
        self,
        session: SessionHandle,
        credentials: CredentialStore,
        *,
        restart: RestartSettings | None = None,
        connect_timeout: float = 30.0,
        bus: EventBus | None = None,
        name: str = "session",
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        if session is None:
            raise ConfigurationError("ConnectionSupervisor requires a session handle")
        if credentials is None:
            raise ConfigurationError("ConnectionSupervisor requires a credential store")

        self._session = session
        self._credentials = credentials
        self.restart = restart or RestartSettings()
        self.connect_timeout = connect_timeout
        self.bus = bus or EventBus()
        self.name = name
        self._sleep = sleep

        self.budget = RestartBudget(
            RestartBudgetConfig(ceiling=self.restart.ceiling, window=self.restart.window), clock=clock
        )
        self.primary_budget = RestartBudget(
            RestartBudgetConfig(ceiling=self.restart.primary_ceiling, window=self.restart.primary_window),
            clock=clock,
        )

        self._state = ConnectionState.IDLE
        self.tier = RestartTier.PRIMARY
        self.terminal_reason: TerminalReason | None = None
        self.fatal_error: BaseException | None = None
        self.connect_attempts = 0
        self._stopping = False
        self._pending_connect: asyncio.Task | None = None
        self._terminated = asyncio.Event()

    # ── Public API ─────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_terminated(self) -> bool:
        return self._state is ConnectionState.CLOSED_PERMANENT

    async def start(self) -> None:
        """Begin the first connect attempt.

        Raises:
            AlreadyRunning: If the supervisor is not idle or transiently closed.
            ConfigurationError: If the transport rejects its configuration.
        """
        if self._state not in _STARTABLE:
            raise AlreadyRunning(f"Supervisor '{self.name}' is {self._state.value}")
        self._stopping = False
        logger.info(f"Supervisor '{self.name}' starting")
        await self._attempt_connect()

    async def handle_state_change(self, event: StateChange) -> None:
        """React to a state-change event. Must be called in emission order."""
        if self._state is ConnectionState.CLOSED_PERMANENT:
            logger.debug(f"Ignoring {event.phase.value} for '{self.name}': closed permanently")
            return

        if event.phase is ConnectionPhase.CONNECTING:
            if self._state is not ConnectionState.CLOSING:
                self._set_state(ConnectionState.CONNECTING)
        elif event.phase is ConnectionPhase.OPEN:
            self._on_open()
        elif event.phase is ConnectionPhase.CLOSE:
            self._on_close(event)

    async def wait_terminated(self) -> TerminalReason:
        """Block until the supervisor reaches ``CLOSED_PERMANENT``."""
        await self._terminated.wait()
        if self.terminal_reason is None:
            raise RuntimeError(f"Supervisor '{self.name}' signalled termination without a reason")
        return self.terminal_reason

    async def stop_reconnecting(self) -> None:
        """Cancel any scheduled connect attempt and refuse new ones.

        The session stays as it is; a later close event moves the
        supervisor to ``CLOSED`` instead of reconnecting.
        """
        self._stopping = True
        await self._cancel_pending_connect()

    async def stop(self, *, logout: bool = False) -> None:
        """Stop reconnecting and close (or log out) the session."""
        await self.stop_reconnecting()

        if self._state is ConnectionState.IDLE:
            return

        permanent = self._state is ConnectionState.CLOSED_PERMANENT
        if not permanent:
            self._set_state(ConnectionState.CLOSING)

        try:
            if logout:
                logger.info(f"Logging out session '{self.name}'")
                await asyncio.wait_for(self._session.logout(), timeout=self.connect_timeout)
            else:
                await asyncio.wait_for(self._session.close(), timeout=self.connect_timeout)
        except Exception as e:
            logger.warning(f"Session '{self.name}' did not close cleanly: {e}")

        if not permanent:
            self._set_state(ConnectionState.CLOSED)
        logger.info(f"Supervisor '{self.name}' stopped")

    def get_status(self) -> dict:
        """Return debug info about the supervisor."""
        return {
            "state": self._state.value,
            "tier": self.tier.value,
            "connect_attempts": self.connect_attempts,
            "restart_budget": self.budget.get_status(),
            "primary_tier": self.primary_budget.get_status(),
            "terminal_reason": self.terminal_reason.value if self.terminal_reason else None,
        }

    # ── Transitions ────────────────────────────────────────────────

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.debug(f"Supervisor '{self.name}': {previous.value} -> {state.value}")
        self.bus.emit_nowait(
            Event(
                name=CONNECTION_STATE,
                payload={"session": self.name, "from": previous.value, "to": state.value},
                source="supervisor",
            )
        )

    def _on_open(self) -> None:
        if self._state is ConnectionState.CLOSING:
            return
        self._set_state(ConnectionState.OPEN)
        logger.info(f"Session '{self.name}' open (tier={self.tier.value}, restarts={self.budget.count})")
        self.bus.emit_nowait(
            Event(
                name=CONNECTION_READY,
                payload={"session": self.name, "tier": self.tier.value, "restarts": self.budget.count},
                source="supervisor",
            )
        )

    def _on_close(self, event: StateChange) -> None:
        if self._stopping or self._state is ConnectionState.CLOSING:
            self._set_state(ConnectionState.CLOSED)
            return

        if event.is_logged_out:
            logger.error(f"Session '{self.name}' logged out. Clear its credentials and pair again.")
            self._terminate(TerminalReason.LOGGED_OUT, CONNECTION_LOGGED_OUT, {"reason": event.reason})
            return

        self._set_state(ConnectionState.CLOSED)
        logger.warning(f"Session '{self.name}' closed: {event.reason or 'unknown reason'}")

        if not self.budget.record():
            logger.error(
                f"Session '{self.name}' restarted {self.budget.count} times within "
                f"{self.restart.window:g}s (ceiling {self.restart.ceiling}). Giving up."
            )
            self._terminate(
                TerminalReason.RESTART_STORM,
                CONNECTION_RESTART_STORM,
                {"reason": event.reason, "restarts": self.budget.count},
            )
            return

        if self.primary_budget.record():
            if self.tier is RestartTier.FALLBACK:
                logger.info(f"Session '{self.name}' back on the primary restart path")
            self.tier = RestartTier.PRIMARY
            delay = 0.0
        else:
            if self.tier is RestartTier.PRIMARY:
                logger.warning(
                    f"Session '{self.name}' restarting too often on the primary path, "
                    f"falling back to delayed restarts ({self.restart.fallback_delay:g}s)"
                )
            self.tier = RestartTier.FALLBACK
            delay = self.restart.fallback_delay

        logger.info(
            f"Reconnecting '{self.name}' (attempt {self.budget.count}/{self.restart.ceiling}, "
            f"tier={self.tier.value}, delay={delay:g}s)"
        )
        self._set_state(ConnectionState.CONNECTING)
        self._schedule_connect(delay)

    def _terminate(self, reason: TerminalReason, signal: str | None, payload: dict) -> None:
        self._set_state(ConnectionState.CLOSED_PERMANENT)
        self.terminal_reason = reason
        if self._pending_connect and not self._pending_connect.done():
            self._pending_connect.cancel()
        if signal:
            self.bus.emit_nowait(Event(name=signal, payload={"session": self.name, **payload}, source="supervisor"))
        self._terminated.set()

    # ── Connect attempts ───────────────────────────────────────────

    def _schedule_connect(self, delay: float) -> None:
        if self._pending_connect and not self._pending_connect.done():
            logger.debug(f"Connect attempt for '{self.name}' already pending")
            return
        self._pending_connect = asyncio.create_task(
            self._delayed_connect(delay), name=f"supervisor-connect-{self.name}"
        )

    async def _delayed_connect(self, delay: float) -> None:
        if delay > 0:
            await self._sleep(delay)
        try:
            await self._attempt_connect()
        except ConfigurationError:
            # Already recorded as fatal; the gateway re-raises it from run()
            pass

    async def _attempt_connect(self) -> None:
        if self._stopping or self._state is ConnectionState.CLOSED_PERMANENT:
            return
        self._set_state(ConnectionState.CONNECTING)
        self.connect_attempts += 1
        try:
            credentials = await self._credentials.load()
            await asyncio.wait_for(self._session.connect(credentials), timeout=self.connect_timeout)
        except ConfigurationError as e:
            logger.error(f"Session '{self.name}' cannot connect: {e}")
            self.fatal_error = e
            self._terminate(TerminalReason.FATAL_ERROR, None, {})
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            delay = self.restart.connect_retry_delay
            logger.warning(f"Connect attempt for '{self.name}' failed ({e!r}); retrying in {delay:g}s")
            if self._pending_connect is asyncio.current_task():
                self._pending_connect = None
            self._schedule_connect(delay)

    async def _cancel_pending_connect(self) -> None:
        task = self._pending_connect
        self._pending_connect = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
