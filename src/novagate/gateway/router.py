"""Command router — resolves inbound text to a command and runs it.

Pipeline for each message::

    trim -> addressed? (prefix or mention) -> parse word/args
         -> resolve in current registry generation
         -> authorize (elevated-only commands)
         -> cooldown (non-elevated senders)
         -> invoke handler with a timeout

Every step ends in a :class:`DispatchOutcome`.  Control outcomes
(``IGNORED``, ``UNKNOWN``, ``FORBIDDEN``, ``RATE_LIMITED``) are expected and
only logged at debug level.  Handler failures are logged in full here and
answered with a generic message; internal error text never reaches the
remote party.

Usage::

    router = CommandRouter(registry, prefix=r"^[.!]", elevated=["919876543210"])
    outcome = await router.dispatch("15551234567@s.whatsapp.net", None, ".ping")
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import re
import threading
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from novagate.core.config_schema import GatewaySettings
from novagate.core.types import Clock
from novagate.core.utils.identity import bare_id, normalize_number
from novagate.gateway.notifier import Notifier
from novagate.gateway.registry import CommandSpec, PluginRegistry, RegistryGeneration
from novagate.session.events import InboundMessage

FORBIDDEN_TEXT = "This command is only available to the bot owner."
GENERIC_ERROR_TEXT = "Error executing command. Please contact the bot owner."

_COOLDOWN_PRUNE_THRESHOLD = 1024


class DispatchStatus(enum.Enum):
    """Final state of a single dispatch."""

    SUCCESS = "success"
    IGNORED = "ignored"
    UNKNOWN = "unknown"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate-limited"
    HANDLER_FAILED = "handler-failed"


class FailureReason(enum.Enum):
    """Why a handler invocation ended in ``HANDLER_FAILED``."""

    ERROR = "error"
    EXCEPTION = "exception"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of routing one message."""

    status: DispatchStatus
    command: str | None = None
    reason: FailureReason | None = None
    detail: str | None = None
    generation: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.SUCCESS


@dataclass(frozen=True)
class Success:
    """Handler completed; ``reply`` (if any) is sent back to the chat."""

    reply: str | None = None


@dataclass(frozen=True)
class HandlerError:
    """Handler ran but reports failure. ``message`` is logged, not shown."""

    message: str


HandlerResult = Success | HandlerError


@dataclass
class CommandContext:
    """Everything a handler gets to see about the invocation."""

    sender: str
    group: str | None
    args: list[str]
    command_name: str
    is_elevated: bool
    raw_text: str = ""
    message: InboundMessage | None = None
    services: Mapping[str, Any] = field(default_factory=dict)
    _reply: Callable[[str], Awaitable[bool]] | None = field(default=None, repr=False)

    @property
    def chat(self) -> str:
        """Where replies go: the group, or the sender for direct messages."""
        return self.group or self.sender

    @property
    def text(self) -> str:
        """Arguments joined back into a single string."""
        return " ".join(self.args)

    async def reply(self, text: str) -> bool:
        """Send *text* to the originating chat. Returns True if delivered."""
        if self._reply is None:
            logger.debug(f"No reply channel for '{self.command_name}'; dropped: {text[:80]}")
            return False
        return await self._reply(text)


@dataclass(frozen=True)
class ParsedCommand:
    """Command word and arguments extracted from addressed text."""

    word: str
    args: list[str]
    via_mention: bool = False


class CommandRouter:
    """Route messages to command handlers with auth, cooldown, and timeouts.

    Args:
        registry: Source of the current command generation.
        prefix: Regex (matched at the start of the text, case-insensitive)
            that marks a message as a command.
        elevated: Numbers/identities that bypass cooldown and may run
            elevated-only commands.
        cooldown: Seconds a non-elevated sender must wait between commands.
        handler_timeout: Seconds a handler may run before it is abandoned.
        notifier: Sink for replies, ``FORBIDDEN`` notices and error messages.
        self_id: Callable returning the bot's own identity (mention detection).
        services: Shared objects exposed to handlers via ``ctx.services``.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        registry: PluginRegistry,
        *,
        prefix: str | re.Pattern[str] = r"^[.,!]",
        elevated: Iterable[str] = (),
        cooldown: float = 2.0,
        handler_timeout: float = 30.0,
        notifier: Notifier | None = None,
        self_id: Callable[[], str | None] = lambda: None,
        services: Mapping[str, Any] | None = None,
        clock: Clock = time.monotonic,
    ):
        self.registry = registry
        self._prefix = prefix if isinstance(prefix, re.Pattern) else re.compile(prefix, re.IGNORECASE)
        self._elevated = frozenset(k for k in (normalize_number(e) for e in elevated) if k)
        self.cooldown = cooldown
        self.handler_timeout = handler_timeout
        self._notifier = notifier
        self._self_id = self_id
        self.services: dict[str, Any] = dict(services or {})
        self._clock = clock
        self._cooldowns: dict[str, float] = {}
        self._cooldown_lock = threading.Lock()

    @classmethod
    def from_settings(cls, registry: PluginRegistry, settings: GatewaySettings, **kwargs: Any) -> CommandRouter:
        """Build a router from validated settings; *kwargs* override."""
        params: dict[str, Any] = {
            "prefix": settings.commands.prefix_pattern,
            "elevated": settings.access.elevated,
            "cooldown": settings.commands.cooldown,
            "handler_timeout": settings.commands.handler_timeout,
        }
        params.update(kwargs)
        return cls(registry, **params)

    # ── Parsing & authorization ────────────────────────────────────

    def is_elevated(self, sender: str) -> bool:
        key = normalize_number(sender)
        return bool(key) and key in self._elevated

    def parse(self, text: str) -> ParsedCommand | None:
        """Return the command word and args if *text* addresses the bot."""
        text = text.strip()
        if not text:
            return None

        match = self._prefix.match(text)
        if match:
            words = text[match.end() :].split()
            via_mention = False
        else:
            me = bare_id(self._self_id() or "")
            if not me or me not in text:
                return None
            words = [w for w in text.split() if me not in w]
            via_mention = True

        if not words:
            return ParsedCommand(word="", args=[], via_mention=via_mention)
        return ParsedCommand(word=words[0].casefold(), args=words[1:], via_mention=via_mention)

    def _claim_cooldown(self, sender: str) -> bool:
        """Atomic check-and-set of the sender's cooldown slot."""
        key = normalize_number(sender) or sender
        now = self._clock()
        with self._cooldown_lock:
            last = self._cooldowns.get(key)
            if last is not None and now - last < self.cooldown:
                return False
            self._cooldowns[key] = now
            if len(self._cooldowns) > _COOLDOWN_PRUNE_THRESHOLD:
                self._prune_cooldowns(now)
        return True

    def _prune_cooldowns(self, now: float) -> None:
        expired = [k for k, ts in self._cooldowns.items() if now - ts >= self.cooldown]
        for k in expired:
            del self._cooldowns[k]

    def reload(self) -> RegistryGeneration:
        """Rebuild the registry; dispatches already running keep their spec."""
        return self.registry.reload()

    # ── Dispatch ───────────────────────────────────────────────────

    async def handle_message(self, message: InboundMessage) -> DispatchOutcome:
        """Dispatch an inbound message event."""
        if message.from_self:
            return DispatchOutcome(DispatchStatus.IGNORED)
        return await self.dispatch(message.sender, message.group, message.text, message=message)

    async def dispatch(
        self,
        sender: str,
        group: str | None,
        text: str,
        *,
        message: InboundMessage | None = None,
    ) -> DispatchOutcome:
        """Route *text* from *sender* (in *group*, if any) to its handler."""
        parsed = self.parse(text or "")
        if parsed is None:
            return DispatchOutcome(DispatchStatus.IGNORED)

        generation = self.registry.current()
        spec = generation.resolve(parsed.word) if parsed.word else None
        if spec is None:
            logger.debug(f"Unknown command '{parsed.word}' from {bare_id(sender)}")
            return DispatchOutcome(DispatchStatus.UNKNOWN, command=parsed.word or None, generation=generation.number)

        chat = group or sender
        elevated = self.is_elevated(sender)
        if spec.requires_elevated and not elevated:
            logger.debug(f"Denied '{spec.name}' to {bare_id(sender)}: elevated only")
            await self._notify(chat, FORBIDDEN_TEXT)
            return DispatchOutcome(DispatchStatus.FORBIDDEN, command=spec.name, generation=generation.number)

        if not elevated and not self._claim_cooldown(sender):
            logger.debug(f"Rate limited '{spec.name}' from {bare_id(sender)}")
            return DispatchOutcome(DispatchStatus.RATE_LIMITED, command=spec.name, generation=generation.number)

        ctx = CommandContext(
            sender=sender,
            group=group,
            args=list(parsed.args),
            command_name=spec.name,
            is_elevated=elevated,
            raw_text=text,
            message=message,
            services=self.services,
            _reply=lambda reply_text: self._notify(chat, reply_text),
        )
        return await self._run(spec, ctx, generation.number)

    async def _run(self, spec: CommandSpec, ctx: CommandContext, generation: int) -> DispatchOutcome:
        started = time.monotonic()
        try:
            result = await self._invoke(spec, ctx)
        except TimeoutError:
            logger.error(
                f"Command '{spec.name}' from {bare_id(ctx.sender)} timed out after {self.handler_timeout:g}s; abandoned"
            )
            await self._notify(ctx.chat, GENERIC_ERROR_TEXT)
            return DispatchOutcome(
                DispatchStatus.HANDLER_FAILED, command=spec.name, reason=FailureReason.TIMEOUT, generation=generation
            )
        except Exception as e:
            logger.exception(f"Command '{spec.name}' from {bare_id(ctx.sender)} raised")
            await self._notify(ctx.chat, GENERIC_ERROR_TEXT)
            return DispatchOutcome(
                DispatchStatus.HANDLER_FAILED,
                command=spec.name,
                reason=FailureReason.EXCEPTION,
                detail=repr(e),
                generation=generation,
            )

        if isinstance(result, HandlerError):
            logger.error(f"Command '{spec.name}' from {bare_id(ctx.sender)} failed: {result.message}")
            await self._notify(ctx.chat, GENERIC_ERROR_TEXT)
            return DispatchOutcome(
                DispatchStatus.HANDLER_FAILED,
                command=spec.name,
                reason=FailureReason.ERROR,
                detail=result.message,
                generation=generation,
            )

        reply = result.reply if isinstance(result, Success) else result if isinstance(result, str) else None
        if reply:
            await self._notify(ctx.chat, reply)

        elapsed = time.monotonic() - started
        logger.info(f"[CMD] {bare_id(ctx.sender)} used: {spec.name} {' '.join(ctx.args)}".rstrip() + f" ({elapsed:.2f}s)")
        return DispatchOutcome(DispatchStatus.SUCCESS, command=spec.name, generation=generation)

    async def _invoke(self, spec: CommandSpec, ctx: CommandContext) -> Any:
        """Run the handler, including any awaitable it returns, under one deadline."""
        return await asyncio.wait_for(self._call_handler(spec, ctx), timeout=self.handler_timeout)

    @staticmethod
    async def _call_handler(spec: CommandSpec, ctx: CommandContext) -> Any:
        if inspect.iscoroutinefunction(spec.handler):
            result = await spec.handler(ctx)
        else:
            # Sync handlers run off-loop; on timeout the thread is abandoned
            result = await asyncio.to_thread(spec.handler, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _notify(self, chat: str, text: str) -> bool:
        if self._notifier is None:
            logger.debug(f"No notifier configured; dropped message to {chat}")
            return False
        return await self._notifier.deliver(chat, text)
