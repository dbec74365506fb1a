"""Console session — terminal loopback transport with rich formatting.

Turns lines typed in the terminal into inbound messages so the full
gateway (supervisor, router, cache) can be exercised without a network.
A few slash commands drive the simulated transport:

- ``/group <id>`` posts subsequent lines into group ``<id>`` (``/group`` alone
  returns to direct messages)
- ``/as <number>`` changes the simulated sender
- ``/close [reason]`` simulates a disconnect (``/close logged-out`` is terminal)
- ``/exit`` ends the session
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from rich.console import Console
from rich.panel import Panel

from novagate.core.exceptions import ConnectError
from novagate.core.utils.identity import DEFAULT_GROUP_SUFFIX, DEFAULT_USER_SUFFIX, to_user_id
from novagate.session.base import SessionHandle, browser_signature
from novagate.session.events import CredentialUpdate, InboundMessage, SessionEvent, StateChange

_END = object()


class ConsoleSession(SessionHandle):
    """Interactive terminal transport.

    Args:
        user: Number the typed messages appear to come from.
        bot_number: Number used as the bot's own identity.
        variant: Session variant (only changes the banner).
    """

    def __init__(self, *, user: str = "10000000001", bot_number: str = "10000000000", variant: str = "primary"):
        self.user_id = to_user_id(user, DEFAULT_USER_SUFFIX)
        self._bot_id = to_user_id(bot_number, DEFAULT_USER_SUFFIX)
        self.variant = variant
        self._group: str | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reader: threading.Thread | None = None
        self._connected = False
        self._closed = False
        self._console: Any = None

    @property
    def self_id(self) -> str | None:
        return self._bot_id if self._connected else None

    async def connect(self, credentials: bytes | None) -> None:
        if self._closed:
            raise ConnectError("Console session already closed")
        if self._console is None:
            self._console = Console()
            client, browser, version = browser_signature(self.variant)
            self._console.rule(f"[bold]console session[/] ({client} / {browser} {version})")
            self._console.print("Commands: /group <id>, /as <number>, /close [reason], /exit\n")

        self._loop = asyncio.get_running_loop()
        self._queue.put_nowait(StateChange.connecting())
        if credentials is None:
            self._queue.put_nowait(CredentialUpdate(blob=b"console-paired"))
        self._connected = True
        self._queue.put_nowait(StateChange.opened())

        if self._reader is None:
            # Daemon thread: a blocked input() must never keep the process alive
            self._reader = threading.Thread(target=self._read_lines, name="console-session-reader", daemon=True)
            self._reader.start()

    def _read_lines(self) -> None:
        while not self._closed:
            try:
                line = self._console.input("[bold cyan]> [/]")
            except (EOFError, KeyboardInterrupt):
                self._post(_END)
                return
            self._post(line)

    def _post(self, item: Any) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, str):
                event = self._parse_line(item.strip())
                if event is None:
                    continue
                yield event
            else:
                yield item

    def _parse_line(self, line: str) -> SessionEvent | None:
        if not line:
            return None
        if line == "/exit":
            self._closed = True
            self._queue.put_nowait(_END)
            return None
        if line.startswith("/group"):
            group = line[len("/group") :].strip()
            self._group = f"{group}{DEFAULT_GROUP_SUFFIX}" if group and "@" not in group else (group or None)
            self._console.print(f"[dim]now posting in {self._group or 'direct messages'}[/dim]")
            return None
        if line.startswith("/as "):
            self.user_id = to_user_id(line[4:].strip(), DEFAULT_USER_SUFFIX)
            self._console.print(f"[dim]now sending as {self.user_id}[/dim]")
            return None
        if line.startswith("/close"):
            self._connected = False
            reason = line[len("/close") :].strip() or "connection-lost"
            return StateChange.closed(reason)
        return InboundMessage(sender=self.user_id, text=line, group=self._group)

    async def send(self, target: str, payload: str | Mapping[str, Any]) -> Any:
        text = payload if isinstance(payload, str) else str(payload.get("text", ""))
        if self._console is not None:
            self._console.print(Panel(text, title=f"to {target}", title_align="left"))
        return {"status": "delivered", "target": target}

    async def delete_message(self, message: InboundMessage) -> None:
        if self._console is not None:
            self._console.print(f"[yellow]deleted message {message.id} from {message.sender}[/yellow]")

    async def remove_participants(self, group_id: str, identities: Sequence[str]) -> None:
        if self._console is not None:
            self._console.print(f"[yellow]removed {', '.join(identities)} from {group_id}[/yellow]")

    async def group_metadata(self, group_id: str) -> Mapping[str, Any]:
        return {
            "id": group_id,
            "subject": f"Console group {group_id.split('@', 1)[0]}",
            "owner": self.user_id,
            "participants": [
                {"id": self.user_id, "admin": "superadmin"},
                {"id": self._bot_id, "admin": None},
            ],
        }

    async def close(self) -> None:
        self._connected = False
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)
