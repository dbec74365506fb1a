"""Session handle — abstract contract for the messaging transport.

The transport itself (encryption, handshake, framing) lives outside
novagate.  The gateway only needs the narrow surface below; it owns the
handle and passes smaller capabilities (``send``, ``group_metadata``) to
the components that need them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from novagate.core.exceptions import SessionError
from novagate.session.events import InboundMessage, SessionEvent

BROWSER_SIGNATURES: dict[str, tuple[str, str, str]] = {
    "primary": ("Novagate", "Chrome", "126.0.0.0"),
    "legacy": ("Novagate", "Safari", "17.0"),
}
"""Client signature presented to the network, per session variant."""


def browser_signature(variant: str) -> tuple[str, str, str]:
    """Return the (client, browser, version) triple for *variant*."""
    try:
        return BROWSER_SIGNATURES[variant]
    except KeyError:
        raise ValueError(f"Unknown session variant {variant!r}. Expected one of {sorted(BROWSER_SIGNATURES)}")


class SessionHandle(ABC):
    """Abstract base for messaging transports.

    Implementations must:

    - raise :class:`~novagate.core.exceptions.ConnectError` from
      :meth:`connect` when the attempt fails before any state change,
    - raise :class:`~novagate.core.exceptions.SendError` from :meth:`send`,
    - yield every event for the lifetime of the handle from :meth:`events`
      (across reconnects) and finish the iterator once closed for good.

    Usage::

        class MySession(SessionHandle):
            async def connect(self, credentials):
                ...

        session = MySession()
        await session.connect(await store.load())
        async for event in session.events():
            ...
    """

    @property
    @abstractmethod
    def self_id(self) -> str | None:
        """Identity of the bot account, known once the session has opened."""

    @abstractmethod
    async def connect(self, credentials: bytes | None) -> None:
        """Start a connection attempt using stored credentials (if any)."""

    @abstractmethod
    async def send(self, target: str, payload: str | Mapping[str, Any]) -> Any:
        """Deliver *payload* to *target*; returns the transport's acknowledgement."""

    @abstractmethod
    def events(self) -> AsyncIterator[SessionEvent]:
        """Stream of session events in emission order."""

    @abstractmethod
    async def group_metadata(self, group_id: str) -> Mapping[str, Any]:
        """Fetch current metadata (subject, owner, participants) for a group."""

    async def logout(self) -> None:  # noqa: B027
        """Revoke the pairing and close. Optional override."""
        await self.close()

    async def close(self) -> None:  # noqa: B027
        """Close the connection without revoking credentials. Optional override."""

    async def delete_message(self, message: InboundMessage) -> None:
        """Delete *message* for everyone in its chat. Optional override."""
        raise SessionError(f"{type(self).__name__} cannot delete messages")

    async def remove_participants(self, group_id: str, identities: Sequence[str]) -> None:
        """Remove *identities* from *group_id*. Optional override."""
        raise SessionError(f"{type(self).__name__} cannot remove group participants")
