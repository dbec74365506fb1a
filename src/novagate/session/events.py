"""Session events — the typed stream a Session Handle emits.

Every transport normalizes its callbacks into these four immutable event
types.  The gateway demultiplexes them by type: state changes go to the
connection supervisor, inbound messages to the command router, membership
changes to the group metadata cache, credential updates to the credential
store.
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

LOGGED_OUT = "logged-out"
"""Close reason meaning the pairing was revoked; never reconnect on it."""


class ConnectionPhase(enum.Enum):
    """Phase reported by a ``state-change`` event."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class MembershipAction(enum.Enum):
    """What happened to the identities in a ``membership-change`` event."""

    ADD = "add"
    REMOVE = "remove"
    PROMOTE = "promote"
    DEMOTE = "demote"


@dataclass(frozen=True)
class StateChange:
    """Connection phase transition reported by the transport."""

    phase: ConnectionPhase
    reason: str | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_logged_out(self) -> bool:
        return self.phase is ConnectionPhase.CLOSE and self.reason == LOGGED_OUT

    @classmethod
    def connecting(cls) -> StateChange:
        return cls(phase=ConnectionPhase.CONNECTING)

    @classmethod
    def opened(cls) -> StateChange:
        return cls(phase=ConnectionPhase.OPEN)

    @classmethod
    def closed(cls, reason: str | None = None) -> StateChange:
        return cls(phase=ConnectionPhase.CLOSE, reason=reason)


@dataclass(frozen=True)
class InboundMessage:
    """A text message received from a remote party.

    ``group`` is the group the message was posted in, or ``None`` for a
    direct message.  ``raw`` carries the transport's original payload for
    handlers that need more than text.
    """

    sender: str
    text: str
    group: str | None = None
    raw: Any = field(default=None, repr=False, compare=False)
    from_self: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: float = field(default_factory=time.time)

    @property
    def chat(self) -> str:
        """Where replies to this message should go."""
        return self.group or self.sender


@dataclass(frozen=True)
class MembershipChange:
    """Participants added, removed, promoted or demoted in a group."""

    group_id: str
    changed: tuple[str, ...]
    action: MembershipAction
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CredentialUpdate:
    """New credential material that must be persisted before it is lost."""

    blob: bytes = field(repr=False)
    timestamp: float = field(default_factory=time.time)


SessionEvent = StateChange | InboundMessage | MembershipChange | CredentialUpdate
