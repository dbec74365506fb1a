"""Session layer — transport contract, event types, credential storage."""

from .base import SessionHandle, browser_signature
from .credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .events import (
    LOGGED_OUT,
    ConnectionPhase,
    CredentialUpdate,
    InboundMessage,
    MembershipAction,
    MembershipChange,
    SessionEvent,
    StateChange,
)

__all__ = [
    "LOGGED_OUT",
    "ConnectionPhase",
    "CredentialStore",
    "CredentialUpdate",
    "FileCredentialStore",
    "InboundMessage",
    "MembershipAction",
    "MembershipChange",
    "MemoryCredentialStore",
    "SessionEvent",
    "SessionHandle",
    "StateChange",
    "browser_signature",
]
