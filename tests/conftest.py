"""Shared test fixtures for novagate."""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import AsyncIterator, Mapping
from typing import Any

import pytest

from novagate.core.config_schema import GatewaySettings
from novagate.core.exceptions import SessionError
from novagate.session.base import SessionHandle
from novagate.session.events import SessionEvent, StateChange

BOT_ID = "10000000000@s.whatsapp.net"
OWNER = "919876543210@s.whatsapp.net"
USER = "15551234567@s.whatsapp.net"
GROUP = "120363012345@g.us"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession(SessionHandle):
    """Scriptable session handle that records everything it is asked to do."""

    def __init__(self, *, bot_id: str = BOT_ID, auto_open: bool = True):
        self._bot_id = bot_id
        self.auto_open = auto_open
        self.connect_calls: list[bytes | None] = []
        self.connect_errors: list[BaseException] = []
        self.sent: list[tuple[str, Any]] = []
        self.send_error: BaseException | None = None
        self.metadata: dict[str, dict] = {}
        self.metadata_calls: list[str] = []
        self.metadata_error: BaseException | None = None
        self.deleted: list[Any] = []
        self.removed: list[tuple[str, list[str]]] = []
        self.moderation_error: BaseException | None = None
        self.closed = False
        self.logged_out = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def self_id(self) -> str | None:
        return self._bot_id

    async def connect(self, credentials: bytes | None) -> None:
        self.connect_calls.append(credentials)
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        if self.auto_open:
            self.emit(StateChange.connecting())
            self.emit(StateChange.opened())

    def emit(self, event: SessionEvent) -> None:
        self._queue.put_nowait(event)

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def send(self, target: str, payload: str | Mapping[str, Any]) -> Any:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((target, payload))
        return {"status": "delivered"}

    def texts(self, target: str | None = None) -> list[str]:
        """Text of every payload sent (optionally to one target)."""
        return [
            payload["text"] if isinstance(payload, Mapping) else payload
            for to, payload in self.sent
            if target is None or to == target
        ]

    async def group_metadata(self, group_id: str) -> Mapping[str, Any]:
        self.metadata_calls.append(group_id)
        if self.metadata_error is not None:
            raise self.metadata_error
        if group_id not in self.metadata:
            raise SessionError(f"item-not-found: {group_id}")
        return self.metadata[group_id]

    async def delete_message(self, message: Any) -> None:
        if self.moderation_error is not None:
            raise self.moderation_error
        self.deleted.append(message)

    async def remove_participants(self, group_id: str, identities: Any) -> None:
        if self.moderation_error is not None:
            raise self.moderation_error
        self.removed.append((group_id, list(identities)))

    async def logout(self) -> None:
        self.logged_out = True
        await self.close()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.end()


def group_metadata(subject: str = "Test Group", *, owner: str = OWNER, members: tuple[str, ...] = (USER,)) -> dict:
    """Metadata dict shaped like the transport's group metadata."""
    participants = [{"id": owner, "admin": "superadmin"}]
    participants.extend({"id": m, "admin": None} for m in members)
    return {"id": GROUP, "subject": subject, "owner": owner, "participants": participants}


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def tmp_config_file(tmp_dir):
    """Create a temporary YAML config file."""
    import yaml

    config_data = {
        "bot": {"name": "TestBot"},
        "session": {
            "id": "main",
            "credentials_dir": os.path.join(tmp_dir, "sessions"),
        },
        "access": {"elevated": "919876543210"},
        "paths": {"data_dir": os.path.join(tmp_dir, "data")},
    }
    config_path = os.path.join(tmp_dir, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_session():
    """Factory for sessions that need non-default options."""
    return FakeSession


@pytest.fixture
def make_metadata():
    return group_metadata


@pytest.fixture
def make_settings(tmp_dir):
    """Build GatewaySettings with overrides merged into each section."""

    def _make(**sections: dict) -> GatewaySettings:
        data: dict[str, Any] = {
            "session": {"id": "test", "credentials_dir": os.path.join(tmp_dir, "sessions")},
            "access": {"elevated": [OWNER]},
        }
        for name, values in sections.items():
            data.setdefault(name, {}).update(values)
        return GatewaySettings.model_validate(data)

    return _make
