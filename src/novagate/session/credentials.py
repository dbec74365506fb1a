"""
Credential persistence for session handles.

Every ``credential-update`` event carries an opaque blob that must survive a
restart, otherwise the session has to be paired again.  The store writes it
atomically (temp file + rename) so a crash mid-write never leaves a
truncated blob behind.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiofiles
import aiofiles.os
from loguru import logger

from novagate.core.exceptions import ConfigurationError

CREDENTIALS_FILE = "creds.blob"


@runtime_checkable
class CredentialStore(Protocol):
    """Durable storage for a single session's credential blob."""

    async def load(self) -> bytes | None: ...

    async def save(self, blob: bytes) -> None: ...

    async def clear(self) -> None: ...


class FileCredentialStore:
    """Store credentials under ``<base_dir>/<session_key>/creds.blob``."""

    def __init__(self, base_dir: str | Path, session_key: str):
        key = session_key.strip()
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ConfigurationError(f"Invalid session key for credential storage: {session_key!r}")
        self.session_dir = Path(base_dir).expanduser() / key
        self.path = self.session_dir / CREDENTIALS_FILE

    async def load(self) -> bytes | None:
        """Return the stored blob, or None when the session was never paired."""
        if not await aiofiles.os.path.exists(self.path):
            return None
        async with aiofiles.open(self.path, "rb") as f:
            data = await f.read()
        return data or None

    async def save(self, blob: bytes) -> None:
        """Atomically replace the stored blob."""
        await aiofiles.os.makedirs(self.session_dir, exist_ok=True)
        tmp_path = self.path.with_suffix(f".tmp{os.getpid()}")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(blob)
            await f.flush()
        await aiofiles.os.replace(tmp_path, self.path)
        logger.debug(f"Saved {len(blob)} bytes of credentials to {self.path}")

    async def clear(self) -> None:
        """Forget the stored blob (needed after a logout before re-pairing)."""
        if await aiofiles.os.path.exists(self.path):
            await aiofiles.os.remove(self.path)
            logger.info(f"Cleared credentials at {self.path}")


class MemoryCredentialStore:
    """In-process credential store for tests and throwaway sessions."""

    def __init__(self, blob: bytes | None = None):
        self.blob = blob
        self.saves = 0

    async def load(self) -> bytes | None:
        return self.blob

    async def save(self, blob: bytes) -> None:
        self.blob = blob
        self.saves += 1

    async def clear(self) -> None:
        self.blob = None
