"""Group metadata cache — TTL read-through with event-driven invalidation.

Snapshots are immutable; a refresh builds a new one and replaces the dict
entry, so a reader holding a snapshot never sees it change underneath.

Concurrent reads of the same stale group share one refresh.  A refresh
stores its result only while it is still the registered in-flight task for
its group.  An invalidation unregisters (detaches) any refresh already in
flight: that refresh still answers the callers who were waiting on it, but
its result is not stored, and the next read starts a fresh fetch.  This
keeps a membership change from being papered over by a fetch that started
before it.  Nothing is kept for groups that are neither cached nor being
refreshed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from novagate.core.exceptions import MetadataUnavailable
from novagate.core.types import Clock
from novagate.core.utils.identity import normalize_identity
from novagate.session.events import MembershipChange

FetchFn = Callable[[str], Awaitable[Mapping[str, Any]]]

DEFAULT_TTL = 300.0


@dataclass(frozen=True)
class GroupSnapshot:
    """Point-in-time copy of a group's membership and admin state."""

    group_id: str
    subject: str
    owner_id: str | None
    participants: frozenset[str]
    admins: frozenset[str]
    fetched_at: float
    description: str = ""
    created_at: float | None = None

    @classmethod
    def from_metadata(cls, group_id: str, metadata: Mapping[str, Any], fetched_at: float) -> GroupSnapshot:
        """Build a snapshot from transport metadata.

        Participants may be plain identities or mappings with ``id`` and
        ``admin`` (``"admin"`` / ``"superadmin"`` / ``None``) keys.  When no
        owner is reported, the superadmin (if any) is taken as owner.
        """
        participants: set[str] = set()
        admins: set[str] = set()
        superadmin: str | None = None
        for entry in metadata.get("participants") or []:
            if isinstance(entry, Mapping):
                identity = normalize_identity(str(entry.get("id", "")))
                role = entry.get("admin")
            else:
                identity, role = normalize_identity(str(entry)), None
            if not identity:
                continue
            participants.add(identity)
            if role:
                admins.add(identity)
                if role == "superadmin" and superadmin is None:
                    superadmin = identity

        owner = metadata.get("owner") or superadmin
        desc = metadata.get("desc", metadata.get("description"))
        return cls(
            group_id=group_id,
            subject=str(metadata.get("subject") or ""),
            owner_id=normalize_identity(str(owner)) if owner else None,
            participants=frozenset(participants),
            admins=frozenset(admins),
            fetched_at=fetched_at,
            description=str(desc) if desc else "",
            created_at=metadata.get("creation"),
        )

    def is_admin(self, identity: str) -> bool:
        return normalize_identity(identity) in self.admins

    def is_owner(self, identity: str) -> bool:
        return self.owner_id is not None and normalize_identity(identity) == self.owner_id

    def is_member(self, identity: str) -> bool:
        return normalize_identity(identity) in self.participants

    def age(self, now: float) -> float:
        return now - self.fetched_at


class GroupMetadataCache:
    """Per-group snapshot cache.

    Args:
        fetch: Async ``group_id -> metadata`` capability (the session's
            ``group_metadata``).
        ttl: Default max age in seconds for :meth:`get`.
        refresh_timeout: Seconds a single fetch may take.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        ttl: float = DEFAULT_TTL,
        refresh_timeout: float = 10.0,
        clock: Clock = time.monotonic,
    ):
        self._fetch_fn = fetch
        self.ttl = ttl
        self.refresh_timeout = refresh_timeout
        self._clock = clock
        self._entries: dict[str, GroupSnapshot] = {}
        self._inflight: dict[str, asyncio.Task[GroupSnapshot]] = {}
        self.refresh_count = 0
        self.failure_count = 0

    # ── Reads ──────────────────────────────────────────────────────

    async def get(self, group_id: str, max_age: float | None = None) -> GroupSnapshot:
        """Return a snapshot no older than *max_age* seconds (default: the TTL).

        Raises:
            MetadataUnavailable: The refresh failed and nothing is cached.
        """
        limit = self.ttl if max_age is None else max_age
        snapshot = self._entries.get(group_id)
        if snapshot is not None and snapshot.age(self._clock()) < limit:
            return snapshot

        task = self._inflight.get(group_id)
        if task is None:
            task = asyncio.create_task(
                self._refresh(group_id), name=f"group-refresh-{group_id}"
            )
            self._inflight[group_id] = task
            task.add_done_callback(lambda t, gid=group_id: self._forget_inflight(gid, t))

        try:
            return await asyncio.shield(task)
        except MetadataUnavailable:
            stale = self._entries.get(group_id)
            if stale is not None:
                logger.info(f"Serving stale metadata for {group_id} (age {stale.age(self._clock()):.0f}s)")
                return stale
            raise

    def peek(self, group_id: str) -> GroupSnapshot | None:
        """Return the cached snapshot, whatever its age, without refreshing."""
        return self._entries.get(group_id)

    async def is_admin(self, group_id: str, identity: str) -> bool:
        """True if *identity* is an admin of the group; False when unknown."""
        try:
            snapshot = await self.get(group_id)
        except MetadataUnavailable as e:
            logger.warning(f"Admin check for {identity} in {group_id} failed: {e}")
            return False
        return snapshot.is_admin(identity)

    async def is_owner(self, group_id: str, identity: str) -> bool:
        """True if *identity* owns the group; False when unknown."""
        try:
            snapshot = await self.get(group_id)
        except MetadataUnavailable as e:
            logger.warning(f"Owner check for {identity} in {group_id} failed: {e}")
            return False
        return snapshot.is_owner(identity)

    # ── Invalidation ───────────────────────────────────────────────

    def invalidate(self, group_id: str) -> bool:
        """Drop the group's entry unconditionally. Returns True if one was cached."""
        self._inflight.pop(group_id, None)
        removed = self._entries.pop(group_id, None) is not None
        logger.debug(f"Invalidated metadata for {group_id} (cached={removed})")
        return removed

    def handle_membership_change(self, event: MembershipChange) -> None:
        """Invalidate the group a membership event refers to."""
        logger.info(f"{event.action.value} of {len(event.changed)} participant(s) in {event.group_id}")
        self.invalidate(event.group_id)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
        self._inflight.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._entries

    def get_status(self) -> dict:
        return {
            "entries": len(self._entries),
            "refreshing": len(self._inflight),
            "tracked_groups": len(self._entries.keys() | self._inflight.keys()),
            "refreshes": self.refresh_count,
            "failures": self.failure_count,
            "ttl": self.ttl,
        }

    # ── Internal ───────────────────────────────────────────────────

    async def _refresh(self, group_id: str) -> GroupSnapshot:
        self.refresh_count += 1
        try:
            metadata = await asyncio.wait_for(self._fetch_fn(group_id), timeout=self.refresh_timeout)
            snapshot = GroupSnapshot.from_metadata(group_id, metadata, fetched_at=self._clock())
        except Exception as e:
            self.failure_count += 1
            logger.warning(f"Metadata refresh for {group_id} failed: {e!r}")
            raise MetadataUnavailable(f"Metadata for {group_id} is unavailable") from e

        if self._inflight.get(group_id) is asyncio.current_task():
            self._entries[group_id] = snapshot
            logger.debug(f"Cached metadata for {group_id} ({snapshot.subject!r}, {len(snapshot.participants)} members)")
        else:
            logger.debug(f"Refresh of {group_id} raced an invalidation; result not cached")
        return snapshot

    def _forget_inflight(self, group_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(group_id) is task:
            del self._inflight[group_id]
        if not task.cancelled():
            # Retrieve so a failure nobody awaited is not reported as unhandled
            task.exception()
