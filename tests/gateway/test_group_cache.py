"""Tests for novagate.gateway.group_cache — TTL read-through and invalidation."""

import asyncio
from dataclasses import FrozenInstanceError

import pytest

from novagate.core.exceptions import MetadataUnavailable, SessionError
from novagate.gateway.group_cache import GroupMetadataCache, GroupSnapshot
from novagate.session.events import MembershipAction, MembershipChange

OWNER = "919876543210@s.whatsapp.net"
USER = "15551234567@s.whatsapp.net"
GROUP = "120363012345@g.us"


@pytest.fixture
def cache(session, clock, make_metadata):
    session.metadata[GROUP] = make_metadata()
    return GroupMetadataCache(session.group_metadata, ttl=300.0, refresh_timeout=1.0, clock=clock)


class BlockingFetch:
    """Fetch that waits for a release signal, counting calls."""

    def __init__(self, metadata):
        self.metadata = metadata
        self.calls = 0
        self.release = asyncio.Event()

    async def __call__(self, group_id):
        self.calls += 1
        await self.release.wait()
        return self.metadata


class TestGroupSnapshot:
    def test_from_metadata(self, make_metadata):
        snap = GroupSnapshot.from_metadata(GROUP, make_metadata("Friends"), fetched_at=5.0)
        assert snap.subject == "Friends"
        assert snap.owner_id == OWNER
        assert snap.participants == {OWNER, USER}
        assert snap.admins == {OWNER}
        assert snap.fetched_at == 5.0

    def test_owner_falls_back_to_superadmin(self):
        metadata = {
            "subject": "No owner field",
            "participants": [{"id": USER, "admin": None}, {"id": "111:4@s.whatsapp.net", "admin": "superadmin"}],
        }
        snap = GroupSnapshot.from_metadata(GROUP, metadata, fetched_at=0.0)
        assert snap.owner_id == "111@s.whatsapp.net"
        assert snap.is_owner("111:9@s.whatsapp.net")

    def test_plain_string_participants(self):
        snap = GroupSnapshot.from_metadata(GROUP, {"participants": [USER, ""]}, fetched_at=0.0)
        assert snap.participants == {USER}
        assert snap.admins == frozenset()
        assert snap.owner_id is None
        assert not snap.is_owner(USER)

    def test_role_checks_ignore_device_part(self, make_metadata):
        snap = GroupSnapshot.from_metadata(GROUP, make_metadata(), fetched_at=0.0)
        assert snap.is_admin("919876543210:12@s.whatsapp.net")
        assert snap.is_member("15551234567:3@s.whatsapp.net")
        assert not snap.is_admin(USER)

    def test_snapshot_is_immutable(self, make_metadata):
        snap = GroupSnapshot.from_metadata(GROUP, make_metadata(), fetched_at=0.0)
        with pytest.raises(FrozenInstanceError):
            snap.subject = "changed"
        assert isinstance(snap.participants, frozenset)


@pytest.mark.smoke
class TestReadThrough:
    async def test_first_get_fetches(self, cache, session):
        snap = await cache.get(GROUP)
        assert snap.subject == "Test Group"
        assert session.metadata_calls == [GROUP]
        assert GROUP in cache
        assert len(cache) == 1

    async def test_within_ttl_is_served_from_cache(self, cache, session, clock):
        first = await cache.get(GROUP)
        clock.advance(250)
        second = await cache.get(GROUP, max_age=300)
        assert second is first
        assert session.metadata_calls == [GROUP]

    async def test_past_ttl_refreshes_exactly_once(self, cache, session, clock):
        await cache.get(GROUP)
        clock.advance(350)
        await cache.get(GROUP, max_age=300)
        await cache.get(GROUP, max_age=300)
        assert session.metadata_calls == [GROUP, GROUP]

    async def test_max_age_zero_always_refreshes(self, cache, session):
        await cache.get(GROUP)
        await cache.get(GROUP, max_age=0)
        assert len(session.metadata_calls) == 2

    async def test_refresh_replaces_snapshot(self, cache, session, clock, make_metadata):
        old = await cache.get(GROUP)
        session.metadata[GROUP] = make_metadata("Renamed")
        clock.advance(301)
        new = await cache.get(GROUP)
        assert new is not old
        assert old.subject == "Test Group"
        assert new.subject == "Renamed"
        assert cache.peek(GROUP) is new

    async def test_concurrent_reads_share_one_refresh(self, clock, make_metadata):
        fetch = BlockingFetch(make_metadata())
        cache = GroupMetadataCache(fetch, clock=clock)
        readers = [asyncio.create_task(cache.get(GROUP)) for _ in range(3)]
        await asyncio.sleep(0)
        fetch.release.set()
        snaps = await asyncio.gather(*readers)
        assert fetch.calls == 1
        assert snaps[0] is snaps[1] is snaps[2]


@pytest.mark.smoke
class TestInvalidation:
    async def test_invalidate_then_get_refreshes(self, cache, session):
        before = await cache.get(GROUP)
        assert cache.invalidate(GROUP) is True
        after = await cache.get(GROUP, max_age=10_000)
        assert after is not before
        assert len(session.metadata_calls) == 2

    async def test_invalidate_missing_entry(self, cache):
        assert cache.invalidate("999@g.us") is False

    async def test_membership_change_invalidates(self, cache, session, make_metadata):
        await cache.get(GROUP)
        session.metadata[GROUP] = make_metadata(members=(USER, "15550000000@s.whatsapp.net"))
        cache.handle_membership_change(
            MembershipChange(group_id=GROUP, changed=("15550000000@s.whatsapp.net",), action=MembershipAction.ADD)
        )
        assert GROUP not in cache
        snap = await cache.get(GROUP)
        assert snap.is_member("15550000000@s.whatsapp.net")

    async def test_invalidation_during_refresh_is_not_papered_over(self, clock, make_metadata):
        fetch = BlockingFetch(make_metadata("Before invalidation"))
        cache = GroupMetadataCache(fetch, clock=clock)

        reader = asyncio.create_task(cache.get(GROUP))
        await asyncio.sleep(0)
        cache.invalidate(GROUP)
        fetch.release.set()
        await reader

        assert GROUP not in cache
        await cache.get(GROUP)
        assert fetch.calls == 2

    async def test_invalidating_unknown_groups_keeps_no_state(self, cache):
        for n in range(200):
            cache.invalidate(f"1203630{n:05d}@g.us")
        status = cache.get_status()
        assert status["entries"] == 0
        assert status["refreshing"] == 0
        assert status["tracked_groups"] == 0

    async def test_refetch_after_invalidation_is_cached_again(self, clock, make_metadata):
        fetch = BlockingFetch(make_metadata("Second fetch"))
        cache = GroupMetadataCache(fetch, clock=clock)

        first = asyncio.create_task(cache.get(GROUP))
        await asyncio.sleep(0)
        cache.invalidate(GROUP)
        second = asyncio.create_task(cache.get(GROUP))
        await asyncio.sleep(0)
        fetch.release.set()
        await asyncio.gather(first, second)

        assert fetch.calls == 2
        assert cache.peek(GROUP).subject == "Second fetch"
        assert cache.get_status()["tracked_groups"] == 1

    async def test_clear(self, cache):
        await cache.get(GROUP)
        cache.clear()
        assert len(cache) == 0


class TestRefreshFailure:
    async def test_serves_stale_snapshot(self, cache, session, clock):
        cached = await cache.get(GROUP)
        session.metadata_error = SessionError("connection closed")
        clock.advance(301)
        snap = await cache.get(GROUP)
        assert snap is cached
        assert cache.failure_count == 1

    async def test_nothing_cached_raises(self, cache, session):
        session.metadata_error = SessionError("connection closed")
        with pytest.raises(MetadataUnavailable):
            await cache.get(GROUP)

    async def test_unknown_group_raises(self, cache):
        with pytest.raises(MetadataUnavailable):
            await cache.get("404@g.us")

    async def test_slow_fetch_times_out(self, clock, make_metadata):
        fetch = BlockingFetch(make_metadata())
        cache = GroupMetadataCache(fetch, refresh_timeout=0.05, clock=clock)
        with pytest.raises(MetadataUnavailable):
            await cache.get(GROUP)


class TestRoleChecks:
    async def test_is_admin_and_is_owner(self, cache):
        assert await cache.is_admin(GROUP, OWNER)
        assert not await cache.is_admin(GROUP, USER)
        assert await cache.is_owner(GROUP, OWNER)
        assert not await cache.is_owner(GROUP, USER)

    async def test_unavailable_metadata_means_false(self, cache, session):
        session.metadata_error = SessionError("offline")
        assert await cache.is_admin(GROUP, OWNER) is False
        assert await cache.is_owner(GROUP, OWNER) is False

    async def test_status(self, cache):
        await cache.get(GROUP)
        status = cache.get_status()
        assert status["entries"] == 1
        assert status["refreshes"] == 1
        assert status["failures"] == 0
        assert status["ttl"] == 300.0
