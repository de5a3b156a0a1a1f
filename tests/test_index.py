"""
Tests for releasehub.core.index: snapshot building and refresh coordination.
"""

import asyncio

import pytest

from releasehub.core.index import ReleaseIndex, build_snapshot
from releasehub.exceptions import UpstreamError
from tests.helpers import FakeBackend, make_release

pytestmark = [pytest.mark.unit, pytest.mark.core]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestBuildSnapshot:
    """Normalization of raw backend releases."""

    def test_drafts_and_unparsable_tags_are_skipped(self):
        snapshot = build_snapshot(
            [
                make_release("v1.0.0"),
                make_release("1.1.0", draft=True),
                make_release("nightly-build"),
            ],
            fetched_at=0,
        )
        assert [r.tag for r in snapshot.releases] == ["1.0.0"]

    def test_channels_and_platforms_are_derived(self):
        snapshot = build_snapshot(
            [make_release("2.0.0-beta.3", ["App.dmg", "notes.txt"])], fetched_at=0
        )
        release = snapshot.releases[0]
        assert release.channel == "beta"
        assert [a.platform for a in release.assets] == ["osx_64", None]
        assert snapshot.channels == ["beta"]

    def test_duplicate_tags_keep_newest_publish(self):
        snapshot = build_snapshot(
            [
                make_release("1.0.0", notes="old", days=1),
                make_release("v1.0.0", notes="new", days=2),
            ],
            fetched_at=0,
        )
        assert len(snapshot.releases) == 1
        assert snapshot.get("1.0.0").notes == "new"
        assert snapshot.get("9.9.9") is None

    def test_releases_are_sorted_newest_first(self):
        snapshot = build_snapshot(
            [make_release("0.9.0"), make_release("1.1.0-beta.1"), make_release("1.0.0")],
            fetched_at=0,
        )
        assert [r.tag for r in snapshot.releases] == ["1.1.0-beta.1", "1.0.0", "0.9.0"]


class TestReleaseIndex:
    """Refresh, expiry and single-flight behaviour."""

    @pytest.mark.asyncio
    async def test_list_loads_on_first_use(self):
        backend = FakeBackend([make_release("1.0.0")])
        index = ReleaseIndex(backend)

        releases = await index.list()

        assert [r.tag for r in releases] == ["1.0.0"]
        assert backend.list_calls == 1
        assert index.snapshot is not None

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_backend_call(self):
        backend = FakeBackend([make_release("1.0.0")])
        backend.list_gate.clear()
        index = ReleaseIndex(backend)

        waiters = [asyncio.create_task(index.refresh()) for _ in range(10)]
        await asyncio.sleep(0)
        backend.list_gate.set()
        snapshots = await asyncio.gather(*waiters)

        assert backend.list_calls == 1
        assert all(s is snapshots[0] for s in snapshots)
        assert index.refresh_count == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_previous_snapshot(self):
        backend = FakeBackend([make_release("1.0.0")])
        index = ReleaseIndex(backend)
        first = await index.refresh()

        backend.list_error = UpstreamError("boom")
        with pytest.raises(UpstreamError):
            await index.refresh()

        assert index.snapshot is first
        backend.list_error = None
        backend.releases.append(make_release("1.1.0"))
        second = await index.refresh()
        assert [r.tag for r in second.releases] == ["1.1.0", "1.0.0"]

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_becomes_upstream_error(self):
        backend = FakeBackend()
        backend.list_error = RuntimeError("kaput")
        index = ReleaseIndex(backend)

        with pytest.raises(UpstreamError) as exc_info:
            await index.list()
        assert "kaput" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_expired_snapshot_served_while_refreshing(self):
        clock = FakeClock()
        backend = FakeBackend([make_release("1.0.0")])
        index = ReleaseIndex(backend, ttl=60, clock=clock)
        await index.list()

        backend.releases.append(make_release("2.0.0"))
        clock.now += 61
        assert index.is_expired()

        stale = await index.list()
        assert [r.tag for r in stale] == ["1.0.0"]

        await index.wait_idle()
        assert [r.tag for r in await index.list()] == ["2.0.0", "1.0.0"]
        assert backend.list_calls == 2

    @pytest.mark.asyncio
    async def test_background_refresh_failure_is_not_raised(self):
        clock = FakeClock()
        backend = FakeBackend([make_release("1.0.0")])
        index = ReleaseIndex(backend, ttl=60, clock=clock)
        await index.list()

        backend.list_error = UpstreamError("down")
        clock.now += 120
        releases = await index.list()
        await index.wait_idle()

        assert [r.tag for r in releases] == ["1.0.0"]
        assert index.is_expired()

    @pytest.mark.asyncio
    async def test_release_event_invalidates_and_refreshes(self):
        backend = FakeBackend([make_release("1.0.0")])
        index = ReleaseIndex(backend)
        await index.list()
        assert not index.is_expired()

        backend.releases.append(make_release("1.0.1"))
        index.notify_release_event()
        assert index.is_expired()
        await index.wait_idle()

        assert not index.is_expired()
        assert index.snapshot.releases[0].tag == "1.0.1"

    @pytest.mark.asyncio
    async def test_invalidation_during_refresh_keeps_index_stale(self):
        backend = FakeBackend([make_release("1.0.0")])
        backend.list_gate.clear()
        index = ReleaseIndex(backend)

        pending = asyncio.create_task(index.refresh())
        # Let the refresh start and block on the backend
        for _ in range(3):
            await asyncio.sleep(0)
        index.invalidate()
        backend.list_gate.set()
        await pending

        assert index.is_expired()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_refresh(self):
        backend = FakeBackend([make_release("1.0.0")])
        backend.list_gate.clear()
        index = ReleaseIndex(backend)

        first = asyncio.create_task(index.refresh())
        second = asyncio.create_task(index.refresh())
        await asyncio.sleep(0)
        first.cancel()
        backend.list_gate.set()

        snapshot = await second
        assert first.cancelled()
        assert [r.tag for r in snapshot.releases] == ["1.0.0"]
