"""
Release Index

Holds an immutable, sorted snapshot of the backend's releases and refreshes it
on demand, on expiry or on webhook notification. Concurrent refresh requests
share a single backend call.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, List, Optional, Tuple

from releasehub.constants import DEFAULT_RELEASES_TTL
from releasehub.exceptions import UpstreamError
from releasehub.log_utils import logger

from .interfaces import EPOCH, Release, ReleaseBackend
from .platforms import detect_platform
from .version import VersionManager, sort_releases


@dataclass(frozen=True)
class ReleaseSnapshot:
    """An immutable view of the releases at one point in time, newest first."""

    releases: Tuple[Release, ...] = field(default_factory=tuple)
    fetched_at: float = 0.0

    def get(self, tag: str) -> Optional[Release]:
        for release in self.releases:
            if release.tag == tag:
                return release
        return None

    @property
    def channels(self) -> List[str]:
        seen: List[str] = []
        for release in self.releases:
            if release.channel not in seen:
                seen.append(release.channel)
        return seen


def build_snapshot(
    raw_releases: Iterable[Release],
    fetched_at: float,
    version_manager: Optional[VersionManager] = None,
) -> ReleaseSnapshot:
    """
    Normalize raw backend releases into a sorted snapshot.

    Drafts and releases whose tag is not a version are dropped. Tags lose their
    leading "v", channels are derived from tags, and assets get a platform id.
    When a tag appears twice, the most recently published release wins.
    """
    versions = version_manager or VersionManager()
    by_tag = {}
    for raw in raw_releases:
        if raw.draft:
            continue
        tag = versions.normalize_tag(raw.tag)
        version = versions.normalize_version(tag)
        if version is None:
            logger.warning("Skipping release with unparsable tag %r", raw.tag)
            continue

        assets = tuple(
            replace(asset, platform=detect_platform(asset.filename))
            for asset in raw.assets
        )
        release = replace(
            raw,
            tag=tag,
            version=version,
            channel=versions.extract_channel(tag),
            assets=assets,
            published_at=raw.published_at or EPOCH,
            notes=raw.notes or "",
        )
        previous = by_tag.get(tag)
        if previous is None or release.published_at > previous.published_at:
            by_tag[tag] = release

    return ReleaseSnapshot(releases=sort_releases(list(by_tag.values())), fetched_at=fetched_at)


class ReleaseIndex:
    """
    Refreshable index of releases.

    Readers always get a complete snapshot: refreshes build a new
    ReleaseSnapshot and swap the reference in one assignment.

    Refresh triggers:
    - refresh(): explicit; errors propagate to the caller
    - list() on an expired snapshot: background refresh, current snapshot served
    - notify_release_event(): webhook; background refresh
    """

    def __init__(
        self,
        backend: ReleaseBackend,
        ttl: float = DEFAULT_RELEASES_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.ttl = ttl
        self._clock = clock
        self._versions = VersionManager()
        self._snapshot: Optional[ReleaseSnapshot] = None
        self._refresh_future: Optional["asyncio.Future[ReleaseSnapshot]"] = None
        self._stale = False
        self._generation = 0
        self._background_tasks: set = set()
        self.refresh_count = 0

    @property
    def snapshot(self) -> Optional[ReleaseSnapshot]:
        """The current snapshot, or None before the first successful refresh."""
        return self._snapshot

    def is_expired(self) -> bool:
        if self._snapshot is None or self._stale:
            return True
        return (self._clock() - self._snapshot.fetched_at) >= self.ttl

    def invalidate(self) -> None:
        """Mark the current snapshot as expired without discarding it."""
        self._stale = True
        self._generation += 1

    async def refresh(self) -> ReleaseSnapshot:
        """
        Fetch releases from the backend and swap in a new snapshot.

        Calls made while a refresh is in flight wait for that refresh instead of
        starting another one.

        Raises:
            UpstreamError: If the backend fetch fails; the previous snapshot is kept.
        """
        if self._refresh_future is None:
            loop = asyncio.get_running_loop()
            self._refresh_future = loop.create_future()
            task = loop.create_task(self._do_refresh(self._refresh_future))
            self._track(task)
        # shield: a cancelled waiter must not cancel the shared refresh
        return await asyncio.shield(self._refresh_future)

    async def _do_refresh(self, future: "asyncio.Future[ReleaseSnapshot]") -> None:
        self.refresh_count += 1
        generation = self._generation
        try:
            raw_releases = await self.backend.list_releases()
            snapshot = build_snapshot(raw_releases, self._clock(), self._versions)
        except UpstreamError as e:
            future.set_exception(e)
        except Exception as e:
            logger.exception("Unexpected error while refreshing releases")
            future.set_exception(
                UpstreamError("Failed to list releases", details=str(e))
            )
        else:
            self._snapshot = snapshot
            # An invalidation that arrived mid-fetch keeps the snapshot expired
            if generation == self._generation:
                self._stale = False
            logger.info("Release index refreshed: %d releases", len(snapshot.releases))
            future.set_result(snapshot)
        finally:
            self._refresh_future = None
            if not future.done():
                future.cancel()
            # Mark retrieved so unobserved failures are not reported by asyncio
            elif not future.cancelled():
                future.exception()

    async def list(self) -> Tuple[Release, ...]:
        """
        Return the current releases, newest first.

        With no snapshot yet the call waits for a refresh and propagates its
        failure. With an expired snapshot a refresh is started in the background
        and the current snapshot is returned immediately.
        """
        if self._snapshot is None:
            snapshot = await self.refresh()
            return snapshot.releases
        if self.is_expired():
            self.schedule_refresh()
        return self._snapshot.releases

    def schedule_refresh(self) -> None:
        """Start a background refresh whose failure is logged, not raised."""
        if self._refresh_future is not None:
            return
        task = asyncio.get_running_loop().create_task(self._background_refresh())
        self._track(task)

    def notify_release_event(self) -> None:
        """Handle a new-release notification: invalidate and refresh."""
        logger.info("Release notification received, refreshing index")
        self.invalidate()
        self.schedule_refresh()

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except UpstreamError as e:
            logger.warning(f"Background release refresh failed: {e}")

    def _track(self, task: "asyncio.Task") -> None:
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for outstanding background refreshes (used on shutdown and in tests)."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
