"""
Shared test helpers: release builders and an in-memory backend.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, Iterable, List, Optional

from releasehub.core.interfaces import Asset, Release, ReleaseBackend
from releasehub.exceptions import UpstreamError

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_asset(filename: str, content: bytes = b"", asset_id: Optional[str] = None) -> Asset:
    return Asset(
        id=asset_id or filename,
        filename=filename,
        size=len(content),
        locator=f"memory://{filename}",
    )


def make_release(
    tag: str,
    filenames: Iterable[str] = (),
    notes: str = "",
    days: int = 0,
    draft: bool = False,
) -> Release:
    return Release(
        tag=tag,
        published_at=BASE_TIME + timedelta(days=days),
        notes=notes,
        assets=tuple(make_asset(name, asset_id=f"{tag}/{name}") for name in filenames),
        draft=draft,
    )


class FakeBackend(ReleaseBackend):
    """
    In-memory backend.

    `contents` maps asset ids to bytes. Set `list_error`/`fetch_error` to make
    calls fail, and clear `gate` to hold fetches until it is set again.
    """

    name = "fake"

    def __init__(
        self,
        releases: Optional[List[Release]] = None,
        contents: Optional[Dict[str, bytes]] = None,
        chunk_size: int = 4,
    ) -> None:
        self.releases = list(releases or [])
        self.contents = dict(contents or {})
        self.chunk_size = chunk_size
        self.list_calls = 0
        self.fetch_calls: List[str] = []
        self.list_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.list_gate = asyncio.Event()
        self.list_gate.set()
        self.gate = asyncio.Event()
        self.gate.set()
        self.closed = False

    def add_release(self, release: Release, contents: Optional[Dict[str, bytes]] = None) -> Release:
        """Register a release whose asset sizes match `contents` (keyed by filename)."""
        contents = contents or {}
        assets = []
        for asset in release.assets:
            data = contents.get(asset.filename, asset.filename.encode("utf-8"))
            self.contents[asset.id] = data
            assets.append(
                Asset(
                    id=asset.id,
                    filename=asset.filename,
                    size=len(data),
                    locator=asset.locator,
                )
            )
        stored = Release(
            tag=release.tag,
            published_at=release.published_at,
            notes=release.notes,
            assets=tuple(assets),
            draft=release.draft,
        )
        self.releases.append(stored)
        return stored

    async def list_releases(self) -> List[Release]:
        self.list_calls += 1
        await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return list(self.releases)

    async def fetch_asset(self, asset: Asset) -> AsyncIterator[bytes]:
        self.fetch_calls.append(asset.id)
        await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        if asset.id not in self.contents:
            raise UpstreamError(f"No content for {asset.id}", upstream_status=404)
        data = self.contents[asset.id]
        for start in range(0, len(data), self.chunk_size):
            await asyncio.sleep(0)
            yield data[start : start + self.chunk_size]

    async def close(self) -> None:
        self.closed = True
