"""
Filesystem Release Backend

Serves releases from a local directory laid out as::

    <root>/<tag>/NOTES.md        optional release notes
    <root>/<tag>/<asset files>

The directory modification time is the publish time.
"""

import asyncio
import mimetypes
import os
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

import aiofiles  # type: ignore[import-untyped]

from releasehub.constants import DEFAULT_CHUNK_SIZE, NOTES_FILENAME
from releasehub.core.interfaces import Asset, Release, ReleaseBackend
from releasehub.exceptions import UpstreamError
from releasehub.log_utils import logger


class FileSystemBackend(ReleaseBackend):
    """Release backend reading tag directories from a local folder."""

    name = "filesystem"

    def __init__(self, root: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.root = os.path.abspath(os.path.expanduser(root))
        self.chunk_size = chunk_size

    async def list_releases(self) -> List[Release]:
        """
        Scan the root directory for releases.

        Raises:
            UpstreamError: If the root directory cannot be read.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._scan)

    def _scan(self) -> List[Release]:
        try:
            entries = sorted(os.scandir(self.root), key=lambda e: e.name)
        except OSError as e:
            logger.error(f"Could not read releases directory {self.root}: {e}")
            raise UpstreamError(
                "Could not read releases directory",
                url=self.root,
                details=str(e),
            ) from e

        releases = []
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            try:
                releases.append(self._read_release(entry.path, entry.name))
            except OSError as e:
                logger.warning(f"Skipping unreadable release directory {entry.path}: {e}")
        logger.debug(f"Found {len(releases)} releases in {self.root}")
        return releases

    def _read_release(self, path: str, tag: str) -> Release:
        notes = ""
        assets = []
        for item in sorted(os.scandir(path), key=lambda e: e.name):
            if item.name.startswith(".") or not item.is_file():
                continue
            if item.name == NOTES_FILENAME:
                with open(item.path, "r", encoding="utf-8") as f:
                    notes = f.read()
                continue
            assets.append(
                Asset(
                    id=f"{tag}/{item.name}",
                    filename=item.name,
                    size=item.stat().st_size,
                    locator=item.path,
                    content_type=mimetypes.guess_type(item.name)[0],
                )
            )

        published_at = datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)
        return Release(
            tag=tag, published_at=published_at, notes=notes, assets=tuple(assets)
        )

    def _resolve_locator(self, asset: Asset) -> str:
        path = os.path.abspath(asset.locator)
        if os.path.commonpath([self.root, path]) != self.root:
            raise UpstreamError("Asset path outside releases directory", url=path)
        return path

    async def fetch_asset(self, asset: Asset) -> AsyncIterator[bytes]:
        path: Optional[str] = None
        try:
            path = self._resolve_locator(asset)
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            logger.error(f"Could not read asset {path or asset.locator}: {e}")
            raise UpstreamError(
                f"Could not read asset {asset.filename}",
                url=asset.locator,
                is_retryable=False,
                details=str(e),
            ) from e
