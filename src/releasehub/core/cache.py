"""
Asset Content Cache

Disk-backed cache of asset bytes keyed by asset id.

- At most one backend fetch per asset id is in flight; concurrent callers
  wait on the same fetch and then read the same file.
- Total bytes of indexed entries never exceed `max_bytes`; least recently
  used entries are evicted first. Entries older than `max_age` are misses.
- Every entry is written under a unique filename and readers pin the entry
  they read, so eviction or replacement only deletes a file once its last
  reader is done.
- The fetch runs in its own task: a caller that goes away does not stop the
  download, which still populates the cache for everyone else.
"""

import asyncio
import hashlib
import os
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Optional, Set

import aiofiles  # type: ignore[import-untyped]

from releasehub.constants import (
    CACHE_DATA_SUFFIX,
    CACHE_INDEX_FILE,
    CACHE_PART_SUFFIX,
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_CACHE_MAX_BYTES,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_FETCH_TIMEOUT,
)
from releasehub.exceptions import ReleaseHubError, UpstreamError, UpstreamTimeoutError
from releasehub.log_utils import logger

from .files import atomic_write_json, read_json
from .interfaces import Asset, ReleaseBackend


@dataclass
class CacheEntry:
    """One cached asset on disk."""

    key: str
    filename: str
    size: int
    created_at: float
    last_access: float
    readers: int = field(default=0, compare=False)
    evicted: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "filename": self.filename,
            "size": self.size,
            "created_at": self.created_at,
            "last_access": self.last_access,
        }


@dataclass
class _Flight:
    future: "asyncio.Future[CacheEntry]"
    waiters: int = 0


class CachedAsset:
    """Read handle for a pinned cache entry; iterate it to get the bytes."""

    def __init__(self, entry: CacheEntry, path: str, chunk_size: int) -> None:
        self.entry = entry
        self.path = path
        self.chunk_size = chunk_size

    @property
    def size(self) -> int:
        return self.entry.size

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.path, "rb") as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    async def read(self) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            return await f.read()


class AssetCache:
    """
    LRU, size and age bounded asset cache with single-flight backend fetches.

    All bookkeeping happens on the event loop between awaits; no lock is held
    across network or disk I/O.
    """

    def __init__(
        self,
        backend: ReleaseBackend,
        cache_dir: str,
        max_bytes: int = DEFAULT_CACHE_MAX_BYTES,
        max_age: Optional[float] = DEFAULT_CACHE_MAX_AGE,
        fetch_timeout: Optional[float] = DEFAULT_FETCH_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.cache_dir = cache_dir
        self.max_bytes = max_bytes
        self.max_age = max_age
        self.fetch_timeout = fetch_timeout
        self.chunk_size = chunk_size
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, _Flight] = {}
        self._tasks: Set["asyncio.Task"] = set()
        self._total_bytes = 0
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def index_path(self) -> str:
        return os.path.join(self.cache_dir, CACHE_INDEX_FILE)

    def init(self) -> None:
        """
        Create the cache directory and load entries persisted by a previous run.

        Entries whose file is missing or which have expired are dropped; files
        not referenced by the index (including interrupted downloads) are removed.
        """
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create cache directory {self.cache_dir}: {e}")
            raise

        data = read_json(self.index_path) or {}
        now = self._clock()
        for raw in data.get("entries", []):
            try:
                entry = CacheEntry(
                    key=str(raw["key"]),
                    filename=os.path.basename(str(raw["filename"])),
                    size=int(raw["size"]),
                    created_at=float(raw["created_at"]),
                    last_access=float(raw.get("last_access", raw["created_at"])),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed cache index entry: %r", raw)
                continue
            if not os.path.isfile(self._path(entry)) or self._is_expired(entry, now):
                continue
            self._entries[entry.key] = entry
            self._total_bytes += entry.size

        referenced = {entry.filename for entry in self._entries.values()}
        for name in os.listdir(self.cache_dir):
            if name == CACHE_INDEX_FILE or name in referenced:
                continue
            if name.endswith((CACHE_DATA_SUFFIX, CACHE_PART_SUFFIX)):
                self._unlink(os.path.join(self.cache_dir, name))

        self._make_room(0)
        self._save_index()
        logger.debug(
            "Asset cache ready at %s: %d entries, %d bytes",
            self.cache_dir,
            len(self._entries),
            self._total_bytes,
        )

    async def close(self) -> None:
        """Wait for in-flight fetches to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def total_bytes(self) -> int:
        """Bytes held by indexed entries."""
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def has(self, asset_id: str) -> bool:
        entry = self._entries.get(asset_id)
        return entry is not None and not self._is_expired(entry, self._clock())

    @asynccontextmanager
    async def open(self, asset: Asset) -> AsyncIterator[CachedAsset]:
        """
        Provide a read handle for the asset's bytes, fetching them on a miss.

        Usage:
            async with cache.open(asset) as cached:
                async for chunk in cached:
                    ...

        Raises:
            UpstreamError: If the backend fetch fails or times out.
        """
        entry = await self._acquire(asset)
        try:
            yield CachedAsset(entry, self._path(entry), self.chunk_size)
        finally:
            self._release(entry)

    async def read(self, asset: Asset) -> bytes:
        """Return the full content of an asset (for small files such as RELEASES)."""
        async with self.open(asset) as cached:
            return await cached.read()

    # ------------------------------------------------------------------
    # Acquisition and single-flight fetching
    # ------------------------------------------------------------------

    async def _acquire(self, asset: Asset) -> CacheEntry:
        key = asset.id
        entry = self._lookup(key)
        if entry is not None:
            self.hits += 1
            entry.readers += 1
            return entry

        flight = self._inflight.get(key)
        if flight is None:
            self.misses += 1
            loop = asyncio.get_running_loop()
            flight = _Flight(future=loop.create_future())
            self._inflight[key] = flight
            task = loop.create_task(self._populate(asset, flight))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            logger.debug("Joining in-flight fetch for %s", asset.filename)

        # The fetch pins the entry once per registered waiter when it completes
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.future)
        except asyncio.CancelledError:
            future = flight.future
            if future.done() and not future.cancelled() and future.exception() is None:
                self._release(future.result())
            else:
                flight.waiters -= 1
            raise

    async def _populate(self, asset: Asset, flight: _Flight) -> None:
        key = asset.id
        base = f"{self._digest(key)}-{uuid.uuid4().hex}"
        part_path = os.path.join(self.cache_dir, base + CACHE_PART_SUFFIX)
        filename = base + CACHE_DATA_SUFFIX
        future = flight.future

        try:
            if self.fetch_timeout:
                size = await asyncio.wait_for(
                    self._download(asset, part_path), timeout=self.fetch_timeout
                )
            else:
                size = await self._download(asset, part_path)
            os.replace(part_path, os.path.join(self.cache_dir, filename))
        except BaseException as e:
            self._unlink(part_path)
            self._inflight.pop(key, None)
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
                raise
            future.set_exception(self._as_fetch_error(asset, e))
            future.exception()
            return

        now = self._clock()
        entry = CacheEntry(
            key=key, filename=filename, size=size, created_at=now, last_access=now
        )
        self._insert(entry)
        entry.readers += flight.waiters
        self._inflight.pop(key, None)
        if entry.evicted and entry.readers == 0:
            self._unlink(self._path(entry))
        future.set_result(entry)
        logger.info(f"Cached {asset.filename} ({size} bytes)")

    async def _download(self, asset: Asset, part_path: str) -> int:
        size = 0
        stream = self.backend.fetch_asset(asset)
        try:
            async with aiofiles.open(part_path, "wb") as f:
                async for chunk in stream:
                    await f.write(chunk)
                    size += len(chunk)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if asset.size and size != asset.size:
            raise UpstreamError(
                f"Incomplete download of {asset.filename}",
                url=asset.locator,
                details=f"expected {asset.size} bytes, got {size}",
            )
        return size

    def _as_fetch_error(self, asset: Asset, error: BaseException) -> Exception:
        if isinstance(error, asyncio.TimeoutError):
            logger.error(f"Timed out fetching {asset.filename}")
            return UpstreamTimeoutError(
                f"Timed out fetching {asset.filename}",
                url=asset.locator,
                details=f"timeout={self.fetch_timeout}s",
            )
        if isinstance(error, ReleaseHubError):
            logger.error(f"Failed to fetch {asset.filename}: {error}")
            return error
        if isinstance(error, OSError):
            logger.error(f"Could not store {asset.filename} in cache: {error}")
            return ReleaseHubError(
                f"Could not store {asset.filename} in cache", details=str(error)
            )
        logger.error(f"Unexpected error fetching {asset.filename}: {error!r}")
        return UpstreamError(f"Failed to fetch {asset.filename}", details=str(error))

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._is_expired(entry, now) or not os.path.isfile(self._path(entry)):
            logger.debug("Cache entry for %s expired", key)
            self._evict(entry)
            self._save_index()
            return None
        entry.last_access = now
        self._entries.move_to_end(key)
        return entry

    def _insert(self, entry: CacheEntry) -> None:
        previous = self._entries.get(entry.key)
        if previous is not None:
            self._evict(previous)

        if entry.size > self.max_bytes:
            logger.warning(
                "Asset %s (%d bytes) exceeds cache capacity; serving without caching",
                entry.key,
                entry.size,
            )
            entry.evicted = True
            return

        self._make_room(entry.size)
        self._entries[entry.key] = entry
        self._total_bytes += entry.size
        self._save_index()

    def _make_room(self, incoming: int) -> None:
        while self._entries and self._total_bytes + incoming > self.max_bytes:
            _, oldest = next(iter(self._entries.items()))
            logger.debug("Evicting %s (%d bytes) from cache", oldest.key, oldest.size)
            self._evict(oldest)

    def _evict(self, entry: CacheEntry) -> None:
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
            self._total_bytes -= entry.size
        entry.evicted = True
        if entry.readers == 0:
            self._unlink(self._path(entry))

    def _release(self, entry: CacheEntry) -> None:
        entry.readers -= 1
        if entry.evicted and entry.readers <= 0:
            self._unlink(self._path(entry))

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return bool(self.max_age) and (now - entry.created_at) >= self.max_age

    def _save_index(self) -> None:
        atomic_write_json(
            self.index_path,
            {"entries": [entry.to_dict() for entry in self._entries.values()]},
        )

    def _path(self, entry: CacheEntry) -> str:
        return os.path.join(self.cache_dir, entry.filename)

    @staticmethod
    def _digest(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def _unlink(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove cache file {path}: {e}")
