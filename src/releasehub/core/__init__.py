"""
ReleaseHub Resolution Engine

Core Components:
- interfaces: Release/Asset data model and the backend interface
- version: Tag normalization, channels, ordering and tag filters
- platforms: Platform classification and asset matching
- index: Refreshable release snapshot
- resolver: Channel/platform/tag resolution with fallback
- cache: Disk-backed single-flight asset cache
- win_releases: Squirrel.Windows RELEASES codec
- notes: Release notes merging
"""

from .cache import AssetCache, CachedAsset
from .index import ReleaseIndex, ReleaseSnapshot, build_snapshot
from .interfaces import Asset, Release, ReleaseBackend
from .notes import merge_notes
from .platforms import (
    detect_platform,
    detect_platform_from_user_agent,
    find_asset_by_filename,
    parse_platform_query,
    resolve_asset,
)
from .resolver import ResolutionQuery, VersionResolver
from .version import VersionManager
from .win_releases import ReleaseEntry, generate_releases, parse_releases

__all__ = [
    # Interfaces
    "Asset",
    "Release",
    "ReleaseBackend",
    # Index and resolution
    "ReleaseIndex",
    "ReleaseSnapshot",
    "build_snapshot",
    "ResolutionQuery",
    "VersionResolver",
    "VersionManager",
    # Platforms
    "detect_platform",
    "detect_platform_from_user_agent",
    "parse_platform_query",
    "resolve_asset",
    "find_asset_by_filename",
    # Cache
    "AssetCache",
    "CachedAsset",
    # Feeds
    "ReleaseEntry",
    "parse_releases",
    "generate_releases",
    "merge_notes",
]
