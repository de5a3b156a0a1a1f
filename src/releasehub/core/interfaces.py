"""
Core Interfaces for the ReleaseHub Resolution Engine

This module defines the data structures shared by the index, resolver and
cache, and the capability interface every release backend implements.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Tuple

from packaging.version import Version

from releasehub.constants import STABLE_CHANNEL

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Asset:
    """Represents one downloadable file attached to a release."""

    id: str
    """Opaque identifier assigned by the backend, stable across refreshes"""

    filename: str
    """The filename of the asset"""

    size: int
    """File size in bytes"""

    locator: str
    """Backend-specific location of the content (URL, path, ...)"""

    content_type: Optional[str] = None
    """MIME type of the asset"""

    platform: Optional[str] = None
    """Platform id derived from the filename (e.g. 'osx_64'), if any"""


@dataclass(frozen=True)
class Release:
    """Represents a published version and its assets."""

    tag: str
    """Semantic-version tag, without a leading 'v' once indexed"""

    published_at: datetime = EPOCH
    """Timezone-aware publish timestamp"""

    notes: str = ""
    """Release notes (markdown)"""

    assets: Tuple[Asset, ...] = field(default_factory=tuple)
    """Assets owned by this release"""

    channel: str = STABLE_CHANNEL
    """Release track derived from the tag's pre-release identifier"""

    draft: bool = False
    """Whether the backend marks this release as an unpublished draft"""

    version: Optional[Version] = field(default=None, compare=False, repr=False)
    """Parsed version used for ordering, set when the release is indexed"""


class ReleaseBackend(ABC):
    """
    Abstract base class for release backends.

    A backend lists the releases of one project and streams asset bytes. The
    core never inspects which concrete backend it talks to.
    """

    name = "backend"

    @abstractmethod
    async def list_releases(self) -> List[Release]:
        """
        Retrieve every release published by the backend.

        Returns:
            List[Release]: Raw releases; ordering is not relied upon.

        Raises:
            UpstreamError: If the backend cannot be queried.
        """

    @abstractmethod
    def fetch_asset(self, asset: Asset) -> AsyncIterator[bytes]:
        """
        Stream the bytes of an asset.

        Returns:
            AsyncIterator[bytes]: Chunks of the asset content.

        Raises:
            UpstreamError: If the content cannot be fetched.
        """

    async def close(self) -> None:
        """Release network or file resources held by the backend."""
        return None
