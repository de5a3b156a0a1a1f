"""
Version Resolver

Selects releases from the index for a (channel, platform, tag) query.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from releasehub.constants import ANY_CHANNEL, LATEST_TAG, STABLE_CHANNEL
from releasehub.exceptions import NotFoundError
from releasehub.log_utils import logger

from .index import ReleaseIndex
from .interfaces import Release
from .platforms import parse_platform_query, release_supports
from .version import VersionManager


@dataclass(frozen=True)
class ResolutionQuery:
    """
    What a client asks for.

    Attributes:
        channel: Channel name (case-insensitive), or "*" for any channel.
        platform: Platform query ("osx", "windows_64", ...), or None for any platform.
        tag: "latest"/"*"/"all", an exact tag, or a range such as ">=1.2.0".
    """

    channel: str = STABLE_CHANNEL
    platform: Optional[str] = None
    tag: str = LATEST_TAG

    def __post_init__(self) -> None:
        # Channels are derived lower-case from tags
        object.__setattr__(self, "channel", (self.channel or STABLE_CHANNEL).strip().lower())

    @property
    def any_channel(self) -> bool:
        return self.channel == ANY_CHANNEL


class VersionResolver:
    """Filter and resolve releases held by a ReleaseIndex."""

    def __init__(self, index: ReleaseIndex) -> None:
        self.index = index
        self.versions = VersionManager()

    async def filter(self, query: ResolutionQuery) -> Tuple[Release, ...]:
        """
        Return the releases matching `query`, most recent first.

        A release matches when its channel equals the channel filter (or the
        filter is "*"), its tag satisfies the tag filter and, when a platform is
        given, at least one of its assets serves that platform.

        Raises:
            MalformedInputError: If the platform or tag expression is invalid.
            UpstreamError: If the index has never been loaded and loading fails.
        """
        tag_filter = self.versions.build_tag_filter(query.tag)
        platform = parse_platform_query(query.platform) if query.platform else None
        releases = await self.index.list()

        return tuple(
            release
            for release in releases
            if (query.any_channel or release.channel == query.channel)
            and tag_filter.matches(release)
            and (platform is None or release_supports(release, platform))
        )

    async def resolve(self, query: ResolutionQuery) -> Release:
        """
        Return the most recent release matching `query`.

        Raises:
            NotFoundError: If no release matches.
        """
        releases = await self.filter(query)
        if not releases:
            raise NotFoundError(
                f"Version not found: {query.tag}",
                details=f"channel={query.channel} platform={query.platform or '*'}",
            )
        return releases[0]

    async def resolve_with_fallback(self, query: ResolutionQuery) -> Release:
        """
        Resolve `query`, retrying once on any channel when a concrete channel
        has no "latest" release yet.

        Clients default to the stable channel; before the first stable release
        exists they still get the newest release of any channel.
        """
        try:
            return await self.resolve(query)
        except NotFoundError:
            if query.any_channel or query.tag != LATEST_TAG:
                raise
            logger.debug(
                "No %s release for %s, falling back to any channel",
                query.channel,
                query.platform or "any platform",
            )
            return await self.resolve(replace(query, channel=ANY_CHANNEL))
