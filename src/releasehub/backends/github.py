"""
GitHub Release Backend

Lists the releases of one repository through the GitHub REST API and streams
asset content through the asset API, using aiohttp with a pooled session.
"""

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
from aiohttp import ClientResponse, ClientSession, ClientTimeout, TCPConnector

from releasehub.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECTOR_LIMIT,
    DEFAULT_FETCH_TIMEOUT,
    GITHUB_API_BASE,
    GITHUB_API_VERSION,
    GITHUB_MAX_PER_PAGE,
    HTTP_STATUS_ERROR_THRESHOLD,
    HTTP_STATUS_RETRY_THRESHOLD,
)
from releasehub.core.interfaces import EPOCH, Asset, Release, ReleaseBackend
from releasehub.exceptions import UpstreamError, UpstreamTimeoutError
from releasehub.log_utils import logger
from releasehub.utils import get_user_agent


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        return EPOCH
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Invalid published_at timestamp %r; using epoch", value)
        return EPOCH


class GitHubBackend(ReleaseBackend):
    """
    Release backend for a GitHub repository.

    Example:
        backend = GitHubBackend("owner/app", github_token="ghp_...")
        releases = await backend.list_releases()
        await backend.close()
    """

    name = "github"

    def __init__(
        self,
        repository: str,
        github_token: Optional[str] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        connector_limit: int = DEFAULT_CONNECTOR_LIMIT,
        api_base: str = GITHUB_API_BASE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Parameters:
            repository (str): Repository in "owner/name" form.
            github_token (Optional[str]): Token used for private repositories and higher rate limits.
            timeout (float): Total timeout in seconds for listing requests.
            connector_limit (int): Maximum total connections in the pool.
            api_base (str): Base URL of the repos API (overridable for GitHub Enterprise).
            chunk_size (int): Number of bytes yielded per asset chunk.
        """
        self.repository = repository.strip("/")
        self.github_token = github_token
        self.timeout = ClientTimeout(total=timeout)
        self.connector_limit = connector_limit
        self.api_base = api_base.rstrip("/")
        self.chunk_size = chunk_size
        self._session: Optional[ClientSession] = None

    @property
    def releases_url(self) -> str:
        return f"{self.api_base}/{self.repository}/releases"

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            connector = TCPConnector(
                limit=self.connector_limit,
                enable_cleanup_closed=True,
            )
            self._session = ClientSession(
                connector=connector,
                headers=self._get_default_headers(),
            )
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        """
        Builds default HTTP headers for GitHub API requests.

        Includes Accept, GitHub API version, and User-Agent headers. If the backend was configured with a GitHub token, includes an Authorization header.
        """
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": get_user_agent(),
        }
        if self.github_token:
            headers["Authorization"] = f"token {self.github_token}"
        return headers

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def list_releases(self) -> List[Release]:
        """
        Fetch every release of the repository, following pagination links.

        Raises:
            UpstreamError: If any page cannot be fetched.
        """
        session = await self._ensure_session()
        url: Optional[str] = self.releases_url
        params: Optional[Dict[str, Any]] = {"per_page": GITHUB_MAX_PER_PAGE}
        releases: List[Release] = []

        try:
            while url:
                async with session.get(
                    url, params=params, timeout=self.timeout
                ) as response:
                    self._check_status(response, url)
                    data = await response.json()
                    next_link = response.links.get("next")
                    url = str(next_link["url"]) if next_link else None
                # The next link already carries the query string
                params = None

                if not isinstance(data, list):
                    logger.warning(
                        "Unexpected releases payload type from %s: expected list, got %s",
                        self.releases_url,
                        type(data).__name__,
                    )
                    break
                for item in data:
                    release = self._parse_release(item)
                    if release is not None:
                        releases.append(release)

        except asyncio.TimeoutError as e:
            logger.error(f"Timed out fetching releases from {self.releases_url}")
            raise UpstreamTimeoutError(
                "Timed out listing releases", url=self.releases_url
            ) from e
        except aiohttp.ClientResponseError as e:
            logger.error(f"HTTP error fetching releases from {e.request_info.url}: {e.status}")
            raise UpstreamError(
                f"HTTP error {e.status}: {e.message}",
                url=str(e.request_info.url),
                upstream_status=e.status,
                is_retryable=e.status >= HTTP_STATUS_RETRY_THRESHOLD,
            ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Network error fetching releases from {self.releases_url}: {e}")
            raise UpstreamError(
                f"Network error: {e}", url=self.releases_url, is_retryable=True
            ) from e

        logger.debug(f"Fetched {len(releases)} releases from {self.releases_url}")
        return releases

    def _check_status(self, response: ClientResponse, url: str) -> None:
        if response.status == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            raise UpstreamError(
                "GitHub API rate limit exceeded",
                url=url,
                upstream_status=403,
                is_retryable=True,
                details=f"resets at {response.headers.get('X-RateLimit-Reset', 'unknown')}",
            )
        if response.status >= HTTP_STATUS_ERROR_THRESHOLD:
            raise UpstreamError(
                f"HTTP error {response.status}",
                url=url,
                upstream_status=response.status,
                is_retryable=response.status >= HTTP_STATUS_RETRY_THRESHOLD,
            )

    def _parse_release(self, item: Any) -> Optional[Release]:
        if not isinstance(item, dict):
            logger.warning(
                "Skipping malformed release entry: expected dict, got %s",
                type(item).__name__,
            )
            return None

        tag_name = item.get("tag_name", "")
        if not isinstance(tag_name, str) or not tag_name.strip():
            logger.warning("Skipping release entry with invalid or empty tag_name")
            return None
        tag_name = tag_name.strip()

        assets_data = item.get("assets", [])
        if not isinstance(assets_data, list):
            logger.warning(
                "Skipping assets for release %s due to invalid assets type %s",
                tag_name,
                type(assets_data).__name__,
            )
            assets_data = []

        assets = []
        for raw in assets_data:
            asset = self._parse_asset(tag_name, raw)
            if asset is not None:
                assets.append(asset)

        body = item.get("body")
        return Release(
            tag=tag_name,
            published_at=_parse_timestamp(item.get("published_at") or item.get("created_at")),
            notes=body if isinstance(body, str) else "",
            assets=tuple(assets),
            draft=bool(item.get("draft", False)),
        )

    def _parse_asset(self, tag_name: str, raw: Any) -> Optional[Asset]:
        if not isinstance(raw, dict):
            logger.warning(
                "Skipping malformed asset in release %s: expected dict, got %s",
                tag_name,
                type(raw).__name__,
            )
            return None
        name = raw.get("name")
        locator = raw.get("url") or raw.get("browser_download_url")
        if not isinstance(name, str) or not name or not isinstance(locator, str):
            logger.warning("Skipping asset without name or URL in release %s", tag_name)
            return None
        try:
            size = int(raw.get("size", 0))
        except (TypeError, ValueError):
            logger.warning(
                "Using size=0 for asset %s in release %s due to invalid size value",
                name,
                tag_name,
            )
            size = 0
        asset_id = raw.get("id")
        return Asset(
            id=str(asset_id) if asset_id is not None else f"{tag_name}/{name}",
            filename=name,
            size=size,
            locator=locator,
            content_type=raw.get("content_type"),
        )

    async def fetch_asset(self, asset: Asset) -> AsyncIterator[bytes]:
        """
        Stream an asset through the asset API.

        The API answers with a redirect to the storage host; aiohttp follows it.
        No total timeout is applied here, the caller bounds the whole fetch.

        Raises:
            UpstreamError: On HTTP or network failures.
        """
        session = await self._ensure_session()
        try:
            async with session.get(
                asset.locator,
                headers={"Accept": "application/octet-stream"},
                timeout=ClientTimeout(total=None, sock_connect=self.timeout.total),
            ) as response:
                self._check_status(response, asset.locator)
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    yield chunk
        except aiohttp.ClientError as e:
            logger.error(f"Download failed for {asset.locator}: {e}")
            raise UpstreamError(
                f"Download failed: {e}", url=asset.locator, is_retryable=True
            ) from e
