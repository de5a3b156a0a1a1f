"""
HTTP surface of the release server (aiohttp.web).

Routes:
- GET  /                                        download for the user-agent platform
- GET  /download/{platform}                     latest release for a platform
- GET  /download/channel/{channel}[/{platform}] latest release on a channel
- GET  /download/version/{tag}[/{platform}]     a specific release or range
- GET  /download/{tag}/{filename}               a named file of a release
- GET  /update?version=&platform=               redirect to the update check
- GET  /update/{platform}/{version}             Squirrel.Mac update check
- GET  /update/{platform}/{version}/RELEASES    Squirrel.Windows feed
- GET  /notes[/{version}]                       merged release notes
- POST /refresh                                 release webhook
- GET  /api/{status,versions,channels,resolve}  JSON API
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from aiohttp import web

from releasehub.backends import create_backend
from releasehub.config import ServerConfig
from releasehub.constants import (
    ANY_CHANNEL,
    LATEST_TAG,
    STABLE_CHANNEL,
    WEBHOOK_EVENT_HEADER,
    WEBHOOK_SIGNATURE_HEADER,
    WIN_RELEASES_FILENAME,
)
from releasehub.core.cache import AssetCache
from releasehub.core.index import ReleaseIndex
from releasehub.core.interfaces import Asset, Release, ReleaseBackend
from releasehub.core.notes import merge_notes
from releasehub.core.platforms import (
    detect_platform_from_user_agent,
    find_asset_by_filename,
    parse_platform_query,
    resolve_asset,
)
from releasehub.core.resolver import ResolutionQuery, VersionResolver
from releasehub.core.version import normalize_tag, normalize_version
from releasehub.core.win_releases import (
    ReleaseEntry,
    generate_releases,
    parse_releases,
    rewrite_filenames,
)
from releasehub.exceptions import (
    AuthenticationError,
    MalformedInputError,
    ManifestDecodeError,
    NotFoundError,
    ReleaseHubError,
    UpstreamError,
    WebhookSignatureError,
)
from releasehub.log_utils import logger
from releasehub.utils import get_app_version


class ReleaseHub:
    """
    Wires a backend to the release index, resolver and asset cache.

    Lifecycle: `start()` prepares the cache and optionally pre-fetches the
    release list; `close()` waits for background work and closes the backend.
    """

    def __init__(
        self, config: ServerConfig, backend: Optional[ReleaseBackend] = None
    ) -> None:
        self.config = config
        self.backend = backend or create_backend(config)
        self.index = ReleaseIndex(self.backend, ttl=config.releases_ttl)
        self.resolver = VersionResolver(self.index)
        self.cache = AssetCache(
            self.backend,
            config.cache_dir,
            max_bytes=config.cache_max_bytes,
            max_age=config.cache_max_age,
            fetch_timeout=config.fetch_timeout,
        )

    async def start(self) -> None:
        self.cache.init()
        if not self.config.refresh_secret:
            logger.warning("REFRESH_SECRET is not set; webhook signatures are not verified")
        if not self.config.pre_fetch:
            return
        try:
            snapshot = await self.index.refresh()
        except UpstreamError as e:
            logger.warning(f"Could not pre-fetch releases, will retry on demand: {e}")
        else:
            logger.info(f"Pre-fetched {len(snapshot.releases)} releases from {self.backend.name}")

    async def close(self) -> None:
        await self.index.wait_idle()
        await self.cache.close()
        await self.backend.close()


HUB_KEY = web.AppKey("hub", ReleaseHub)


# =============================================================================
# Helpers
# =============================================================================


def _hub(request: web.Request) -> ReleaseHub:
    return request.app[HUB_KEY]


def base_url(request: web.Request) -> str:
    """Public base URL for links: PUBLIC_URL when configured, else the request origin."""
    public_url = _hub(request).config.public_url
    if public_url:
        return public_url
    return f"{request.scheme}://{request.host}"


def format_pub_date(value: datetime) -> str:
    """ISO-8601 UTC timestamp with milliseconds, e.g. 2024-01-31T12:00:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def serialize_asset(asset: Asset, release: Release, base: str) -> Dict[str, Any]:
    return {
        "id": asset.id,
        "filename": asset.filename,
        "size": asset.size,
        "content_type": asset.content_type,
        "platform": asset.platform,
        "download_url": f"{base}/download/{quote(release.tag)}/{quote(asset.filename)}",
    }


def serialize_release(release: Release, base: str) -> Dict[str, Any]:
    return {
        "tag": release.tag,
        "channel": release.channel,
        "published_at": format_pub_date(release.published_at),
        "notes": release.notes,
        "assets": [serialize_asset(asset, release, base) for asset in release.assets],
    }


def _attachment(filename: str) -> str:
    return f"attachment; filename=\"{filename}\"; filename*=UTF-8''{quote(filename)}"


def _check_api_access(request: web.Request) -> None:
    token = _hub(request).config.api_token
    if not token:
        return
    header = request.headers.get("Authorization", "")
    supplied = request.query.get("token")
    if header.lower().startswith(("token ", "bearer ")):
        supplied = header.split(" ", 1)[1].strip()
    if not supplied or not hmac.compare_digest(supplied, token):
        raise AuthenticationError("Invalid or missing API token")


def _query_from_request(request: web.Request) -> ResolutionQuery:
    return ResolutionQuery(
        channel=request.query.get("channel") or ANY_CHANNEL,
        platform=request.query.get("platform") or None,
        tag=request.query.get("tag") or LATEST_TAG,
    )


def _release_for_package(
    entry: ReleaseEntry, releases: Sequence[Release], default: Release
) -> Release:
    wanted = normalize_version(entry.version) if entry.version else None
    if wanted is not None:
        for release in releases:
            if release.version == wanted:
                return release
    return default


# =============================================================================
# Error middleware
# =============================================================================


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map ReleaseHubError kinds to JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ReleaseHubError as e:
        if isinstance(e, ManifestDecodeError):
            logger.error(f"Corrupt release manifest served for {request.path}: {e}")
        elif isinstance(e, UpstreamError):
            logger.error(f"Upstream failure for {request.path}: {e}")
        elif isinstance(e, NotFoundError):
            logger.info(f"Not found: {request.path}: {e}")
        else:
            logger.warning(f"Rejected {request.method} {request.path}: {e}")
        body: Dict[str, Any] = {"error": e.message, "kind": e.kind}
        if e.details:
            body["details"] = e.details
        return web.json_response(body, status=e.status_code)
    except Exception:
        logger.exception(f"Unhandled error for {request.method} {request.path}")
        return web.json_response(
            {"error": "Internal server error", "kind": "error"}, status=500
        )


# =============================================================================
# Download
# =============================================================================


async def serve_asset(request: web.Request, asset: Asset) -> web.StreamResponse:
    """Stream an asset from the cache, fetching it from the backend on a miss."""
    hub = _hub(request)
    async with hub.cache.open(asset) as cached:
        response = web.StreamResponse(
            headers={
                "Content-Type": asset.content_type or "application/octet-stream",
                "Content-Disposition": _attachment(asset.filename),
            }
        )
        response.content_length = cached.size
        await response.prepare(request)
        try:
            async for chunk in cached:
                await response.write(chunk)
            await response.write_eof()
        except ConnectionResetError:
            # The cache entry is unaffected; only this copy is aborted
            logger.debug(f"Client disconnected while downloading {asset.filename}")
            return response
    logger.debug(f"Served {asset.filename} ({cached.size} bytes)")
    return response


async def handle_download(request: web.Request) -> web.StreamResponse:
    hub = _hub(request)
    channel = request.match_info.get("channel")
    platform = request.match_info.get("platform")
    tag = request.match_info.get("tag") or LATEST_TAG
    filename = request.match_info.get("filename")
    filetype = request.query.get("filetype")

    # A named file does not need a platform
    if filename:
        platform = None
    else:
        platform = platform or detect_platform_from_user_agent(
            request.headers.get("User-Agent")
        )
        if not platform:
            raise MalformedInputError(
                "No platform specified and impossible to detect one", field="platform"
            )
        platform = parse_platform_query(platform)

    # A specific version is served whatever its channel
    if tag != LATEST_TAG:
        channel = ANY_CHANNEL

    query = ResolutionQuery(channel=channel or STABLE_CHANNEL, platform=platform, tag=tag)
    release = await hub.resolver.resolve_with_fallback(query)

    if filename:
        asset = find_asset_by_filename(release, filename)
    else:
        asset = resolve_asset(release, platform, wanted=filetype)
    if asset is None:
        raise NotFoundError(
            f"No download available for platform {platform or filename} "
            f"for version {release.tag} ({query.channel})"
        )
    return await serve_asset(request, asset)


# =============================================================================
# Updates
# =============================================================================


async def handle_update_redirect(request: web.Request) -> web.Response:
    version = request.query.get("version")
    platform = request.query.get("platform")
    if not version:
        raise MalformedInputError("Requires 'version' parameter", field="version")
    if not platform:
        raise MalformedInputError("Requires 'platform' parameter", field="platform")
    raise web.HTTPFound(f"/update/{quote(platform)}/{quote(version)}")


async def handle_update_osx(request: web.Request) -> web.Response:
    """Squirrel.Mac update check: JSON when a newer release exists, else 204."""
    hub = _hub(request)
    platform_arg = request.match_info["platform"]
    current = normalize_tag(request.match_info["version"])
    platform = parse_platform_query(platform_arg)

    releases = await hub.resolver.filter(
        ResolutionQuery(
            channel=request.query.get("channel") or ANY_CHANNEL,
            platform=platform,
            tag=f">={current}",
        )
    )
    latest = releases[0] if releases else None
    if latest is None or latest.tag == current:
        return web.Response(status=204)

    notes = merge_notes(
        [release for release in releases if release.tag != current], include_tag=False
    )
    return web.json_response(
        {
            "url": f"{base_url(request)}/download/version/{quote(latest.tag)}"
            f"/{quote(platform_arg)}?filetype=zip",
            "name": latest.tag,
            "notes": notes,
            "pub_date": format_pub_date(latest.published_at),
        }
    )


async def handle_update_win(request: web.Request) -> web.Response:
    """Squirrel.Windows feed: the latest RELEASES file with URLs through this server."""
    hub = _hub(request)
    current = normalize_tag(request.match_info["version"])
    platform = parse_platform_query(request.match_info["platform"])

    releases = await hub.resolver.filter(
        ResolutionQuery(
            channel=request.query.get("channel") or ANY_CHANNEL,
            platform=platform,
            tag=f">={current}",
        )
    )
    if not releases:
        raise NotFoundError(f"Version not found: {current}")
    latest = releases[0]

    asset = find_asset_by_filename(latest, WIN_RELEASES_FILENAME)
    if asset is None:
        raise NotFoundError(
            f"File not found: {WIN_RELEASES_FILENAME}", details=f"version {latest.tag}"
        )

    content = await hub.cache.read(asset)
    entries = parse_releases(content.decode("utf-8-sig"))

    base = base_url(request)
    snapshot = hub.index.snapshot
    known: Sequence[Release] = snapshot.releases if snapshot else releases

    def url_for(entry: ReleaseEntry) -> str:
        release = _release_for_package(entry, known, latest)
        return f"{base}/download/{quote(release.tag)}/{quote(entry.basename)}"

    output = generate_releases(rewrite_filenames(entries, url_for)).encode("utf-8")
    return web.Response(
        body=output,
        content_type="application/octet-stream",
        headers={"Content-Disposition": _attachment(WIN_RELEASES_FILENAME)},
    )


# =============================================================================
# Notes
# =============================================================================


async def handle_notes(request: web.Request) -> web.Response:
    hub = _hub(request)
    version = request.match_info.get("version")
    tag = f">={normalize_tag(version)}" if version else "all"
    releases = await hub.resolver.filter(ResolutionQuery(channel=ANY_CHANNEL, tag=tag))
    if not releases:
        raise NotFoundError("No versions matching", details=version or "any")

    accept = request.headers.get("Accept", "")
    if "application/json" in accept and "text/plain" not in accept:
        return web.json_response(
            {
                "notes": merge_notes(releases, include_tag=False),
                "pub_date": format_pub_date(releases[0].published_at),
            }
        )
    return web.Response(text=merge_notes(releases), content_type="text/plain")


# =============================================================================
# Webhook
# =============================================================================


def verify_signature(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    """Check a GitHub `sha256=<hexdigest>` HMAC signature."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256=") :])


async def handle_refresh(request: web.Request) -> web.Response:
    hub = _hub(request)
    payload = await request.read()

    secret = hub.config.refresh_secret
    if secret and not verify_signature(
        secret, payload, request.headers.get(WEBHOOK_SIGNATURE_HEADER)
    ):
        raise WebhookSignatureError("X-Hub-Signature-256 does not match blob signature")

    event = request.headers.get(WEBHOOK_EVENT_HEADER)
    if not event:
        raise MalformedInputError(
            f"No {WEBHOOK_EVENT_HEADER} found on request", field=WEBHOOK_EVENT_HEADER
        )
    if event == "ping":
        return web.json_response({"ok": True})
    if event != "release":
        logger.debug(f"Ignoring webhook event {event}")
        return web.json_response({"ok": True, "ignored": event})

    hub.index.notify_release_event()
    return web.json_response({"ok": True, "refreshing": True}, status=202)


# =============================================================================
# API
# =============================================================================


async def handle_api_status(request: web.Request) -> web.Response:
    _check_api_access(request)
    hub = _hub(request)
    snapshot = hub.index.snapshot
    return web.json_response(
        {
            "status": "ok",
            "version": get_app_version(),
            "backend": hub.backend.name,
            "releases": len(snapshot.releases) if snapshot else 0,
            "index_expired": hub.index.is_expired(),
            "cache": {
                "entries": len(hub.cache),
                "bytes": hub.cache.total_bytes,
                "max_bytes": hub.cache.max_bytes,
                "hits": hub.cache.hits,
                "misses": hub.cache.misses,
            },
        }
    )


async def handle_api_versions(request: web.Request) -> web.Response:
    _check_api_access(request)
    hub = _hub(request)
    releases = await hub.resolver.filter(_query_from_request(request))
    base = base_url(request)
    return web.json_response([serialize_release(r, base) for r in releases])


async def handle_api_channels(request: web.Request) -> web.Response:
    _check_api_access(request)
    hub = _hub(request)
    releases = await hub.index.list()
    channels: Dict[str, Dict[str, Any]] = {}
    for release in releases:
        if release.channel not in channels:
            channels[release.channel] = {
                "latest": release.tag,
                "published_at": format_pub_date(release.published_at),
            }
    return web.json_response(channels)


async def handle_api_resolve(request: web.Request) -> web.Response:
    _check_api_access(request)
    hub = _hub(request)
    release = await hub.resolver.resolve_with_fallback(_query_from_request(request))
    return web.json_response(serialize_release(release, base_url(request)))


# =============================================================================
# Application
# =============================================================================


def _add_routes(app: web.Application) -> None:
    routes: List[web.RouteDef] = [
        web.get("/", handle_download),
        # Fixed prefixes first: /download/{tag}/{filename} would shadow them
        web.get("/download/channel/{channel}", handle_download),
        web.get("/download/channel/{channel}/{platform}", handle_download),
        web.get("/download/version/{tag}", handle_download),
        web.get("/download/version/{tag}/{platform}", handle_download),
        web.get("/download/{tag}/{filename}", handle_download),
        web.get("/download/{platform}", handle_download),
        web.get("/download", handle_download),
        web.get("/update", handle_update_redirect),
        web.get("/update/{platform}/{version}", handle_update_osx),
        web.get("/update/{platform}/{version}/RELEASES", handle_update_win),
        web.get("/notes", handle_notes),
        web.get("/notes/{version}", handle_notes),
        web.post("/refresh", handle_refresh),
        web.get("/api/status", handle_api_status),
        web.get("/api/versions", handle_api_versions),
        web.get("/api/channels", handle_api_channels),
        web.get("/api/resolve", handle_api_resolve),
    ]
    app.add_routes(routes)


def create_app(hub: ReleaseHub) -> web.Application:
    """Build the aiohttp application serving `hub`."""
    app = web.Application(middlewares=[error_middleware])
    app[HUB_KEY] = hub
    _add_routes(app)

    async def on_startup(app: web.Application) -> None:
        await app[HUB_KEY].start()

    async def on_cleanup(app: web.Application) -> None:
        await app[HUB_KEY].close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run_server(config: ServerConfig) -> None:
    """Run the server until interrupted."""
    hub = ReleaseHub(config)
    logger.info(
        f"Serving {hub.backend.name} releases on http://{config.host}:{config.port}"
    )
    web.run_app(create_app(hub), host=config.host, port=config.port, print=None)
