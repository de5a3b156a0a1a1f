# src/releasehub/cli.py
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from releasehub import log_utils
from releasehub.backends import create_backend
from releasehub.config import ServerConfig, load_config
from releasehub.constants import ANY_CHANNEL, LATEST_TAG
from releasehub.core.index import ReleaseIndex
from releasehub.core.resolver import ResolutionQuery, VersionResolver
from releasehub.exceptions import ReleaseHubError
from releasehub.server import format_pub_date, run_server
from releasehub.utils import get_app_version


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="releasehub",
        description="ReleaseHub - release download and auto-update server",
    )
    parser.add_argument("--config", help="Path to releasehub.yaml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Console log level",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {get_app_version()}"
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Interface to bind")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")
    serve_parser.add_argument(
        "--backend", choices=["github", "filesystem"], help="Release backend"
    )
    serve_parser.add_argument("--repository", help="GitHub repository (owner/name)")
    serve_parser.add_argument("--releases-dir", help="Directory for the filesystem backend")
    serve_parser.add_argument("--cache-dir", help="Asset cache directory")
    serve_parser.add_argument(
        "--no-pre-fetch",
        dest="pre_fetch",
        action="store_false",
        default=None,
        help="Do not fetch the release list at startup",
    )

    releases_parser = subparsers.add_parser(
        "releases", help="List releases as the server would resolve them"
    )
    releases_parser.add_argument(
        "--channel", default=ANY_CHANNEL, help="Channel filter (default: any)"
    )
    releases_parser.add_argument("--platform", help="Platform filter, e.g. osx or windows_64")
    releases_parser.add_argument(
        "--tag", default=LATEST_TAG, help="Tag or range filter, e.g. '>=1.2.0'"
    )
    releases_parser.add_argument("--backend", choices=["github", "filesystem"])
    releases_parser.add_argument("--repository")
    releases_parser.add_argument("--releases-dir")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    keys = (
        "host",
        "port",
        "backend",
        "repository",
        "releases_dir",
        "cache_dir",
        "pre_fetch",
        "log_level",
    )
    return {key.upper(): getattr(args, key, None) for key in keys}


def _configure_logging(config: ServerConfig) -> None:
    log_utils.set_log_level(config.log_level)
    if config.log_dir:
        log_utils.add_file_logging(Path(config.log_dir), config.log_level)


async def list_releases(config: ServerConfig, query: ResolutionQuery) -> List[str]:
    """Resolve `query` against the configured backend and format one line per release."""
    backend = create_backend(config)
    try:
        resolver = VersionResolver(ReleaseIndex(backend, ttl=config.releases_ttl))
        releases = await resolver.filter(query)
    finally:
        await backend.close()

    lines = []
    for release in releases:
        platforms = sorted({a.platform for a in release.assets if a.platform})
        lines.append(
            f"{release.tag}\t{release.channel}\t{format_pub_date(release.published_at)}"
            f"\t{','.join(platforms) or '-'}"
        )
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    # Logging is automatically initialized by importing log_utils

    """
    Entry point for the ReleaseHub command-line interface.

    Loads configuration (file, environment, flags) and dispatches the `serve`
    and `releases` subcommands. Returns a process exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config, overrides=_overrides(args))
    except ReleaseHubError as e:
        log_utils.logger.error(f"Configuration error: {e}")
        return 2
    _configure_logging(config)

    try:
        if args.command == "serve":
            run_server(config)
        elif args.command == "releases":
            query = ResolutionQuery(
                channel=args.channel, platform=args.platform, tag=args.tag
            )
            lines = asyncio.run(list_releases(config, query))
            if not lines:
                print("No matching releases.")
            for line in lines:
                print(line)
    except ReleaseHubError as e:
        log_utils.logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
