"""
Platform classification and asset matching.

Filename classification is table driven: each family has a list of filename
markers, each architecture has a list of markers, and each family has a default
architecture plus an ordered extension preference. Adjust the tables below to
change policy; the matching code does not hard-code any platform.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from releasehub.constants import NUPKG_EXTENSION, WIN_RELEASES_FILENAME
from releasehub.exceptions import MalformedInputError

from .interfaces import Asset, Release

OSX = "osx"
WINDOWS = "windows"
LINUX = "linux"

ARCH_32 = "32"
ARCH_64 = "64"
ARCH_ARM64 = "arm64"


@dataclass(frozen=True)
class FamilyRule:
    """Filename markers for one platform family."""

    family: str
    substrings: Tuple[str, ...]
    suffixes: Tuple[str, ...]
    default_arch: str
    arch_preference: Tuple[str, ...]
    extension_preference: Tuple[str, ...]


# Order matters: later families win when several match, so the most specific
# markers (mac, .dmg) come last.
FAMILY_RULES: Tuple[FamilyRule, ...] = (
    FamilyRule(
        family=WINDOWS,
        substrings=("win",),
        suffixes=(".exe", ".msi", NUPKG_EXTENSION),
        default_arch=ARCH_32,
        arch_preference=(ARCH_32, ARCH_64),
        extension_preference=(".exe", ".msi", ".zip", NUPKG_EXTENSION),
    ),
    FamilyRule(
        family=LINUX,
        substrings=("linux", "ubuntu", "debian", "fedora"),
        suffixes=(".deb", ".rpm", ".appimage", ".tar.gz", ".tgz"),
        default_arch=ARCH_32,
        arch_preference=(ARCH_64, ARCH_32),
        extension_preference=(".appimage", ".deb", ".rpm", ".tar.gz", ".tgz", ".zip"),
    ),
    FamilyRule(
        family=OSX,
        substrings=("mac", "osx", "darwin"),
        suffixes=(".dmg", ".pkg"),
        default_arch=ARCH_64,
        arch_preference=(ARCH_64, ARCH_ARM64),
        extension_preference=(".dmg", ".pkg", ".zip"),
    ),
)

# Checked in order; the first architecture with a matching marker wins. Bare
# "64"/"32" must not be part of a dotted version number such as "1.64.0".
ARCH_MARKERS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    (ARCH_ARM64, re.compile(r"arm64|aarch64")),
    (ARCH_64, re.compile(r"x86[_-]?64|x64|amd64|win64|(?<![\d.])64(?!\.?\d)")),
    (ARCH_32, re.compile(r"ia32|i386|i686|x86|win32|(?<![\d.])32(?!\.?\d)")),
)

QUERY_ALIASES: Dict[str, str] = {
    "osx": OSX,
    "mac": OSX,
    "macos": OSX,
    "darwin": OSX,
    "windows": WINDOWS,
    "win": WINDOWS,
    "linux": LINUX,
}

FAMILIES: Dict[str, FamilyRule] = {rule.family: rule for rule in FAMILY_RULES}

# Longest alias first so "windows64" is not read as "win" + "dows64"
_ALIASES_BY_LENGTH = sorted(QUERY_ALIASES, key=len, reverse=True)

QUERY_ARCHES = frozenset(
    {"arm64", "aarch64", "x86_64", "amd64", "x64", "ia32", "i386", "x86", "64", "32"}
)


def _classify_arch(name: str) -> Optional[str]:
    for arch, marker in ARCH_MARKERS:
        if marker.search(name):
            return arch
    return None


def detect_platform(filename: str) -> Optional[str]:
    """
    Classify an asset filename into a platform id such as 'osx_64' or 'windows_32'.

    Squirrel.Windows feed files (RELEASES, *.nupkg) are Windows assets. Returns
    None when no family marker matches.
    """
    name = filename.lower()
    family: Optional[str] = None

    if name == WIN_RELEASES_FILENAME.lower():
        family = WINDOWS
    for rule in FAMILY_RULES:
        if any(marker in name for marker in rule.substrings) or name.endswith(
            rule.suffixes
        ):
            family = rule.family
    if family is None:
        return None

    arch = _classify_arch(name)
    return f"{family}_{arch or FAMILIES[family].default_arch}"


def parse_platform_query(platform: Optional[str]) -> str:
    """
    Normalize a client-supplied platform identifier.

    Returns a family id ('osx') or a family+arch id ('windows_64').

    Raises:
        MalformedInputError: If the identifier is empty or unknown.
    """
    if not platform or not platform.strip():
        raise MalformedInputError("Requires 'platform' parameter", field="platform")

    text = platform.strip().lower()
    for alias in _ALIASES_BY_LENGTH:
        if not text.startswith(alias):
            continue
        raw_arch = text[len(alias) :].lstrip("-_")
        if not raw_arch:
            return QUERY_ALIASES[alias]
        if raw_arch in QUERY_ARCHES:
            return f"{QUERY_ALIASES[alias]}_{_classify_arch(raw_arch)}"

    raise MalformedInputError(
        f"Unknown platform '{platform}'", field="platform", value=platform
    )


def detect_platform_from_user_agent(user_agent: Optional[str]) -> Optional[str]:
    """Guess a platform query from a browser user-agent string."""
    if not user_agent:
        return None
    ua = user_agent.lower()
    if "windows" in ua:
        return WINDOWS
    if "macintosh" in ua or "mac os x" in ua:
        return OSX
    if "linux" in ua and "android" not in ua:
        if "x86_64" in ua or "amd64" in ua:
            return f"{LINUX}_{ARCH_64}"
        return LINUX
    return None


def satisfies(query: str, asset_platform: Optional[str]) -> bool:
    """Whether an asset classified as `asset_platform` serves platform `query`."""
    if not asset_platform:
        return False
    return asset_platform == query or asset_platform.startswith(query + "_")


def _family_of(platform_id: str) -> FamilyRule:
    return FAMILIES[platform_id.split("_", 1)[0]]


def _extension_rank(filename: str, preference: Iterable[str]) -> int:
    name = filename.lower()
    ordered = list(preference)
    for index, extension in enumerate(ordered):
        if name.endswith(extension):
            return index
    return len(ordered)


def release_supports(release: Release, platform: str) -> bool:
    return any(satisfies(platform, asset.platform) for asset in release.assets)


def resolve_asset(
    release: Release, platform: str, wanted: Optional[str] = None
) -> Optional[Asset]:
    """
    Pick the asset of `release` that best serves `platform`.

    Parameters:
        release (Release): Indexed release whose assets carry platform ids.
        platform (str): Normalized platform query (see parse_platform_query).
        wanted (Optional[str]): File-type hint ("zip" or ".zip"); when given, only
            assets with that extension qualify.

    Returns:
        Optional[Asset]: The preferred asset, or None when nothing matches.
    """
    rule = _family_of(platform)
    candidates: List[Asset] = [
        asset for asset in release.assets if satisfies(platform, asset.platform)
    ]
    if wanted:
        extension = wanted.lower() if wanted.startswith(".") else f".{wanted.lower()}"
        candidates = [a for a in candidates if a.filename.lower().endswith(extension)]
    if not candidates:
        return None

    arch_order = list(rule.arch_preference)

    def _rank(asset: Asset) -> Tuple[int, int]:
        arch = asset.platform.split("_", 1)[1] if asset.platform else ""
        arch_rank = arch_order.index(arch) if arch in arch_order else len(arch_order)
        return (arch_rank, _extension_rank(asset.filename, rule.extension_preference))

    return min(candidates, key=_rank)


def find_asset_by_filename(release: Release, filename: str) -> Optional[Asset]:
    """Exact filename lookup, bypassing platform classification."""
    for asset in release.assets:
        if asset.filename == filename:
            return asset
    return None
