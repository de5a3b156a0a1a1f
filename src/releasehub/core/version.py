"""
Version Management for the ReleaseHub Resolution Engine

This module provides tag normalization, channel extraction, ordering and tag
filters. Releases are ordered by semantic-version precedence. Range filters
map tags onto PEP 440 versions so that `packaging` evaluates the specifiers.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from packaging.specifiers import InvalidSpecifier, Specifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from packaging.version import parse as parse_version

from releasehub.constants import STABLE_CHANNEL, WILDCARD_TAGS
from releasehub.exceptions import MalformedInputError

from .interfaces import EPOCH, Release

# (release numbers, 1 for final or 0 for pre-release, pre-release identifiers)
PrecedenceKey = Tuple[Tuple[int, ...], int, Tuple[Tuple[int, int, str], ...]]


def _trim_zeros(release: Sequence[int]) -> Tuple[int, ...]:
    numbers = list(release)
    while numbers and numbers[-1] == 0:
        numbers.pop()
    return tuple(numbers)


def _identifier_key(identifier: str) -> Tuple[int, int, str]:
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


class VersionManager:
    """
    Parses and compares release tags.

    Handles:
    - Stripping a leading "v" from tags
    - Ordering tags by semantic-version precedence
    - Mapping semver pre-release identifiers ("beta.1", "rc2", "nightly.5") to PEP 440 for ranges
    - Deriving a release channel from a tag
    - Building tag filters (wildcard, exact tag, version range)
    """

    SEMVER_RX = re.compile(
        r"^(\d+(?:\.\d+)*)"  # release numbers
        r"(?:-([0-9A-Za-z][0-9A-Za-z.-]*))?"  # pre-release identifiers
        r"(?:\+([0-9A-Za-z][0-9A-Za-z.-]*))?$"  # build metadata
    )
    PRERELEASE_WORD_RX = re.compile(r"^([A-Za-z]+)[-_]?(\d*)$")
    RANGE_CLAUSE_RX = re.compile(r"(>=|<=|==|!=|~=|>|<|=)\s*(v?[0-9][0-9A-Za-z.+-]*)")
    RANGE_PREFIX_RX = re.compile(r"^\s*(>=|<=|==|!=|~=|>|<|=)")

    PRERELEASE_KINDS = {
        "alpha": "a",
        "a": "a",
        "beta": "b",
        "b": "b",
        "rc": "rc",
        "c": "rc",
        "pre": "rc",
        "preview": "rc",
    }
    PEP440_CHANNELS = {"a": "alpha", "b": "beta", "rc": "rc"}

    def normalize_tag(self, tag: Optional[str]) -> str:
        """Return the tag stripped of whitespace and of a leading 'v'."""
        if not tag:
            return ""
        trimmed = tag.strip()
        if trimmed[:1] in ("v", "V") and trimmed[1:2].isdigit():
            return trimmed[1:]
        return trimmed

    def normalize_version(self, tag: Optional[str]) -> Optional[Version]:
        """
        Parse a release tag into a PEP 440 Version for range checks.

        Semver pre-release identifiers are translated: alpha/beta/rc keep their
        PEP 440 meaning, any other word (or a bare number) becomes a development
        release so it stays below the final release. Build metadata becomes
        a local version label. Ordering uses precedence_key(), not this value.

        Returns:
            Version, or None when the tag cannot be interpreted as a version.
        """
        trimmed = self.normalize_tag(tag)
        if not trimmed:
            return None

        match = self.SEMVER_RX.match(trimmed)
        if not match:
            try:
                return parse_version(trimmed)
            except InvalidVersion:
                return None

        base, prerelease, build = match.groups()
        candidate = base
        if prerelease:
            candidate += self._prerelease_suffix(prerelease)
        if build:
            candidate += "+" + build.replace("-", ".")

        try:
            return Version(candidate)
        except InvalidVersion:
            return None

    def _prerelease_suffix(self, prerelease: str) -> str:
        identifiers = [part for part in prerelease.split(".") if part]
        first = identifiers[0] if identifiers else ""
        rest_numbers = [part for part in identifiers[1:] if part.isdigit()]

        if first.isdigit():
            return f".dev{int(first)}"

        word_match = self.PRERELEASE_WORD_RX.match(first)
        word = word_match.group(1).lower() if word_match else first.lower()
        number = word_match.group(2) if word_match else ""
        if not number:
            number = rest_numbers[0] if rest_numbers else "0"

        kind = self.PRERELEASE_KINDS.get(word)
        if kind is None:
            return f".dev{int(number)}"
        return f"{kind}{int(number)}"

    def precedence_key(self, tag: Optional[str]) -> Optional[PrecedenceKey]:
        """
        Sort key implementing semantic-version precedence.

        Release numbers compare numerically (trailing zeros ignored, so "1.0"
        equals "1.0.0"). A pre-release sorts below its final release, and its
        dot-separated identifiers compare left to right: numeric identifiers
        numerically and below alphanumeric ones, alphanumeric ones in ASCII
        order, a shorter list first when all shared identifiers are equal.
        Build metadata is ignored.

        Returns:
            Tuple key, or None when the tag is not a version.
        """
        trimmed = self.normalize_tag(tag)
        if not trimmed:
            return None

        match = self.SEMVER_RX.match(trimmed)
        if match:
            base, prerelease, _build = match.groups()
            release = tuple(int(part) for part in base.split("."))
            identifiers = tuple(
                _identifier_key(part) for part in (prerelease or "").split(".") if part
            )
        else:
            # PEP 440 style tags such as "1.0.0b1" or "1.0.0.dev3"
            version = self.normalize_version(trimmed)
            if version is None:
                return None
            release = version.release
            parts: List[str] = []
            if version.pre:
                parts += [self.PEP440_CHANNELS.get(version.pre[0], version.pre[0]), str(version.pre[1])]
            if version.dev is not None:
                parts += ["dev", str(version.dev)]
            if not parts and version.post is not None:
                # Post releases rank above the final release
                return (_trim_zeros(release), 1, (_identifier_key(str(version.post)),))
            identifiers = tuple(_identifier_key(part) for part in parts)

        return (_trim_zeros(release), 0 if identifiers else 1, identifiers)

    def extract_channel(self, tag: Optional[str]) -> str:
        """
        Derive the release channel from a tag.

        The channel is the first pre-release identifier with trailing digits
        removed ("1.2.0-beta.1" -> "beta", "2.0.0-RC2" -> "rc"). Tags without a
        pre-release segment belong to the stable channel.
        """
        trimmed = self.normalize_tag(tag)
        match = self.SEMVER_RX.match(trimmed)
        if match:
            prerelease = match.group(2)
            if not prerelease:
                return STABLE_CHANNEL
            first = prerelease.split(".")[0].lower()
            stripped = first.rstrip("0123456789").rstrip("-_")
            return stripped or first

        # PEP 440 style tags such as "1.0.0b1"
        version = self.normalize_version(trimmed)
        if version is None:
            return STABLE_CHANNEL
        if version.pre:
            return self.PEP440_CHANNELS.get(version.pre[0], version.pre[0])
        if version.dev is not None:
            return "dev"
        return STABLE_CHANNEL

    def compare_versions(self, tag1: str, tag2: str) -> int:
        """
        Compare two tags.

        Returns:
            int: 1 if tag1 > tag2, 0 if equal, -1 if tag1 < tag2. Unparsable tags sort lowest.
        """
        v1 = self.precedence_key(tag1)
        v2 = self.precedence_key(tag2)
        if v1 is None or v2 is None:
            return (v1 is not None) - (v2 is not None)
        if v1 > v2:
            return 1
        if v1 < v2:
            return -1
        return 0

    def build_tag_filter(self, expression: Optional[str]) -> "TagFilter":
        """
        Turn a tag expression into a TagFilter.

        Accepted forms:
            - None, "latest", "*", "all": match every release
            - ">=1.2.0", ">1.0.0 <2.0.0", ">=1.0.0,!=1.1.0": version range (AND-ed clauses)
            - anything else: exact tag equality, ignoring a leading "v"

        Raises:
            MalformedInputError: If a range expression cannot be parsed.
        """
        if expression is None:
            return TagFilter(kind="any")
        text = expression.strip()
        if not text or text.lower() in WILDCARD_TAGS:
            return TagFilter(kind="any")

        if not self.RANGE_PREFIX_RX.match(text):
            return TagFilter(kind="exact", tag=self.normalize_tag(text))

        clauses = self.RANGE_CLAUSE_RX.findall(text)
        leftover = self.RANGE_CLAUSE_RX.sub("", text).replace(",", "").strip()
        if not clauses or leftover:
            raise MalformedInputError(
                "Invalid version range", field="tag", value=expression
            )

        specifiers = []
        for operator, raw_version in clauses:
            version = self.normalize_version(raw_version)
            if version is None:
                raise MalformedInputError(
                    "Invalid version in range", field="tag", value=raw_version
                )
            operator = "==" if operator == "=" else operator
            try:
                specifiers.append(Specifier(f"{operator}{version.public}"))
            except InvalidSpecifier as e:
                raise MalformedInputError(
                    "Invalid version range", field="tag", value=expression
                ) from e

        return TagFilter(kind="range", specifiers=SpecifierSet(",".join(map(str, specifiers))))


@dataclass(frozen=True)
class TagFilter:
    """A compiled tag expression; see VersionManager.build_tag_filter."""

    kind: str
    tag: Optional[str] = None
    specifiers: Optional[SpecifierSet] = None

    def matches(self, release: Release) -> bool:
        if self.kind == "any":
            return True
        if self.kind == "exact":
            return release.tag == self.tag
        if release.version is None:
            return False
        # Pre-release visibility is decided by the channel filter
        return self.specifiers.contains(release.version, prereleases=True)


_version_manager = VersionManager()


_UNPARSABLE_KEY: PrecedenceKey = ((), -1, ())


def release_sort_key(release: Release) -> Tuple[PrecedenceKey, object]:
    """Ordering key: semver precedence, then publish timestamp as tiebreak."""
    key = _version_manager.precedence_key(release.tag)
    return (key or _UNPARSABLE_KEY, release.published_at or EPOCH)


def sort_releases(releases: Sequence[Release]) -> Tuple[Release, ...]:
    """Return releases most recent first."""
    return tuple(sorted(releases, key=release_sort_key, reverse=True))


def normalize_tag(tag: Optional[str]) -> str:
    return _version_manager.normalize_tag(tag)


def normalize_version(tag: Optional[str]) -> Optional[Version]:
    return _version_manager.normalize_version(tag)


def extract_channel(tag: Optional[str]) -> str:
    return _version_manager.extract_channel(tag)


def build_tag_filter(expression: Optional[str]) -> TagFilter:
    return _version_manager.build_tag_filter(expression)
