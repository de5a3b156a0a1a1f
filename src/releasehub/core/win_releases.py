"""
Squirrel.Windows RELEASES manifest codec.

A RELEASES file lists one package per line::

    <SHA1> <filename-or-url> <size>

The Squirrel client is strict about this shape, so encoding writes exactly one
space between fields and a single newline between entries.
"""

import re
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional

from releasehub.constants import NUPKG_EXTENSION
from releasehub.exceptions import ManifestDecodeError

RELEASE_LINE_RX = re.compile(r"^([0-9a-fA-F]{40})\s+(\S+)\s+(\d+)\s*$")
PACKAGE_VERSION_RX = re.compile(
    r"-(\d+(?:\.\d+)+(?:-[0-9A-Za-z][0-9A-Za-z.]*)?)-(full|delta)\.nupkg$",
    re.IGNORECASE,
)
BOM = "\ufeff"


@dataclass(frozen=True)
class ReleaseEntry:
    """One line of a RELEASES manifest."""

    sha1: str
    filename: str
    size: int

    @property
    def basename(self) -> str:
        """Filename without any URL prefix."""
        return self.filename.rsplit("/", 1)[-1]

    @property
    def is_delta(self) -> bool:
        return self.basename.lower().endswith("-delta" + NUPKG_EXTENSION)

    @property
    def version(self) -> Optional[str]:
        """Package version embedded in a '<app>-<version>-full|delta.nupkg' name."""
        match = PACKAGE_VERSION_RX.search(self.basename)
        return match.group(1) if match else None


def parse_releases(content: str) -> List[ReleaseEntry]:
    """
    Decode a RELEASES manifest.

    A leading byte-order mark and CRLF line endings are accepted; blank lines are
    ignored. Any other line that is not "<sha1> <filename> <size>" is rejected.

    Raises:
        ManifestDecodeError: On the first malformed line.
    """
    if content.startswith(BOM):
        content = content[len(BOM) :]

    entries: List[ReleaseEntry] = []
    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        if not raw_line.strip():
            continue
        match = RELEASE_LINE_RX.match(raw_line)
        if not match:
            raise ManifestDecodeError(
                "Malformed RELEASES entry",
                line_number=line_number,
                line=raw_line,
                details=f"line {line_number}: {raw_line!r}",
            )
        entries.append(
            ReleaseEntry(
                sha1=match.group(1),
                filename=match.group(2),
                size=int(match.group(3)),
            )
        )
    return entries


def generate_releases(entries: Iterable[ReleaseEntry]) -> str:
    """Encode entries back into RELEASES text."""
    return "\n".join(
        f"{entry.sha1} {entry.filename} {entry.size}" for entry in entries
    )


def rewrite_filenames(
    entries: Iterable[ReleaseEntry], url_for: Callable[[ReleaseEntry], str]
) -> List[ReleaseEntry]:
    """Replace each entry's filename with `url_for(entry)`; hash and size are kept."""
    return [replace(entry, filename=url_for(entry)) for entry in entries]
