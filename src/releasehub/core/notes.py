"""
Release notes merging.
"""

from typing import Iterable

from .interfaces import Release

NOTES_SEPARATOR = "\n\n"


def format_tag_header(tag: str) -> str:
    return f"## {tag}"


def merge_notes(releases: Iterable[Release], include_tag: bool = True) -> str:
    """
    Concatenate release notes in the given order.

    Each release contributes one block: its notes, optionally preceded by a
    "## <tag>" header line. Blocks are separated by a blank line. Notes are
    kept verbatim; releases whose notes are empty or blank are skipped so they
    do not produce empty blocks.

    Parameters:
        releases (Iterable[Release]): Releases in display order (callers pass newest first).
        include_tag (bool): Whether to prefix every block with its tag header.

    Returns:
        str: The merged text; empty when no release has notes.
    """
    blocks = []
    for release in releases:
        notes = release.notes or ""
        if not notes.strip():
            continue
        if include_tag:
            blocks.append(f"{format_tag_header(release.tag)}\n{notes}")
        else:
            blocks.append(notes)
    return NOTES_SEPARATOR.join(blocks)
