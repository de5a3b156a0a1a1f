# src/releasehub/utils.py
import importlib.metadata
from typing import Optional

from releasehub.constants import APP_NAME

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE: Optional[str] = None


def get_app_version() -> str:
    """
    Return the installed releasehub version, or `unknown` when the package metadata is unavailable.
    """
    try:
        return importlib.metadata.version(APP_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `releasehub/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        _USER_AGENT_CACHE = f"{APP_NAME}/{get_app_version()}"

    return _USER_AGENT_CACHE


def parse_size(value) -> int:
    """
    Parse a byte size such as `500MB`, `1.5 GiB` or `1048576` into bytes.

    Raises:
        ValueError: If the value is not a non-negative size.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        size = int(value)
    else:
        text = str(value).strip().upper().replace(" ", "")
        multiplier = 1
        for suffix, factor in _SIZE_SUFFIXES:
            if text.endswith(suffix):
                text = text[: -len(suffix)]
                multiplier = factor
                break
        try:
            size = int(float(text) * multiplier)
        except ValueError:
            raise ValueError(f"Invalid size: {value!r}") from None
    if size < 0:
        raise ValueError(f"Size must not be negative: {value!r}")
    return size


# Longest suffixes first so "MIB" is not read as "B"
_SIZE_SUFFIXES = (
    ("KIB", 1024),
    ("MIB", 1024**2),
    ("GIB", 1024**3),
    ("KB", 1024),
    ("MB", 1024**2),
    ("GB", 1024**3),
    ("K", 1024),
    ("M", 1024**2),
    ("G", 1024**3),
    ("B", 1),
)
