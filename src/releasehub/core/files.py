"""
On-disk metadata helpers for the asset cache.
"""

import json
import os
import tempfile
from typing import Any, Dict, Optional

from releasehub.log_utils import logger


def atomic_write_json(file_path: str, data: Dict[str, Any]) -> bool:
    """
    Write `data` as JSON next to `file_path` and rename it into place.

    Readers never see a half-written file: either the previous content or the
    new one. Returns False (and logs) when the write fails.
    """
    directory = os.path.dirname(file_path) or "."
    temp_path: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=directory,
            prefix=".tmp-",
            suffix=".json",
            encoding="utf-8",
            delete=False,
        ) as temp_f:
            temp_path = temp_f.name
            json.dump(data, temp_f, indent=2, sort_keys=True)
            temp_f.flush()
            os.fsync(temp_f.fileno())
        os.replace(temp_path, file_path)
        temp_path = None
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Could not write {file_path}: {e}")
        return False
    finally:
        if temp_path is not None and os.path.exists(temp_path):
            os.remove(temp_path)
    return True


def read_json(file_path: str) -> Optional[Dict[str, Any]]:
    """Parsed JSON object from `file_path`; None when missing, unreadable or not an object."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable JSON file {file_path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {file_path}: expected a JSON object")
        return None
    return data
