"""Shared utility functions for the core modules."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


def read_json_file(filepath: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Read a JSON object from *filepath*.

    Args:
        filepath: Path to the JSON file.

    Returns:
        Parsed dictionary, or ``None`` if the file is missing, unreadable,
        not valid JSON, or not a JSON object.  Everything except a missing
        file is logged as a warning.
    """
    path = Path(filepath)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load configuration from %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top-level JSON value is not an object", path)
        return None
    return data
