"""Writes captured HTML to timestamped files."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from core.schedule import utc_now

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(file_name: str) -> str:
    """Reduce a name hint to a safe file stem (extension dropped)."""
    stem = Path(file_name.replace("\\", "/")).stem
    stem = _UNSAFE_CHARS.sub("_", stem).strip(" .")
    return stem or "page"


def build_output_filename(file_name: str, captured_at: datetime) -> str:
    return f"{captured_at.strftime(TIMESTAMP_FORMAT)}_{sanitize_name(file_name)}.html"


class ContentWriter:
    def __init__(self, output_directory: Union[str, Path]):
        self.output_directory = Path(output_directory)

    def ensure_directory(self) -> Path:
        self.output_directory.mkdir(parents=True, exist_ok=True)
        return self.output_directory

    def write(self, file_name: str, content: str, captured_at: Optional[datetime] = None) -> Path:
        """Save *content* as UTF-8 and return the written path.

        Characters UTF-8 cannot represent (lone surrogates decoded from JSON
        escapes) are written as ``?``.
        """
        captured_at = captured_at or utc_now()
        self.ensure_directory()
        path = self.output_directory / build_output_filename(file_name, captured_at)
        data = content.encode("utf-8", errors="replace")
        path.write_bytes(data)
        logger.debug(f"Wrote {len(data)} bytes to {path}")
        return path
