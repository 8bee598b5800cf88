"""Logging configuration for the web archiver.

Sets up a dual-handler logging pipeline:

1. **Console** -- :class:`SafeStreamHandler` that never lets an encoding
   problem on a narrow console crash the process.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``<log_dir>/web_archiver.log`` with gzip rotation (10 MiB per file,
   5 backups).

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler

LOG_FILE_NAME = "web_archiver.log"
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("aiohttp", "asyncio")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, 'rb') as f_in:
            with gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that degrades unencodable characters instead of failing.

    Page titles and URLs can carry characters the console encoding cannot
    represent; those are written with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(stream, 'encoding', None) or 'ascii'
                safe_msg = msg.encode(encoding, errors='replace').decode(encoding)
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> None:
    """Configure the root logger with console and file handlers.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
            Unknown names fall back to ``INFO``.
        log_dir: Directory for the rotating log file; created if missing.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    os.makedirs(log_dir, exist_ok=True)
    file_handler = CompressedRotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8',
    )
    stream_handler = SafeStreamHandler(sys.stdout)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[file_handler, stream_handler],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
