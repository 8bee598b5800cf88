"""
Cron Web Archiver - Main Entry Point

Loads the configured fetch tasks, then runs the BatchScheduler, which fetches
each page through FlareSolverr on its cron schedule and saves the HTML.
Solver sessions created during the run are always destroyed on exit.

Usage:
    python main.py                          # Use config/appsettings.json
    python main.py --config my.json         # Use a specific settings file
    python main.py --single example.com     # Run matching tasks only
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Optional

from core.config import ArchiverSettings, FALLBACK_CONFIG, PRIMARY_CONFIG, load_settings
from core.logging_setup import setup_logging
from core.orchestrator import BatchScheduler
from core.runner import TaskRunner
from core.schedule import ScheduleEntry
from core.sessions import SessionDirectory
from core.writer import ContentWriter
from solvers.flaresolverr import FlareSolverrClient

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cron Web Archiver - scheduled FlareSolverr fetches")
    parser.add_argument("--config", default=str(PRIMARY_CONFIG), help="Primary JSON settings file")
    parser.add_argument("--fallback-config", default=str(FALLBACK_CONFIG), help="Settings file used when the primary is unusable")
    parser.add_argument("--log-level", type=str, help="Override the configured log level")
    parser.add_argument("--single", type=str, help="Run only tasks whose URL or file name contains this text")
    return parser.parse_args(argv)


def build_entries(settings: ArchiverSettings, single: Optional[str] = None) -> List[ScheduleEntry]:
    entries = [ScheduleEntry.from_config(task) for task in settings.tasks]
    if single:
        needle = single.lower()
        entries = [e for e in entries if needle in e.url.lower() or needle in e.file_name.lower()]
        if not entries:
            logger.warning(f"No tasks found matching '{single}'")
    return entries


async def run(settings: ArchiverSettings, entries: List[ScheduleEntry]) -> int:
    """
    Run the archiver until the schedule is exhausted or a stop signal arrives.

    Returns the process exit code: 0 on normal completion or interruption,
    1 on a fatal error.  Sessions are cleaned up on every path.
    """
    client = FlareSolverrClient(
        settings.flaresolverr_url,
        max_timeout=settings.solver_max_timeout,
        request_timeout=settings.request_timeout,
    )
    directory = SessionDirectory(client)
    writer = ContentWriter(settings.output_directory)
    scheduler = BatchScheduler(TaskRunner(directory, client, writer))

    def handle_signal(signame: str):
        logger.info(f"🛑 Received {signame}. Initiating graceful shutdown...")
        scheduler.stop()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, handle_signal, sig.name)

    exit_code = 0
    try:
        writer.ensure_directory()
        await scheduler.run(entries)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("👋 Stopping archiver (interrupted)...")
    except Exception as e:
        logger.critical(f"Fatal error in scraping application: {e}", exc_info=True)
        exit_code = 1
    finally:
        logger.info("🧹 Cleaning up FlareSolverr sessions...")
        await directory.cleanup()
        await client.close()
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

    return exit_code


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution.

    1. Parses command line arguments.
    2. Configures logging from the environment so settings-file warnings
       are recorded.
    3. Loads settings (primary file, fallback file, then defaults) and
       reconfigures logging if the file changed the level or directory.
    4. Builds schedule entries and hands them to :func:`run`.
    """
    args = parse_args(argv)

    env_settings = ArchiverSettings()
    log_level = args.log_level or env_settings.log_level
    setup_logging(log_level, env_settings.log_dir)

    settings = load_settings(args.config, args.fallback_config)
    file_level = args.log_level or settings.log_level
    if (file_level, settings.log_dir) != (log_level, env_settings.log_dir):
        setup_logging(file_level, settings.log_dir)
    logger.info(f"FlareSolverr endpoint: {settings.flaresolverr_url}")
    logger.info(f"Output directory: {settings.output_directory}")

    entries = build_entries(settings, args.single)
    return await run(settings, entries)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
