"""Executes a single scheduled fetch.

:meth:`TaskRunner.execute` never raises (cancellation aside): every failure
is logged and folded into a :class:`FetchResult` so that one broken target
cannot disturb the other members of its batch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from core.schedule import ScheduleEntry, utc_now
from core.sessions import SessionCreationError, SessionDirectory
from core.writer import ContentWriter
from solvers.flaresolverr import FlareSolverrClient, SolverError

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Why a fetch attempt was abandoned.

    - SESSION_CREATION: the solver could not create a session
    - SOLVE_FAILURE: the solve call answered with a non-ok status or no solution
    - TRANSPORT: the solver was unreachable during the solve
    - WRITE_FAILURE: the HTML could not be saved
    - UNKNOWN: anything else
    """
    SESSION_CREATION = "session_creation"
    SOLVE_FAILURE = "solve_failure"
    TRANSPORT = "transport"
    WRITE_FAILURE = "write_failure"
    UNKNOWN = "unknown"


@dataclass
class FetchResult:
    """Outcome of one fetch attempt.

    Attributes:
        url: Target that was fetched.
        success: Whether HTML was saved.
        status: Human-readable status / error description.
        path: Saved file, on success.
        error_type: Failure classification, on failure.
    """

    url: str
    success: bool
    status: str
    path: Optional[Path] = None
    error_type: Optional[ErrorType] = None

    @classmethod
    def failed(cls, url: str, error_type: ErrorType, status: str) -> "FetchResult":
        return cls(url=url, success=False, status=status, error_type=error_type)


class TaskRunner:
    def __init__(self, directory: SessionDirectory, client: FlareSolverrClient, writer: ContentWriter):
        self.directory = directory
        self.client = client
        self.writer = writer

    async def execute(self, entry: ScheduleEntry) -> FetchResult:
        """Fetch *entry* through its session and save the HTML."""
        url = entry.url
        logger.info(f"Starting scrape for {url}")

        try:
            lease = await self.directory.acquire(url)
        except SessionCreationError as e:
            logger.error(f"Error processing '{url}': {e}")
            return FetchResult.failed(url, ErrorType.SESSION_CREATION, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error obtaining session for '{url}'")
            return FetchResult.failed(url, ErrorType.UNKNOWN, str(e))

        # A successful probe already fetched the page
        response = lease.probe
        if response is None:
            try:
                response = await self.client.solve(url, lease.session_id)
            except SolverError as e:
                logger.error(f"Error processing '{url}': {e}")
                return FetchResult.failed(url, ErrorType.TRANSPORT, str(e))
            except Exception as e:
                logger.exception(f"Unexpected error solving '{url}'")
                return FetchResult.failed(url, ErrorType.UNKNOWN, str(e))

        if not response.ok:
            logger.error(f"Failed to get content for {url}. Status: {response.status}")
            return FetchResult.failed(
                url, ErrorType.SOLVE_FAILURE, f"{response.status}: {response.message}",
            )

        if response.solution is None:
            logger.error(f"Failed to get content for {url}. Status: ok without solution")
            return FetchResult.failed(url, ErrorType.SOLVE_FAILURE, "ok: response carried no solution")

        try:
            path = self.writer.write(entry.file_name, response.solution.response, utc_now())
        except (OSError, ValueError) as e:
            logger.error(f"Could not save content from '{url}': {e}")
            return FetchResult.failed(url, ErrorType.WRITE_FAILURE, str(e))

        logger.info(f"Successfully saved content from '{url}' to '{path}'")
        return FetchResult(url=url, success=True, status="saved", path=path)
