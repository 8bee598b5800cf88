"""FlareSolverr API client.

Thin async wrapper around the FlareSolverr ``/v1`` endpoint.  Every
command is a JSON ``POST``; the service reports logical failures through
the ``status`` field while connection problems surface as
:class:`TransportError`.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class SolverError(Exception):
    """Base class for solver client failures."""


class TransportError(SolverError):
    """The solver could not be reached or answered with garbage."""


class Solution(BaseModel):
    """The ``solution`` block of a ``request.get`` answer."""

    url: Optional[str] = None
    status: Optional[int] = None
    response: str = ""
    userAgent: Optional[str] = None


class SolverResponse(BaseModel):
    """Decoded FlareSolverr answer.

    Only the fields this project relies on are declared; anything else the
    service sends back is ignored.
    """

    status: str = "error"
    message: str = ""
    session: Optional[str] = None
    solution: Optional[Solution] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class FlareSolverrClient:
    """Async API client for a FlareSolverr instance.

    Supports both context-manager and standalone usage patterns.

    Example::

        async with FlareSolverrClient("http://localhost:8191") as client:
            created = await client.create_session()
            page = await client.solve("https://example.com", created.session)
    """

    CMD_CREATE = "sessions.create"
    CMD_DESTROY = "sessions.destroy"
    CMD_GET = "request.get"

    def __init__(
        self,
        base_url: str,
        max_timeout: int = 60000,
        request_timeout: float = 120.0,
    ) -> None:
        """Initialise the client.

        Args:
            base_url: Root URL of the FlareSolverr service.
            max_timeout: ``maxTimeout`` (ms) forwarded with every solve.
            request_timeout: Total HTTP timeout (seconds) per call.
        """
        self.base_url = base_url.rstrip("/")
        self.max_timeout = max_timeout
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1"

    async def __aenter__(self) -> "FlareSolverrClient":
        await self._ensure_session()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Lazily create an aiohttp session if one does not already exist."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
        return self.session

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def _post(self, payload: Dict[str, Any]) -> SolverResponse:
        """Send one command and decode the answer.

        Raises:
            TransportError: On connection errors, timeouts, or a body
                that is not a FlareSolverr JSON document.
        """
        session = await self._ensure_session()
        cmd = payload.get("cmd")
        logger.debug("FlareSolverr %s -> %s", cmd, self.endpoint)

        try:
            async with session.post(self.endpoint, json=payload) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"FlareSolverr {cmd} failed: {e}") from e

        if not isinstance(data, dict):
            raise TransportError(
                f"FlareSolverr {cmd} returned unexpected payload: {data!r}"
            )
        try:
            return SolverResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(
                f"FlareSolverr {cmd} returned malformed payload: {e}"
            ) from e

    async def create_session(self) -> SolverResponse:
        """Ask the solver for a new browser session."""
        return await self._post({"cmd": self.CMD_CREATE})

    async def solve(self, url: str, session_id: Optional[str] = None) -> SolverResponse:
        """Fetch *url* through the solver, inside *session_id* when given."""
        payload: Dict[str, Any] = {
            "cmd": self.CMD_GET,
            "url": url,
            "maxTimeout": self.max_timeout,
        }
        if session_id:
            payload["session"] = session_id
        return await self._post(payload)

    async def destroy_session(self, session_id: str) -> SolverResponse:
        """Release *session_id* on the solver side."""
        return await self._post({"cmd": self.CMD_DESTROY, "session": session_id})
