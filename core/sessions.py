"""Per-target FlareSolverr session directory.

Keeps one solver session per target URL so repeated fetches of the same page
reuse cookies and browser fingerprint.  Sessions are validated lazily: a
recorded session is probed with a real solve before reuse and replaced when
the probe fails.

Stale sessions are destroyed on the solver as soon as their probe fails and
are dropped from the owned set, so :meth:`SessionDirectory.cleanup` only
destroys sessions that are still live.  Every created session is therefore
destroyed exactly once.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from solvers.flaresolverr import FlareSolverrClient, SolverError, SolverResponse

logger = logging.getLogger(__name__)


class SessionCreationError(Exception):
    """The solver refused or failed to create a session."""


@dataclass
class SessionLease:
    """A usable session for one target.

    Attributes:
        session_id: Solver session to use.
        probe: Successful solve produced while validating a reused session,
            or ``None`` when the session was freshly created.
    """

    session_id: str
    probe: Optional[SolverResponse] = None


class SessionDirectory:
    """Maps target URLs to solver sessions owned by this process."""

    def __init__(self, client: FlareSolverrClient):
        self.client = client
        self._sessions: Dict[str, str] = {}
        self._owned: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, url: str) -> Optional[str]:
        return self._sessions.get(url)

    @property
    def session_ids(self) -> List[str]:
        """Owned session ids, in no particular order."""
        return list(self._owned)

    async def session_for(self, url: str) -> str:
        """Return a validated session id for *url*, creating one if needed.

        Raises:
            SessionCreationError: If a new session was needed and the solver
                could not create it.
        """
        lease = await self.acquire(url)
        return lease.session_id

    async def acquire(self, url: str) -> SessionLease:
        """Like :meth:`session_for`, but hands back the probe result too."""
        async with self._locks[url]:
            existing = self._sessions.get(url)
            if existing is not None:
                probe = await self._probe(url, existing)
                if probe is not None:
                    logger.debug(f"Reusing session {existing} for {url}")
                    return SessionLease(existing, probe)
                await self._discard(url, existing)

            session_id = await self._create()
            self._sessions[url] = session_id
            self._owned.add(session_id)
            logger.info(f"Created new FlareSolverr session: {session_id}")
            return SessionLease(session_id)

    async def _probe(self, url: str, session_id: str) -> Optional[SolverResponse]:
        try:
            response = await self.client.solve(url, session_id)
        except Exception as e:
            logger.warning(f"Probe of session {session_id} for {url} failed: {e}")
            return None
        if not response.ok:
            logger.warning(
                f"Probe of session {session_id} for {url} returned status "
                f"'{response.status}': {response.message}"
            )
            return None
        return response

    async def _discard(self, url: str, session_id: str) -> None:
        self._sessions.pop(url, None)
        self._owned.discard(session_id)
        logger.warning(f"Session {session_id} appears invalid, creating new one")
        await self._destroy(session_id)

    async def _create(self) -> str:
        try:
            response = await self.client.create_session()
        except SolverError as e:
            raise SessionCreationError(f"Failed to create session: {e}") from e
        if not response.ok or not response.session:
            raise SessionCreationError(f"Failed to create session: {response.message}")
        return response.session

    async def _destroy(self, session_id: str) -> bool:
        try:
            response = await self.client.destroy_session(session_id)
        except Exception as e:
            logger.error(f"Error destroying FlareSolverr session {session_id}: {e}")
            return False
        if not response.ok:
            logger.error(f"FlareSolverr refused to destroy session {session_id}: {response.message}")
            return False
        logger.info(f"Destroyed FlareSolverr session: {session_id}")
        return True

    async def cleanup(self) -> int:
        """Destroy every owned session and forget all records.

        Each destruction is attempted independently; failures are logged and
        skipped.

        Returns:
            Number of sessions the solver confirmed destroyed.
        """
        owned = list(self._owned)
        self._owned.clear()
        self._sessions.clear()
        if not owned:
            return 0

        destroyed = 0
        for session_id in owned:
            if await self._destroy(session_id):
                destroyed += 1
        logger.info(f"Session cleanup finished: {destroyed}/{len(owned)} destroyed")
        return destroyed
