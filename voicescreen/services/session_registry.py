"""
In-process registry of live screening sessions.

Holds handles to sessions that are still running so the HTTP layer can
reach them (stop, navigation, teardown). It is not the system of record:
after a restart it is empty and the stale-call reaper cleans up whatever
was left active in the database.
"""
import logging
import uuid
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from voicescreen.workflows.screening_session import ScreeningSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live ScreeningSession handles keyed by screening call id."""

    def __init__(self):
        self._sessions: dict[uuid.UUID, "ScreeningSession"] = {}

    def register(self, session: "ScreeningSession") -> None:
        if session.screening_call_id is None:
            raise ValueError("Cannot register a session without a screening call")
        self._sessions[session.screening_call_id] = session
        logger.debug(f"Registered session {session.screening_call_id} ({len(self._sessions)} live)")

    def get(self, screening_call_id: uuid.UUID) -> Optional["ScreeningSession"]:
        return self._sessions.get(screening_call_id)

    def get_by_provider_call_id(self, provider_call_id: str) -> Optional["ScreeningSession"]:
        for session in self._sessions.values():
            if session.provider_call_id == provider_call_id:
                return session
        return None

    def remove(self, session: "ScreeningSession") -> None:
        """Drop a session; used as the session's on_closed callback."""
        if self._sessions.pop(session.screening_call_id, None) is not None:
            logger.debug(f"Removed session {session.screening_call_id} ({len(self._sessions)} live)")

    async def release_finalized(self, screening_call_id: uuid.UUID) -> bool:
        """
        Let a live session know its record was finalized by another path.

        The session closes itself (and leaves the registry through on_closed)
        once it sees the terminal record. Returns True if no live session
        remains for this id.
        """
        session = self._sessions.get(screening_call_id)
        if session is None:
            return True
        return await session.release_if_finalized()

    def __len__(self) -> int:
        return len(self._sessions)
