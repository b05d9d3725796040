"""
Application service - status transitions and timeline entries for applications.
"""
import logging
import uuid
from typing import Optional

from voicescreen.exceptions import NotFoundError
from voicescreen.models import ApplicationStatus, TimelineEntry
from voicescreen.repositories import ApplicationRepository

logger = logging.getLogger(__name__)

# Timeline steps written by the screening core
STEP_SCREENING_COMPLETED = "screening call completed"
STEP_SCREENING_FAILED = "screening call failed"


class ApplicationService:
    """Service for application status updates."""

    def __init__(self, repo: ApplicationRepository):
        self.repo = repo

    async def update_status(
        self,
        application_id: uuid.UUID,
        status: ApplicationStatus,
        step: str,
        note: Optional[str] = None,
        actor: str = "system",
        conn=None
    ) -> TimelineEntry:
        """
        Update the application status and append one timeline entry.

        Pass ``conn`` to make the write part of an open transaction.

        Raises:
            NotFoundError: If the application does not exist
        """
        entry = await self.repo.update_status(application_id, status, step, note, actor, conn=conn)
        if entry is None:
            raise NotFoundError("Application", str(application_id))
        logger.info(f"Application {application_id} -> {status.value} ({step}) by {actor}")
        return entry

    async def mark_screening_stage(self, application_id: uuid.UUID, status: ApplicationStatus) -> None:
        """Move the application through scheduled / in-progress without a timeline entry."""
        updated = await self.repo.set_status(application_id, status)
        if not updated:
            logger.warning(f"Application {application_id} not found while setting {status.value}")
