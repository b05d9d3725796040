"""
Call admission controller.

Decides whether a new screening call may start for an application. The
checks are plain reads of the record store: call creation is a human-paced
event, so no locking is involved. Denials are returned as values.
"""
import logging
import uuid
from typing import Optional

from voicescreen.config import ScreeningSettings
from voicescreen.models import (
    AdmissionDecision,
    ApplicationStatus,
    ErrorCode,
    ScreeningRole,
    ScreeningStatus,
)
from voicescreen.services.application_service import ApplicationService
from voicescreen.services.stale_call_reaper import StaleCallReaper

logger = logging.getLogger(__name__)


class CallAdmissionController:
    """Enforces the per-application call limit and retry quota."""

    def __init__(
        self,
        screening_repo,
        reaper: StaleCallReaper,
        application_service: Optional[ApplicationService] = None,
        settings: Optional[ScreeningSettings] = None,
    ):
        self.screening_repo = screening_repo
        self.reaper = reaper
        self.application_service = application_service
        self.settings = settings or ScreeningSettings.from_env()

    async def _evaluate(self, application_id: uuid.UUID) -> AdmissionDecision:
        counts = await self.screening_repo.count_by_status(application_id)
        active = counts[ScreeningStatus.SCHEDULED] + counts[ScreeningStatus.IN_PROGRESS]
        completed = counts[ScreeningStatus.COMPLETED]
        failed = counts[ScreeningStatus.REJECTED]
        summary = {"active": active, "completed": completed, "failed": failed}

        if active > 0:
            return AdmissionDecision.deny(
                ErrorCode.DUPLICATE_ACTIVE_CALL,
                "A screening call is already in progress for this application",
                summary,
            )
        if completed >= self.settings.call_limit:
            return AdmissionDecision.deny(
                ErrorCode.CALL_LIMIT_REACHED,
                "Screening already completed for this application. Please contact the recruiter.",
                summary,
            )
        if failed >= self.settings.retry_quota:
            return AdmissionDecision.deny(
                ErrorCode.RETRY_LIMIT_REACHED,
                "No screening retries left for this application. Please contact the recruiter.",
                summary,
            )
        return AdmissionDecision.allow(None, summary)

    def _log_denial(self, application_id: uuid.UUID, decision: AdmissionDecision) -> None:
        logger.info(
            f"Screening admission denied: application={application_id} "
            f"reason={decision.reason.value} counts={decision.counts}"
        )

    async def check_eligibility(self, application_id: uuid.UUID) -> AdmissionDecision:
        """Same checks as request_admission, without creating a record."""
        await self.reaper.sweep()
        return await self._evaluate(application_id)

    async def request_admission(
        self,
        application_id: uuid.UUID,
        candidate_id: uuid.UUID,
        job_id: uuid.UUID,
        role: ScreeningRole = ScreeningRole.GENERAL,
    ) -> AdmissionDecision:
        """
        Admit or deny a new screening call for an application.

        Stale records are swept first so abandoned calls don't count as
        active. On Allow a new 'scheduled' ScreeningCall is created.
        """
        reaped = await self.reaper.sweep()
        if reaped:
            logger.info(f"Admission sweep for application {application_id} reaped {reaped} stale calls")

        decision = await self._evaluate(application_id)
        if not decision.allowed:
            self._log_denial(application_id, decision)
            return decision

        record = await self.screening_repo.create(application_id, candidate_id, job_id, role)
        if self.application_service is not None:
            await self.application_service.mark_screening_stage(
                application_id, ApplicationStatus.SCREENING_SCHEDULED
            )
        logger.info(
            f"Screening admission allowed: application={application_id} "
            f"screening_call={record.id} counts={decision.counts}"
        )
        return AdmissionDecision.allow(record, decision.counts)
