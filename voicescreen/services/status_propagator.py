"""
Status propagator - the single point where screening calls become terminal.

The polling path (session), webhook ingestion and the stale-call reaper all
finalize through here. The terminal write is a compare-and-set on the
record's status, so concurrent callers race on the database row: the first
one wins and the rest are no-ops. Only the winner touches the application
timeline, and it does so in the same transaction as the terminal write, so
a failed application update leaves the call active for a later retry.
Notifications fire after commit.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from voicescreen.exceptions import NotFoundError
from voicescreen.models import (
    ApplicationStatus,
    ConflictReport,
    ErrorCode,
    FinalizePayload,
    RetrievedCallData,
    ScreeningCall,
    ScreeningOutcome,
)
from voicescreen.services.application_service import (
    ApplicationService,
    STEP_SCREENING_COMPLETED,
    STEP_SCREENING_FAILED,
)
from voicescreen.services.call_errors import classify_provider_error
from voicescreen.services.conflict_detector import detect_conflicts, log_conflict_report
from voicescreen.services.summary_parser import parse_screening_summary, score_evaluation
from voicescreen.utils.templates import TemplateKind, render_template

logger = logging.getLogger(__name__)

FAILURE_NOTE_TEMPLATE = "Screening call failed: {{reason}}. Manual review required."
DEFAULT_FAILURE_REASON = "Screening call failed"

Notifier = Callable[[ScreeningCall], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusPropagator:
    """Applies a terminal outcome to a screening call and its application."""

    def __init__(
        self,
        screening_repo,
        application_service: ApplicationService,
        notifier: Optional[Notifier] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.screening_repo = screening_repo
        self.application_service = application_service
        self.notifier = notifier
        self._now = now

    async def finalize(
        self,
        screening_call_id: uuid.UUID,
        outcome: ScreeningOutcome,
        payload: Optional[FinalizePayload] = None,
    ) -> bool:
        """
        Move a screening call to its terminal status.

        Idempotent: if the record is already terminal (or another writer gets
        there first) nothing is written and False is returned.

        Args:
            screening_call_id: Screening call to finalize
            outcome: COMPLETED or REJECTED
            payload: Result fields to persist

        Returns:
            True if this call performed the transition

        Raises:
            NotFoundError: If the screening call does not exist
        """
        payload = payload or FinalizePayload()

        record = await self.screening_repo.get_by_id(screening_call_id)
        if record is None:
            raise NotFoundError("ScreeningCall", str(screening_call_id))
        if record.status.is_terminal:
            self._log_noop(record, outcome)
            return False

        evaluation = None
        score = None
        if payload.summary:
            try:
                parsed = parse_screening_summary(payload.summary)
                if parsed is not None:
                    evaluation = parsed.model_dump()
                    score = score_evaluation(parsed)
            except Exception as e:
                # Raw summary is still stored below
                logger.warning(f"[{screening_call_id}] Could not parse summary: {e}")

        error_message = payload.error_message
        if outcome == ScreeningOutcome.REJECTED and not error_message:
            error_message = payload.reason or DEFAULT_FAILURE_REASON

        async with self.screening_repo.transaction() as conn:
            updated = await self.screening_repo.mark_terminal(
                screening_call_id,
                outcome.status,
                completed_at=self._now(),
                transcript=payload.transcript,
                audio_url=payload.audio_url,
                summary=payload.summary,
                evaluation=evaluation,
                score=score,
                duration_seconds=payload.duration_seconds,
                error_message=error_message,
                error_code=payload.error_code,
                conn=conn,
            )
            if updated is not None:
                try:
                    await self._update_application(updated, outcome, payload, error_message, conn)
                except NotFoundError:
                    # No application to move; the call outcome is still stored
                    logger.error(f"[{screening_call_id}] Application {updated.application_id} not found")

        if updated is None:
            current = await self.screening_repo.get_by_id(screening_call_id)
            self._log_noop(current or record, outcome)
            return False

        logger.info(
            f"[{screening_call_id}] Finalized as {outcome.value}"
            + (f" ({payload.error_code.value})" if payload.error_code else "")
        )
        await self._notify(updated)
        return True

    async def _update_application(
        self,
        record: ScreeningCall,
        outcome: ScreeningOutcome,
        payload: FinalizePayload,
        error_message: Optional[str],
        conn=None,
    ) -> None:
        if outcome == ScreeningOutcome.COMPLETED:
            note = "Screening call completed"
            if record.duration_seconds:
                note += f" ({record.duration_seconds:.0f}s)"
            await self.application_service.update_status(
                record.application_id,
                ApplicationStatus.SCREENING_COMPLETED,
                STEP_SCREENING_COMPLETED,
                note,
                conn=conn,
            )
            return

        # A failed screening never rejects the candidate; it goes back for human review
        reason = (payload.reason or error_message or DEFAULT_FAILURE_REASON).rstrip(".")
        note = render_template(TemplateKind.FAILURE_NOTE, FAILURE_NOTE_TEMPLATE, {"reason": reason})
        await self.application_service.update_status(
            record.application_id,
            ApplicationStatus.SUBMITTED,
            STEP_SCREENING_FAILED,
            note,
            conn=conn,
        )

    async def _notify(self, record: ScreeningCall) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier(record)
        except Exception as e:
            logger.warning(f"[{record.id}] Screening notification failed: {e}", exc_info=True)

    @staticmethod
    def _log_noop(record: ScreeningCall, outcome: ScreeningOutcome) -> None:
        if record.status == outcome.status:
            logger.info(f"[{record.id}] Already {record.status.value}, finalize is a no-op")
        else:
            logger.warning(
                f"[{record.id}] Ignoring late {outcome.value} finalize, "
                f"record already {record.status.value}"
            )

    async def finalize_from_call_data(
        self,
        screening_call_id: uuid.UUID,
        data: RetrievedCallData,
        duration_seconds: Optional[float] = None,
    ) -> tuple[bool, ConflictReport]:
        """
        Reconcile retrieved call data and finalize with the resulting outcome.

        Used by the polling path and by webhook ingestion so both reach the
        same decision for the same data.
        """
        report = detect_conflicts(data, duration_seconds)
        log_conflict_report(report, str(screening_call_id))

        payload = FinalizePayload.from_call_data(data, report, duration_seconds)
        if report.outcome == ScreeningOutcome.REJECTED and payload.error_code is None:
            payload.error_code = (
                classify_provider_error(data.error_message)
                if data.error_message
                else ErrorCode.RETRIEVAL_EXHAUSTED
            )

        applied = await self.finalize(screening_call_id, report.outcome, payload)
        return applied, report
