"""
Tests for the status propagator: terminal writes, application timeline and
idempotency when several paths finalize the same call.

Run with: pytest tests/test_status_propagator.py -v
"""
import asyncio
import uuid

import pytest

from voicescreen.exceptions import NotFoundError
from voicescreen.models import (
    ApplicationStatus,
    ErrorCode,
    FinalizePayload,
    RetrievedCallData,
    ScreeningOutcome,
    ScreeningStatus,
)
from voicescreen.services import StatusPropagator

from tests.fakes import LONG_TRANSCRIPT

JSON_SUMMARY = """```json
{
  "experience": "4 years on the grill station",
  "availability": "Weekends and evenings",
  "transportation": "Own car",
  "softSkills": "Calm under pressure",
  "roleSpecific": {"strengths": ["speed", "organization"], "areasForImprovement": ["pastry"]},
  "highlights": ["Can start Monday"]
}
```"""


class TestFinalize:

    @pytest.mark.asyncio
    async def test_completed_call_updates_record_and_application(
        self, propagator, screening_repo, application_repo, application
    ):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        applied = await propagator.finalize(
            record.id,
            ScreeningOutcome.COMPLETED,
            FinalizePayload(transcript=LONG_TRANSCRIPT, summary=JSON_SUMMARY, duration_seconds=125),
        )

        assert applied is True
        stored = screening_repo.records[record.id]
        assert stored.status == ScreeningStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.transcript == LONG_TRANSCRIPT
        assert stored.evaluation["availability"] == "Weekends and evenings"
        assert stored.score == 8.0

        assert application_repo.applications[application.id].status == ApplicationStatus.SCREENING_COMPLETED
        timeline = await application_repo.list_timeline(application.id)
        assert len(timeline) == 1
        assert timeline[0].note == "Screening call completed (125s)"

    @pytest.mark.asyncio
    async def test_rejected_call_returns_application_for_review(
        self, propagator, screening_repo, application_repo, application
    ):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        await propagator.finalize(
            record.id,
            ScreeningOutcome.REJECTED,
            FinalizePayload(error_code=ErrorCode.RETRIEVAL_EXHAUSTED, reason="call results could not be retrieved"),
        )

        stored = screening_repo.records[record.id]
        assert stored.status == ScreeningStatus.REJECTED
        assert stored.error_code == ErrorCode.RETRIEVAL_EXHAUSTED
        assert stored.error_message == "call results could not be retrieved"

        assert application_repo.applications[application.id].status == ApplicationStatus.SUBMITTED
        timeline = await application_repo.list_timeline(application.id)
        assert timeline[0].note == (
            "Screening call failed: call results could not be retrieved. Manual review required."
        )

    @pytest.mark.asyncio
    async def test_unparseable_summary_is_stored_raw(self, propagator, screening_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        await propagator.finalize(
            record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="Nice chat, no structure")
        )

        stored = screening_repo.records[record.id]
        assert stored.summary == "Nice chat, no structure"
        assert stored.score is None

    @pytest.mark.asyncio
    async def test_unknown_call_raises(self, propagator):
        with pytest.raises(NotFoundError):
            await propagator.finalize(uuid.uuid4(), ScreeningOutcome.COMPLETED)

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_break_finalize(
        self, screening_repo, application_service, application
    ):
        async def broken_notifier(record):
            raise RuntimeError("mail server down")

        propagator = StatusPropagator(screening_repo, application_service, notifier=broken_notifier)
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        assert await propagator.finalize(record.id, ScreeningOutcome.COMPLETED) is True

    @pytest.mark.asyncio
    async def test_failed_application_update_keeps_call_active(
        self, propagator, screening_repo, application_repo, application
    ):
        """The terminal write rolls back with the application update, so a retry can still finalize."""
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)
        application_repo.fail_next = ConnectionError("connection to server was lost")

        with pytest.raises(ConnectionError):
            await propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="done"))

        assert screening_repo.records[record.id].status == ScreeningStatus.IN_PROGRESS
        assert screening_repo.terminal_writes == 0
        assert await application_repo.list_timeline(application.id) == []

        assert await propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="done")) is True
        assert screening_repo.records[record.id].status == ScreeningStatus.COMPLETED
        assert application_repo.applications[application.id].status == ApplicationStatus.SCREENING_COMPLETED
        assert len(await application_repo.list_timeline(application.id)) == 1

    @pytest.mark.asyncio
    async def test_missing_application_still_finalizes_call(self, propagator, screening_repo):
        record = screening_repo.add(uuid.uuid4(), ScreeningStatus.IN_PROGRESS)

        assert await propagator.finalize(record.id, ScreeningOutcome.REJECTED) is True

        assert screening_repo.records[record.id].status == ScreeningStatus.REJECTED


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_second_finalize_is_noop(self, propagator, screening_repo, application_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        first = await propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="done"))
        second = await propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="again"))

        assert (first, second) == (True, False)
        assert screening_repo.records[record.id].summary == "done"
        assert len(await application_repo.list_timeline(application.id)) == 1

    @pytest.mark.asyncio
    async def test_late_rejection_cannot_override_completed(self, propagator, screening_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        await propagator.finalize(record.id, ScreeningOutcome.COMPLETED)
        applied = await propagator.finalize(
            record.id, ScreeningOutcome.REJECTED, FinalizePayload(error_code=ErrorCode.STALE_CLEANUP)
        )

        assert applied is False
        assert screening_repo.records[record.id].status == ScreeningStatus.COMPLETED
        assert screening_repo.records[record.id].error_code is None

    @pytest.mark.asyncio
    async def test_concurrent_finalizers_write_once(self, propagator, screening_repo, application_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)

        results = await asyncio.gather(
            propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="poll")),
            propagator.finalize(record.id, ScreeningOutcome.COMPLETED, FinalizePayload(summary="webhook")),
            propagator.finalize(record.id, ScreeningOutcome.REJECTED, FinalizePayload(reason="stale")),
        )

        assert results.count(True) == 1
        assert screening_repo.terminal_writes == 1
        assert len(await application_repo.list_timeline(application.id)) == 1


class TestFinalizeFromCallData:

    @pytest.mark.asyncio
    async def test_conflict_resolved_to_completed(self, propagator, screening_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)
        data = RetrievedCallData(status="failed", transcript=LONG_TRANSCRIPT, error_message="call failed")

        applied, report = await propagator.finalize_from_call_data(record.id, data)

        assert applied is True
        assert report.outcome == ScreeningOutcome.COMPLETED
        stored = screening_repo.records[record.id]
        assert stored.status == ScreeningStatus.COMPLETED
        assert stored.error_message is None
        assert stored.error_code == ErrorCode.STATE_CONFLICT_FAILED_STATUS_WITH_CONTENT

    @pytest.mark.asyncio
    async def test_failed_call_gets_classified_error_code(self, propagator, screening_repo, application):
        record = screening_repo.add(application.id, ScreeningStatus.IN_PROGRESS)
        data = RetrievedCallData(status="failed", error_message="Payment required: card details expired")

        applied, report = await propagator.finalize_from_call_data(record.id, data)

        assert report.outcome == ScreeningOutcome.REJECTED
        stored = screening_repo.records[record.id]
        assert stored.error_code == ErrorCode.PROVIDER_PAYMENT_ERROR
        assert stored.error_message == "Payment required: card details expired"
