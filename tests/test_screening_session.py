"""
Tests for the screening session state machine.

Covers the happy path, admission denial, provider failures, the safety
timer, navigation-gated teardown and sticky terminal states.

Run with: pytest tests/test_screening_session.py -v
"""
import asyncio
from datetime import timedelta

import pytest

from voicescreen.exceptions import ProviderError, SessionStateError
from voicescreen.models import (
    ApplicationStatus,
    ErrorCode,
    NavigationIntent,
    ProviderEvent,
    ProviderEventType,
    RetrievedCallData,
    ScreeningRole,
    ScreeningStatus,
    ScreeningWebhookEvent,
    SessionState,
)
from voicescreen.services import ScreeningConfig, SessionRegistry, StaleCallReaper, WebhookIngestionService
from voicescreen.services.status_propagator import utcnow
from voicescreen.workflows import CallContext, ScreeningSession

from tests.fakes import LONG_TRANSCRIPT, FakeAdapter


@pytest.fixture
def context(application):
    return CallContext(
        application_id=application.id,
        candidate_id=application.candidate_id,
        job_id=application.job_id,
        candidate_name="Maria",
        phone_number="+15551234567",
        job_title="Line Cook",
        company_name="Bistro Nord",
    )


@pytest.fixture
def make_session(admission, retrieval, propagator, screening_repo, application_service, settings, sleeper):
    closed = []

    def factory(adapter):
        return ScreeningSession(
            admission,
            adapter,
            retrieval,
            propagator,
            screening_repo,
            application_service=application_service,
            settings=settings,
            screening_config=ScreeningConfig(),
            on_closed=closed.append,
            sleep=sleeper,
        )

    factory.closed = closed
    return factory


@pytest.fixture
def session(make_session, adapter):
    return make_session(adapter)


async def _finish(session: ScreeningSession):
    """Stop a still-running session so no timer task outlives the test."""
    if session.state == SessionState.ACTIVE:
        await session.stop()
    await session.wait_until_finished()


class TestStart:

    @pytest.mark.asyncio
    async def test_start_creates_call(self, session, adapter, screening_repo, application_repo, context):
        decision = await session.start(context)

        assert decision.allowed is True
        assert session.state == SessionState.STARTING
        assert session.provider_call_id == "vapi-call-1"

        record = screening_repo.records[session.screening_call_id]
        assert record.provider_call_id == "vapi-call-1"
        assert record.role == ScreeningRole.COOK
        assert application_repo.applications[context.application_id].status == ApplicationStatus.SCREENING_SCHEDULED

        config = adapter.started[0]
        assert config.metadata["screeningId"] == str(session.screening_call_id)
        assert "Maria" in config.script.first_message
        assert adapter.has_listener("vapi-call-1")

    @pytest.mark.asyncio
    async def test_denied_admission_keeps_session_idle(self, session, adapter, screening_repo, context):
        screening_repo.add(context.application_id, ScreeningStatus.COMPLETED)

        decision = await session.start(context)

        assert decision.allowed is False
        assert decision.reason == ErrorCode.CALL_LIMIT_REACHED
        assert session.state == SessionState.IDLE
        assert adapter.started == []

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, session, context):
        await session.start(context)

        with pytest.raises(SessionStateError):
            await session.start(context)

    @pytest.mark.asyncio
    async def test_provider_auth_failure_rejects(self, make_session, screening_repo, application_repo, context):
        adapter = FakeAdapter(start_error=ProviderError("401 Unauthorized", ErrorCode.PROVIDER_AUTH_ERROR))
        session = make_session(adapter)

        decision = await session.start(context)

        assert decision.allowed is True
        assert session.state == SessionState.REJECTED
        record = screening_repo.records[session.screening_call_id]
        assert record.status == ScreeningStatus.REJECTED
        assert record.error_code == ErrorCode.PROVIDER_AUTH_ERROR
        assert application_repo.applications[context.application_id].status == ApplicationStatus.SUBMITTED
        assert make_session.closed == [session]


class TestCallLifecycle:

    @pytest.mark.asyncio
    async def test_happy_path(self, session, adapter, fetcher, screening_repo, application_repo, context):
        await session.start(context)

        await adapter.emit(ProviderEventType.CALL_START)
        assert session.state == SessionState.ACTIVE
        assert screening_repo.records[session.screening_call_id].status == ScreeningStatus.IN_PROGRESS
        assert application_repo.applications[context.application_id].status == ApplicationStatus.SCREENING_IN_PROGRESS

        await adapter.emit(ProviderEventType.TRANSCRIPT, transcript="Hi Maria", transcript_role="assistant")
        await adapter.emit(ProviderEventType.TRANSCRIPT, transcript="Hello!", transcript_role="user")
        assert session.accumulator.transcript == "AI: Hi Maria\nCandidate: Hello!"

        fetcher.direct = [RetrievedCallData(transcript=LONG_TRANSCRIPT, summary="Solid cook", status="ended")]
        await adapter.emit(ProviderEventType.CALL_END)
        assert session.state in (SessionState.ENDED, SessionState.RETRIEVING)

        await session.wait_until_finished()

        assert session.state == SessionState.COMPLETED
        record = screening_repo.records[session.screening_call_id]
        assert record.status == ScreeningStatus.COMPLETED
        assert record.transcript == LONG_TRANSCRIPT
        assert application_repo.applications[context.application_id].status == ApplicationStatus.SCREENING_COMPLETED
        assert len(application_repo.timeline) == 1
        assert not adapter.has_listener("vapi-call-1")

    @pytest.mark.asyncio
    async def test_user_stop_hangs_up_and_retrieves(self, session, adapter, fetcher, screening_repo, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        fetcher.direct = [RetrievedCallData(summary="Short but useful", status="ended")]

        await session.stop()
        await session.wait_until_finished()

        assert adapter.stopped == ["vapi-call-1"]
        assert session.state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_nothing_retrieved_rejects(self, session, adapter, screening_repo, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        assert session.state == SessionState.REJECTED
        assert screening_repo.records[session.screening_call_id].error_code == ErrorCode.RETRIEVAL_EXHAUSTED

    @pytest.mark.asyncio
    async def test_unanswered_call_keeps_provider_reason(
        self, session, adapter, fetcher, screening_repo, context
    ):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        fetcher.direct = [RetrievedCallData(status="failed", error_message="customer-did-not-answer")]

        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        record = screening_repo.records[session.screening_call_id]
        assert session.state == SessionState.REJECTED
        assert record.error_message == "customer-did-not-answer"
        assert record.error_code == ErrorCode.PROVIDER_TRANSIENT_ERROR
        assert fetcher.direct_calls == 1

    @pytest.mark.asyncio
    async def test_captured_transcript_used_when_provider_has_nothing(
        self, session, adapter, fetcher, screening_repo, context
    ):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        await adapter.emit(ProviderEventType.TRANSCRIPT, transcript="Yes, I can work weekends.", transcript_role="user")

        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        assert session.state == SessionState.COMPLETED
        assert fetcher.comprehensive_calls == 0
        assert "Candidate: Yes, I can work weekends." in screening_repo.records[session.screening_call_id].transcript

    @pytest.mark.asyncio
    async def test_call_end_before_call_start_still_finalizes(
        self, session, adapter, fetcher, screening_repo, make_session, context
    ):
        """Busy line: the provider never reports the call started, only that it ended."""
        await session.start(context)
        fetcher.direct = [RetrievedCallData(status="failed", error_message="customer-busy")]

        delivered = await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        assert delivered is True
        assert session.state == SessionState.REJECTED
        record = screening_repo.records[session.screening_call_id]
        assert record.status == ScreeningStatus.REJECTED
        assert record.error_message == "customer-busy"
        assert not adapter.has_listener("vapi-call-1")
        assert make_session.closed == [session]

    @pytest.mark.asyncio
    async def test_cancel_while_starting(self, session, adapter, screening_repo, context):
        await session.start(context)

        await session.stop()

        assert session.state == SessionState.REJECTED
        assert adapter.stopped == ["vapi-call-1"]
        assert screening_repo.records[session.screening_call_id].status == ScreeningStatus.REJECTED


class TestProviderErrors:

    @pytest.mark.asyncio
    async def test_transient_error_keeps_call_running(self, session, adapter, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        await adapter.emit(ProviderEventType.ERROR, error="connection jitter")

        assert session.state == SessionState.ACTIVE
        await _finish(session)

    @pytest.mark.asyncio
    async def test_payment_error_rejects(self, session, adapter, screening_repo, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        await adapter.emit(ProviderEventType.ERROR, error="Payment required: insufficient balance")

        assert session.state == SessionState.REJECTED
        assert adapter.stopped == ["vapi-call-1"]
        assert screening_repo.records[session.screening_call_id].error_code == ErrorCode.PROVIDER_PAYMENT_ERROR


class TestSafetyTimer:

    @pytest.mark.asyncio
    async def test_timer_forces_stop(self, session, adapter, fetcher, settings, context):
        settings.max_call_duration_seconds = 0.01
        settings.safety_grace_seconds = 0.01
        fetcher.direct = [RetrievedCallData(transcript=LONG_TRANSCRIPT, status="ended")]
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        await asyncio.sleep(0.1)
        await session.wait_until_finished()

        assert adapter.stopped == ["vapi-call-1"]
        assert session.state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_timer_cancelled_on_normal_end(self, session, adapter, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        timer = session._safety_timer

        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()
        await asyncio.sleep(0)

        assert timer.cancelled()
        assert adapter.stopped == []


class TestNavigation:

    @pytest.mark.asyncio
    async def test_teardown_after_navigation_interrupts(
        self, session, adapter, screening_repo, application_repo, context
    ):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        session.signal_navigation(NavigationIntent.UNLOADING)
        await session.teardown()

        assert session.state == SessionState.REJECTED
        assert adapter.stopped == ["vapi-call-1"]
        record = screening_repo.records[session.screening_call_id]
        assert record.error_code == ErrorCode.INTERRUPTED_NAVIGATION
        assert application_repo.applications[context.application_id].status == ApplicationStatus.SUBMITTED
        assert application_repo.timeline[0].note == "Screening call failed: interrupted. Manual review required."

    @pytest.mark.asyncio
    async def test_teardown_without_navigation_is_transient(self, session, adapter, screening_repo, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        await session.teardown()

        assert session.state == SessionState.ACTIVE
        assert screening_repo.records[session.screening_call_id].status == ScreeningStatus.IN_PROGRESS
        await _finish(session)

    @pytest.mark.asyncio
    async def test_visible_clears_navigation_intent(self, session, adapter, context):
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)

        session.signal_navigation(NavigationIntent.HIDDEN)
        session.signal_navigation(NavigationIntent.VISIBLE)
        await session.teardown()

        assert session.state == SessionState.ACTIVE
        await _finish(session)

    @pytest.mark.asyncio
    async def test_navigation_before_start_is_ignored(self, session, context):
        session.signal_navigation(NavigationIntent.UNLOADING)
        await session.start(context)

        await session.teardown()

        assert session.state == SessionState.STARTING
        await session.stop()


class TestTerminalStates:

    @pytest.mark.asyncio
    async def test_terminal_state_is_sticky(self, session, adapter, fetcher, context):
        fetcher.direct = [RetrievedCallData(transcript=LONG_TRANSCRIPT, status="ended")]
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()
        assert session.state == SessionState.COMPLETED

        for event_type in (ProviderEventType.CALL_START, ProviderEventType.CALL_END, ProviderEventType.ERROR):
            await session.handle_event(
                ProviderEvent(type=event_type, provider_call_id=adapter.call_id, error="Invalid API key")
            )

        session.signal_navigation(NavigationIntent.UNLOADING)
        await session.teardown()
        await session.stop()

        assert session.state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_session_adopts_outcome_finalized_elsewhere(
        self, session, adapter, propagator, fetcher, screening_repo, context
    ):
        """The webhook path finalized first; the polling path must not overwrite it."""
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        await propagator.finalize_from_call_data(
            session.screening_call_id, RetrievedCallData(summary="From webhook", status="ended")
        )
        fetcher.direct = [RetrievedCallData(transcript=LONG_TRANSCRIPT, status="ended")]

        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        assert session.state == SessionState.COMPLETED
        assert fetcher.direct_calls == 0
        assert screening_repo.records[session.screening_call_id].summary == "From webhook"
        assert screening_repo.terminal_writes == 1

    @pytest.mark.asyncio
    async def test_terminal_session_declines_events(self, session, adapter, fetcher, context):
        fetcher.direct = [RetrievedCallData(transcript=LONG_TRANSCRIPT, status="ended")]
        await session.start(context)
        await adapter.emit(ProviderEventType.CALL_START)
        await adapter.emit(ProviderEventType.CALL_END)
        await session.wait_until_finished()

        handled = await session.handle_event(
            ProviderEvent(type=ProviderEventType.CALL_END, provider_call_id=adapter.call_id)
        )

        assert handled is False


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def live_session(
    registry, admission, adapter, retrieval, propagator, screening_repo, application_service, settings, sleeper
):
    return ScreeningSession(
        admission,
        adapter,
        retrieval,
        propagator,
        screening_repo,
        application_service=application_service,
        settings=settings,
        on_closed=registry.remove,
        sleep=sleeper,
    )


class TestFinalizedElsewhere:

    @pytest.mark.asyncio
    async def test_reaped_session_hangs_up_and_leaves_registry(
        self, live_session, registry, adapter, screening_repo, propagator, settings, context
    ):
        await live_session.start(context)
        registry.register(live_session)
        await adapter.emit(ProviderEventType.CALL_START)
        reaper = StaleCallReaper(
            screening_repo, propagator, settings, now=lambda: utcnow() + timedelta(hours=1), registry=registry
        )

        assert await reaper.sweep() == 1

        assert live_session.state == SessionState.REJECTED
        assert len(registry) == 0
        assert adapter.stopped == ["vapi-call-1"]
        assert not adapter.has_listener("vapi-call-1")
        assert live_session._safety_timer is None
        assert screening_repo.records[live_session.screening_call_id].error_code == ErrorCode.STALE_CLEANUP

    @pytest.mark.asyncio
    async def test_failed_webhook_releases_live_session(
        self, live_session, registry, adapter, retrieval, screening_repo, propagator, context
    ):
        ingestion = WebhookIngestionService(screening_repo, propagator, adapter, retrieval, registry=registry)
        await live_session.start(context)
        registry.register(live_session)
        await adapter.emit(ProviderEventType.CALL_START)

        result = await ingestion.ingest(
            ScreeningWebhookEvent(type="call-failed", callId="vapi-call-1", error="pipeline-error-openai-llm-failed")
        )

        assert result.finalized is True
        assert live_session.state == SessionState.REJECTED
        assert len(registry) == 0
        assert adapter.stopped == ["vapi-call-1"]
        assert not adapter.has_listener("vapi-call-1")

    @pytest.mark.asyncio
    async def test_running_session_is_not_released(self, live_session, registry, adapter, context):
        await live_session.start(context)
        registry.register(live_session)
        await adapter.emit(ProviderEventType.CALL_START)

        assert await registry.release_finalized(live_session.screening_call_id) is False

        assert live_session.state == SessionState.ACTIVE
        assert len(registry) == 1
        await _finish(live_session)
