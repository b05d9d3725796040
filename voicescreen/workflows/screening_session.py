"""
Screening session - drives one screening call attempt through its lifecycle.

    idle -> starting -> active -> ended -> retrieving -> completed | rejected

- idle -> starting: admission allowed, call started through the adapter
- starting -> active: provider call-start; record in_progress, safety timer armed
- active -> ended: provider call-end, user stop or safety timer (same path)
- starting -> ended: the provider reports the call over before it ever
  reported it started (busy, no answer); retrieval still runs
- ended -> retrieving -> completed/rejected: retrieval cascade, reconciliation,
  status propagator

Any in-flight state can go straight to rejected (unrecoverable provider error,
navigation away). Terminal states are sticky. A session whose record was
finalized by another path (webhook, stale-call reaper) is released through
release_if_finalized so its listener and registry entry do not linger. The database record stays the
system of record; the session only holds what one live call needs.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from voicescreen.config import ScreeningSettings
from voicescreen.exceptions import ProviderError, SessionStateError
from voicescreen.models import (
    AdmissionDecision,
    ApplicationStatus,
    ErrorCode,
    FinalizePayload,
    NavigationIntent,
    ProviderEvent,
    ProviderEventType,
    RetrievedCallData,
    ScreeningCall,
    ScreeningOutcome,
    ScreeningStatus,
    SessionState,
)
from voicescreen.services.admission import CallAdmissionController
from voicescreen.services.application_service import ApplicationService
from voicescreen.services.call_errors import build_error_report
from voicescreen.services.result_retrieval import ResultRetrievalEngine
from voicescreen.services.screening_config import ScreeningConfig
from voicescreen.services.status_propagator import StatusPropagator, utcnow
from voicescreen.services.vapi_prompts import (
    SessionConfig,
    build_interaction_script,
    determine_screening_role,
)
from voicescreen.services.vapi_service import VoiceProviderAdapter

logger = logging.getLogger(__name__)

TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.STARTING},
    SessionState.STARTING: {SessionState.ACTIVE, SessionState.ENDED, SessionState.REJECTED},
    SessionState.ACTIVE: {SessionState.ENDED, SessionState.REJECTED},
    SessionState.ENDED: {SessionState.RETRIEVING, SessionState.REJECTED},
    SessionState.RETRIEVING: {SessionState.COMPLETED, SessionState.REJECTED},
    SessionState.COMPLETED: set(),
    SessionState.REJECTED: set(),
}

IN_FLIGHT_STATES = (
    SessionState.STARTING,
    SessionState.ACTIVE,
    SessionState.ENDED,
    SessionState.RETRIEVING,
)

INTERRUPTED_MESSAGE = "Screening interrupted: candidate left the page during the call"


@dataclass
class CallContext:
    """Job and candidate context needed to start a screening call."""
    application_id: uuid.UUID
    candidate_id: uuid.UUID
    job_id: uuid.UUID
    candidate_name: str
    phone_number: str
    job_title: str
    job_department: Optional[str] = None
    company_name: Optional[str] = None


class CallDataAccumulator:
    """Call data captured from live events, owned by one session."""

    def __init__(self):
        self.transcript_lines: list[str] = []
        self.final_transcript: Optional[str] = None
        self.summary: Optional[str] = None
        self.audio_url: Optional[str] = None
        self.last_error: Optional[str] = None
        self.duration_seconds: Optional[float] = None
        self.status: Optional[str] = None
        self.speaking: Optional[str] = None
        self.events_seen = 0

    def record(self, event: ProviderEvent) -> None:
        self.events_seen += 1
        if event.type == ProviderEventType.TRANSCRIPT and event.transcript:
            speaker = "Candidate" if event.transcript_role == "user" else "AI"
            self.transcript_lines.append(f"{speaker}: {event.transcript}")
        elif event.type == ProviderEventType.SPEECH_START:
            self.speaking = event.transcript_role or "unknown"
        elif event.type == ProviderEventType.SPEECH_END:
            self.speaking = None
        elif event.type == ProviderEventType.ERROR:
            self.last_error = event.error
        elif event.type in (ProviderEventType.CALL_END, ProviderEventType.END_OF_CALL_REPORT):
            self.final_transcript = event.transcript or self.final_transcript
            self.summary = event.summary or self.summary
            self.audio_url = event.audio_url or self.audio_url
            self.duration_seconds = event.duration_seconds or self.duration_seconds
            self.status = event.status or self.status
            if event.error:
                self.last_error = event.error

    @property
    def transcript(self) -> Optional[str]:
        return self.final_transcript or ("\n".join(self.transcript_lines) or None)

    def snapshot(self) -> Optional[RetrievedCallData]:
        """Captured data as RetrievedCallData, or None if nothing was captured."""
        if not (self.transcript or self.summary or self.audio_url or self.last_error):
            return None
        return RetrievedCallData(
            transcript=self.transcript,
            summary=self.summary,
            audio_url=self.audio_url,
            error_message=self.last_error,
            status=self.status,
            duration_seconds=self.duration_seconds,
            source="captured",
        )


class ScreeningSession:
    """One orchestrated screening call attempt."""

    def __init__(
        self,
        admission: CallAdmissionController,
        adapter: VoiceProviderAdapter,
        retrieval: ResultRetrievalEngine,
        propagator: StatusPropagator,
        screening_repo,
        application_service: Optional[ApplicationService] = None,
        settings: Optional[ScreeningSettings] = None,
        screening_config: Optional[ScreeningConfig] = None,
        on_closed: Optional[Callable[["ScreeningSession"], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.admission = admission
        self.adapter = adapter
        self.retrieval = retrieval
        self.propagator = propagator
        self.screening_repo = screening_repo
        self.application_service = application_service
        self.settings = settings or ScreeningSettings.from_env()
        self.screening_config = screening_config or ScreeningConfig()
        self._on_closed = on_closed
        self._sleep = sleep
        self._now = now

        self.state = SessionState.IDLE
        self.screening_call: Optional[ScreeningCall] = None
        self.provider_call_id: Optional[str] = None
        self.accumulator = CallDataAccumulator()

        self._navigating = False
        self._safety_timer: Optional[asyncio.Task] = None
        self._retrieval_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._started_at: Optional[float] = None
        self._ended_at: Optional[float] = None
        self._closed = False

    # =========================================================================
    # State helpers
    # =========================================================================

    @property
    def screening_call_id(self) -> Optional[uuid.UUID]:
        return self.screening_call.id if self.screening_call else None

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.REJECTED)

    def _transition(self, new_state: SessionState) -> bool:
        if new_state not in TRANSITIONS[self.state]:
            logger.info(
                f"[{self.screening_call_id}] Ignoring transition {self.state.value} -> {new_state.value}"
            )
            return False
        logger.info(f"[{self.screening_call_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state
        return True

    def _cancel_safety_timer(self) -> None:
        timer = self._safety_timer
        self._safety_timer = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    def _call_duration(self) -> Optional[float]:
        if self.accumulator.duration_seconds is not None:
            return self.accumulator.duration_seconds
        if self._started_at is not None and self._ended_at is not None:
            return round(self._ended_at - self._started_at, 1)
        return None

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_safety_timer()
        if self.provider_call_id:
            self.adapter.unsubscribe(self.provider_call_id)
        if self._on_closed is not None:
            self._on_closed(self)

    async def _stop_call(self, trigger: str) -> None:
        if not self.provider_call_id:
            return
        try:
            await self.adapter.stop(self.provider_call_id)
        except ProviderError as e:
            # The call may already be over on the provider side
            logger.warning(f"[{self.screening_call_id}] Stop ({trigger}) failed: {e.message}")

    async def _adopt_stored_outcome(self) -> None:
        """Align the session's terminal state with what the record store holds."""
        record = await self.screening_repo.get_by_id(self.screening_call_id)
        if record is not None:
            self.screening_call = record
        if record is not None and record.status == ScreeningStatus.COMPLETED:
            self.state = SessionState.COMPLETED
        else:
            self.state = SessionState.REJECTED
        self._close()

    async def _finish(self, outcome: ScreeningOutcome, payload: FinalizePayload) -> None:
        await self.propagator.finalize(self.screening_call_id, outcome, payload)
        await self._adopt_stored_outcome()

    async def _reject(self, code: ErrorCode, message: str, reason: Optional[str] = None) -> None:
        if self.is_terminal:
            return
        self._cancel_safety_timer()
        self._transition(SessionState.REJECTED)
        await self.propagator.finalize(
            self.screening_call_id,
            ScreeningOutcome.REJECTED,
            FinalizePayload(
                error_message=message,
                error_code=code,
                reason=reason or message,
                transcript=self.accumulator.transcript,
                duration_seconds=self._call_duration(),
            ),
        )
        await self._adopt_stored_outcome()

    # =========================================================================
    # Caller actions
    # =========================================================================

    async def start(self, context: CallContext) -> AdmissionDecision:
        """
        Ask for admission and start the call.

        Returns the admission decision; on Deny the session stays idle.
        """
        if self.state != SessionState.IDLE:
            raise SessionStateError("Session already started", self.state.value)

        role = determine_screening_role(context.job_title, context.job_department)
        decision = await self.admission.request_admission(
            context.application_id, context.candidate_id, context.job_id, role
        )
        if not decision.allowed:
            return decision

        self.screening_call = decision.screening_call
        self._transition(SessionState.STARTING)

        script = build_interaction_script(
            role,
            context.job_title,
            context.candidate_name,
            self.screening_config,
            company_name=context.company_name,
            max_duration_seconds=int(self.settings.max_call_duration_seconds),
        )
        session_config = SessionConfig(
            screening_call_id=str(self.screening_call_id),
            phone_number=context.phone_number,
            candidate_name=context.candidate_name,
            script=script,
            config=self.screening_config,
            metadata={
                "screeningId": str(self.screening_call_id),
                "applicationId": str(context.application_id),
            },
        )

        try:
            self.provider_call_id = await self.adapter.start(session_config, self.handle_event)
        except ProviderError as e:
            logger.error(f"[{self.screening_call_id}] Could not start call: {e.message}")
            await self._reject(e.code, e.message, reason=f"call could not be started ({e.code.value})")
            return decision

        await self.screening_repo.set_provider_call_id(self.screening_call_id, self.provider_call_id)
        logger.info(f"[{self.screening_call_id}] Call started, provider call {self.provider_call_id}")
        return decision

    async def stop(self) -> None:
        """User-initiated stop."""
        if self.state == SessionState.STARTING:
            await self._stop_call("user stop")
            await self._reject(
                ErrorCode.PROVIDER_TRANSIENT_ERROR,
                "Call cancelled before it connected",
            )
            return
        await self._end("user stop", stop_call=True)

    def signal_navigation(self, intent: NavigationIntent) -> None:
        """Record whether the client page is going away."""
        if intent == NavigationIntent.VISIBLE:
            if self._navigating:
                logger.info(f"[{self.screening_call_id}] Page visible again, navigation intent cleared")
            self._navigating = False
            return
        if self.state in IN_FLIGHT_STATES:
            logger.info(f"[{self.screening_call_id}] Navigation intent: {intent.value}")
            self._navigating = True

    async def teardown(self) -> None:
        """
        The client that owns this session detached.

        Only a detach preceded by a navigation signal interrupts the call;
        anything else is treated as transient and the session keeps running.
        """
        if self.is_terminal or self.state == SessionState.IDLE:
            return
        if not self._navigating:
            logger.info(
                f"[{self.screening_call_id}] Teardown without navigation intent in "
                f"{self.state.value}, keeping call alive"
            )
            return

        logger.warning(f"[{self.screening_call_id}] Interrupted by navigation in {self.state.value}")
        if self.state in (SessionState.STARTING, SessionState.ACTIVE):
            await self._stop_call("navigation")
        await self._reject(ErrorCode.INTERRUPTED_NAVIGATION, INTERRUPTED_MESSAGE, reason="interrupted")

    async def wait_until_finished(self) -> None:
        """Wait for an in-flight retrieval (if any) to reach its outcome."""
        if self._retrieval_task is not None:
            await self._retrieval_task

    async def release_if_finalized(self) -> bool:
        """
        Close the session if its record was finalized by another path.

        A running retrieval is left alone; it adopts the stored outcome when
        it finishes. Returns True once the session is closed.
        """
        if self._closed:
            return True
        if self.screening_call_id is None:
            return False
        if self._retrieval_task is not None and not self._retrieval_task.done():
            return False

        record = await self.screening_repo.get_by_id(self.screening_call_id)
        if record is None or not record.status.is_terminal or self._closed:
            return self._closed

        logger.info(
            f"[{self.screening_call_id}] Record finalized elsewhere as {record.status.value} "
            f"while session was {self.state.value}, releasing"
        )
        self._cancel_safety_timer()
        if self.state in (SessionState.STARTING, SessionState.ACTIVE):
            await self._stop_call("finalized elsewhere")
        await self._adopt_stored_outcome()
        return True

    # =========================================================================
    # Provider events
    # =========================================================================

    async def handle_event(self, event: ProviderEvent) -> bool:
        """
        Listener registered with the adapter for this call.

        Returns False when the session will not act on the event (it is
        already terminal, or a call end arrived in a state that cannot
        retrieve), so the caller knows to finalize the call itself.
        """
        if self.is_terminal:
            logger.debug(f"[{self.screening_call_id}] Ignoring {event.type.value} after terminal state")
            return False

        self.accumulator.record(event)

        if event.type == ProviderEventType.CALL_START:
            await self._on_call_start()
        elif event.type in (ProviderEventType.CALL_END, ProviderEventType.END_OF_CALL_REPORT):
            await self._end(f"provider {event.type.value}", stop_call=False)
            return self._retrieval_task is not None
        elif event.type == ProviderEventType.ERROR:
            await self._on_error(event.error or "Unknown provider error")
        return True

    async def _on_call_start(self) -> None:
        if not self._transition(SessionState.ACTIVE):
            return
        self._started_at = time.monotonic()
        await self.screening_repo.mark_in_progress(self.screening_call_id, self._now())
        if self.application_service is not None:
            await self.application_service.mark_screening_stage(
                self.screening_call.application_id, ApplicationStatus.SCREENING_IN_PROGRESS
            )
        self._safety_timer = asyncio.create_task(self._safety_timeout())

    async def _safety_timeout(self) -> None:
        await asyncio.sleep(self.settings.safety_timeout_seconds)
        logger.warning(
            f"[{self.screening_call_id}] Safety timer fired after "
            f"{self.settings.safety_timeout_seconds:.0f}s, forcing stop"
        )
        await self._end("safety timer", stop_call=True)

    async def _on_error(self, message: str) -> None:
        report = build_error_report(message, self.accumulator.transcript)
        if report.recoverable and self.state != SessionState.STARTING:
            logger.info(f"[{self.screening_call_id}] Transient provider error, call continues")
            return
        if self.state in (SessionState.STARTING, SessionState.ACTIVE):
            await self._stop_call("provider error")
        await self._reject(report.code, message)

    async def _end(self, trigger: str, stop_call: bool) -> None:
        """Common path for call-end, user stop and the safety timer."""
        if self.state not in (SessionState.STARTING, SessionState.ACTIVE):
            logger.info(f"[{self.screening_call_id}] End ({trigger}) ignored in state {self.state.value}")
            return
        if self.state == SessionState.STARTING:
            logger.info(f"[{self.screening_call_id}] Call ended before it was reported started")
        self._cancel_safety_timer()
        self._ended_at = time.monotonic()
        self._transition(SessionState.ENDED)
        logger.info(f"[{self.screening_call_id}] Call ended by {trigger}")

        if stop_call:
            await self._stop_call(trigger)

        self._retrieval_task = asyncio.create_task(self._retrieve_and_finalize())

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def _retrieve_and_finalize(self) -> None:
        async with self._lock:
            if not self._transition(SessionState.RETRIEVING):
                return

            record = await self.screening_repo.get_by_id(self.screening_call_id)
            if record is not None and record.status.is_terminal:
                logger.info(
                    f"[{self.screening_call_id}] Already finalized as {record.status.value} "
                    f"by another path, skipping retrieval"
                )
                await self._adopt_stored_outcome()
                return

            duration = self._call_duration()
            try:
                if self.settings.retrieval_start_delay:
                    await self._sleep(self.settings.retrieval_start_delay)
                if self.provider_call_id:
                    data = await self.retrieval.retrieve(
                        self.provider_call_id,
                        self.settings.retrieval_max_attempts,
                        self.settings.retrieval_base_delay,
                        captured=self.accumulator.snapshot(),
                    )
                else:
                    data = self.accumulator.snapshot()
            except ProviderError as e:
                await self._reject(e.code, e.message)
                return

            if self.is_terminal:
                return
            if data is None:
                await self._reject(
                    ErrorCode.RETRIEVAL_EXHAUSTED,
                    "No transcript or summary could be retrieved",
                    reason="call results could not be retrieved",
                )
                return

            if self.accumulator.last_error and not data.error_message:
                data = data.model_copy(update={"error_message": self.accumulator.last_error})

            await self.propagator.finalize_from_call_data(self.screening_call_id, data, duration)
            await self._adopt_stored_outcome()
