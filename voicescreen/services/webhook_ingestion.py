"""
Webhook ingestion.

Provider webhooks are the second path to a terminal outcome next to the
session's own polling. Events are handed to the live session (when there
is one on this process) and terminal events are reconciled and finalized
through the status propagator, which makes duplicates and late arrivals
harmless. Whenever this path leaves a record terminal, a live session for it
is released.
"""
import asyncio
import logging
from typing import Optional

from voicescreen.exceptions import InvalidUUIDError, ProviderError, parse_uuid
from voicescreen.models import (
    ErrorCode,
    FinalizePayload,
    ProviderEvent,
    ProviderEventType,
    ScreeningCall,
    ScreeningOutcome,
    ScreeningWebhookEvent,
    WebhookResult,
)
from voicescreen.services.result_retrieval import ResultRetrievalEngine
from voicescreen.services.session_registry import SessionRegistry
from voicescreen.services.status_propagator import StatusPropagator
from voicescreen.services.vapi_service import VoiceProviderAdapter

logger = logging.getLogger(__name__)

EVENT_TYPE_MAP = {
    "call-started": ProviderEventType.CALL_START,
    "call-ended": ProviderEventType.CALL_END,
    "call-completed": ProviderEventType.END_OF_CALL_REPORT,
    "end-of-call-report": ProviderEventType.END_OF_CALL_REPORT,
    "call-failed": ProviderEventType.ERROR,
    "call-error": ProviderEventType.ERROR,
    "provider-error": ProviderEventType.ERROR,
    "speech-start": ProviderEventType.SPEECH_START,
    "speech-end": ProviderEventType.SPEECH_END,
    "transcript": ProviderEventType.TRANSCRIPT,
}

TERMINAL_SUCCESS_TYPES = {"call-ended", "call-completed", "end-of-call-report"}
TERMINAL_FAILURE_TYPES = {"call-failed", "call-error"}


def to_provider_event(event: ScreeningWebhookEvent) -> Optional[ProviderEvent]:
    """Map a webhook event onto the adapter's event vocabulary."""
    event_type = EVENT_TYPE_MAP.get(event.type)
    if event_type is None or not event.callId:
        return None
    return ProviderEvent(
        type=event_type,
        provider_call_id=event.callId,
        transcript=event.transcript,
        transcript_role=event.status if event_type == ProviderEventType.TRANSCRIPT else None,
        summary=event.summary,
        audio_url=event.audioUrl,
        duration_seconds=event.duration,
        error=event.error,
        status=event.status,
    )


class WebhookIngestionService:
    """Correlates webhook events with screening calls and finalizes terminal ones."""

    def __init__(
        self,
        screening_repo,
        propagator: StatusPropagator,
        adapter: Optional[VoiceProviderAdapter] = None,
        retrieval: Optional[ResultRetrievalEngine] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self.screening_repo = screening_repo
        self.propagator = propagator
        self.adapter = adapter
        self.retrieval = retrieval
        self.registry = registry
        self._background: set[asyncio.Task] = set()

    async def _resolve(self, event: ScreeningWebhookEvent) -> Optional[ScreeningCall]:
        """Find the screening call by our metadata id first, then by provider call id."""
        if event.screening_call_id:
            try:
                record = await self.screening_repo.get_by_id(parse_uuid(event.screening_call_id))
            except InvalidUUIDError:
                logger.warning(f"Webhook carried invalid screening id: {event.screening_call_id}")
                record = None
            if record is not None:
                if event.callId and not record.provider_call_id:
                    await self.screening_repo.set_provider_call_id(record.id, event.callId)
                return record

        if event.callId:
            return await self.screening_repo.get_by_provider_call_id(event.callId)
        return None

    async def _release(self, record: ScreeningCall) -> None:
        if self.registry is not None:
            await self.registry.release_finalized(record.id)

    async def ingest(self, event: ScreeningWebhookEvent) -> WebhookResult:
        """
        Process one webhook event.

        Always returns a successful result so the provider does not retry;
        unknown calls and duplicates are reported in the message only.
        """
        delivered = False
        provider_event = to_provider_event(event)
        if provider_event is not None and self.adapter is not None:
            delivered = await self.adapter.dispatch(provider_event)

        is_success = event.type in TERMINAL_SUCCESS_TYPES
        is_failure = event.type in TERMINAL_FAILURE_TYPES
        if not (is_success or is_failure):
            return WebhookResult(message=f"Event {event.type} acknowledged")

        record = await self._resolve(event)
        if record is None:
            logger.warning(f"Webhook {event.type}: no screening found (call {event.callId})")
            return WebhookResult(message="No screening found")

        screening_call_id = str(record.id)
        if record.status.is_terminal:
            logger.info(f"[{record.id}] Webhook {event.type} after {record.status.value}, ignoring")
            await self._release(record)
            return WebhookResult(
                message=f"Screening already {record.status.value}",
                screening_call_id=screening_call_id,
            )

        data = event.to_call_data()
        if is_failure:
            data = data.model_copy(
                update={
                    "status": data.status or "failed",
                    "error_message": data.error_message or "Call failed",
                }
            )
        elif not data.has_any_content():
            if delivered:
                # The live session retrieves and finalizes this call itself
                return WebhookResult(
                    message="Call end delivered to live session",
                    screening_call_id=screening_call_id,
                )
            self._schedule_retrieval(record, data.duration_seconds)
            return WebhookResult(
                message="Call ended without content, retrieving results",
                screening_call_id=screening_call_id,
            )

        applied, report = await self.propagator.finalize_from_call_data(
            record.id, data, data.duration_seconds
        )
        await self._release(record)
        return WebhookResult(
            message=f"Screening {report.outcome.value}" if applied else "Screening already finalized",
            screening_call_id=screening_call_id,
            finalized=applied,
        )

    def _schedule_retrieval(self, record: ScreeningCall, duration_seconds: Optional[float]) -> None:
        task = asyncio.create_task(self._retrieve_and_finalize(record, duration_seconds))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _retrieve_and_finalize(self, record: ScreeningCall, duration_seconds: Optional[float]) -> None:
        try:
            await self._fetch_and_finalize(record, duration_seconds)
            await self._release(record)
        except Exception as e:
            logger.error(f"[{record.id}] Background retrieval after webhook failed: {e}", exc_info=True)

    async def _fetch_and_finalize(self, record: ScreeningCall, duration_seconds: Optional[float]) -> None:
        data = None
        if self.retrieval is not None and record.provider_call_id:
            try:
                data = await self.retrieval.retrieve(record.provider_call_id)
            except ProviderError as e:
                await self.propagator.finalize(
                    record.id,
                    ScreeningOutcome.REJECTED,
                    FinalizePayload(error_message=e.message, error_code=e.code, duration_seconds=duration_seconds),
                )
                return
        if data is None:
            await self.propagator.finalize(
                record.id,
                ScreeningOutcome.REJECTED,
                FinalizePayload(
                    error_message="No transcript or summary could be retrieved",
                    error_code=ErrorCode.RETRIEVAL_EXHAUSTED,
                    reason="call results could not be retrieved",
                    duration_seconds=duration_seconds,
                ),
            )
            return
        await self.propagator.finalize_from_call_data(record.id, data, duration_seconds)

    async def drain(self) -> None:
        """Wait for background retrievals started by ingest()."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
