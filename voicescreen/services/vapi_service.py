"""
VAPI Service - voice provider boundary for screening calls.

- VoiceProviderAdapter: start / stop a call and route its lifecycle events
  to the listener registered at start.
- VapiAdapter: VAPI implementation (server SDK for call creation, the call's
  monitor control URL for hang-up).
- VapiCallDataFetcher: reads call results from the VAPI REST API.

Events reach us through the webhook router, which calls ``dispatch``. When no
listener is registered for a call (the session is gone) dispatch reports
that and the webhook ingestion path takes over.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

import httpx

from voicescreen.config import (
    VAPI_API_KEY,
    VAPI_PHONE_NUMBER_ID,
    VAPI_SERVER_URL,
    VAPI_API_BASE_URL,
)
from voicescreen.exceptions import ProviderError
from voicescreen.models import (
    ErrorCode,
    ProviderEvent,
    RetrievedCallData,
    VapiCallObject,
)
from voicescreen.models.vapi import is_failed_ended_reason
from voicescreen.services.call_errors import classify_provider_error
from voicescreen.services.vapi_prompts import SessionConfig

logger = logging.getLogger(__name__)

ProviderEventListener = Callable[[ProviderEvent], Awaitable[Optional[bool]]]

SERVER_MESSAGES = [
    "status-update",
    "end-of-call-report",
    "transcript",
    "speech-update",
    "hang",
]


class VoiceProviderAdapter:
    """
    Boundary to the third-party call engine.

    Subclasses implement ``_create_call`` and ``_end_call``; listener
    bookkeeping lives here.
    """

    def __init__(self):
        self._listeners: dict[str, ProviderEventListener] = {}

    async def _create_call(self, session_config: SessionConfig) -> str:
        raise NotImplementedError

    async def _end_call(self, provider_call_id: str) -> None:
        raise NotImplementedError

    async def start(self, session_config: SessionConfig, listener: ProviderEventListener) -> str:
        """Start a call and subscribe ``listener`` to its events. Returns the provider call id."""
        provider_call_id = await self._create_call(session_config)
        self._listeners[provider_call_id] = listener
        return provider_call_id

    async def stop(self, provider_call_id: str) -> None:
        await self._end_call(provider_call_id)

    def unsubscribe(self, provider_call_id: str) -> None:
        self._listeners.pop(provider_call_id, None)

    def has_listener(self, provider_call_id: str) -> bool:
        return provider_call_id in self._listeners

    async def dispatch(self, event: ProviderEvent) -> bool:
        """
        Deliver an event to the listener of its call.

        Returns False when nobody is listening for this call, the listener
        failed, or the listener declined the event by returning False.
        """
        listener = self._listeners.get(event.provider_call_id)
        if listener is None:
            return False
        try:
            handled = await listener(event)
        except Exception as e:
            logger.error(
                f"Listener for call {event.provider_call_id} failed on {event.type.value}: {e}",
                exc_info=True,
            )
            return False
        return handled is not False


def _raise_for_provider_status(response: httpx.Response, action: str) -> None:
    if response.status_code < 400:
        return
    if response.status_code in (401, 403):
        code = ErrorCode.PROVIDER_AUTH_ERROR
    elif response.status_code == 402:
        code = ErrorCode.PROVIDER_PAYMENT_ERROR
    else:
        code = classify_provider_error(response.text)
    raise ProviderError(f"VAPI {action} failed ({response.status_code}): {response.text[:200]}", code)


class VapiAdapter(VoiceProviderAdapter):
    """VAPI implementation of the voice provider adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        server_url: Optional[str] = None,
        base_url: str = VAPI_API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the VAPI client with credentials from the environment."""
        from vapi import Vapi

        super().__init__()
        self.api_key = api_key or VAPI_API_KEY
        if not self.api_key:
            raise RuntimeError("VAPI_API_KEY environment variable is required")

        self.phone_number_id = phone_number_id or VAPI_PHONE_NUMBER_ID
        if not self.phone_number_id:
            raise RuntimeError("VAPI_PHONE_NUMBER_ID environment variable is required")

        self.server_url = server_url or VAPI_SERVER_URL
        self.base_url = base_url
        self._transport = transport
        self.client = Vapi(token=self.api_key)
        logger.info(f"VAPI adapter initialized, server_url={self.server_url}")

    def _build_assistant(self, session_config: SessionConfig) -> dict:
        script = session_config.script
        config = session_config.config
        assistant = {
            "name": f"{script.role.value.title()} Screening Assistant",
            "firstMessage": script.first_message,
            "transcriber": config.transcriber.model_dump(),
            "voice": config.voice.model_dump(),
            "model": {
                **config.model.model_dump(),
                "messages": [{"role": "system", "content": script.system_prompt}],
            },
            "silenceTimeoutSeconds": script.silence_timeout_seconds,
            "maxDurationSeconds": script.max_duration_seconds,
            "endCallMessage": script.end_call_message,
            "endCallPhrases": script.end_call_phrases,
            "serverMessages": SERVER_MESSAGES,
            "metadata": session_config.metadata,
        }
        if self.server_url:
            assistant["server"] = {
                "url": f"{self.server_url.rstrip('/')}/vapi/webhook",
                "timeoutSeconds": 20,
            }
        return assistant

    async def _create_call(self, session_config: SessionConfig) -> str:
        logger.info(
            f"Creating VAPI call for screening {session_config.screening_call_id} "
            f"({session_config.script.role.value}, {len(session_config.script.questions)} questions)"
        )
        call_params = {
            "phone_number_id": self.phone_number_id,
            "customer": {
                "number": session_config.phone_number,
                "name": session_config.candidate_name,
            },
            "assistant": self._build_assistant(session_config),
        }

        try:
            # The SDK client is blocking
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.calls.create(**call_params)
            )
        except Exception as e:
            message = str(e)
            logger.error(f"Failed to create VAPI call: {message}")
            raise ProviderError(f"Failed to create call: {message}", classify_provider_error(message))

        logger.info(f"VAPI call created: {response.id} (status={getattr(response, 'status', 'queued')})")
        return response.id

    async def _end_call(self, provider_call_id: str) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, headers=headers, timeout=15.0, transport=self._transport
            ) as client:
                response = await client.get(f"/call/{provider_call_id}")
                _raise_for_provider_status(response, "call lookup")
                call = VapiCallObject.model_validate(response.json())

                control_url = call.monitor.controlUrl if call.monitor else None
                if not control_url:
                    logger.warning(f"No control URL for call {provider_call_id} (status={call.status}), cannot hang up")
                    return

                response = await client.post(control_url, json={"type": "end-call"})
                _raise_for_provider_status(response, "end-call")
        except httpx.HTTPError as e:
            raise ProviderError(f"Could not stop call {provider_call_id}: {e}", classify_provider_error(str(e)))

        logger.info(f"Requested hang-up for VAPI call {provider_call_id}")


class VapiCallDataFetcher:
    """Reads call results from the VAPI REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = VAPI_API_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or VAPI_API_KEY
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _get_call(self, provider_call_id: str) -> Optional[VapiCallObject]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, headers=headers, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(f"/call/{provider_call_id}")
        except httpx.HTTPError as e:
            raise ProviderError(f"Call data request failed: {e}", ErrorCode.PROVIDER_TRANSIENT_ERROR)

        if response.status_code == 404:
            return None
        _raise_for_provider_status(response, "call data fetch")
        return VapiCallObject.model_validate(response.json())

    @staticmethod
    def _status_and_error(call: VapiCallObject) -> tuple[Optional[str], Optional[str]]:
        if is_failed_ended_reason(call.endedReason):
            return "failed", call.endedReason
        return call.status, None

    async def fetch(self, provider_call_id: str) -> Optional[RetrievedCallData]:
        """Direct data endpoint: transcript, recording and summary as VAPI stores them."""
        call = await self._get_call(provider_call_id)
        if call is None:
            return None

        artifact = call.artifact
        status, error_message = self._status_and_error(call)
        return RetrievedCallData(
            transcript=artifact.transcript if artifact else None,
            summary=call.analysis.summary if call.analysis else None,
            audio_url=(artifact.recordingUrl or artifact.stereoRecordingUrl) if artifact else None,
            error_message=error_message,
            status=status,
            duration_seconds=call.durationSeconds,
            source="direct",
        )

    async def fetch_comprehensive(self, provider_call_id: str) -> Optional[RetrievedCallData]:
        """
        Best-effort read of every field that can carry content.

        Rebuilds the transcript from message artifacts when the flat
        transcript is missing and falls back to structured analysis data
        when there is no summary text.
        """
        call = await self._get_call(provider_call_id)
        if call is None:
            return None

        artifact = call.artifact
        transcript = (artifact.transcript if artifact else None) or call.transcript
        if not transcript:
            messages = (artifact.messages if artifact else None) or call.messages or []
            lines = [
                f"{'Candidate' if m.role == 'user' else 'AI'}: {m.text}"
                for m in messages
                if m.role in ("user", "assistant", "bot") and m.text
            ]
            transcript = "\n".join(lines) or None

        summary = (call.analysis.summary if call.analysis else None) or call.summary
        if not summary and call.analysis and call.analysis.structuredData:
            summary = json.dumps(call.analysis.structuredData)

        audio_url = None
        if artifact:
            audio_url = artifact.recordingUrl or artifact.stereoRecordingUrl
        audio_url = audio_url or call.recordingUrl

        status, error_message = self._status_and_error(call)
        return RetrievedCallData(
            transcript=transcript,
            summary=summary,
            audio_url=audio_url,
            error_message=error_message,
            status=status,
            duration_seconds=call.durationSeconds,
            source="comprehensive",
        )


# Singleton instances
_vapi_adapter: Optional[VapiAdapter] = None
_vapi_fetcher: Optional[VapiCallDataFetcher] = None


def get_vapi_adapter() -> VapiAdapter:
    """Get or create the VAPI adapter singleton."""
    global _vapi_adapter
    if _vapi_adapter is None:
        _vapi_adapter = VapiAdapter()
    return _vapi_adapter


def get_vapi_fetcher() -> VapiCallDataFetcher:
    """Get or create the VAPI call data fetcher singleton."""
    global _vapi_fetcher
    if _vapi_fetcher is None:
        _vapi_fetcher = VapiCallDataFetcher()
    return _vapi_fetcher
