"""
VAPI webhook payload models.

VAPI posts server messages wrapped in a ``{"message": {...}}`` envelope.
These models parse the subset the screening engine consumes and normalize
it into a ScreeningWebhookEvent, the same shape the flat webhook uses.
"""
from typing import Optional, List, Union
from pydantic import BaseModel

from .screening import ScreeningWebhookEvent

# endedReason fragments that mean the call did not happen or broke down
FAILED_ENDED_REASON_MARKERS = (
    "error",
    "failed",
    "fault",
    "did-not-answer",
    "busy",
    "voicemail",
)


class VapiTranscriptMessage(BaseModel):
    """Single message in a VAPI transcript."""
    role: str  # "user", "assistant", "bot" or "system"
    message: Optional[str] = None
    content: Optional[str] = None  # Alternative field name used by VAPI
    secondsFromStart: Optional[float] = None

    @property
    def text(self) -> str:
        return self.message or self.content or ""


class VapiMonitor(BaseModel):
    listenUrl: Optional[str] = None
    controlUrl: Optional[str] = None


class VapiCallObject(BaseModel):
    """VAPI call object as returned by GET /call/{id} and included in webhooks."""
    id: str
    type: Optional[str] = None  # "outboundPhoneCall", "webCall", ...
    status: Optional[str] = None  # "queued", "ringing", "in-progress", "ended"
    endedReason: Optional[str] = None
    startedAt: Optional[Union[str, int, float]] = None
    endedAt: Optional[Union[str, int, float]] = None
    durationSeconds: Optional[float] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    recordingUrl: Optional[str] = None
    messages: Optional[List[VapiTranscriptMessage]] = None
    artifact: Optional["VapiArtifact"] = None
    analysis: Optional["VapiAnalysis"] = None
    monitor: Optional[VapiMonitor] = None
    assistant: Optional[dict] = None  # inline assistant, carries our metadata
    metadata: Optional[dict] = None

    @property
    def screening_metadata(self) -> Optional[dict]:
        if self.metadata:
            return self.metadata
        if self.assistant and isinstance(self.assistant.get("metadata"), dict):
            return self.assistant["metadata"]
        return None


class VapiArtifact(BaseModel):
    """Artifact containing transcript and recording info."""
    transcript: Optional[str] = None
    messages: Optional[List[VapiTranscriptMessage]] = None
    recordingUrl: Optional[str] = None
    stereoRecordingUrl: Optional[str] = None


class VapiAnalysis(BaseModel):
    summary: Optional[str] = None
    structuredData: Optional[dict] = None
    successEvaluation: Optional[Union[str, bool, float]] = None


VapiCallObject.model_rebuild()


def is_failed_ended_reason(ended_reason: Optional[str]) -> bool:
    if not ended_reason:
        return False
    reason = ended_reason.lower()
    return any(marker in reason for marker in FAILED_ENDED_REASON_MARKERS)


class VapiServerMessage(BaseModel):
    """
    A single VAPI server message.

    Types handled:
    - status-update: call state changes ("in-progress", "ended")
    - end-of-call-report: final transcript, recording and analysis
    - transcript: partial/final transcript fragments
    - speech-update: speaker started/stopped talking
    - hang: assistant did not respond in time (non-fatal)
    """
    type: str
    status: Optional[str] = None
    call: Optional[VapiCallObject] = None
    artifact: Optional[VapiArtifact] = None
    analysis: Optional[VapiAnalysis] = None
    endedReason: Optional[str] = None
    durationSeconds: Optional[float] = None
    transcript: Optional[str] = None
    transcriptType: Optional[str] = None  # "partial" or "final"
    role: Optional[str] = None
    recordingUrl: Optional[str] = None
    summary: Optional[str] = None
    timestamp: Optional[Union[str, int, float]] = None

    def to_webhook_event(self) -> ScreeningWebhookEvent:
        """Normalize into the flat webhook shape."""
        call_id = self.call.id if self.call else None
        metadata = self.call.screening_metadata if self.call else None
        base = {"callId": call_id, "metadata": metadata}

        if self.type == "status-update":
            if self.status == "in-progress":
                return ScreeningWebhookEvent(type="call-started", status=self.status, **base)
            if self.status == "ended":
                return ScreeningWebhookEvent(
                    type="call-ended",
                    status=self.status,
                    duration=self.durationSeconds,
                    **base,
                )
            return ScreeningWebhookEvent(type="status-update", status=self.status, **base)

        if self.type == "end-of-call-report":
            artifact = self.artifact or VapiArtifact()
            transcript = artifact.transcript or self.transcript
            summary = (self.analysis.summary if self.analysis else None) or self.summary
            audio_url = artifact.recordingUrl or artifact.stereoRecordingUrl or self.recordingUrl
            failed = is_failed_ended_reason(self.endedReason)
            return ScreeningWebhookEvent(
                type="call-failed" if failed and not transcript else "call-completed",
                transcript=transcript,
                summary=summary,
                duration=self.durationSeconds,
                audioUrl=audio_url,
                status="failed" if failed else "ended",
                error=self.endedReason if failed else None,
                **base,
            )

        if self.type == "transcript":
            # Only final fragments are worth accumulating
            if self.transcriptType and self.transcriptType != "final":
                return ScreeningWebhookEvent(type="transcript-partial", **base)
            return ScreeningWebhookEvent(
                type="transcript",
                transcript=self.transcript,
                status=self.role,
                **base,
            )

        if self.type == "speech-update":
            kind = "speech-start" if self.status == "started" else "speech-end"
            return ScreeningWebhookEvent(type=kind, status=self.role, **base)

        if self.type == "hang":
            return ScreeningWebhookEvent(type="provider-error", error="Assistant did not respond (hang)", **base)

        return ScreeningWebhookEvent(type=self.type, **base)
