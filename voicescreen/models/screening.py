"""
Screening call models: persisted record, transient retrieval/reconciliation
values, and API request/response shapes.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any
from pydantic import BaseModel, Field

from .enums import (
    ScreeningStatus,
    ScreeningRole,
    ErrorCode,
    ConflictCategory,
    ConflictResolution,
    ConflictSeverity,
    ScreeningOutcome,
    NavigationIntent,
    ProviderEventType,
    SessionState,
)


# =============================================================================
# Persisted record
# =============================================================================

class ScreeningCall(BaseModel):
    """One attempt to screen a candidate for one application."""
    id: uuid.UUID
    application_id: uuid.UUID
    candidate_id: uuid.UUID
    job_id: uuid.UUID
    status: ScreeningStatus = ScreeningStatus.SCHEDULED
    role: ScreeningRole = ScreeningRole.GENERAL
    provider_call_id: Optional[str] = None
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    transcript: Optional[str] = None
    audio_url: Optional[str] = None
    summary: Optional[str] = None
    evaluation: Optional[dict] = None
    score: Optional[float] = None
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Structured summary
# =============================================================================

class RoleSpecificNotes(BaseModel):
    strengths: list[str] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class CandidateEvaluation(BaseModel):
    """Candidate-facing evaluation parsed from the call summary."""
    experience: Optional[str] = None
    availability: Optional[str] = None
    transportation: Optional[str] = None
    soft_skills: list[str] = Field(default_factory=list)
    role_specific: Optional[RoleSpecificNotes] = None
    highlights: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any([
            self.experience,
            self.availability,
            self.transportation,
            self.soft_skills,
            self.role_specific,
            self.highlights,
        ])


# =============================================================================
# Transient retrieval / reconciliation values
# =============================================================================

class RetrievedCallData(BaseModel):
    """Raw call result fetched from the provider for one provider call id."""
    transcript: Optional[str] = None
    summary: Optional[str] = None
    audio_url: Optional[str] = None
    error_message: Optional[str] = None
    status: Optional[str] = None
    duration_seconds: Optional[float] = None
    source: Optional[str] = None  # strategy that produced the data

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript and self.transcript.strip())

    @property
    def has_summary(self) -> bool:
        return bool(self.summary and self.summary.strip())

    def is_usable(self) -> bool:
        """Transcript or summary present."""
        return self.has_transcript or self.has_summary

    def has_any_content(self) -> bool:
        return self.is_usable() or bool(self.audio_url)

    def completeness(self) -> dict[str, Any]:
        """Compact description used in retrieval logs."""
        return {
            "transcript_chars": len(self.transcript or ""),
            "summary": self.has_summary,
            "audio": bool(self.audio_url),
            "error": bool(self.error_message),
            "status": self.status,
        }


@dataclass(frozen=True)
class ConflictReport:
    """Outcome of reconciling a call's reported state with its content."""
    has_conflict: bool
    category: ConflictCategory
    resolution: ConflictResolution
    severity: ConflictSeverity
    outcome: ScreeningOutcome
    clear_error: bool = False
    detected: tuple[ConflictCategory, ...] = ()
    reason: str = ""

    @property
    def error_code(self) -> Optional[ErrorCode]:
        if not self.has_conflict:
            return None
        return self.category.error_code


@dataclass
class FinalizePayload:
    """Result fields written onto the record when it reaches a terminal state."""
    transcript: Optional[str] = None
    summary: Optional[str] = None
    audio_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    reason: Optional[str] = None  # human-readable failure reason for the timeline note

    @classmethod
    def from_call_data(
        cls,
        data: RetrievedCallData,
        report: Optional[ConflictReport] = None,
        duration_seconds: Optional[float] = None,
    ) -> "FinalizePayload":
        error_message = data.error_message
        error_code = None
        if report is not None:
            if report.clear_error:
                error_message = None
            error_code = report.error_code
        return cls(
            transcript=data.transcript,
            summary=data.summary,
            audio_url=data.audio_url,
            duration_seconds=duration_seconds if duration_seconds is not None else data.duration_seconds,
            error_message=error_message,
            error_code=error_code,
            reason=report.reason if report is not None and report.outcome == ScreeningOutcome.REJECTED else None,
        )


@dataclass
class AdmissionDecision:
    """Allow (with the newly scheduled record) or Deny (with a reason code)."""
    allowed: bool
    reason: Optional[ErrorCode] = None
    message: str = ""
    screening_call: Optional[ScreeningCall] = None
    counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def allow(cls, screening_call: Optional[ScreeningCall], counts: dict[str, int]) -> "AdmissionDecision":
        return cls(allowed=True, screening_call=screening_call, counts=counts, message="Screening call permitted")

    @classmethod
    def deny(cls, reason: ErrorCode, message: str, counts: dict[str, int]) -> "AdmissionDecision":
        return cls(allowed=False, reason=reason, message=message, counts=counts)


# =============================================================================
# Provider events
# =============================================================================

class ProviderEvent(BaseModel):
    """A lifecycle event delivered by the voice provider for one call."""
    type: ProviderEventType
    provider_call_id: str
    transcript: Optional[str] = None
    transcript_role: Optional[str] = None  # "user" / "assistant" for partial transcripts
    summary: Optional[str] = None
    audio_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    status: Optional[str] = None


class ScreeningWebhookEvent(BaseModel):
    """Normalized inbound webhook notification."""
    type: str
    callId: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    duration: Optional[float] = None
    audioUrl: Optional[str] = None
    status: Optional[str] = None
    metadata: Optional[dict] = None
    error: Optional[str] = None

    @property
    def screening_call_id(self) -> Optional[str]:
        if not self.metadata:
            return None
        return self.metadata.get("screeningId") or self.metadata.get("screening_call_id")

    def to_call_data(self) -> RetrievedCallData:
        return RetrievedCallData(
            transcript=self.transcript,
            summary=self.summary,
            audio_url=self.audioUrl,
            error_message=self.error,
            status=self.status,
            duration_seconds=self.duration,
            source="webhook",
        )


class WebhookResult(BaseModel):
    success: bool = True
    message: str
    screening_call_id: Optional[str] = None
    finalized: bool = False


# =============================================================================
# API request / response models
# =============================================================================

class StartScreeningRequest(BaseModel):
    application_id: str
    candidate_id: str
    job_id: str
    candidate_name: str
    phone_number: str
    job_title: str
    job_department: Optional[str] = None
    company_name: Optional[str] = None


class NavigationRequest(BaseModel):
    intent: NavigationIntent


class EligibilityResponse(BaseModel):
    application_id: str
    allowed: bool
    reason: Optional[ErrorCode] = None
    message: str
    completed_calls: int = 0
    failed_calls: int = 0
    active_calls: int = 0


class ScreeningSessionResponse(BaseModel):
    screening_call_id: Optional[str] = None
    state: SessionState
    allowed: bool
    reason: Optional[ErrorCode] = None
    message: str
    provider_call_id: Optional[str] = None


class ScreeningCallListResponse(BaseModel):
    items: list[ScreeningCall]
    total: int


class SweepResponse(BaseModel):
    reaped: int
