"""
Screening service models.

This module re-exports all model classes for convenient importing.
"""

# Enums
from .enums import (
    ScreeningStatus,
    ScreeningOutcome,
    SessionState,
    ApplicationStatus,
    ScreeningRole,
    NavigationIntent,
    ProviderEventType,
    ErrorCode,
    ErrorCategory,
    ConflictCategory,
    ConflictResolution,
    ConflictSeverity,
)

# Screening models
from .screening import (
    ScreeningCall,
    RoleSpecificNotes,
    CandidateEvaluation,
    RetrievedCallData,
    ConflictReport,
    FinalizePayload,
    AdmissionDecision,
    ProviderEvent,
    ScreeningWebhookEvent,
    WebhookResult,
    StartScreeningRequest,
    NavigationRequest,
    EligibilityResponse,
    ScreeningSessionResponse,
    ScreeningCallListResponse,
    SweepResponse,
)

# Application models
from .application import TimelineEntry, ApplicationRecord

# VAPI models
from .vapi import (
    VapiTranscriptMessage,
    VapiCallObject,
    VapiArtifact,
    VapiAnalysis,
    VapiServerMessage,
)
