"""
Enumerations for screening calls, applications and the error taxonomy.
"""
from enum import Enum


class ScreeningStatus(str, Enum):
    """Persisted lifecycle status of a ScreeningCall."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_active(self) -> bool:
        return self in (ScreeningStatus.SCHEDULED, ScreeningStatus.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in (ScreeningStatus.COMPLETED, ScreeningStatus.REJECTED)


class ScreeningOutcome(str, Enum):
    """Terminal outcome handed to the status propagator."""
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def status(self) -> ScreeningStatus:
        return ScreeningStatus(self.value)


class SessionState(str, Enum):
    """In-process state of one orchestrated call attempt."""
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    ENDED = "ended"
    RETRIEVING = "retrieving"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    SCREENING_SCHEDULED = "screening_scheduled"
    SCREENING_IN_PROGRESS = "screening_in_progress"
    SCREENING_COMPLETED = "screening_completed"
    UNDER_REVIEW = "under_review"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    OFFERED = "offered"
    HIRED = "hired"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ScreeningRole(str, Enum):
    """Role variant that selects the question set and prompt."""
    SERVER = "server"
    COOK = "cook"
    HOST = "host"
    MANAGER = "manager"
    GENERAL = "general"


class NavigationIntent(str, Enum):
    """Signal from the client that the page is going away (or came back)."""
    HIDDEN = "hidden"
    UNLOADING = "unloading"
    VISIBLE = "visible"


class ProviderEventType(str, Enum):
    """Lifecycle events delivered by the voice provider."""
    CALL_START = "call-start"
    CALL_END = "call-end"
    SPEECH_START = "speech-start"
    SPEECH_END = "speech-end"
    TRANSCRIPT = "transcript"
    END_OF_CALL_REPORT = "end-of-call-report"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Error taxonomy shared by admission, orchestration and reconciliation."""
    # Admission denials
    DUPLICATE_ACTIVE_CALL = "duplicate_active_call"
    CALL_LIMIT_REACHED = "call_limit_reached"
    RETRY_LIMIT_REACHED = "retry_limit_reached"

    # Provider errors
    PROVIDER_AUTH_ERROR = "provider_auth_error"
    PROVIDER_PAYMENT_ERROR = "provider_payment_error"
    PROVIDER_TRANSIENT_ERROR = "provider_transient_error"

    RETRIEVAL_EXHAUSTED = "retrieval_exhausted"

    # Reconciliation
    STATE_CONFLICT_ERROR_WITH_CONTENT = "state_conflict_error_with_content"
    STATE_CONFLICT_FAILED_STATUS_WITH_CONTENT = "state_conflict_failed_status_with_content"
    STATE_CONFLICT_SUCCESS_WITH_ERROR_RESIDUE = "state_conflict_success_with_error_residue"
    STATE_CONFLICT_MISSING_CONTENT_DESPITE_DURATION = "state_conflict_missing_content_despite_duration"
    STATE_CONFLICT_AUDIO_WITHOUT_TRANSCRIPT = "state_conflict_audio_without_transcript"

    STALE_CLEANUP = "stale_cleanup"
    INTERRUPTED_NAVIGATION = "interrupted_navigation"


class ErrorCategory(str, Enum):
    """Coarse category of a provider error message."""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    PAYMENT = "payment"
    TRANSCRIPTION = "transcription"
    API = "api"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ConflictCategory(str, Enum):
    NONE = "none"
    ERROR_WITH_CONTENT = "error_with_content"
    FAILED_STATUS_WITH_CONTENT = "failed_status_with_content"
    SUCCESS_WITH_ERROR_RESIDUE = "success_with_error_residue"
    MISSING_CONTENT_DESPITE_DURATION = "missing_content_despite_duration"
    AUDIO_WITHOUT_TRANSCRIPT = "audio_without_transcript"

    @property
    def error_code(self) -> ErrorCode:
        return ErrorCode(f"state_conflict_{self.value}")


class ConflictResolution(str, Enum):
    ACCEPT = "accept"
    TRUST_TRANSCRIPT = "trust_transcript"
    OVERRIDE_TO_COMPLETED = "override_to_completed"
    CLEAR_ERROR = "clear_error"
    PARTIAL_SUCCESS = "partial_success"
    TREAT_AS_FAILED = "treat_as_failed"


class ConflictSeverity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
