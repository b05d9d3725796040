"""
Call error classification.

Provider error text is matched against keyword patterns so retryability
can be decided without depending on the provider's exact wording.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from voicescreen.models import ErrorCategory, ErrorCode

logger = logging.getLogger(__name__)

# Checked in order: the first category with a matching pattern wins.
# Auth and payment come first so "401 timeout" style messages are not
# mistaken for transient failures.
ERROR_PATTERNS: list[tuple[ErrorCategory, tuple[str, ...]]] = [
    (ErrorCategory.AUTHENTICATION, (
        "authentication", "unauthorized", "api key", "credentials", "permission",
        "401", "403", "forbidden", "not authorized",
    )),
    (ErrorCategory.PAYMENT, (
        "payment", "billing", "subscription", "card details", "credit card",
        "expired", "invoice", "funds", "balance", "402",
    )),
    (ErrorCategory.TIMEOUT, (
        "timed out", "took too long", "deadline exceeded", "operation canceled", "timeout",
    )),
    (ErrorCategory.CONNECTION, (
        "network error", "connection", "socket", "disconnected", "unreachable", "no response",
    )),
    (ErrorCategory.TRANSCRIPTION, (
        "transcription", "speech recognition", "audio quality", "inaudible", "noise",
        "could not transcribe", "processing failed",
    )),
    (ErrorCategory.API, (
        "bad request", "400", "404", "not found", "method not allowed", "api limit",
        "rate limit", "too many requests", "429",
    )),
]

SUGGESTED_ACTIONS = {
    ErrorCategory.CONNECTION: "Check the network connection and retry the call.",
    ErrorCategory.AUTHENTICATION: "Verify the voice provider API key and account permissions.",
    ErrorCategory.PAYMENT: "Update the voice provider billing details before retrying.",
    ErrorCategory.TRANSCRIPTION: "Ask the candidate to call from a quieter place and retry.",
    ErrorCategory.API: "Check the provider request parameters or wait for rate limits to reset.",
    ErrorCategory.TIMEOUT: "Retry the call; the provider took too long to respond.",
    ErrorCategory.UNKNOWN: "Review the call logs and escalate to a recruiter if it repeats.",
}

UNRECOVERABLE_CATEGORIES = (ErrorCategory.AUTHENTICATION, ErrorCategory.PAYMENT)

# Phrases in a transcript that point to a broken conversation rather than a real interview
CONVERSATION_ISSUE_INDICATORS = (
    "cannot hear you",
    "can't hear you",
    "connection issues",
    "poor connection",
    "dropped",
    "cutting out",
    "are you there",
    "is anyone there",
    "lost connection",
    "hello, hello",
    "can you hear me",
)


@dataclass
class CallErrorReport:
    """Classified provider error with a human recovery hint."""
    message: str
    category: ErrorCategory
    code: ErrorCode
    recoverable: bool
    suggested_action: str
    conversation_issues: list[str] = field(default_factory=list)


def classify_error(message: Optional[str]) -> ErrorCategory:
    if not message:
        return ErrorCategory.UNKNOWN
    text = message.lower()
    for category, patterns in ERROR_PATTERNS:
        if any(pattern in text for pattern in patterns):
            return category
    return ErrorCategory.UNKNOWN


def to_error_code(category: ErrorCategory) -> ErrorCode:
    if category == ErrorCategory.AUTHENTICATION:
        return ErrorCode.PROVIDER_AUTH_ERROR
    if category == ErrorCategory.PAYMENT:
        return ErrorCode.PROVIDER_PAYMENT_ERROR
    return ErrorCode.PROVIDER_TRANSIENT_ERROR


def classify_provider_error(message: Optional[str]) -> ErrorCode:
    """Map raw provider error text onto the error taxonomy."""
    return to_error_code(classify_error(message))


def is_recoverable(message: Optional[str]) -> bool:
    if message and "permanently failed" in message.lower():
        return False
    return classify_error(message) not in UNRECOVERABLE_CATEGORIES


def analyze_transcript_for_issues(transcript: Optional[str]) -> list[str]:
    """Return the connection-trouble phrases found in a transcript."""
    if not transcript:
        return []
    text = transcript.lower()
    return [indicator for indicator in CONVERSATION_ISSUE_INDICATORS if indicator in text]


def build_error_report(message: str, transcript: Optional[str] = None) -> CallErrorReport:
    """Classify an error and log it with its suggested recovery action."""
    category = classify_error(message)
    report = CallErrorReport(
        message=message,
        category=category,
        code=to_error_code(category),
        recoverable=is_recoverable(message),
        suggested_action=SUGGESTED_ACTIONS[category],
        conversation_issues=analyze_transcript_for_issues(transcript),
    )
    logger.warning(
        f"Call error [{report.code.value}] category={category.value} "
        f"recoverable={report.recoverable}: {message} "
        f"(action: {report.suggested_action})"
    )
    if report.conversation_issues:
        logger.info(f"Transcript shows conversation issues: {report.conversation_issues}")
    return report
