"""
Conflict detection for retrieved call data.

The provider can report contradictory state: a "failed" call with a full
transcript, a finished call that still carries an error, a long call with
no transcript. ``detect_conflicts`` picks the authoritative outcome.

The function is pure: same input, same report, no I/O and no clock.
"""
import logging
import re
from typing import Optional

from voicescreen.models import (
    RetrievedCallData,
    ConflictReport,
    ConflictCategory,
    ConflictResolution,
    ConflictSeverity,
    ScreeningOutcome,
)

logger = logging.getLogger(__name__)

# Transcript length (chars) above which we treat it as a real conversation
SUBSTANTIAL_TRANSCRIPT_CHARS = 100

# Calls longer than this should have produced a transcript
MIN_CONVERSATION_SECONDS = 10

FAILED_STATUSES = ("failed", "error", "call-failed", "call-error")
SUCCESS_STATUSES = ("completed", "ended", "success", "succeeded", "call-ended", "call-completed")

# Placeholder or failure text that some providers put in the transcript field
FAILURE_TRANSCRIPT_MARKERS = (
    "call failed",
    "no transcript available",
    "transcript not available",
    "transcription failed",
    "connection lost",
    "lost connection",
    "unable to connect",
    "call could not be completed",
)

SPEAKER_TURN = re.compile(r"^\s*(ai|assistant|bot|candidate|user|customer)\s*:", re.IGNORECASE | re.MULTILINE)


def _normalized_status(data: RetrievedCallData) -> str:
    return (data.status or "").strip().lower()


def is_failed_status(data: RetrievedCallData) -> bool:
    return _normalized_status(data) in FAILED_STATUSES


def is_success_status(data: RetrievedCallData) -> bool:
    return _normalized_status(data) in SUCCESS_STATUSES


def transcript_describes_failure(transcript: Optional[str]) -> bool:
    """
    True when the transcript field holds failure text instead of a conversation.

    A marker only counts at the start of the text or in text without speaker
    turns; a candidate saying "I lost connection for a second" mid-dialogue
    is still a conversation.
    """
    if not transcript:
        return False
    text = transcript.strip().lower()
    if text.startswith(FAILURE_TRANSCRIPT_MARKERS):
        return True
    if SPEAKER_TURN.search(transcript):
        return False
    return any(marker in text for marker in FAILURE_TRANSCRIPT_MARKERS)


def has_substantial_transcript(data: RetrievedCallData) -> bool:
    transcript = (data.transcript or "").strip()
    return len(transcript) >= SUBSTANTIAL_TRANSCRIPT_CHARS and not transcript_describes_failure(transcript)


def _default_outcome(data: RetrievedCallData) -> ScreeningOutcome:
    if is_failed_status(data):
        return ScreeningOutcome.REJECTED
    return ScreeningOutcome.COMPLETED if data.is_usable() else ScreeningOutcome.REJECTED


def _matching_categories(
    data: RetrievedCallData, duration_seconds: Optional[float]
) -> list[ConflictCategory]:
    """All conflict patterns present, in priority order."""
    substantial = has_substantial_transcript(data)
    matched = []

    if is_failed_status(data) and substantial:
        matched.append(ConflictCategory.FAILED_STATUS_WITH_CONTENT)
    if data.error_message and substantial:
        matched.append(ConflictCategory.ERROR_WITH_CONTENT)
    if is_success_status(data) and data.error_message:
        matched.append(ConflictCategory.SUCCESS_WITH_ERROR_RESIDUE)
    if data.audio_url and not data.has_transcript:
        matched.append(ConflictCategory.AUDIO_WITHOUT_TRANSCRIPT)
    if (
        duration_seconds is not None
        and duration_seconds > MIN_CONVERSATION_SECONDS
        and not data.has_transcript
    ):
        matched.append(ConflictCategory.MISSING_CONTENT_DESPITE_DURATION)

    return matched


def _resolve(
    category: ConflictCategory,
    data: RetrievedCallData,
    duration_seconds: Optional[float],
    detected: tuple[ConflictCategory, ...],
) -> ConflictReport:
    if category == ConflictCategory.FAILED_STATUS_WITH_CONTENT:
        return ConflictReport(
            has_conflict=True,
            category=category,
            resolution=ConflictResolution.OVERRIDE_TO_COMPLETED,
            severity=ConflictSeverity.MEDIUM,
            outcome=ScreeningOutcome.COMPLETED,
            clear_error=True,
            detected=detected,
            reason=f"Status '{data.status}' contradicted by a {len(data.transcript or '')} char transcript",
        )

    if category == ConflictCategory.ERROR_WITH_CONTENT:
        return ConflictReport(
            has_conflict=True,
            category=category,
            resolution=ConflictResolution.TRUST_TRANSCRIPT,
            severity=ConflictSeverity.MEDIUM,
            outcome=ScreeningOutcome.COMPLETED,
            clear_error=True,
            detected=detected,
            reason=f"Error '{data.error_message}' reported alongside a substantial transcript",
        )

    if category == ConflictCategory.SUCCESS_WITH_ERROR_RESIDUE:
        return ConflictReport(
            has_conflict=True,
            category=category,
            resolution=ConflictResolution.CLEAR_ERROR,
            severity=ConflictSeverity.LOW,
            outcome=ScreeningOutcome.COMPLETED if data.is_usable() else ScreeningOutcome.REJECTED,
            clear_error=data.is_usable(),
            detected=detected,
            reason=f"Stale error '{data.error_message}' on a call reported as '{data.status}'",
        )

    if category == ConflictCategory.AUDIO_WITHOUT_TRANSCRIPT:
        partial = data.has_summary
        return ConflictReport(
            has_conflict=True,
            category=category,
            resolution=ConflictResolution.PARTIAL_SUCCESS if partial else ConflictResolution.TREAT_AS_FAILED,
            severity=ConflictSeverity.MEDIUM,
            outcome=ScreeningOutcome.COMPLETED if partial else ScreeningOutcome.REJECTED,
            detected=detected,
            reason=(
                "Recording available without transcript; summary kept as partial result"
                if partial
                else "Recording available but transcription is missing"
            ),
        )

    # MISSING_CONTENT_DESPITE_DURATION
    return ConflictReport(
        has_conflict=True,
        category=category,
        resolution=ConflictResolution.TREAT_AS_FAILED,
        severity=ConflictSeverity.HIGH,
        outcome=ScreeningOutcome.REJECTED,
        detected=detected,
        reason=f"Call lasted {duration_seconds:.0f}s but no transcript was produced",
    )


def detect_conflicts(
    data: RetrievedCallData, duration_seconds: Optional[float] = None
) -> ConflictReport:
    """
    Inspect retrieved call data and decide the authoritative outcome.

    Args:
        data: Result fetched from the provider
        duration_seconds: Known call duration; falls back to the duration in ``data``

    Returns:
        ConflictReport; category NONE when no pattern matches
    """
    if duration_seconds is None:
        duration_seconds = data.duration_seconds

    detected = tuple(_matching_categories(data, duration_seconds))
    if not detected:
        outcome = _default_outcome(data)
        return ConflictReport(
            has_conflict=False,
            category=ConflictCategory.NONE,
            resolution=ConflictResolution.ACCEPT,
            severity=ConflictSeverity.NONE,
            outcome=outcome,
            reason="" if outcome == ScreeningOutcome.COMPLETED else (
                data.error_message or "No usable transcript or summary"
            ),
        )

    return _resolve(detected[0], data, duration_seconds, detected)


def log_conflict_report(report: ConflictReport, screening_call_id: str) -> None:
    if not report.has_conflict:
        logger.info(f"[{screening_call_id}] No state conflict, outcome={report.outcome.value}")
        return
    log = logger.warning if report.severity.value in ("medium", "high") else logger.info
    log(
        f"[{screening_call_id}] State conflict {report.category.value} "
        f"(severity={report.severity.value}, resolution={report.resolution.value}, "
        f"outcome={report.outcome.value}): {report.reason}"
    )
