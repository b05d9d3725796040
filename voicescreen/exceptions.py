"""
Screening service errors and their HTTP rendering.

Each error knows its HTTP status, so routers and services raise them
directly. The handlers registered on the app turn them into an
``{"error", "details"}`` body.
"""
import logging
import uuid
from typing import Any, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse

from voicescreen.models.enums import ErrorCode

logger = logging.getLogger(__name__)


class VoiceScreenException(Exception):
    """Base class; ``status_code`` and ``details`` end up in the response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = dict(details or {})


class NotFoundError(VoiceScreenException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} does not exist", details={"resource": resource})
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(VoiceScreenException):
    """Bad input: malformed ids, unsupported template placeholders."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class InvalidUUIDError(ValidationError):
    def __init__(self, value: Any, field: str = "id"):
        super().__init__(f"{field} is not a valid UUID: {value!r}", field=field)
        self.value = value


class ProviderError(VoiceScreenException):
    """
    The voice provider refused or failed a request.

    ``code`` is the classified taxonomy value; only transient errors are
    worth retrying.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, code: ErrorCode = ErrorCode.PROVIDER_TRANSIENT_ERROR):
        super().__init__(message, details={"code": code.value})
        self.code = code

    @property
    def recoverable(self) -> bool:
        return self.code == ErrorCode.PROVIDER_TRANSIENT_ERROR


class SessionStateError(VoiceScreenException):
    """Operation not allowed in the session's (or record's) current state."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, state: str):
        super().__init__(message, details={"state": state})
        self.state = state


def parse_uuid(value: Any, field: str = "id") -> uuid.UUID:
    """Parse a path/query id, raising InvalidUUIDError (400) when malformed."""
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise InvalidUUIDError(value, field=field)


# =============================================================================
# Handlers
# =============================================================================

async def handle_voicescreen_error(request: Request, exc: VoiceScreenException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "details": {"type": type(exc).__name__}},
    )


def register_exception_handlers(app):
    app.add_exception_handler(VoiceScreenException, handle_voicescreen_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
