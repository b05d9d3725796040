"""
Screening call endpoints.

Starting a call goes through admission and creates a live ScreeningSession;
stop / navigation / teardown act on that live session. Listing and detail
read the screening_calls table.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from voicescreen.config import ScreeningSettings
from voicescreen.dependencies import (
    get_admission,
    get_application_service,
    get_propagator,
    get_reaper,
    get_retrieval_engine,
    get_screening_config,
    get_screening_repo,
    get_session_registry,
    get_settings,
    get_voice_adapter,
)
from voicescreen.exceptions import NotFoundError, SessionStateError, parse_uuid
from voicescreen.models import (
    AdmissionDecision,
    EligibilityResponse,
    NavigationRequest,
    ScreeningCall,
    ScreeningCallListResponse,
    ScreeningSessionResponse,
    ScreeningStatus,
    SessionState,
    StartScreeningRequest,
    SweepResponse,
)
from voicescreen.repositories import ScreeningCallRepository
from voicescreen.services import (
    ApplicationService,
    CallAdmissionController,
    ResultRetrievalEngine,
    ScreeningConfig,
    SessionRegistry,
    StaleCallReaper,
    StatusPropagator,
    VoiceProviderAdapter,
)
from voicescreen.workflows import CallContext, ScreeningSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/screening", tags=["Screening"])


def _session_response(
    session: ScreeningSession,
    decision: Optional[AdmissionDecision] = None,
    message: Optional[str] = None,
) -> ScreeningSessionResponse:
    return ScreeningSessionResponse(
        screening_call_id=str(session.screening_call_id) if session.screening_call_id else None,
        state=session.state,
        allowed=decision.allowed if decision else True,
        reason=decision.reason if decision else None,
        message=message or (decision.message if decision else session.state.value),
        provider_call_id=session.provider_call_id,
    )


async def _live_session(
    screening_call_id: str,
    registry: SessionRegistry,
    screening_repo: ScreeningCallRepository,
) -> ScreeningSession:
    call_uuid = parse_uuid(screening_call_id, field="screening_call_id")
    session = registry.get(call_uuid)
    if session is not None:
        return session

    record = await screening_repo.get_by_id(call_uuid)
    if record is None:
        raise NotFoundError("ScreeningCall", screening_call_id)
    raise SessionStateError("No live session for this screening call", record.status.value)


@router.get("/eligibility/{application_id}", response_model=EligibilityResponse)
async def check_eligibility(
    application_id: str,
    admission: CallAdmissionController = Depends(get_admission),
):
    """Would a new screening call be admitted for this application right now?"""
    application_uuid = parse_uuid(application_id, field="application_id")
    decision = await admission.check_eligibility(application_uuid)
    return EligibilityResponse(
        application_id=application_id,
        allowed=decision.allowed,
        reason=decision.reason,
        message=decision.message,
        completed_calls=decision.counts.get("completed", 0),
        failed_calls=decision.counts.get("failed", 0),
        active_calls=decision.counts.get("active", 0),
    )


@router.post("/calls", response_model=ScreeningSessionResponse)
async def start_screening_call(
    request: StartScreeningRequest,
    admission: CallAdmissionController = Depends(get_admission),
    adapter: VoiceProviderAdapter = Depends(get_voice_adapter),
    retrieval: ResultRetrievalEngine = Depends(get_retrieval_engine),
    propagator: StatusPropagator = Depends(get_propagator),
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
    application_service: ApplicationService = Depends(get_application_service),
    registry: SessionRegistry = Depends(get_session_registry),
    settings: ScreeningSettings = Depends(get_settings),
    screening_config: ScreeningConfig = Depends(get_screening_config),
):
    """
    Admit and start a screening call.

    Returns 409 with the denial reason when admission is refused.
    """
    context = CallContext(
        application_id=parse_uuid(request.application_id, field="application_id"),
        candidate_id=parse_uuid(request.candidate_id, field="candidate_id"),
        job_id=parse_uuid(request.job_id, field="job_id"),
        candidate_name=request.candidate_name,
        phone_number=request.phone_number,
        job_title=request.job_title,
        job_department=request.job_department,
        company_name=request.company_name,
    )
    session = ScreeningSession(
        admission,
        adapter,
        retrieval,
        propagator,
        screening_repo,
        application_service=application_service,
        settings=settings,
        screening_config=screening_config,
        on_closed=registry.remove,
    )

    decision = await session.start(context)
    if not decision.allowed:
        response = _session_response(session, decision)
        return JSONResponse(status_code=409, content=response.model_dump(mode="json"))

    if session.is_terminal:
        # Admitted but the provider refused the call; the record is already rejected
        return _session_response(session, decision, message=session.screening_call.error_message)

    registry.register(session)
    logger.info(
        f"Screening call {session.screening_call_id} for application {request.application_id}: "
        f"{session.state.value}"
    )
    return _session_response(session, decision)


@router.get("/calls", response_model=ScreeningCallListResponse)
async def list_screening_calls(
    application_id: Optional[str] = Query(None),
    candidate_id: Optional[str] = Query(None),
    job_id: Optional[str] = Query(None),
    status: Optional[ScreeningStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
):
    """List screening calls, newest first."""
    items, total = await screening_repo.list_calls(
        application_id=parse_uuid(application_id, field="application_id") if application_id else None,
        candidate_id=parse_uuid(candidate_id, field="candidate_id") if candidate_id else None,
        job_id=parse_uuid(job_id, field="job_id") if job_id else None,
        status=status,
        limit=limit,
        offset=offset,
    )
    return ScreeningCallListResponse(items=items, total=total)


@router.get("/calls/{screening_call_id}", response_model=ScreeningCall)
async def get_screening_call(
    screening_call_id: str,
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
):
    """Get a single screening call by ID."""
    record = await screening_repo.get_by_id(parse_uuid(screening_call_id, field="screening_call_id"))
    if record is None:
        raise NotFoundError("ScreeningCall", screening_call_id)
    return record


@router.post("/calls/{screening_call_id}/stop", response_model=ScreeningSessionResponse)
async def stop_screening_call(
    screening_call_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
):
    """End the call now; results are retrieved in the background."""
    session = await _live_session(screening_call_id, registry, screening_repo)
    await session.stop()
    return _session_response(session, message="Stop requested")


@router.post("/calls/{screening_call_id}/navigation", response_model=ScreeningSessionResponse)
async def signal_navigation(
    screening_call_id: str,
    request: NavigationRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
):
    """Client page visibility signal (hidden / unloading / visible)."""
    session = await _live_session(screening_call_id, registry, screening_repo)
    session.signal_navigation(request.intent)
    return _session_response(session, message=f"Navigation intent {request.intent.value} recorded")


@router.post("/calls/{screening_call_id}/teardown", response_model=ScreeningSessionResponse)
async def teardown_session(
    screening_call_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
):
    """The client detached from the session."""
    session = await _live_session(screening_call_id, registry, screening_repo)
    await session.teardown()
    if session.state == SessionState.REJECTED:
        return _session_response(session, message="Screening interrupted")
    return _session_response(session, message="Session kept alive")


@router.post("/reaper/sweep", response_model=SweepResponse)
async def sweep_stale_calls(reaper: StaleCallReaper = Depends(get_reaper)):
    """Run the stale-call sweep now."""
    reaped = await reaper.sweep()
    return SweepResponse(reaped=reaped)
