"""
In-memory stand-ins for the database repositories and the voice provider.

They mirror the semantics the services rely on: the terminal write is a
compare-and-set on status, COALESCE-style result fields, transactions that
roll back on error, and listener dispatch through VoiceProviderAdapter.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from voicescreen.models import (
    ApplicationRecord,
    ApplicationStatus,
    ErrorCode,
    ProviderEvent,
    ProviderEventType,
    RetrievedCallData,
    ScreeningCall,
    ScreeningRole,
    ScreeningStatus,
    TimelineEntry,
)
from voicescreen.services.vapi_prompts import SessionConfig
from voicescreen.services.vapi_service import VoiceProviderAdapter


LONG_TRANSCRIPT = (
    "AI: Hi Maria, thanks for taking the time to talk about the line cook position today.\n"
    "Candidate: Of course, I have worked four years on the grill station at a busy bistro.\n"
    "AI: Great. Are you available on weekends and evenings?\n"
    "Candidate: Yes, weekends are fine and I have my own car, so late shifts are no problem.\n"
    "AI: How do you handle a rush when tickets pile up?\n"
    "Candidate: I stay calm, call out orders and keep my station organized.\n"
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeScreeningCallRepository:
    def __init__(self):
        self.records: dict[uuid.UUID, ScreeningCall] = {}
        self.terminal_writes = 0

    @asynccontextmanager
    async def transaction(self):
        """Snapshot the records and restore them if the block raises."""
        records = dict(self.records)
        terminal_writes = self.terminal_writes
        try:
            yield self
        except Exception:
            self.records.clear()
            self.records.update(records)
            self.terminal_writes = terminal_writes
            raise

    def add(
        self,
        application_id: uuid.UUID,
        status: ScreeningStatus = ScreeningStatus.SCHEDULED,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> ScreeningCall:
        created_at = created_at or utcnow()
        record = ScreeningCall(
            id=uuid.uuid4(),
            application_id=application_id,
            candidate_id=fields.pop("candidate_id", uuid.uuid4()),
            job_id=fields.pop("job_id", uuid.uuid4()),
            status=status,
            scheduled_at=created_at,
            created_at=created_at,
            **fields,
        )
        self.records[record.id] = record
        return record

    async def create(
        self,
        application_id: uuid.UUID,
        candidate_id: uuid.UUID,
        job_id: uuid.UUID,
        role: ScreeningRole = ScreeningRole.GENERAL,
    ) -> ScreeningCall:
        return self.add(application_id, candidate_id=candidate_id, job_id=job_id, role=role)

    async def get_by_id(self, screening_call_id: uuid.UUID) -> Optional[ScreeningCall]:
        return self.records.get(screening_call_id)

    async def get_by_provider_call_id(self, provider_call_id: str) -> Optional[ScreeningCall]:
        for record in self.records.values():
            if record.provider_call_id == provider_call_id:
                return record
        return None

    async def list_calls(
        self,
        application_id=None,
        candidate_id=None,
        job_id=None,
        status=None,
        limit: int = 50,
        offset: int = 0,
    ):
        items = [
            r for r in self.records.values()
            if (application_id is None or r.application_id == application_id)
            and (candidate_id is None or r.candidate_id == candidate_id)
            and (job_id is None or r.job_id == job_id)
            and (status is None or r.status == status)
        ]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return items[offset:offset + limit], len(items)

    async def count_by_status(self, application_id: uuid.UUID) -> dict[ScreeningStatus, int]:
        counts = {status: 0 for status in ScreeningStatus}
        for record in self.records.values():
            if record.application_id == application_id:
                counts[record.status] += 1
        return counts

    def _replace(self, record: ScreeningCall, **changes) -> ScreeningCall:
        updated = record.model_copy(update={**changes, "updated_at": utcnow()})
        self.records[record.id] = updated
        return updated

    async def set_provider_call_id(self, screening_call_id: uuid.UUID, provider_call_id: str) -> bool:
        record = self.records.get(screening_call_id)
        if record is None or not record.status.is_active:
            return False
        self._replace(record, provider_call_id=provider_call_id)
        return True

    async def mark_in_progress(self, screening_call_id: uuid.UUID, started_at: datetime) -> bool:
        record = self.records.get(screening_call_id)
        if record is None or record.status != ScreeningStatus.SCHEDULED:
            return False
        self._replace(record, status=ScreeningStatus.IN_PROGRESS, started_at=started_at)
        return True

    async def mark_terminal(
        self,
        screening_call_id: uuid.UUID,
        status: ScreeningStatus,
        completed_at: datetime,
        transcript: Optional[str] = None,
        audio_url: Optional[str] = None,
        summary: Optional[str] = None,
        evaluation: Optional[dict] = None,
        score: Optional[float] = None,
        duration_seconds: Optional[float] = None,
        error_message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        conn=None,
    ) -> Optional[ScreeningCall]:
        record = self.records.get(screening_call_id)
        if record is None or not record.status.is_active:
            return None
        self.terminal_writes += 1
        return self._replace(
            record,
            status=status,
            completed_at=completed_at,
            transcript=transcript if transcript is not None else record.transcript,
            audio_url=audio_url if audio_url is not None else record.audio_url,
            summary=summary if summary is not None else record.summary,
            evaluation=evaluation if evaluation is not None else record.evaluation,
            score=score if score is not None else record.score,
            duration_seconds=duration_seconds if duration_seconds is not None else record.duration_seconds,
            error_message=error_message,
            error_code=error_code,
        )

    async def find_stale(self, cutoff: datetime) -> list[ScreeningCall]:
        stale = [r for r in self.records.values() if r.status.is_active and r.created_at < cutoff]
        return sorted(stale, key=lambda r: r.created_at)


class FakeApplicationRepository:
    def __init__(self):
        self.applications: dict[uuid.UUID, ApplicationRecord] = {}
        self.timeline: list[TimelineEntry] = []
        self.fail_next: Optional[Exception] = None

    def add(self, status: ApplicationStatus = ApplicationStatus.SUBMITTED) -> ApplicationRecord:
        record = ApplicationRecord(
            id=uuid.uuid4(),
            candidate_id=uuid.uuid4(),
            job_id=uuid.uuid4(),
            status=status,
            created_at=utcnow(),
        )
        self.applications[record.id] = record
        return record

    async def get_by_id(self, application_id: uuid.UUID) -> Optional[ApplicationRecord]:
        return self.applications.get(application_id)

    async def set_status(self, application_id: uuid.UUID, status: ApplicationStatus) -> bool:
        record = self.applications.get(application_id)
        if record is None:
            return False
        self.applications[application_id] = record.model_copy(update={"status": status})
        return True

    async def update_status(
        self,
        application_id: uuid.UUID,
        status: ApplicationStatus,
        step: str,
        note: Optional[str] = None,
        actor: str = "system",
        conn=None,
    ) -> Optional[TimelineEntry]:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        record = self.applications.get(application_id)
        if record is None:
            return None
        self.applications[application_id] = record.model_copy(update={"status": status, "current_step": step})
        entry = TimelineEntry(
            application_id=application_id,
            step=step,
            status=status,
            note=note,
            actor=actor,
            created_at=utcnow(),
        )
        self.timeline.append(entry)
        return entry

    async def list_timeline(self, application_id: uuid.UUID) -> list[TimelineEntry]:
        return [e for e in self.timeline if e.application_id == application_id]


class FakeAdapter(VoiceProviderAdapter):
    """Voice provider that records calls instead of dialing."""

    def __init__(self, call_id: str = "vapi-call-1", start_error: Optional[Exception] = None):
        super().__init__()
        self.call_id = call_id
        self.start_error = start_error
        self.started: list[SessionConfig] = []
        self.stopped: list[str] = []

    async def _create_call(self, session_config: SessionConfig) -> str:
        if self.start_error is not None:
            raise self.start_error
        self.started.append(session_config)
        return self.call_id

    async def _end_call(self, provider_call_id: str) -> None:
        self.stopped.append(provider_call_id)

    async def emit(self, event_type: ProviderEventType, **fields) -> bool:
        return await self.dispatch(ProviderEvent(type=event_type, provider_call_id=self.call_id, **fields))


class FakeFetcher:
    """
    Scripted provider reads.

    ``direct`` is consumed one item per fetch() call (None once exhausted);
    an Exception item is raised instead of returned.
    """

    def __init__(
        self,
        direct: Optional[list] = None,
        comprehensive: Optional[RetrievedCallData] = None,
    ):
        self.direct = list(direct or [])
        self.comprehensive = comprehensive
        self.direct_calls = 0
        self.comprehensive_calls = 0

    async def fetch(self, provider_call_id: str) -> Optional[RetrievedCallData]:
        self.direct_calls += 1
        item = self.direct.pop(0) if self.direct else None
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_comprehensive(self, provider_call_id: str) -> Optional[RetrievedCallData]:
        self.comprehensive_calls += 1
        return self.comprehensive


class RecordingSleep:
    """Replaces asyncio.sleep; records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
