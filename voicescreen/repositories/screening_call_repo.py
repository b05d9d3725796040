"""
Screening call repository - the record store for ScreeningCall entities.

All state changes are single-statement updates guarded on the current
status, so concurrent writers (orchestrator, webhook, reaper) race on the
database row rather than on in-memory state. The terminal write can
join a caller's transaction so the application update commits with it.
"""
import asyncpg
import uuid
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Tuple

from voicescreen.models import ScreeningCall, ScreeningStatus, ScreeningRole, ErrorCode

SCREENING_COLUMNS = """
    id, application_id, candidate_id, job_id, status, role, provider_call_id,
    scheduled_at, started_at, completed_at, duration_seconds, transcript,
    audio_url, summary, evaluation, score, error_message, error_code,
    created_at, updated_at
"""

ACTIVE_STATUSES = (ScreeningStatus.SCHEDULED.value, ScreeningStatus.IN_PROGRESS.value)


def _to_model(row: Optional[asyncpg.Record]) -> Optional[ScreeningCall]:
    if row is None:
        return None
    data = dict(row)
    if isinstance(data.get("evaluation"), str):
        data["evaluation"] = json.loads(data["evaluation"])
    return ScreeningCall.model_validate(data)


class ScreeningCallRepository:
    """Repository for screening call database operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def transaction(self):
        """Yield a connection with an open transaction; commits on clean exit."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def create(
        self,
        application_id: uuid.UUID,
        candidate_id: uuid.UUID,
        job_id: uuid.UUID,
        role: ScreeningRole = ScreeningRole.GENERAL,
    ) -> ScreeningCall:
        """Create a new screening call with status 'scheduled'."""
        row = await self.pool.fetchrow(
            f"""
            INSERT INTO ats.screening_calls (application_id, candidate_id, job_id, status, role)
            VALUES ($1, $2, $3, 'scheduled', $4)
            RETURNING {SCREENING_COLUMNS}
            """,
            application_id,
            candidate_id,
            job_id,
            role.value,
        )
        return _to_model(row)

    async def get_by_id(self, screening_call_id: uuid.UUID) -> Optional[ScreeningCall]:
        row = await self.pool.fetchrow(
            f"SELECT {SCREENING_COLUMNS} FROM ats.screening_calls WHERE id = $1",
            screening_call_id,
        )
        return _to_model(row)

    async def get_by_provider_call_id(self, provider_call_id: str) -> Optional[ScreeningCall]:
        row = await self.pool.fetchrow(
            f"SELECT {SCREENING_COLUMNS} FROM ats.screening_calls WHERE provider_call_id = $1",
            provider_call_id,
        )
        return _to_model(row)

    async def list_calls(
        self,
        application_id: Optional[uuid.UUID] = None,
        candidate_id: Optional[uuid.UUID] = None,
        job_id: Optional[uuid.UUID] = None,
        status: Optional[ScreeningStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[list[ScreeningCall], int]:
        """
        List screening calls with optional filtering.

        Returns:
            Tuple of (screening calls, total count)
        """
        conditions = []
        params = []
        param_idx = 1

        if application_id is not None:
            conditions.append(f"application_id = ${param_idx}")
            params.append(application_id)
            param_idx += 1

        if candidate_id is not None:
            conditions.append(f"candidate_id = ${param_idx}")
            params.append(candidate_id)
            param_idx += 1

        if job_id is not None:
            conditions.append(f"job_id = ${param_idx}")
            params.append(job_id)
            param_idx += 1

        if status is not None:
            conditions.append(f"status = ${param_idx}")
            params.append(status.value)
            param_idx += 1

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self.pool.fetchval(
            f"SELECT COUNT(*) FROM ats.screening_calls {where_clause}", *params
        )

        query = f"""
            SELECT {SCREENING_COLUMNS}
            FROM ats.screening_calls
            {where_clause}
            ORDER BY created_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])
        rows = await self.pool.fetch(query, *params)

        return [_to_model(row) for row in rows], total

    async def count_by_status(self, application_id: uuid.UUID) -> dict[ScreeningStatus, int]:
        """Count screening calls per status for one application."""
        rows = await self.pool.fetch(
            """
            SELECT status, COUNT(*) AS count
            FROM ats.screening_calls
            WHERE application_id = $1
            GROUP BY status
            """,
            application_id,
        )
        counts = {status: 0 for status in ScreeningStatus}
        for row in rows:
            counts[ScreeningStatus(row["status"])] = row["count"]
        return counts

    async def set_provider_call_id(
        self, screening_call_id: uuid.UUID, provider_call_id: str
    ) -> Optional[ScreeningCall]:
        """Store the provider correlation id while the call is still active."""
        row = await self.pool.fetchrow(
            f"""
            UPDATE ats.screening_calls
            SET provider_call_id = $2, updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {SCREENING_COLUMNS}
            """,
            screening_call_id,
            provider_call_id,
            list(ACTIVE_STATUSES),
        )
        return _to_model(row)

    async def mark_in_progress(
        self, screening_call_id: uuid.UUID, started_at: datetime
    ) -> Optional[ScreeningCall]:
        """scheduled -> in_progress. Returns None if the record was not scheduled."""
        row = await self.pool.fetchrow(
            f"""
            UPDATE ats.screening_calls
            SET status = 'in_progress', started_at = $2, updated_at = NOW()
            WHERE id = $1 AND status = 'scheduled'
            RETURNING {SCREENING_COLUMNS}
            """,
            screening_call_id,
            started_at,
        )
        return _to_model(row)

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
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[ScreeningCall]:
        """
        Move an active record to a terminal status.

        Compare-and-set on the current status: returns the updated record if
        this caller won, or None if the record was already terminal. Runs on
        ``conn`` when given so it is part of that transaction.
        """
        row = await (conn or self.pool).fetchrow(
            f"""
            UPDATE ats.screening_calls
            SET status = $2,
                completed_at = $3,
                transcript = COALESCE($4, transcript),
                audio_url = COALESCE($5, audio_url),
                summary = COALESCE($6, summary),
                evaluation = COALESCE($7::jsonb, evaluation),
                score = COALESCE($8, score),
                duration_seconds = COALESCE($9, duration_seconds),
                error_message = $10,
                error_code = $11,
                updated_at = NOW()
            WHERE id = $1 AND status = ANY($12::text[])
            RETURNING {SCREENING_COLUMNS}
            """,
            screening_call_id,
            status.value,
            completed_at,
            transcript,
            audio_url,
            summary,
            json.dumps(evaluation) if evaluation is not None else None,
            score,
            duration_seconds,
            error_message,
            error_code.value if error_code else None,
            list(ACTIVE_STATUSES),
        )
        return _to_model(row)

    async def find_stale(self, cutoff: datetime) -> list[ScreeningCall]:
        """Active records created before the cutoff."""
        rows = await self.pool.fetch(
            f"""
            SELECT {SCREENING_COLUMNS}
            FROM ats.screening_calls
            WHERE status = ANY($1::text[]) AND created_at < $2
            ORDER BY created_at
            """,
            list(ACTIVE_STATUSES),
            cutoff,
        )
        return [_to_model(row) for row in rows]
