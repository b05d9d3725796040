"""
Application repository - status and timeline writes for applications.
"""
import asyncpg
import uuid
from typing import Optional

from voicescreen.models import ApplicationRecord, ApplicationStatus, TimelineEntry


class ApplicationRepository:
    """Repository for application status and timeline operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_by_id(self, application_id: uuid.UUID) -> Optional[ApplicationRecord]:
        row = await self.pool.fetchrow(
            """
            SELECT id, candidate_id, job_id, status, current_step, created_at, updated_at
            FROM ats.applications
            WHERE id = $1
            """,
            application_id
        )
        return ApplicationRecord.model_validate(dict(row)) if row else None

    async def set_status(self, application_id: uuid.UUID, status: ApplicationStatus) -> bool:
        """Update the status field only (no timeline entry)."""
        result = await self.pool.execute(
            "UPDATE ats.applications SET status = $2, updated_at = NOW() WHERE id = $1",
            application_id,
            status.value
        )
        return result != "UPDATE 0"

    async def update_status(
        self,
        application_id: uuid.UUID,
        status: ApplicationStatus,
        step: str,
        note: Optional[str],
        actor: str = "system",
        conn: Optional[asyncpg.Connection] = None
    ) -> Optional[TimelineEntry]:
        """
        Update the application status and append one timeline entry.

        Both writes happen in one transaction. With ``conn`` they run inside
        the caller's transaction (as a savepoint) and commit or roll back
        with it. Returns None if the application does not exist.
        """
        if conn is not None:
            async with conn.transaction():
                return await self._update_status(conn, application_id, status, step, note, actor)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                return await self._update_status(conn, application_id, status, step, note, actor)

    async def _update_status(
        self,
        conn: asyncpg.Connection,
        application_id: uuid.UUID,
        status: ApplicationStatus,
        step: str,
        note: Optional[str],
        actor: str
    ) -> Optional[TimelineEntry]:
        updated = await conn.fetchval(
            """
            UPDATE ats.applications
            SET status = $2, current_step = $3, updated_at = NOW()
            WHERE id = $1
            RETURNING id
            """,
            application_id,
            status.value,
            step
        )
        if updated is None:
            return None

        row = await conn.fetchrow(
            """
            INSERT INTO ats.application_timeline (application_id, step, status, note, actor)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING application_id, step, status, note, actor, created_at
            """,
            application_id,
            step,
            status.value,
            note,
            actor
        )
        return TimelineEntry.model_validate(dict(row))

    async def list_timeline(self, application_id: uuid.UUID) -> list[TimelineEntry]:
        rows = await self.pool.fetch(
            """
            SELECT application_id, step, status, note, actor, created_at
            FROM ats.application_timeline
            WHERE application_id = $1
            ORDER BY created_at, id
            """,
            application_id
        )
        return [TimelineEntry.model_validate(dict(row)) for row in rows]
