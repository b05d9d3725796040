"""
asyncpg pool for the screening tables, plus idempotent schema setup.
"""
import asyncpg
import logging
from typing import Optional
from voicescreen.config import DATABASE_URL

logger = logging.getLogger(__name__)

POOL_MIN_SIZE = 2
POOL_MAX_SIZE = 10
POOL_IDLE_LIFETIME_SECONDS = 300.0

_db_pool: Optional[asyncpg.Pool] = None


def _dsn() -> str:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL environment variable is required")
    # asyncpg does not understand the SQLAlchemy driver suffix
    return DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://")


async def _ping(conn: asyncpg.Connection) -> None:
    await conn.execute("SELECT 1")


async def get_db_pool() -> asyncpg.Pool:
    """Shared pool, created on first use. Connections are pinged on acquire."""
    global _db_pool
    if _db_pool is None:
        _db_pool = await asyncpg.create_pool(
            _dsn(),
            min_size=POOL_MIN_SIZE,
            max_size=POOL_MAX_SIZE,
            command_timeout=60,
            max_inactive_connection_lifetime=POOL_IDLE_LIFETIME_SECONDS,
            setup=_ping,
        )
        logger.info(f"Database pool ready ({POOL_MIN_SIZE}-{POOL_MAX_SIZE} connections)")
    return _db_pool


async def close_db_pool():
    global _db_pool
    if _db_pool is None:
        return
    pool, _db_pool = _db_pool, None
    await pool.close()
    logger.info("Database pool closed")


async def run_schema_migrations(pool: asyncpg.Pool):
    """Create the screening tables if they don't exist yet."""
    try:
        await pool.execute("CREATE SCHEMA IF NOT EXISTS ats;")

        await pool.execute("""
            CREATE TABLE IF NOT EXISTS ats.applications (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                candidate_id UUID NOT NULL,
                job_id UUID NOT NULL,
                status VARCHAR(40) NOT NULL DEFAULT 'submitted',
                current_step VARCHAR(80),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)

        await pool.execute("""
            CREATE TABLE IF NOT EXISTS ats.application_timeline (
                id BIGSERIAL PRIMARY KEY,
                application_id UUID NOT NULL REFERENCES ats.applications(id) ON DELETE CASCADE,
                step VARCHAR(80) NOT NULL,
                status VARCHAR(40) NOT NULL,
                note TEXT,
                actor VARCHAR(80) NOT NULL DEFAULT 'system',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)

        await pool.execute("""
            CREATE TABLE IF NOT EXISTS ats.screening_calls (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                application_id UUID NOT NULL REFERENCES ats.applications(id),
                candidate_id UUID NOT NULL,
                job_id UUID NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'scheduled'
                    CHECK (status IN ('scheduled', 'in_progress', 'completed', 'rejected')),
                role VARCHAR(20) NOT NULL DEFAULT 'general',
                provider_call_id TEXT,
                scheduled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                duration_seconds DOUBLE PRECISION,
                transcript TEXT,
                audio_url TEXT,
                summary TEXT,
                evaluation JSONB,
                score DOUBLE PRECISION,
                error_message TEXT,
                error_code VARCHAR(60),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)

        await pool.execute("""
            CREATE INDEX IF NOT EXISTS idx_screening_calls_application
            ON ats.screening_calls (application_id, status);
        """)
        await pool.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_screening_calls_provider_call
            ON ats.screening_calls (provider_call_id)
            WHERE provider_call_id IS NOT NULL;
        """)

        logger.info("Screening schema migrations completed")
    except Exception as e:
        logger.warning(f"Schema migration step failed, continuing with the existing schema: {e}")
