"""
Health check router with database connectivity verification.
"""
import asyncpg
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from voicescreen.dependencies import get_pool, get_session_registry
from voicescreen.services import SessionRegistry

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    pool: asyncpg.Pool = Depends(get_pool),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Health check endpoint with database connectivity verification.

    Returns 200 if the service and database are healthy.
    Returns 503 if the database is unreachable.
    """
    try:
        await pool.fetchval("SELECT 1")
        return {
            "status": "healthy",
            "service": "voicescreen",
            "database": "connected",
            "live_sessions": len(registry),
        }
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": "voicescreen", "database": str(e)}
        )
