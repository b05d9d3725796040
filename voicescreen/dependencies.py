"""
FastAPI dependency injection factories.

Repositories and request-scoped services are built per request on top of
the shared connection pool. Process-wide objects (voice adapter, session
registry, reaper, webhook ingestion) are created once during app startup
and registered with the setters below.
"""
import asyncpg
from typing import Optional
from fastapi import Depends, HTTPException

from voicescreen.config import ScreeningSettings
from voicescreen.database import get_db_pool
from voicescreen.repositories import ScreeningCallRepository, ApplicationRepository
from voicescreen.services import (
    ApplicationService,
    CallAdmissionController,
    ResultRetrievalEngine,
    ScreeningConfig,
    SessionRegistry,
    StaleCallReaper,
    StatusPropagator,
    VoiceProviderAdapter,
    WebhookIngestionService,
)


# Global instances (set during app startup)
_settings: Optional[ScreeningSettings] = None
_screening_config: Optional[ScreeningConfig] = None
_session_registry: Optional[SessionRegistry] = None
_voice_adapter: Optional[VoiceProviderAdapter] = None
_retrieval_engine: Optional[ResultRetrievalEngine] = None
_reaper: Optional[StaleCallReaper] = None
_webhook_ingestion: Optional[WebhookIngestionService] = None


def set_settings(settings: ScreeningSettings):
    global _settings
    _settings = settings


def get_settings() -> ScreeningSettings:
    global _settings
    if _settings is None:
        _settings = ScreeningSettings.from_env()
    return _settings


def set_screening_config(config: ScreeningConfig):
    global _screening_config
    _screening_config = config


def get_screening_config() -> ScreeningConfig:
    global _screening_config
    if _screening_config is None:
        _screening_config = ScreeningConfig()
    return _screening_config


def set_session_registry(registry: SessionRegistry):
    """Set the global session registry instance."""
    global _session_registry
    _session_registry = registry


def get_session_registry() -> SessionRegistry:
    """Get the global session registry instance."""
    if _session_registry is None:
        raise RuntimeError("SessionRegistry not initialized. Call set_session_registry() during app startup.")
    return _session_registry


def set_voice_adapter(adapter: Optional[VoiceProviderAdapter]):
    global _voice_adapter
    _voice_adapter = adapter


def get_voice_adapter() -> VoiceProviderAdapter:
    """Get the voice provider adapter; 503 when the provider is not configured."""
    if _voice_adapter is None:
        raise HTTPException(status_code=503, detail="Voice provider not configured")
    return _voice_adapter


def set_retrieval_engine(engine: Optional[ResultRetrievalEngine]):
    global _retrieval_engine
    _retrieval_engine = engine


def get_retrieval_engine() -> ResultRetrievalEngine:
    if _retrieval_engine is None:
        raise HTTPException(status_code=503, detail="Voice provider not configured")
    return _retrieval_engine


def set_reaper(reaper: StaleCallReaper):
    global _reaper
    _reaper = reaper


def get_reaper() -> StaleCallReaper:
    if _reaper is None:
        raise RuntimeError("StaleCallReaper not initialized. Call set_reaper() during app startup.")
    return _reaper


def set_webhook_ingestion(service: WebhookIngestionService):
    global _webhook_ingestion
    _webhook_ingestion = service


def get_webhook_ingestion() -> WebhookIngestionService:
    if _webhook_ingestion is None:
        raise RuntimeError("WebhookIngestionService not initialized. Call set_webhook_ingestion() during app startup.")
    return _webhook_ingestion


# =============================================================================
# Database Dependencies
# =============================================================================

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool."""
    return await get_db_pool()


# =============================================================================
# Repository Dependencies
# =============================================================================

async def get_screening_repo(
    pool: asyncpg.Pool = Depends(get_pool)
) -> ScreeningCallRepository:
    """Get a ScreeningCallRepository instance."""
    return ScreeningCallRepository(pool)


async def get_application_repo(
    pool: asyncpg.Pool = Depends(get_pool)
) -> ApplicationRepository:
    """Get an ApplicationRepository instance."""
    return ApplicationRepository(pool)


# =============================================================================
# Service Dependencies
# =============================================================================

async def get_application_service(
    repo: ApplicationRepository = Depends(get_application_repo)
) -> ApplicationService:
    """Get an ApplicationService instance."""
    return ApplicationService(repo)


async def get_propagator(
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
    application_service: ApplicationService = Depends(get_application_service),
) -> StatusPropagator:
    """Get a StatusPropagator instance."""
    return StatusPropagator(screening_repo, application_service)


async def get_admission(
    screening_repo: ScreeningCallRepository = Depends(get_screening_repo),
    application_service: ApplicationService = Depends(get_application_service),
    reaper: StaleCallReaper = Depends(get_reaper),
    settings: ScreeningSettings = Depends(get_settings),
) -> CallAdmissionController:
    """Get a CallAdmissionController instance."""
    return CallAdmissionController(screening_repo, reaper, application_service, settings)
