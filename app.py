import os
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
load_dotenv()  # Load .env file for local development

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voicescreen.config import ScreeningSettings
from voicescreen.database import get_db_pool, close_db_pool, run_schema_migrations
from voicescreen.dependencies import (
    set_reaper,
    set_retrieval_engine,
    set_screening_config,
    set_session_registry,
    set_settings,
    set_voice_adapter,
    set_webhook_ingestion,
)
from voicescreen.exceptions import register_exception_handlers
from voicescreen.repositories import ApplicationRepository, ScreeningCallRepository
from voicescreen.routers import health_router, screening_router, vapi_router
from voicescreen.services import (
    ApplicationService,
    ResultRetrievalEngine,
    SessionRegistry,
    StaleCallReaper,
    StatusPropagator,
    WebhookIngestionService,
    get_vapi_adapter,
    get_vapi_fetcher,
    load_screening_config,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - wire services and start the stale-call reaper."""
    pool = await get_db_pool()  # Initialize database pool
    await run_schema_migrations(pool)

    settings = ScreeningSettings.from_env()
    set_settings(settings)
    set_screening_config(load_screening_config())
    registry = SessionRegistry()
    set_session_registry(registry)

    screening_repo = ScreeningCallRepository(pool)
    propagator = StatusPropagator(screening_repo, ApplicationService(ApplicationRepository(pool)))

    adapter = None
    retrieval = None
    try:
        adapter = get_vapi_adapter()
        retrieval = ResultRetrievalEngine(get_vapi_fetcher(), settings)
    except RuntimeError as e:
        # Webhooks, listing and the reaper still work without the provider
        logger.warning(f"Voice provider disabled: {e}")
    set_voice_adapter(adapter)
    set_retrieval_engine(retrieval)

    set_webhook_ingestion(WebhookIngestionService(screening_repo, propagator, adapter, retrieval, registry=registry))

    reaper = StaleCallReaper(screening_repo, propagator, settings, registry=registry)
    set_reaper(reaper)
    reaper.start()

    yield

    # Cleanup on shutdown
    await reaper.stop()
    await close_db_pool()


app = FastAPI(title="Voice Screening Service", lifespan=lifespan)

# CORS middleware for cross-origin requests from the candidate portal
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=True,
)

register_exception_handlers(app)

app.include_router(health_router)
app.include_router(screening_router)
app.include_router(vapi_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
