"""
Service layer for screening call business logic.
"""
from .application_service import ApplicationService
from .status_propagator import StatusPropagator
from .stale_call_reaper import StaleCallReaper
from .admission import CallAdmissionController
from .result_retrieval import ResultRetrievalEngine
from .conflict_detector import detect_conflicts
from .call_errors import build_error_report, classify_error, classify_provider_error
from .screening_config import ScreeningConfig, load_screening_config
from .vapi_prompts import build_interaction_script, determine_screening_role
from .vapi_service import (
    VoiceProviderAdapter,
    VapiAdapter,
    VapiCallDataFetcher,
    get_vapi_adapter,
    get_vapi_fetcher,
)
from .session_registry import SessionRegistry
from .webhook_ingestion import WebhookIngestionService

__all__ = [
    "ApplicationService",
    "StatusPropagator",
    "StaleCallReaper",
    "CallAdmissionController",
    "ResultRetrievalEngine",
    "detect_conflicts",
    "build_error_report",
    "classify_error",
    "classify_provider_error",
    "ScreeningConfig",
    "load_screening_config",
    "build_interaction_script",
    "determine_screening_role",
    "VoiceProviderAdapter",
    "VapiAdapter",
    "VapiCallDataFetcher",
    "get_vapi_adapter",
    "get_vapi_fetcher",
    "SessionRegistry",
    "WebhookIngestionService",
]
