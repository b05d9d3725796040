"""
Configuration module for the voice screening service.
Centralizes environment variables, logging setup, and screening constants.
"""
import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env file for local development
load_dotenv()

# ============================================================================
# Environment Configuration
# ============================================================================

ENVIRONMENT = os.environ.get("ENVIRONMENT", "production")

# ============================================================================
# Database Configuration
# ============================================================================

# Required once the pool is created (see database.get_db_pool)
DATABASE_URL = os.environ.get("DATABASE_URL")

# ============================================================================
# VAPI Configuration
# ============================================================================

VAPI_API_KEY = os.environ.get("VAPI_API_KEY")
VAPI_PHONE_NUMBER_ID = os.environ.get("VAPI_PHONE_NUMBER_ID")
VAPI_SERVER_URL = os.environ.get("VAPI_SERVER_URL")  # public base url for webhooks
VAPI_WEBHOOK_SECRET = os.environ.get("VAPI_WEBHOOK_SECRET", "")
VAPI_API_BASE_URL = os.environ.get("VAPI_API_BASE_URL", "https://api.vapi.ai")

# ============================================================================
# Screening Configuration
# ============================================================================

SCREENING_CALL_LIMIT = int(os.environ.get("SCREENING_CALL_LIMIT", "1"))
SCREENING_RETRY_QUOTA = int(os.environ.get("SCREENING_RETRY_QUOTA", "1"))
SCREENING_MAX_CALL_DURATION_SECONDS = int(os.environ.get("SCREENING_MAX_CALL_DURATION_SECONDS", "180"))
SCREENING_SAFETY_GRACE_SECONDS = float(os.environ.get("SCREENING_SAFETY_GRACE_SECONDS", "30"))
SCREENING_STALE_TIMEOUT_MINUTES = float(os.environ.get("SCREENING_STALE_TIMEOUT_MINUTES", "10"))
SCREENING_REAPER_INTERVAL_SECONDS = float(os.environ.get("SCREENING_REAPER_INTERVAL_SECONDS", "60"))

# Result retrieval cascade
SCREENING_RETRIEVAL_MAX_ATTEMPTS = int(os.environ.get("SCREENING_RETRIEVAL_MAX_ATTEMPTS", "5"))
SCREENING_RETRIEVAL_BASE_DELAY = float(os.environ.get("SCREENING_RETRIEVAL_BASE_DELAY", "2.0"))
SCREENING_EXTENDED_WAIT_SECONDS = float(os.environ.get("SCREENING_EXTENDED_WAIT_SECONDS", "180"))
SCREENING_EXTENDED_WAIT_POLLS = int(os.environ.get("SCREENING_EXTENDED_WAIT_POLLS", "10"))
SCREENING_RETRIEVAL_START_DELAY = float(os.environ.get("SCREENING_RETRIEVAL_START_DELAY", "3.0"))

# Optional JSON file overriding questions, tone and voice settings
SCREENING_CONFIG_PATH = os.environ.get("SCREENING_CONFIG_PATH")

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class ScreeningSettings:
    """Tunable limits for admission, orchestration, retrieval and reaping."""

    call_limit: int = 1
    retry_quota: int = 1
    max_call_duration_seconds: float = 180
    safety_grace_seconds: float = 30
    stale_timeout_minutes: float = 10
    reaper_interval_seconds: float = 60
    retrieval_max_attempts: int = 5
    retrieval_base_delay: float = 2.0
    extended_wait_seconds: float = 180
    extended_wait_polls: int = 10
    retrieval_start_delay: float = 3.0

    @property
    def safety_timeout_seconds(self) -> float:
        return self.max_call_duration_seconds + self.safety_grace_seconds

    @classmethod
    def from_env(cls) -> "ScreeningSettings":
        return cls(
            call_limit=SCREENING_CALL_LIMIT,
            retry_quota=SCREENING_RETRY_QUOTA,
            max_call_duration_seconds=SCREENING_MAX_CALL_DURATION_SECONDS,
            safety_grace_seconds=SCREENING_SAFETY_GRACE_SECONDS,
            stale_timeout_minutes=SCREENING_STALE_TIMEOUT_MINUTES,
            reaper_interval_seconds=SCREENING_REAPER_INTERVAL_SECONDS,
            retrieval_max_attempts=SCREENING_RETRIEVAL_MAX_ATTEMPTS,
            retrieval_base_delay=SCREENING_RETRIEVAL_BASE_DELAY,
            extended_wait_seconds=SCREENING_EXTENDED_WAIT_SECONDS,
            extended_wait_polls=SCREENING_EXTENDED_WAIT_POLLS,
            retrieval_start_delay=SCREENING_RETRIEVAL_START_DELAY,
        )
