"""
Pytest fixtures for voice screening tests.

Services are wired against the in-memory fakes in tests/fakes.py; no
database or voice provider is needed.
"""
import pytest

from voicescreen.config import ScreeningSettings
from voicescreen.services import (
    ApplicationService,
    CallAdmissionController,
    ResultRetrievalEngine,
    StaleCallReaper,
    StatusPropagator,
)

from tests.fakes import (
    FakeAdapter,
    FakeApplicationRepository,
    FakeFetcher,
    FakeScreeningCallRepository,
    RecordingSleep,
)


@pytest.fixture
def settings() -> ScreeningSettings:
    """Fast settings: no start delay, short backoff, two extended polls."""
    return ScreeningSettings(
        call_limit=1,
        retry_quota=1,
        max_call_duration_seconds=180,
        safety_grace_seconds=30,
        stale_timeout_minutes=10,
        retrieval_max_attempts=2,
        retrieval_base_delay=2.0,
        extended_wait_seconds=20,
        extended_wait_polls=2,
        retrieval_start_delay=0,
    )


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def screening_repo() -> FakeScreeningCallRepository:
    return FakeScreeningCallRepository()


@pytest.fixture
def application_repo() -> FakeApplicationRepository:
    return FakeApplicationRepository()


@pytest.fixture
def application(application_repo):
    """A submitted application."""
    return application_repo.add()


@pytest.fixture
def application_service(application_repo) -> ApplicationService:
    return ApplicationService(application_repo)


@pytest.fixture
def propagator(screening_repo, application_service) -> StatusPropagator:
    return StatusPropagator(screening_repo, application_service)


@pytest.fixture
def reaper(screening_repo, propagator, settings) -> StaleCallReaper:
    return StaleCallReaper(screening_repo, propagator, settings)


@pytest.fixture
def admission(screening_repo, reaper, application_service, settings) -> CallAdmissionController:
    return CallAdmissionController(screening_repo, reaper, application_service, settings)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def retrieval(fetcher, settings, sleeper) -> ResultRetrievalEngine:
    return ResultRetrievalEngine(fetcher, settings, sleep=sleeper)
