"""
Result retrieval after a call ends.

VAPI post-processes transcripts and summaries asynchronously, so the data is
often not there when the call ends. Three strategies are tried in order and
the first one that yields something usable wins:

1. Direct fetch with exponential backoff (delay x1.5 per attempt)
2. Extended wait: one long wait split into evenly spaced sub-polls
3. Comprehensive fallback: event-captured data, then the comprehensive read

Transient provider errors count as "no data yet". Authentication and payment
errors abort retrieval immediately. A call the provider reports as never
connected (no answer, busy, voicemail) ends retrieval early, and any other
provider failure seen along the way is returned instead of nothing when
every strategy comes up empty.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from voicescreen.config import ScreeningSettings
from voicescreen.exceptions import ProviderError
from voicescreen.models import RetrievedCallData
from voicescreen.services.conflict_detector import is_failed_status

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5

FetchFn = Callable[[str], Awaitable[Optional[RetrievedCallData]]]

# endedReason fragments for calls that never reached a conversation
NO_CONVERSATION_REASONS = ("did-not-answer", "no-answer", "busy", "voicemail")


@dataclass
class RetrievalRun:
    provider_call_id: str
    started: float
    last_failure: Optional[RetrievedCallData] = None


def is_failure_report(data: RetrievedCallData) -> bool:
    """Failed status with an error message and no content."""
    return bool(data.error_message) and is_failed_status(data) and not data.has_any_content()


def never_connected(data: RetrievedCallData) -> bool:
    reason = (data.error_message or "").lower()
    return is_failure_report(data) and any(marker in reason for marker in NO_CONVERSATION_REASONS)


class ResultRetrievalEngine:
    """
    Runs the retrieval cascade for one provider call id.

    ``fetcher`` must provide ``fetch(provider_call_id)`` and
    ``fetch_comprehensive(provider_call_id)``, both returning
    RetrievedCallData or None.
    """

    def __init__(
        self,
        fetcher,
        settings: Optional[ScreeningSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.settings = settings or ScreeningSettings.from_env()
        self._sleep = sleep
        self._clock = clock

    async def retrieve(
        self,
        provider_call_id: str,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        captured: Optional[RetrievedCallData] = None,
    ) -> Optional[RetrievedCallData]:
        """
        Fetch transcript/summary/audio for a finished call.

        Args:
            provider_call_id: VAPI call id
            max_attempts: Direct fetch attempts (default from settings)
            base_delay: Initial backoff delay in seconds (default from settings)
            captured: Data accumulated from live call events, used by the fallback

        Returns:
            RetrievedCallData from the first successful strategy, the last
            provider failure report if no strategy found content, or None

        Raises:
            ProviderError: On unrecoverable provider errors (auth/payment)
        """
        max_attempts = max_attempts or self.settings.retrieval_max_attempts
        base_delay = base_delay if base_delay is not None else self.settings.retrieval_base_delay
        run = RetrievalRun(provider_call_id, self._clock())

        logger.info(f"[retrieval] Starting for call {provider_call_id} (max_attempts={max_attempts})")

        data = await self._direct_fetch(run, max_attempts, base_delay)
        if data is not None:
            return data

        data = await self._extended_wait(run)
        if data is not None:
            return data

        data = await self._comprehensive_fallback(run, captured)
        if data is not None:
            return data

        elapsed = self._clock() - run.started
        if run.last_failure is not None:
            logger.warning(
                f"[retrieval] No content for call {provider_call_id} after {elapsed:.1f}s, "
                f"returning provider failure: {run.last_failure.error_message}"
            )
            return run.last_failure

        logger.error(f"[retrieval] All strategies exhausted for call {provider_call_id} after {elapsed:.1f}s")
        return None

    async def _attempt(
        self,
        run: RetrievalRun,
        strategy: str,
        attempt: int,
        fetch: FetchFn,
    ) -> Optional[RetrievedCallData]:
        try:
            data = await fetch(run.provider_call_id)
        except ProviderError as e:
            if not e.recoverable:
                logger.error(
                    f"[retrieval:{strategy}] Unrecoverable provider error for call {run.provider_call_id}: {e.message}"
                )
                raise
            logger.warning(f"[retrieval:{strategy}] attempt {attempt} transient error: {e.message}")
            return None

        elapsed = self._clock() - run.started
        completeness = data.completeness() if data is not None else "no data"
        logger.info(
            f"[retrieval:{strategy}] call {run.provider_call_id} attempt {attempt} "
            f"elapsed={elapsed:.1f}s data={completeness}"
        )
        if data is not None and is_failure_report(data):
            run.last_failure = data.model_copy(update={"source": strategy})
        return data

    def _settled(self, run: RetrievalRun, data: Optional[RetrievedCallData], strategy: str) -> Optional[RetrievedCallData]:
        """Data that ends the cascade: usable content, or a call that never connected."""
        if data is None:
            return None
        if data.is_usable():
            return data.model_copy(update={"source": strategy})
        if never_connected(data):
            logger.info(f"[retrieval] Call {run.provider_call_id} never connected ({data.error_message}), stopping")
            return data.model_copy(update={"source": strategy})
        return None

    async def _direct_fetch(
        self, run: RetrievalRun, max_attempts: int, base_delay: float
    ) -> Optional[RetrievedCallData]:
        for attempt in range(1, max_attempts + 1):
            data = self._settled(run, await self._attempt(run, "direct", attempt, self.fetcher.fetch), "direct")
            if data is not None:
                logger.info(f"[retrieval] Direct fetch settled on attempt {attempt}")
                return data

            if attempt < max_attempts:
                delay = base_delay * (BACKOFF_FACTOR ** (attempt - 1))
                await self._sleep(delay)
        return None

    async def _extended_wait(self, run: RetrievalRun) -> Optional[RetrievedCallData]:
        polls = max(1, self.settings.extended_wait_polls)
        interval = self.settings.extended_wait_seconds / polls
        logger.info(
            f"[retrieval] Direct fetch exhausted, extended wait of "
            f"{self.settings.extended_wait_seconds:.0f}s in {polls} polls"
        )

        for poll in range(1, polls + 1):
            await self._sleep(interval)
            data = self._settled(run, await self._attempt(run, "extended", poll, self.fetcher.fetch), "extended")
            if data is not None:
                logger.info(f"[retrieval] Extended wait settled on poll {poll}")
                return data
        return None

    async def _comprehensive_fallback(
        self,
        run: RetrievalRun,
        captured: Optional[RetrievedCallData],
    ) -> Optional[RetrievedCallData]:
        if captured is not None and captured.has_any_content():
            logger.info(
                f"[retrieval] Using event-captured data for call {run.provider_call_id}: {captured.completeness()}"
            )
            return captured.model_copy(update={"source": "captured"})

        data = await self._attempt(run, "comprehensive", 1, self.fetcher.fetch_comprehensive)
        if data is not None and data.has_any_content():
            if not data.is_usable():
                logger.warning(
                    f"[retrieval] Comprehensive fallback returned partial data only for call {run.provider_call_id}"
                )
            return data.model_copy(update={"source": "comprehensive"})
        return None
