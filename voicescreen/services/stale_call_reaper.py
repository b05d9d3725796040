"""
Stale-call reaper.

Finds screening calls stuck in scheduled/in_progress past the stale timeout
and finalizes them as rejected. Works only from the stored status and
created_at; finalize's compare-and-set makes it safe to run next to live
sessions. When a registry is given, a live session whose record was reaped
is released so it hangs up and drops its listener.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from voicescreen.config import ScreeningSettings
from voicescreen.models import ErrorCode, FinalizePayload, ScreeningOutcome
from voicescreen.services.session_registry import SessionRegistry
from voicescreen.services.status_propagator import StatusPropagator, utcnow

logger = logging.getLogger(__name__)

STALE_CLEANUP_MESSAGE = "stale cleanup"


class StaleCallReaper:
    """Sweeps abandoned screening calls on demand or on an interval."""

    def __init__(
        self,
        screening_repo,
        propagator: StatusPropagator,
        settings: Optional[ScreeningSettings] = None,
        now: Callable[[], datetime] = utcnow,
        registry: Optional[SessionRegistry] = None,
    ):
        self.screening_repo = screening_repo
        self.propagator = propagator
        self.registry = registry
        self.settings = settings or ScreeningSettings.from_env()
        self._now = now
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> int:
        """
        Reject every active record older than the stale timeout.

        Returns:
            Number of records this sweep moved to rejected
        """
        cutoff = self._now() - timedelta(minutes=self.settings.stale_timeout_minutes)
        stale = await self.screening_repo.find_stale(cutoff)
        if not stale:
            return 0

        reaped = 0
        for record in stale:
            age_minutes = (self._now() - record.created_at).total_seconds() / 60
            applied = await self.propagator.finalize(
                record.id,
                ScreeningOutcome.REJECTED,
                FinalizePayload(
                    error_message=STALE_CLEANUP_MESSAGE,
                    error_code=ErrorCode.STALE_CLEANUP,
                    reason=f"call abandoned in {record.status.value} for {age_minutes:.0f} minutes",
                ),
            )
            if applied:
                reaped += 1
                logger.warning(
                    f"Reaped stale screening call {record.id} "
                    f"(application {record.application_id}, {record.status.value}, {age_minutes:.0f} min old)"
                )
                if self.registry is not None:
                    await self.registry.release_finalized(record.id)

        logger.info(f"Stale sweep: {reaped}/{len(stale)} screening calls rejected")
        return reaped

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Stale call sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.settings.reaper_interval_seconds)

    def start(self) -> None:
        """Start the periodic sweep as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Stale call reaper started (every {self.settings.reaper_interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stale call reaper stopped")
