"""Periodic expiry of observed identities whose temporary access lapsed."""
import asyncio
from datetime import datetime
from typing import Optional

from face_access.core.config import settings
from face_access.core.exceptions import AccessControlError
from face_access.core.logging import get_logger
from face_access.core.utils.time import Clock, utc_now
from face_access.services.observed_store import ObservedIdentityStore

logger = get_logger(__name__)


class LifecycleSweeper:
    """Moves lapsed `active_temporal` identities to `expired`.

    Each pass is a single conditional bulk update, so it is idempotent and
    never overwrites a row that was blocked, extended or touched concurrently.
    Passes are single-flight within the process: a pass requested while
    another one runs returns 0 without touching the database.

    Example:
        ```python
        sweeper = LifecycleSweeper(store, interval_seconds=60)
        sweeper.start()
        ...
        await sweeper.stop()
        ```
    """

    def __init__(
        self,
        store: ObservedIdentityStore,
        interval_seconds: Optional[float] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._interval = interval_seconds if interval_seconds is not None else settings.SWEEP_INTERVAL_SECONDS
        self._clock = clock
        self._running = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Run one expiry pass.

        Args:
            now: Reference time (defaults to the clock)

        Returns:
            int: Number of identities expired by this pass

        Raises:
            DatastoreUnavailableError: If the update fails
        """
        if self._running.locked():
            logger.debug("Sweep already in progress, skipping")
            return 0

        async with self._running:
            reference = now or self._clock()
            expired = await self._store.expire_elapsed(reference)
            if expired:
                logger.info("Expired observed identities", count=expired, now=reference.isoformat())
            else:
                logger.debug("No observed identities to expire", now=reference.isoformat())
            return expired

    def start(self) -> None:
        """Start the background sweep loop (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="observed-lifecycle-sweeper")
        logger.info("Lifecycle sweeper started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Lifecycle sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except AccessControlError as e:
                logger.error("Sweep pass failed", error=str(e), error_type=type(e).__name__)
            except Exception as e:
                logger.error("Unexpected error during sweep pass", error=str(e), exc_info=True)
            await asyncio.sleep(self._interval)
