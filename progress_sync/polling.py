"""
Polling Loop - periodic status reads with a consecutive-failure cap.

Every tick fetches a full snapshot and hands it to the reconciler. The loop
stops itself when the batch becomes terminal or when too many reads in a row
fail; in the latter case a client-side error is recorded in TransportHealth
(distinct from a server-reported failure) and canonical state is untouched.

The interval can change while running. An interval of None means "confirm
once, then idle" until the interval is set again.
"""

import asyncio
from typing import Callable, Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .errors import PollingFailureCapExceeded, StatusFetchError
from .fetcher import StatusFetcher
from .models import TransportHealth
from .reconciler import StateReconciler

logger = get_logger(__name__)


FailureCapCallback = Callable[[PollingFailureCapExceeded], None]


class PollingLoop:
    """
    Periodic snapshot reader for one batch.

    Usage:
        loop = PollingLoop(fetcher, reconciler, health)
        loop.start("b-42", interval=2.5)
        ...
        loop.set_interval(None)     # push is healthy: confirm once, then idle
        ...
        await loop.aclose()
    """

    def __init__(
        self,
        fetcher: StatusFetcher,
        reconciler: StateReconciler,
        health: Optional[TransportHealth] = None,
        max_failures: Optional[int] = None,
        on_failure_cap: Optional[FailureCapCallback] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            fetcher: StatusFetcher used for each tick
            reconciler: Receives every successful snapshot
            health: Shared TransportHealth (created if not provided)
            max_failures: Consecutive failures before giving up (default from settings)
            on_failure_cap: Called once when the cap is reached
            settings: Settings override
        """
        settings = settings or default_settings
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.health = health or TransportHealth()
        self.max_failures = max_failures or settings.max_poll_failures
        self.on_failure_cap = on_failure_cap

        self.batch_id: Optional[str] = None
        self._interval: Optional[float] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    # =========================================
    # State
    # =========================================

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def interval(self) -> Optional[float]:
        return self._interval

    @property
    def consecutive_failures(self) -> int:
        return self.health.consecutive_poll_failures

    # =========================================
    # Control
    # =========================================

    def start(self, batch_id: str, interval: Optional[float]):
        """
        Start polling (restarts if already running).

        Args:
            batch_id: Batch to poll
            interval: Seconds between reads, or None for a single confirmatory read
        """
        if self._task is not None and not self._task.done():
            self.stop()

        self.batch_id = batch_id
        self._interval = interval
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Polling started for batch {batch_id} (interval={interval})")

    def stop(self):
        """Stop polling. Safe to call repeatedly or when never started."""
        if not self._running and self._task is None:
            return

        self._running = False
        self._wake.set()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        logger.debug(f"Polling stopped for batch {self.batch_id}")

    async def aclose(self):
        """Stop polling and wait for the loop task to finish"""
        self.stop()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def set_interval(self, interval: Optional[float]):
        """Change the interval; a change triggers an immediate read"""
        if interval == self._interval:
            return
        logger.debug(f"Polling interval for batch {self.batch_id}: {self._interval} → {interval}")
        self._interval = interval
        self._wake.set()

    def reset_failures(self):
        """Clear the failure counter and the client-side error state"""
        self.health.consecutive_poll_failures = 0
        self.health.poll_error = None

    # =========================================
    # Loop
    # =========================================

    async def poll_once(self) -> bool:
        """
        Fetch one snapshot and reconcile it.

        Returns:
            True if the snapshot was accepted by the reconciler
        """
        try:
            snapshot = await self.fetcher.fetch(self.batch_id)
        except StatusFetchError as e:
            self._record_failure(str(e))
            return False

        self.health.consecutive_poll_failures = 0
        accepted = self.reconciler.apply_snapshot(snapshot)

        if self.reconciler.is_terminal and self._running:
            logger.info(f"Batch {self.batch_id} is terminal, polling stops")
            self._running = False

        return accepted

    async def _run(self):
        # A restart from inside a callback leaves this task running; it must
        # exit once a newer task owns the loop
        task = asyncio.current_task()
        while self._running and self._task is task:
            await self.poll_once()
            if not self._running or self._task is not task:
                break
            await self._wait_next_tick()

    async def _wait_next_tick(self):
        if not self._wake.is_set():
            if self._interval is None:
                await self._wake.wait()
            else:
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        self._wake.clear()

    def _record_failure(self, message: str):
        self.health.consecutive_poll_failures += 1
        self.health.last_error = message
        failures = self.health.consecutive_poll_failures

        logger.warning(
            f"Status poll failed for batch {self.batch_id} "
            f"({failures}/{self.max_failures}): {message}"
        )

        if failures < self.max_failures:
            return

        error = PollingFailureCapExceeded(failures, message)
        self.health.poll_error = str(error)
        self._running = False
        logger.error(str(error))

        if self.on_failure_cap:
            try:
                self.on_failure_cap(error)
            except Exception as e:
                logger.error(f"Failure cap callback error: {e}")
