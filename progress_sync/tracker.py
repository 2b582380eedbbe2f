"""
Batch Progress Tracker - public query surface.

Tracks one batch at a time: owns the reconciler and both transports, exposes
a consistent ProgressSnapshot, notifies subscribers after every successful
reconciliation (and on transport health changes), and offers cancel/retry.

Usage:
    async with BatchProgressTracker(auth_token=token) as tracker:
        tracker.subscribe(render)
        await tracker.track("b-42")
        snapshot = await tracker.wait_until_done()
"""

import asyncio
from typing import Callable, List, Optional

import httpx

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .callbacks import SnapshotCallback
from .cancellation import CancellationCoordinator
from .coordinator import TransportCoordinator
from .errors import PollingFailureCapExceeded, TrackingStateError
from .fetcher import StatusFetcher
from .models import BatchState, BatchStatus, ProgressSnapshot, TransportHealth
from .reconciler import StateReconciler
from .sse_transport import EventSource

logger = get_logger(__name__)


BatchCallback = Callable[[BatchStatus], None]


class BatchProgressTracker:
    """Reconciled, queryable progress of the currently tracked batch"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        auth_token: Optional[str] = None,
        settings: Optional[Settings] = None,
        on_complete: Optional[BatchCallback] = None,
        on_cancel: Optional[BatchCallback] = None,
        event_source_factory: Callable[..., EventSource] = EventSource,
    ):
        """
        Args:
            client: Shared httpx.AsyncClient (created and owned if not provided)
            auth_token: Bearer token (falls back to settings.auth_token)
            settings: Settings override
            on_complete: Called once when the batch reaches completed
            on_cancel: Called after cancel()
            event_source_factory: Builds the push transport
        """
        self.settings = settings or default_settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.request_timeout_seconds)
        )
        self.auth_token = auth_token or self.settings.auth_token
        self.on_complete = on_complete
        self.on_cancel = on_cancel
        self.event_source_factory = event_source_factory

        self.batch_id: Optional[str] = None
        self.health = TransportHealth()
        self.reconciler: Optional[StateReconciler] = None
        self.transport: Optional[TransportCoordinator] = None
        self.cancellation: Optional[CancellationCoordinator] = None

        self._subscribers: List[SnapshotCallback] = []
        self._done = asyncio.Event()
        self._completion_reported = False

    async def __aenter__(self) -> "BatchProgressTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # =========================================
    # Tracking lifecycle
    # =========================================

    async def track(self, batch_id: str):
        """
        Start tracking a batch, tearing down any previous one first.

        Args:
            batch_id: Batch identifier
        """
        await self.untrack()

        self.batch_id = batch_id
        self.health = TransportHealth()
        self._done = asyncio.Event()
        self._completion_reported = False

        reconciler = StateReconciler(batch_id)
        reconciler.add_listener(self._handle_state)
        fetcher = StatusFetcher(self.client, self.auth_token, self.settings)

        self.reconciler = reconciler
        self.transport = TransportCoordinator(
            reconciler,
            fetcher,
            self.client,
            self.health,
            settings=self.settings,
            on_health_change=self._handle_health_change,
            on_failure_cap=self._handle_failure_cap,
            event_source_factory=self.event_source_factory,
        )
        self.cancellation = CancellationCoordinator(
            fetcher, reconciler, self.transport, self.settings
        )

        logger.info(f"Tracking started: {batch_id}")
        await self.transport.start(batch_id, self.auth_token)

    async def untrack(self):
        """Stop tracking the current batch and discard its state; idempotent"""
        transport, reconciler = self.transport, self.reconciler
        if transport is None:
            return

        reconciler.remove_listener(self._handle_state)
        self.transport = None
        self.cancellation = None
        self.reconciler = None
        # Release anyone still waiting on the batch being dropped
        self._done.set()
        await transport.stop()
        logger.info(f"Tracking stopped: {self.batch_id}")

    async def close(self):
        """Stop tracking and release the HTTP client if owned"""
        await self.untrack()
        if self._owns_client:
            await self.client.aclose()

    # =========================================
    # Queries
    # =========================================

    def get_snapshot(self) -> ProgressSnapshot:
        """Latest committed batch state plus transport health"""
        batch = self.reconciler.state if self.reconciler else None
        return ProgressSnapshot(batch=batch, transport=self.health.copy())

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a snapshot subscriber.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def wait_until_done(self, timeout: Optional[float] = None) -> ProgressSnapshot:
        """
        Wait until the batch is terminal or polling has given up. If tracking
        of that batch ends first, the returned snapshot carries no batch.

        Raises:
            asyncio.TimeoutError: If timeout elapses first
        """
        done, reconciler = self._done, self.reconciler
        await asyncio.wait_for(done.wait(), timeout=timeout)
        if self.reconciler is not reconciler:
            return ProgressSnapshot(batch=None, transport=self.health.copy())
        return self.get_snapshot()

    # =========================================
    # Actions
    # =========================================

    async def cancel(self):
        """
        Cancel the tracked batch: local state is cancelled immediately, the
        server request is best effort.

        Raises:
            TrackingStateError: If no batch is tracked
        """
        if self.cancellation is None:
            raise TrackingStateError("No batch is being tracked")

        reconciler = self.reconciler
        if not await self.cancellation.cancel(self.batch_id):
            logger.debug(f"Cancel skipped: batch {self.batch_id} is already {reconciler.state.status.value}")
            return
        if self.on_cancel:
            self.on_cancel(reconciler.state)

    def retry(self):
        """
        Clear the client-side polling error and restart polling.

        Raises:
            TrackingStateError: If no batch is tracked
        """
        if self.transport is None:
            raise TrackingStateError("No batch is being tracked")
        if self.reconciler.is_terminal:
            logger.debug(f"Retry ignored: batch {self.batch_id} is terminal")
            return

        logger.info(f"Retrying status polling for batch {self.batch_id}")
        self._done.clear()
        self.transport.restart_polling()
        self._publish()

    # =========================================
    # Internal handlers
    # =========================================

    def _handle_state(self, batch: BatchStatus):
        if batch.status is BatchState.COMPLETED and not self._completion_reported:
            self._completion_reported = True
            if self.on_complete:
                try:
                    self.on_complete(batch)
                except Exception as e:
                    logger.error(f"Completion callback error: {e}")

        if batch.is_terminal:
            self._done.set()

        self._publish(batch)

    def _handle_health_change(self, push_connected: bool):
        self._publish()

    def _handle_failure_cap(self, error: PollingFailureCapExceeded):
        self._done.set()
        self._publish()

    def _publish(self, batch: Optional[BatchStatus] = None):
        if batch is None and self.reconciler is not None:
            batch = self.reconciler.state
        snapshot = ProgressSnapshot(batch=batch, transport=self.health.copy())

        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Subscriber error: {e}")
