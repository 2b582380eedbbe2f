"""
Cancellation Coordinator - immediate local cancel, best-effort server cancel.

The local state becomes cancelled before anything is awaited, both transports
are stopped, and only then is the cancel request sent. Request failures are
logged and never undo the local transition; a late snapshot or event is
rejected by the reconciler's terminal lock.
"""

import asyncio
from typing import Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .coordinator import TransportCoordinator
from .errors import StatusFetchError, TrackingStateError
from .fetcher import StatusFetcher
from .reconciler import StateReconciler

logger = get_logger(__name__)


class CancellationCoordinator:
    """Cancels one tracked batch"""

    def __init__(
        self,
        fetcher: StatusFetcher,
        reconciler: StateReconciler,
        transport: TransportCoordinator,
        settings: Optional[Settings] = None,
    ):
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.transport = transport
        self.settings = settings or default_settings

    def _cancel_locally(self, batch_id: str) -> bool:
        if batch_id != self.reconciler.batch_id:
            raise TrackingStateError(
                f"Cannot cancel batch {batch_id}: tracking {self.reconciler.batch_id}"
            )
        if not self.reconciler.force_cancel():
            return False
        self.transport.polling.stop()
        return True

    async def cancel(self, batch_id: str) -> bool:
        """
        Cancel a batch. A batch that is already terminal is left alone and no
        request is sent.

        Args:
            batch_id: Tracked batch identifier

        Returns:
            True if the batch was cancelled by this call

        Raises:
            TrackingStateError: If batch_id is not the tracked batch
        """
        if not self._cancel_locally(batch_id):
            return False
        await self._finish(batch_id)
        return True

    def cancel_nowait(self, batch_id: str) -> Optional[asyncio.Task]:
        """
        Cancel locally right now and finish the server side in the background.

        Returns:
            Task completing the teardown and cancel request, or None if the
            batch was already terminal
        """
        if not self._cancel_locally(batch_id):
            return None
        return asyncio.create_task(self._finish(batch_id))

    async def _finish(self, batch_id: str):
        await self.transport.stop()

        if self.settings.is_client_only(batch_id):
            logger.info(f"Batch {batch_id} is client-only, no cancel request sent")
            return

        try:
            await self.fetcher.cancel(batch_id)
            logger.info(f"Server acknowledged cancel of batch {batch_id}")
        except StatusFetchError as e:
            logger.warning(f"Cancel request for batch {batch_id} failed, staying cancelled locally: {e}")
