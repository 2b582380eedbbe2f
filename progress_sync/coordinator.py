"""
Transport Coordinator - decides how hard polling works.

Both transports may be live at once; correctness is left to the reconciler's
merge rules. The coordinator only manages polling intervals:

- cold start: push connection opening, polling at the longer cold-start interval
- PUSH_PRIMARY: push open, polling does one confirmatory read and idles
- POLL_FALLBACK: push down (or disabled), polling at the standard interval
"""

from enum import Enum
from typing import Callable, Optional

import httpx

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .event_stream import EventStreamClient, HealthCallback
from .fetcher import StatusFetcher
from .models import TransportHealth
from .polling import FailureCapCallback, PollingLoop
from .reconciler import StateReconciler
from .sse_transport import EventSource

logger = get_logger(__name__)


class TransportMode(str, Enum):
    """Which transport currently drives updates"""
    PUSH_PRIMARY = "push_primary"
    POLL_FALLBACK = "poll_fallback"


class TransportCoordinator:
    """
    Owns the PollingLoop and EventStreamClient of one tracked batch.

    Usage:
        coordinator = TransportCoordinator(reconciler, fetcher, client)
        await coordinator.start("b-42", token)
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        reconciler: StateReconciler,
        fetcher: StatusFetcher,
        client: httpx.AsyncClient,
        health: Optional[TransportHealth] = None,
        settings: Optional[Settings] = None,
        on_health_change: Optional[HealthCallback] = None,
        on_failure_cap: Optional[FailureCapCallback] = None,
        event_source_factory: Callable[..., EventSource] = EventSource,
    ):
        self.settings = settings or default_settings
        self.reconciler = reconciler
        self.health = health or TransportHealth()
        self.on_health_change = on_health_change

        self.poll_interval = self.settings.poll_interval_seconds
        self.cold_start_interval = self.settings.cold_start_poll_interval_seconds

        self.polling = PollingLoop(
            fetcher,
            reconciler,
            self.health,
            on_failure_cap=on_failure_cap,
            settings=self.settings,
        )
        self.stream = EventStreamClient(
            reconciler,
            client,
            self.health,
            on_health_change=self._handle_health_change,
            settings=self.settings,
            event_source_factory=event_source_factory,
        )
        self.batch_id: Optional[str] = None

    @property
    def mode(self) -> TransportMode:
        if self.health.push_connected:
            return TransportMode.PUSH_PRIMARY
        return TransportMode.POLL_FALLBACK

    def interval_for_current_mode(self) -> Optional[float]:
        """Polling interval matching the current push health"""
        if self.health.push_connected:
            return None
        return self.poll_interval

    async def start(self, batch_id: str, auth_token: Optional[str] = None):
        """
        Start both transports for a batch.

        Polling starts immediately and never waits for the push connection.
        """
        self.batch_id = batch_id

        if self.settings.is_push_disabled(batch_id):
            logger.info(f"Push channel disabled for batch {batch_id}, polling only")
        else:
            await self.stream.connect(batch_id, auth_token)

        if self.stream.is_active and not self.health.push_connected:
            interval = self.cold_start_interval
        else:
            interval = self.interval_for_current_mode()

        self.polling.start(batch_id, interval)
        logger.info(f"Tracking batch {batch_id} (mode={self.mode.value}, poll interval={interval})")

    async def stop(self):
        """Stop polling and close the push connection; idempotent"""
        await self.polling.aclose()
        await self.stream.disconnect()

    def restart_polling(self):
        """Reset the failure counter and poll again at the interval for the current mode"""
        if self.batch_id is None:
            return
        self.polling.reset_failures()
        self.polling.start(self.batch_id, self.interval_for_current_mode())

    def _handle_health_change(self, push_connected: bool):
        interval = self.interval_for_current_mode()
        if self.polling.interval != interval:
            logger.info(
                f"Batch {self.batch_id}: {self.mode.value}, "
                f"poll interval → {interval if interval is not None else 'confirm once'}"
            )
        self.polling.set_interval(interval)

        if self.on_health_change:
            self.on_health_change(push_connected)
