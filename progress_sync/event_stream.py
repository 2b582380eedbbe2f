"""
Event Stream Client - push channel supervision for one batch.

Opens the SSE stream, reports connection health and forwards parsed event
envelopes to the reconciler. Reconnection is left to the transport; this
client only reports health accurately. Duplicate deliveries are absorbed by
the reconciler's idempotent merge.
"""

from typing import Callable, Optional

import httpx

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .errors import EventParseError, PushConnectionError, TrackingStateError
from .events import EventType, parse_event
from .models import TransportHealth
from .reconciler import StateReconciler
from .sse_transport import EventSource, ReadyState, ServerSentEvent

logger = get_logger(__name__)


HealthCallback = Callable[[bool], None]


class EventStreamClient:
    """
    Push connection owner.

    Usage:
        stream = EventStreamClient(reconciler, client, health)
        await stream.connect("b-42", token)
        ...
        await stream.disconnect()
    """

    def __init__(
        self,
        reconciler: StateReconciler,
        client: httpx.AsyncClient,
        health: Optional[TransportHealth] = None,
        on_health_change: Optional[HealthCallback] = None,
        settings: Optional[Settings] = None,
        event_source_factory: Callable[..., EventSource] = EventSource,
    ):
        """
        Args:
            reconciler: Receives every parsed delta event
            client: Shared httpx.AsyncClient
            health: Shared TransportHealth (created if not provided)
            on_health_change: Called with push_connected after open/error
            settings: Settings override
            event_source_factory: Builds the underlying EventSource
        """
        self.reconciler = reconciler
        self.client = client
        self.health = health or TransportHealth()
        self.on_health_change = on_health_change
        self.settings = settings or default_settings
        self.event_source_factory = event_source_factory

        self._source: Optional[EventSource] = None
        self._batch_id: Optional[str] = None

    @property
    def batch_id(self) -> Optional[str]:
        return self._batch_id

    @property
    def is_active(self) -> bool:
        """Connection open or being (re)opened"""
        return self._source is not None and self._source.ready_state != ReadyState.CLOSED

    @property
    def is_connected(self) -> bool:
        return self.health.push_connected

    def stream_url(self, batch_id: str, auth_token: str) -> str:
        """Stream URL; the token travels as a query parameter (SSE has no custom headers)"""
        base = self.settings.api_base_url.rstrip("/")
        path = self.settings.batch_events_path.format(batch_id=batch_id)
        return str(httpx.URL(base + path, params={"token": auth_token}))

    async def connect(self, batch_id: str, auth_token: Optional[str] = None):
        """
        Open the push connection for a batch.

        Repeated calls for the same batch are no-ops while the connection is
        open or opening. Connecting to another batch closes the current one.
        Returns without waiting for the stream to open.
        """
        if batch_id != self.reconciler.batch_id:
            raise TrackingStateError(
                f"Cannot stream batch {batch_id}: reconciler tracks {self.reconciler.batch_id}"
            )

        if self.is_active and self._batch_id == batch_id:
            logger.debug(f"Push connection for batch {batch_id} already active")
            return

        if self._source is not None:
            await self.disconnect()

        token = auth_token or self.settings.auth_token
        if not token:
            logger.warning(f"No auth token for batch {batch_id}, push channel not opened")
            return

        self._batch_id = batch_id
        self._source = self.event_source_factory(
            self.stream_url(batch_id, token),
            self.client,
            on_open=self._handle_open,
            on_message=self._handle_message,
            on_error=self._handle_error,
            reconnect_delay=self.settings.sse_reconnect_delay_seconds,
        )
        logger.info(f"Opening push connection for batch {batch_id}")
        self._source.start()

    async def disconnect(self):
        """Close the push connection; idempotent"""
        source, self._source = self._source, None
        if source is None:
            return

        logger.info(f"Closing push connection for batch {self._batch_id}")
        await source.close()
        self.health.push_connected = False
        self._batch_id = None

    # =========================================
    # Transport callbacks
    # =========================================

    def _handle_open(self):
        logger.info(f"Push connection established for batch {self._batch_id}")
        self.health.push_connected = True
        self.health.push_error = None
        self._report_health()

    def _handle_message(self, event: ServerSentEvent):
        try:
            envelope = parse_event(event.data)
        except EventParseError as e:
            logger.error(f"Dropping malformed push event: {e}")
            return

        if envelope.event_type is EventType.CONNECTED:
            client_id = (envelope.model_extra or {}).get("clientId")
            logger.info(f"Push server confirmed: {client_id}")
            return

        logger.debug(f"Push event received: {envelope.type}")
        self.reconciler.apply_event(envelope)

    def _handle_error(self, error: Exception):
        self.health.push_connected = False
        self.health.last_error = str(error)

        if isinstance(error, PushConnectionError):
            self.health.push_error = f"Push channel rejected: {error}"
            logger.error(f"{self.health.push_error} (batch {self._batch_id})")
        else:
            logger.warning(f"Push connection error for batch {self._batch_id}: {error}")

        self._report_health()

    def _report_health(self):
        if self.on_health_change is None:
            return
        try:
            self.on_health_change(self.health.push_connected)
        except Exception as e:
            logger.error(f"Health callback error: {e}")
