"""
Progress Sync - client-side progress synchronization for remediation batches.

Keeps a local view of a batch consistent with the server across two
transports (SSE push channel plus polling), with cancellation and retry.

Usage:
    from progress_sync import BatchProgressTracker

    async with BatchProgressTracker(auth_token=token) as tracker:
        tracker.subscribe(render)
        await tracker.track("b-42")
        snapshot = await tracker.wait_until_done()
"""

from .models import (
    JobState,
    BatchState,
    JobStatus,
    BatchStatus,
    BatchSummary,
    TransportHealth,
    ProgressSnapshot,
)
from .events import EventEnvelope, EventType, parse_event
from .errors import (
    ProgressSyncError,
    StatusFetchError,
    EventParseError,
    PushConnectionError,
    PollingFailureCapExceeded,
    TrackingStateError,
)
from .fetcher import StatusFetcher
from .reconciler import StateReconciler
from .polling import PollingLoop
from .sse_transport import EventSource, ReadyState, ServerSentEvent, SSEDecoder
from .event_stream import EventStreamClient
from .coordinator import TransportCoordinator, TransportMode
from .cancellation import CancellationCoordinator
from .tracker import BatchProgressTracker
from .job_poller import JobPoller, JobRecord, JobRunState
from .callbacks import (
    create_logging_subscriber,
    create_progress_bar_subscriber,
    format_time_remaining,
)

__all__ = [
    # Data model
    'JobState',
    'BatchState',
    'JobStatus',
    'BatchStatus',
    'BatchSummary',
    'TransportHealth',
    'ProgressSnapshot',
    # Events
    'EventEnvelope',
    'EventType',
    'parse_event',
    # Errors
    'ProgressSyncError',
    'StatusFetchError',
    'EventParseError',
    'PushConnectionError',
    'PollingFailureCapExceeded',
    'TrackingStateError',
    # Components
    'StatusFetcher',
    'StateReconciler',
    'PollingLoop',
    'EventSource',
    'ReadyState',
    'ServerSentEvent',
    'SSEDecoder',
    'EventStreamClient',
    'TransportCoordinator',
    'TransportMode',
    'CancellationCoordinator',
    'BatchProgressTracker',
    # Single jobs
    'JobPoller',
    'JobRecord',
    'JobRunState',
    # Subscribers
    'create_logging_subscriber',
    'create_progress_bar_subscriber',
    'format_time_remaining',
]

__version__ = "1.0.0"
