"""
Snapshot subscribers.

Ready-made subscribers for BatchProgressTracker.subscribe(): periodic
logging and a tqdm progress bar.
"""

from typing import Callable, Optional

from tqdm import tqdm

from config.logging_config import get_logger
from .models import ProgressSnapshot

logger = get_logger(__name__)


# Type alias for snapshot subscribers
SnapshotCallback = Callable[[ProgressSnapshot], None]


def format_time_remaining(seconds: Optional[float]) -> str:
    """Format an advisory ETA: 45 → "45s", 125 → "2m 5s" """
    if seconds is None:
        return "-"
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    mins, secs = divmod(seconds, 60)
    return f"{mins}m {secs}s"


def create_logging_subscriber(log_interval: int = 5) -> SnapshotCallback:
    """
    Create a subscriber that logs every N snapshots (and always the terminal one).

    Args:
        log_interval: Log every N updates

    Returns:
        Snapshot subscriber
    """
    counter = {"count": 0}

    def callback(snapshot: ProgressSnapshot):
        counter["count"] += 1
        batch = snapshot.batch
        if batch is None:
            return
        if counter["count"] % log_interval == 0 or batch.is_terminal:
            logger.info(
                f"Batch {batch.batch_id}: {batch.status.value} "
                f"{batch.completed_jobs}/{batch.total_jobs} completed, "
                f"{batch.failed_jobs} failed ({batch.progress_percent}%) "
                f"- ETA {format_time_remaining(batch.estimated_time_remaining)}"
            )

    return callback


def create_progress_bar_subscriber(progress_bar: tqdm) -> SnapshotCallback:
    """
    Create a subscriber that mirrors snapshots onto a tqdm bar.

    The bar total follows total_jobs; its position counts finished jobs
    (completed + failed).
    """

    def callback(snapshot: ProgressSnapshot):
        batch = snapshot.batch
        if batch is None:
            return

        if progress_bar.total != batch.total_jobs:
            progress_bar.total = batch.total_jobs

        finished = batch.completed_jobs + batch.failed_jobs
        progress_bar.n = finished
        progress_bar.set_postfix({
            'status': batch.status.value,
            'failed': batch.failed_jobs,
            'live': 'yes' if snapshot.transport.push_connected else 'no',
            'eta': format_time_remaining(batch.estimated_time_remaining),
        }, refresh=False)
        progress_bar.refresh()

    return callback
