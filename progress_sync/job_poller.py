"""
Job Poller - status polling for a single (non-batch) job.

Polls GET /jobs/{job_id} until the job is completed or failed, then stops
itself. Status strings are compared case-insensitively. Fetch failures count
toward the same consecutive-failure cap as batch polling.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .errors import PollingFailureCapExceeded, StatusFetchError
from .fetcher import StatusFetcher
from .models import pick, to_float

logger = get_logger(__name__)


class JobRunState(str, Enum):
    """Single-job status"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobRunState.COMPLETED, JobRunState.FAILED)

    @classmethod
    def parse(cls, value: Any) -> "JobRunState":
        text = str(value or "").strip().lower()
        text = {"pending": "queued", "running": "processing"}.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return cls.PROCESSING


@dataclass
class JobRecord:
    """Server view of one job"""
    id: str
    status: JobRunState = JobRunState.QUEUED
    type: str = ""
    progress: Optional[float] = None
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], job_id: str = "") -> "JobRecord":
        progress = pick(data, "progress")
        output = pick(data, "output", default={})
        error = pick(data, "error")
        return cls(
            id=str(pick(data, "id", "jobId", "job_id", default=job_id)),
            status=JobRunState.parse(pick(data, "status")),
            type=str(pick(data, "type", default="")),
            progress=to_float(progress) if progress is not None else None,
            output=output if isinstance(output, dict) else {},
            error=str(error) if error else None,
            created_at=pick(data, "createdAt", "created_at"),
            updated_at=pick(data, "updatedAt", "updated_at"),
        )


class JobPoller:
    """
    Poll a single job until it finishes.

    Usage:
        poller = JobPoller(fetcher, on_complete=show_result, on_error=show_error)
        poller.start("job-7")
        record = await poller.wait()
    """

    def __init__(
        self,
        fetcher: StatusFetcher,
        interval: Optional[float] = None,
        max_failures: Optional[int] = None,
        on_update: Optional[Callable[[JobRecord], None]] = None,
        on_complete: Optional[Callable[[JobRecord], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.fetcher = fetcher
        self.interval = interval or settings.job_poll_interval_seconds
        self.max_failures = max_failures or settings.max_poll_failures
        self.on_update = on_update
        self.on_complete = on_complete
        self.on_error = on_error

        self.job_id: Optional[str] = None
        self.data: Optional[JobRecord] = None
        self.error: Optional[str] = None
        self.failures = 0
        self._task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()

    @property
    def status(self) -> Optional[JobRunState]:
        return self.data.status if self.data else None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, job_id: str):
        """Start polling a job (stops any previous polling first)"""
        self.stop()
        self.job_id = job_id
        self.data = JobRecord(id=job_id)
        self.error = None
        self.failures = 0
        self._finished = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Job polling started: {job_id}")

    def stop(self):
        """Stop polling; anyone waiting on the current job is released"""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._finished.set()

    async def wait(self, timeout: Optional[float] = None) -> Optional[JobRecord]:
        """Wait until polling of the current job ends for any reason"""
        await asyncio.wait_for(self._finished.wait(), timeout=timeout)
        return self.data

    async def poll_once(self) -> bool:
        """
        Fetch the job once.

        Returns:
            True if polling should continue
        """
        try:
            payload = await self.fetcher.fetch_job(self.job_id)
        except StatusFetchError as e:
            return self._record_failure(str(e))

        self.failures = 0
        self.data = JobRecord.from_dict(payload, job_id=self.job_id)
        self._emit(self.on_update, self.data)

        if self.data.status is JobRunState.COMPLETED:
            logger.info(f"Job {self.job_id} completed")
            self._finished.set()
            self._emit(self.on_complete, self.data)
            return False

        if self.data.status is JobRunState.FAILED:
            self.error = self.data.error or "Job failed"
            logger.info(f"Job {self.job_id} failed: {self.error}")
            self._finished.set()
            self._emit(self.on_error, self.error)
            return False

        return True

    async def _run(self):
        while await self.poll_once():
            await asyncio.sleep(self.interval)

    def _record_failure(self, message: str) -> bool:
        self.failures += 1
        logger.warning(f"Job poll failed for {self.job_id} ({self.failures}/{self.max_failures}): {message}")
        if self.failures < self.max_failures:
            return True

        self.error = str(PollingFailureCapExceeded(self.failures, message))
        logger.error(self.error)
        self._finished.set()
        self._emit(self.on_error, self.error)
        return False

    def _emit(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Job poller callback error: {e}")
