"""
Progress Data Model

Client-side view of a remediation batch: job records, the batch aggregate,
transport health and the read-only snapshot handed to rendering code.

Wire payloads may use camelCase or snake_case field names. The from_dict
constructors accept both and substitute safe defaults for anything missing.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class JobState(str, Enum):
    """Job status, monotonic along pending → processing → completed | failed"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _JOB_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    @classmethod
    def parse(cls, value: Any) -> "JobState":
        """Map a wire status (any case) to a JobState; unknown values are pending"""
        text = str(value or "").strip().lower()
        text = _STATUS_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return cls.PENDING


class BatchState(str, Enum):
    """Batch status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def rank(self) -> int:
        return _BATCH_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BATCH_STATES

    @classmethod
    def parse(cls, value: Any) -> "BatchState":
        """Map a wire status (any case) to a BatchState; unknown values are pending"""
        text = str(value or "").strip().lower()
        text = _STATUS_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return cls.PENDING


_JOB_RANK = {
    JobState.PENDING: 0,
    JobState.PROCESSING: 1,
    JobState.COMPLETED: 2,
    JobState.FAILED: 2,
}

_BATCH_RANK = {
    BatchState.PENDING: 0,
    BatchState.PROCESSING: 1,
    BatchState.COMPLETED: 2,
    BatchState.FAILED: 2,
    BatchState.CANCELLED: 2,
}

_STATUS_ALIASES = {
    "queued": "pending",
    "running": "processing",
    "canceled": "cancelled",
}

TERMINAL_BATCH_STATES = frozenset({
    BatchState.COMPLETED,
    BatchState.FAILED,
    BatchState.CANCELLED,
})


# ==================== WIRE HELPERS ====================

def pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-null value among keys"""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def to_int(value: Any, default: int = 0) -> int:
    """Coerce to a non-negative int, falling back to default"""
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError):
        return default


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return result if math.isfinite(result) else default


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return to_int(value)


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return max(0.0, result) if math.isfinite(result) else None


# ==================== RECORDS ====================

@dataclass
class JobStatus:
    """One unit of work within a batch"""
    job_id: str
    file_name: str = "Unknown"
    status: JobState = JobState.PENDING
    issues_fixed: Optional[int] = None     # set once completed
    error: Optional[str] = None            # set once failed

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "file_name": self.file_name,
            "status": self.status.value,
            "issues_fixed": self.issues_fixed,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStatus":
        error = pick(data, "error")
        return cls(
            job_id=str(pick(data, "jobId", "job_id", "id", default="")),
            file_name=str(pick(data, "fileName", "file_name", default="Unknown")),
            status=JobState.parse(pick(data, "status")),
            issues_fixed=_optional_int(pick(data, "issuesFixed", "issues_fixed")),
            error=str(error) if error else None,
        )


@dataclass
class BatchSummary:
    """Batch-level summary figures"""
    total_issues_fixed: int = 0
    success_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_issues_fixed": self.total_issues_fixed,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BatchSummary":
        data = data if isinstance(data, dict) else {}
        return cls(
            total_issues_fixed=to_int(pick(data, "totalIssuesFixed", "total_issues_fixed")),
            success_rate=to_float(pick(data, "successRate", "success_rate")),
        )


@dataclass
class BatchStatus:
    """
    Aggregate state of a tracked batch.

    completed_jobs and failed_jobs are derived from the jobs list by the
    reconciler; they are never mutated independently.
    """
    batch_id: str
    status: BatchState = BatchState.PENDING
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    jobs: List[JobStatus] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    estimated_time_remaining: Optional[float] = None   # advisory only
    current_job_index: Optional[int] = None            # UI emphasis only

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress_percent(self) -> int:
        if self.total_jobs <= 0:
            return 0
        return round(self.completed_jobs / self.total_jobs * 100)

    @property
    def current_job(self) -> Optional[JobStatus]:
        index = self.current_job_index
        if index is None or not 0 <= index < len(self.jobs):
            return None
        return self.jobs[index]

    def find_job(self, job_id: str) -> Optional[JobStatus]:
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        return None

    def copy(self) -> "BatchStatus":
        """Independent copy (jobs and summary are duplicated)"""
        return replace(
            self,
            jobs=[replace(job) for job in self.jobs],
            summary=replace(self.summary),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "total_jobs": self.total_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "progress_percent": self.progress_percent,
            "jobs": [job.to_dict() for job in self.jobs],
            "summary": self.summary.to_dict(),
            "estimated_time_remaining": self.estimated_time_remaining,
            "current_job_index": self.current_job_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchStatus":
        """Parse a server snapshot; never raises on missing optional fields"""
        raw_jobs = pick(data, "jobs", default=[])
        if not isinstance(raw_jobs, list):
            raw_jobs = []

        return cls(
            batch_id=str(pick(data, "batchId", "batch_id", "id", default="")),
            status=BatchState.parse(pick(data, "status")),
            total_jobs=to_int(pick(data, "totalJobs", "total_jobs")),
            completed_jobs=to_int(pick(data, "completedJobs", "completed_jobs")),
            failed_jobs=to_int(pick(data, "failedJobs", "failed_jobs")),
            jobs=[JobStatus.from_dict(job) for job in raw_jobs if isinstance(job, dict)],
            summary=BatchSummary.from_dict(pick(data, "summary")),
            estimated_time_remaining=_optional_float(
                pick(data, "estimatedTimeRemaining", "estimated_time_remaining")
            ),
            current_job_index=_optional_int(
                pick(data, "currentJobIndex", "current_job_index")
            ),
        )


@dataclass
class TransportHealth:
    """Connection health, kept apart from BatchStatus"""
    push_connected: bool = False
    consecutive_poll_failures: int = 0
    last_error: Optional[str] = None
    poll_error: Optional[str] = None    # failure cap exceeded (client-side)
    push_error: Optional[str] = None    # push channel failed closed

    @property
    def has_error(self) -> bool:
        return self.poll_error is not None or self.push_error is not None

    def copy(self) -> "TransportHealth":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "push_connected": self.push_connected,
            "consecutive_poll_failures": self.consecutive_poll_failures,
            "last_error": self.last_error,
            "poll_error": self.poll_error,
            "push_error": self.push_error,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view consumed by rendering code"""
    batch: Optional[BatchStatus]
    transport: TransportHealth

    @property
    def is_terminal(self) -> bool:
        return self.batch is not None and self.batch.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch": self.batch.to_dict() if self.batch else None,
            "transport": self.transport.to_dict(),
        }
