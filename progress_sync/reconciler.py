"""
State Reconciler - single writer of canonical batch state.

Merges full snapshots (polling) and delta events (push channel) into one
BatchStatus. Both inputs are idempotent and may arrive in any order or more
than once; correctness comes from the merge rules, not from transport order.

Merge rules, in priority order:
1. Terminal lock: once the batch is completed, failed or cancelled nothing
   else is accepted.
2. Snapshots replace jobs and scalar fields, except that a job never moves
   back to an earlier status and jobs are never removed.
3. Events update exactly one job and never move it backward.
4. Events for an unknown job wait one reconciliation cycle, then are dropped.
5. completed_jobs / failed_jobs are always recounted from the jobs list.
6. The batch is only closed by batch_completed or a terminal snapshot,
   never by the client noticing that every job is terminal.
"""

from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional

from config.logging_config import get_logger
from .events import EventEnvelope, EventType
from .models import (
    BatchState,
    BatchStatus,
    BatchSummary,
    JobState,
    JobStatus,
)

logger = get_logger(__name__)


# Listener signature: called with a committed copy of the batch
StateListener = Callable[[BatchStatus], None]


class ApplyOutcome(Enum):
    """Result of applying one event to a working copy"""
    APPLIED = "applied"
    UNRESOLVED = "unresolved"   # job (or batch) not known yet
    REJECTED = "rejected"       # would violate monotonic transitions
    IGNORED = "ignored"         # carries no state for this batch


class StateReconciler:
    """
    Canonical state holder for one tracked batch.

    Usage:
        reconciler = StateReconciler("b-42")
        reconciler.add_listener(render)

        reconciler.apply_snapshot(fetched_status)
        reconciler.apply_event(parse_event(raw))

        state = reconciler.state
    """

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        self._state: Optional[BatchStatus] = None
        self._pending: List[EventEnvelope] = []
        self._listeners: List[StateListener] = []

    # =========================================
    # Queries
    # =========================================

    @property
    def state(self) -> Optional[BatchStatus]:
        """Copy of the committed state (None before the first snapshot)"""
        return self._state.copy() if self._state else None

    @property
    def is_terminal(self) -> bool:
        return self._state is not None and self._state.is_terminal

    @property
    def pending_count(self) -> int:
        """Events waiting for their job to appear"""
        return len(self._pending)

    def add_listener(self, listener: StateListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================
    # Inputs
    # =========================================

    def apply_snapshot(self, snapshot: BatchStatus) -> bool:
        """
        Merge a full point-in-time server read.

        Args:
            snapshot: Parsed BatchStatus

        Returns:
            True if the snapshot was accepted
        """
        if self.is_terminal:
            logger.debug(
                f"Snapshot rejected: batch {self.batch_id} is already {self._state.status.value}"
            )
            return False

        if snapshot.batch_id and snapshot.batch_id != self.batch_id:
            logger.warning(
                f"Snapshot for batch {snapshot.batch_id} ignored while tracking {self.batch_id}"
            )
            return False

        working = self._merge_snapshot(snapshot)
        # An all-zero summary means the server sent none
        has_summary = working.summary != BatchSummary()
        server_summary = working.summary if working.is_terminal and has_summary else None
        self._commit(working, server_summary)
        return True

    def apply_event(self, event: EventEnvelope) -> bool:
        """
        Merge one delta event.

        Args:
            event: Parsed event envelope

        Returns:
            True if the event changed (or re-confirmed) canonical state
        """
        if self.is_terminal:
            logger.debug(
                f"Event {event.type} rejected: batch {self.batch_id} is already "
                f"{self._state.status.value}"
            )
            return False

        working = self._state.copy() if self._state else None
        outcome = self._apply_to(working, event)

        if outcome is ApplyOutcome.UNRESOLVED:
            self._buffer(event)
            return False
        if outcome is not ApplyOutcome.APPLIED:
            return False

        self._commit(working, self._server_summary_of(event))
        return True

    def force_cancel(self) -> bool:
        """
        Move the batch to cancelled regardless of server state.

        Returns:
            True if the state changed (False if already terminal)
        """
        if self.is_terminal:
            logger.debug(f"Cancel ignored: batch {self.batch_id} is already {self._state.status.value}")
            return False

        working = self._state.copy() if self._state else BatchStatus(batch_id=self.batch_id)
        working.status = BatchState.CANCELLED

        if self._pending:
            logger.debug(f"Dropping {len(self._pending)} buffered events on cancel")
            self._pending = []

        self._finalize(working, None)
        self._state = working
        logger.info(f"Batch {self.batch_id} cancelled locally")
        self._notify(working)
        return True

    # =========================================
    # Merge internals
    # =========================================

    def _merge_snapshot(self, snapshot: BatchStatus) -> BatchStatus:
        incoming = snapshot.copy()
        incoming.batch_id = self.batch_id
        current = self._state

        if current is not None and current.status.rank > incoming.status.rank:
            incoming.status = current.status

        merged: List[JobStatus] = []
        seen = set()

        for job in incoming.jobs:
            if job.job_id in seen:
                logger.debug(f"Duplicate job {job.job_id} in snapshot skipped")
                continue
            seen.add(job.job_id)

            local = current.find_job(job.job_id) if current else None
            merged.append(self._merge_job(local, job))

        # Membership is append-only
        if current is not None:
            for local in current.jobs:
                if local.job_id not in seen:
                    logger.debug(f"Job {local.job_id} missing from snapshot, kept")
                    merged.append(replace(local))

        incoming.jobs = merged
        return incoming

    def _merge_job(self, local: Optional[JobStatus], incoming: JobStatus) -> JobStatus:
        if local is None:
            return incoming

        keep_local = (
            local.status.rank > incoming.status.rank
            or (local.is_terminal and incoming.is_terminal and local.status != incoming.status)
        )
        if keep_local:
            logger.debug(
                f"Stale snapshot for job {local.job_id}: "
                f"{local.status.value} kept over {incoming.status.value}"
            )
            return replace(local, file_name=incoming.file_name)

        if incoming.issues_fixed is None and incoming.status == local.status:
            incoming.issues_fixed = local.issues_fixed
        if incoming.error is None and incoming.status == local.status:
            incoming.error = local.error
        return incoming

    def _apply_to(self, working: Optional[BatchStatus], event: EventEnvelope) -> ApplyOutcome:
        event_type = event.event_type

        if event_type is None:
            logger.info(f"Unknown event type ignored: {event.type}")
            return ApplyOutcome.IGNORED

        if event_type is EventType.CONNECTED:
            return ApplyOutcome.IGNORED

        if event.batch_id and event.batch_id != self.batch_id:
            logger.warning(f"Event for batch {event.batch_id} ignored while tracking {self.batch_id}")
            return ApplyOutcome.IGNORED

        if working is None:
            return ApplyOutcome.UNRESOLVED

        if event_type is EventType.BATCH_COMPLETED:
            status = BatchState.parse(event.status) if event.status else BatchState.COMPLETED
            if not status.is_terminal:
                status = BatchState.COMPLETED
            working.status = status
            logger.info(f"Batch {self.batch_id} closed by server: {status.value}")
            return ApplyOutcome.APPLIED

        if not event.job_id:
            logger.debug(f"Event {event.type} without jobId ignored")
            return ApplyOutcome.IGNORED

        job = working.find_job(event.job_id)
        if job is None:
            return ApplyOutcome.UNRESOLVED

        target = event.target_state
        if job.status.rank > target.rank or (job.is_terminal and job.status != target):
            logger.info(
                f"Backward transition rejected for job {job.job_id}: "
                f"{job.status.value} → {target.value}"
            )
            return ApplyOutcome.REJECTED

        job.status = target
        if target is JobState.COMPLETED and event.issues_fixed is not None:
            job.issues_fixed = event.issues_fixed
        if target is JobState.FAILED and event.error:
            job.error = event.error

        return ApplyOutcome.APPLIED

    def _buffer(self, event: EventEnvelope):
        key = event.dedup_key()
        if any(pending.dedup_key() == key for pending in self._pending):
            return
        logger.debug(f"Event {event.type} for unknown job {event.job_id} buffered")
        self._pending.append(event)

    def _server_summary_of(self, event: EventEnvelope) -> Optional[BatchSummary]:
        if event.event_type is EventType.BATCH_COMPLETED and event.summary is not None:
            return BatchSummary.from_dict(event.summary)
        return None

    def _commit(self, working: BatchStatus, server_summary: Optional[BatchSummary]):
        # Events buffered before this cycle get exactly one more chance
        backlog, self._pending = self._pending, []
        for event in backlog:
            if working.is_terminal:
                break
            outcome = self._apply_to(working, event)
            if outcome is ApplyOutcome.UNRESOLVED:
                logger.debug(f"Dropping unresolved event {event.type} for job {event.job_id}")
            elif outcome is ApplyOutcome.APPLIED:
                server_summary = self._server_summary_of(event) or server_summary

        self._finalize(working, server_summary)
        self._state = working
        self._notify(working)

    def _finalize(self, working: BatchStatus, server_summary: Optional[BatchSummary]):
        completed = sum(1 for job in working.jobs if job.status is JobState.COMPLETED)
        failed = sum(1 for job in working.jobs if job.status is JobState.FAILED)

        if working.completed_jobs != completed or working.failed_jobs != failed:
            logger.debug(
                f"Recounted batch {self.batch_id}: completed {working.completed_jobs}→{completed}, "
                f"failed {working.failed_jobs}→{failed}"
            )

        working.completed_jobs = completed
        working.failed_jobs = failed
        working.total_jobs = max(working.total_jobs, len(working.jobs))

        if working.is_terminal and server_summary is not None:
            working.summary = server_summary
        else:
            working.summary = BatchSummary(
                total_issues_fixed=sum(
                    job.issues_fixed or 0
                    for job in working.jobs
                    if job.status is JobState.COMPLETED
                ),
                success_rate=completed / working.total_jobs if working.total_jobs else 0.0,
            )

        if working.is_terminal and self._pending:
            self._pending = []

    def _notify(self, working: BatchStatus):
        committed = working.copy()
        for listener in list(self._listeners):
            try:
                listener(committed)
            except Exception as e:
                logger.error(f"State listener error: {e}")
