"""
Unit tests for progress_sync/reconciler.py - merge rules and invariants
"""
import pytest

from conftest import make_batch, make_job
from progress_sync.events import parse_event
from progress_sync.models import BatchState, JobState
from progress_sync.reconciler import StateReconciler


def event(type_, job_id=None, **fields):
    payload = {"type": type_}
    if job_id is not None:
        payload["jobId"] = job_id
    payload.update(fields)
    return parse_event(payload)


def assert_counts_consistent(state):
    assert state.completed_jobs == sum(1 for job in state.jobs if job.status is JobState.COMPLETED)
    assert state.failed_jobs == sum(1 for job in state.jobs if job.status is JobState.FAILED)


@pytest.fixture
def reconciler():
    """Reconciler seeded with three pending jobs."""
    reconciler = StateReconciler("b-42")
    reconciler.apply_snapshot(make_batch(jobs=[
        make_job("job-1"),
        make_job("job-2"),
        make_job("job-3"),
    ]))
    return reconciler


class TestScenarios:
    """End-to-end reconciliation scenarios."""

    def test_scenario_a_snapshot_counts(self, reconciler):
        """Snapshot with one completed job yields completed=1, failed=0."""
        accepted = reconciler.apply_snapshot(make_batch(jobs=[
            make_job("job-1", "completed", issuesFixed=4),
            make_job("job-2", "processing"),
            make_job("job-3", "pending"),
        ]))

        state = reconciler.state
        assert accepted
        assert state.completed_jobs == 1
        assert state.failed_jobs == 0
        assert state.find_job("job-1").issues_fixed == 4
        assert state.summary.total_issues_fixed == 4
        assert state.summary.success_rate == pytest.approx(1 / 3)

    def test_scenario_b_failed_event(self, reconciler):
        """job_failed after Scenario A marks job2 failed with its error."""
        reconciler.apply_snapshot(make_batch(jobs=[
            make_job("job-1", "completed", issuesFixed=4),
            make_job("job-2", "processing"),
            make_job("job-3", "pending"),
        ]))

        assert reconciler.apply_event(event("job_failed", "job-2", error="timeout"))

        state = reconciler.state
        job2 = state.find_job("job-2")
        assert job2.status is JobState.FAILED
        assert job2.error == "timeout"
        assert state.failed_jobs == 1
        assert state.completed_jobs == 1


class TestIdempotence:
    """Applying the same input twice equals applying it once."""

    def test_event_twice(self, reconciler):
        completed = event("job_completed", "job-1", issuesFixed=2)
        reconciler.apply_event(completed)
        once = reconciler.state

        reconciler.apply_event(completed)
        assert reconciler.state == once

    def test_snapshot_twice(self, reconciler):
        snapshot = make_batch(jobs=[
            make_job("job-1", "completed", issuesFixed=1),
            make_job("job-2", "failed", error="bad"),
            make_job("job-3", "processing"),
        ])
        reconciler.apply_snapshot(snapshot)
        once = reconciler.state

        reconciler.apply_snapshot(snapshot)
        assert reconciler.state == once

    def test_snapshot_is_not_mutated(self, reconciler):
        snapshot = make_batch(completedJobs=9, jobs=[make_job("job-1", "completed")])
        reconciler.apply_snapshot(snapshot)
        assert snapshot.completed_jobs == 9


class TestTerminalLock:
    """Nothing changes once the batch is terminal."""

    def test_snapshot_rejected_after_completion(self, reconciler):
        reconciler.apply_event(event("batch_completed"))
        before = reconciler.state

        accepted = reconciler.apply_snapshot(make_batch(status="processing", jobs=[
            make_job("job-1", "processing"),
        ]))

        assert not accepted
        assert reconciler.state == before
        assert reconciler.state.status is BatchState.COMPLETED

    def test_event_rejected_after_cancel(self, reconciler):
        reconciler.force_cancel()
        before = reconciler.state

        assert not reconciler.apply_event(event("job_completed", "job-1", issuesFixed=3))
        assert reconciler.state == before

    def test_terminal_snapshot_locks(self, reconciler):
        reconciler.apply_snapshot(make_batch(status="failed", jobs=[make_job("job-1", "failed")]))
        assert reconciler.is_terminal
        assert not reconciler.apply_snapshot(make_batch(status="processing"))

    def test_force_cancel_twice(self, reconciler):
        assert reconciler.force_cancel()
        assert not reconciler.force_cancel()
        assert reconciler.state.status is BatchState.CANCELLED

    def test_force_cancel_without_state(self):
        reconciler = StateReconciler("b-7")
        assert reconciler.force_cancel()
        assert reconciler.state.batch_id == "b-7"
        assert reconciler.state.status is BatchState.CANCELLED


class TestMonotonicTransitions:
    """Jobs never move backward."""

    def test_backward_event_rejected(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1", issuesFixed=5))

        assert not reconciler.apply_event(event("job_started", "job-1"))
        assert reconciler.state.find_job("job-1").status is JobState.COMPLETED

    def test_conflicting_terminal_event_rejected(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1", issuesFixed=5))

        assert not reconciler.apply_event(event("job_failed", "job-1", error="late"))
        job = reconciler.state.find_job("job-1")
        assert job.status is JobState.COMPLETED
        assert job.error is None

    def test_stale_snapshot_does_not_regress_job(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1", issuesFixed=5))

        reconciler.apply_snapshot(make_batch(jobs=[
            make_job("job-1", "processing"),
            make_job("job-2", "processing"),
            make_job("job-3"),
        ]))

        state = reconciler.state
        assert state.find_job("job-1").status is JobState.COMPLETED
        assert state.find_job("job-1").issues_fixed == 5
        assert state.find_job("job-2").status is JobState.PROCESSING
        assert state.completed_jobs == 1

    def test_batch_status_does_not_regress(self, reconciler):
        reconciler.apply_snapshot(make_batch(status="processing", jobs=[make_job("job-1", "processing")]))
        reconciler.apply_snapshot(make_batch(status="pending", jobs=[make_job("job-1", "processing")]))
        assert reconciler.state.status is BatchState.PROCESSING

    def test_rejected_event_does_not_notify(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1"))
        seen = []
        reconciler.add_listener(seen.append)

        reconciler.apply_event(event("job_started", "job-1"))
        assert seen == []


class TestOutOfOrder:
    """Snapshots and events in any interleaving converge."""

    @pytest.mark.parametrize("order", [
        ("snapshot", "event", "event"),
        ("event", "snapshot", "event"),
        ("event", "event", "snapshot"),
    ])
    def test_completed_never_reverts(self, order):
        reconciler = StateReconciler("b-1")
        snapshot = make_batch("b-1", jobs=[make_job("job-a", "processing")])
        completed = event("job_completed", "job-a", issuesFixed=3)

        for step in order:
            if step == "snapshot":
                reconciler.apply_snapshot(snapshot)
            else:
                reconciler.apply_event(completed)

        job = reconciler.state.find_job("job-a")
        assert job.status is JobState.COMPLETED
        assert job.issues_fixed == 3
        assert reconciler.state.completed_jobs == 1


class TestUnknownJobs:
    """Events for jobs not yet known wait one cycle."""

    def test_buffered_event_applied_by_next_snapshot(self, reconciler):
        assert not reconciler.apply_event(event("job_started", "job-9"))
        assert reconciler.pending_count == 1

        reconciler.apply_snapshot(make_batch(jobs=[
            make_job("job-1"), make_job("job-2"), make_job("job-3"), make_job("job-9"),
        ]))

        assert reconciler.state.find_job("job-9").status is JobState.PROCESSING
        assert reconciler.pending_count == 0

    def test_unresolved_event_dropped_after_one_cycle(self, reconciler):
        reconciler.apply_event(event("job_started", "job-9"))
        reconciler.apply_snapshot(make_batch(jobs=[make_job("job-1")]))

        assert reconciler.pending_count == 0
        assert reconciler.state.find_job("job-9") is None

        # A later snapshot introducing the job does not resurrect the event
        reconciler.apply_snapshot(make_batch(jobs=[make_job("job-1"), make_job("job-9")]))
        assert reconciler.state.find_job("job-9").status is JobState.PENDING

    def test_duplicate_unknown_events_buffered_once(self, reconciler):
        reconciler.apply_event(event("job_started", "job-9"))
        reconciler.apply_event(event("job_started", "job-9"))
        assert reconciler.pending_count == 1

    def test_event_before_first_snapshot_is_buffered(self):
        reconciler = StateReconciler("b-1")
        assert not reconciler.apply_event(event("job_completed", "job-1", issuesFixed=1))
        assert reconciler.state is None
        assert reconciler.pending_count == 1


class TestAggregates:
    """Counters and summary are derived from jobs."""

    def test_payload_counters_are_recounted(self, reconciler):
        reconciler.apply_snapshot(make_batch(completedJobs=3, failedJobs=2, jobs=[
            make_job("job-1", "completed"),
            make_job("job-2", "processing"),
            make_job("job-3", "pending"),
        ]))
        state = reconciler.state
        assert state.completed_jobs == 1
        assert state.failed_jobs == 0

    def test_total_jobs_never_below_job_count(self):
        reconciler = StateReconciler("b-1")
        reconciler.apply_snapshot(make_batch("b-1", totalJobs=1, jobs=[make_job("a"), make_job("b")]))
        assert reconciler.state.total_jobs == 2

    def test_counts_consistent_through_mixed_updates(self, reconciler):
        reconciler.apply_event(event("job_started", "job-1"))
        assert_counts_consistent(reconciler.state)
        reconciler.apply_event(event("job_completed", "job-1", issuesFixed=2))
        assert_counts_consistent(reconciler.state)
        reconciler.apply_snapshot(make_batch(jobs=[make_job("job-2", "failed", error="x")]))
        assert_counts_consistent(reconciler.state)
        reconciler.apply_event(event("job_failed", "job-3", error="y"))
        assert_counts_consistent(reconciler.state)
        assert reconciler.state.failed_jobs == 2

    def test_non_terminal_server_summary_is_recomputed(self, reconciler):
        reconciler.apply_snapshot(make_batch(
            summary={"totalIssuesFixed": 100, "successRate": 0.9},
            jobs=[make_job("job-1", "completed", issuesFixed=4), make_job("job-2"), make_job("job-3")],
        ))
        assert reconciler.state.summary.total_issues_fixed == 4

    def test_terminal_snapshot_summary_is_kept(self, reconciler):
        reconciler.apply_snapshot(make_batch(
            status="completed",
            summary={"totalIssuesFixed": 11, "successRate": 0.5},
            jobs=[make_job("job-1", "completed", issuesFixed=4)],
        ))
        assert reconciler.state.summary.total_issues_fixed == 11
        assert reconciler.state.summary.success_rate == 0.5


class TestBatchCompletion:
    """Only the server closes a batch."""

    def test_all_jobs_terminal_does_not_close_batch(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1"))
        reconciler.apply_event(event("job_completed", "job-2"))
        reconciler.apply_event(event("job_failed", "job-3", error="bad"))

        state = reconciler.state
        assert not state.is_terminal
        assert state.completed_jobs == 2
        assert state.failed_jobs == 1

    def test_batch_completed_uses_server_summary(self, reconciler):
        reconciler.apply_event(event("job_completed", "job-1", issuesFixed=2))
        reconciler.apply_event(event(
            "batch_completed", summary={"totalIssuesFixed": 7, "successRate": 0.66},
        ))

        state = reconciler.state
        assert state.status is BatchState.COMPLETED
        assert state.summary.total_issues_fixed == 7
        assert state.summary.success_rate == 0.66

    def test_batch_completed_with_failed_status(self, reconciler):
        reconciler.apply_event(event("batch_completed", status="FAILED"))
        assert reconciler.state.status is BatchState.FAILED

    def test_batch_completed_with_non_terminal_status(self, reconciler):
        reconciler.apply_event(event("batch_completed", status="processing"))
        assert reconciler.state.status is BatchState.COMPLETED

    def test_batch_completed_clears_buffer(self, reconciler):
        reconciler.apply_event(event("job_started", "job-9"))
        reconciler.apply_event(event("batch_completed"))
        assert reconciler.pending_count == 0


class TestIgnoredInput:
    """Inputs that carry no state for this batch."""

    def test_unknown_event_type(self, reconciler):
        before = reconciler.state
        assert not reconciler.apply_event(event("job_paused", "job-1"))
        assert reconciler.state == before
        assert reconciler.pending_count == 0

    def test_connected_event(self, reconciler):
        assert not reconciler.apply_event(event("connected", clientId="c-1"))

    def test_event_for_other_batch(self, reconciler):
        assert not reconciler.apply_event(event("job_completed", "job-1", batchId="b-other"))
        assert reconciler.state.find_job("job-1").status is JobState.PENDING

    def test_job_event_without_job_id(self, reconciler):
        assert not reconciler.apply_event(event("job_started"))
        assert reconciler.pending_count == 0

    def test_snapshot_for_other_batch(self, reconciler):
        assert not reconciler.apply_snapshot(make_batch("b-other", status="completed"))
        assert not reconciler.is_terminal


class TestMembership:
    """Job membership is append-only."""

    def test_missing_job_is_kept(self, reconciler):
        reconciler.apply_snapshot(make_batch(jobs=[make_job("job-2"), make_job("job-3")]))
        ids = [job.job_id for job in reconciler.state.jobs]
        assert ids == ["job-2", "job-3", "job-1"]

    def test_duplicate_job_ids_in_snapshot(self):
        reconciler = StateReconciler("b-1")
        reconciler.apply_snapshot(make_batch("b-1", jobs=[
            make_job("a", "completed"), make_job("a", "pending"),
        ]))
        state = reconciler.state
        assert len(state.jobs) == 1
        assert state.jobs[0].status is JobState.COMPLETED


class TestListeners:
    """Listener notification."""

    def test_listener_gets_copy(self, reconciler):
        seen = []
        reconciler.add_listener(seen.append)
        reconciler.apply_event(event("job_started", "job-1"))

        assert len(seen) == 1
        seen[0].jobs[0].status = JobState.FAILED
        assert reconciler.state.find_job("job-1").status is JobState.PROCESSING

    def test_listener_error_is_isolated(self, reconciler):
        def broken(state):
            raise RuntimeError("render failed")

        seen = []
        reconciler.add_listener(broken)
        reconciler.add_listener(seen.append)

        assert reconciler.apply_event(event("job_started", "job-1"))
        assert len(seen) == 1

    def test_remove_listener(self, reconciler):
        seen = []
        reconciler.add_listener(seen.append)
        reconciler.remove_listener(seen.append)
        reconciler.remove_listener(seen.append)
        reconciler.apply_event(event("job_started", "job-1"))
        assert seen == []
