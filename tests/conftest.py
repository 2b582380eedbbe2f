"""
Pytest configuration and shared fixtures for Progress Sync tests.
"""
import sys
import json
import asyncio
import pytest
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import Settings
from progress_sync.models import BatchStatus
from progress_sync.sse_transport import ReadyState


BASE_URL = "http://test/api"


# ============================================================================
# Fixtures: Configuration & Settings
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with short intervals so loops tick quickly."""
    return Settings(
        api_base_url=BASE_URL,
        auth_token=None,
        request_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        cold_start_poll_interval_seconds=0.02,
        max_poll_failures=3,
        job_poll_interval_seconds=0.01,
        sse_reconnect_delay_seconds=0.01,
    )


# ============================================================================
# Fixtures: Payloads
# ============================================================================

def make_job(job_id: str, status: str = "pending", **extra) -> Dict[str, Any]:
    """Server job record in camelCase."""
    job = {"jobId": job_id, "fileName": f"{job_id}.pdf", "status": status}
    job.update(extra)
    return job


def make_batch_payload(
    batch_id: str = "b-42",
    status: str = "processing",
    jobs: Optional[List[Dict[str, Any]]] = None,
    **extra,
) -> Dict[str, Any]:
    """Server batch snapshot in camelCase (counts derived from jobs)."""
    jobs = jobs if jobs is not None else []
    payload = {
        "batchId": batch_id,
        "status": status,
        "totalJobs": len(jobs),
        "completedJobs": sum(1 for job in jobs if job["status"] == "completed"),
        "failedJobs": sum(1 for job in jobs if job["status"] == "failed"),
        "jobs": jobs,
    }
    payload.update(extra)
    return payload


def make_batch(*args, **kwargs) -> BatchStatus:
    """Parsed BatchStatus built from make_batch_payload()."""
    return BatchStatus.from_dict(make_batch_payload(*args, **kwargs))


@pytest.fixture
def batch_payload():
    """Two-job batch snapshot, one job running."""
    return make_batch_payload(
        jobs=[
            make_job("job-1", "processing"),
            make_job("job-2", "pending"),
        ]
    )


# ============================================================================
# Fixtures: Fake server
# ============================================================================

class StubServer:
    """
    In-process REST server for httpx.MockTransport.

    Serves `batch` for GET /batches/{id} (wrapped in {"data": ...}), `jobs`
    for GET /jobs/{id}, and records every request. `fail_next` makes the
    next N status reads answer HTTP 500.
    """

    def __init__(self, batch: Optional[Dict[str, Any]] = None):
        self.batch = batch
        self.jobs: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_next = 0
        self.cancel_status = 200
        self.requests: List[httpx.Request] = []

    @property
    def status_reads(self) -> int:
        return sum(
            1 for request in self.requests
            if request.method == "GET" and "/batches/" in request.url.path
        )

    @property
    def cancel_requests(self) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith("/cancel")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/cancel"):
            return httpx.Response(self.cancel_status, json={"success": True})

        if self.fail_next > 0:
            self.fail_next -= 1
            return httpx.Response(500, json={"error": "internal"})

        if path.startswith("/api/jobs/"):
            job_id = path.rsplit("/", 1)[-1]
            states = self.jobs.get(job_id)
            if not states:
                return httpx.Response(404, json={"error": "not found"})
            body = states.pop(0) if len(states) > 1 else states[0]
            return httpx.Response(200, json=body)

        if path.startswith("/api/batches/") and self.batch is not None:
            return httpx.Response(200, json={"success": True, "data": self.batch})

        return httpx.Response(404, json={"error": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def stub_server(batch_payload):
    """StubServer preloaded with the two-job batch."""
    return StubServer(batch_payload)


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005):
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(step)


def sse_frame(payload: Dict[str, Any], event_id: Optional[str] = None) -> str:
    """One text/event-stream frame carrying a JSON envelope."""
    frame = ""
    if event_id is not None:
        frame += f"id: {event_id}\n"
    return frame + f"data: {json.dumps(payload)}\n\n"


# ============================================================================
# Fixtures: Fake push transport
# ============================================================================

class FakeEventSource:
    """
    Stand-in for EventSource driven directly by tests.

    Tests call open(), deliver() and fail() to simulate the transport.
    """

    def __init__(self, url, client, on_open=None, on_message=None, on_error=None,
                 reconnect_delay=0.0, **kwargs):
        self.url = url
        self.client = client
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.reconnect_delay = reconnect_delay
        self.ready_state = ReadyState.CONNECTING
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    async def close(self):
        self.closed = True
        self.ready_state = ReadyState.CLOSED

    def open(self):
        self.ready_state = ReadyState.OPEN
        self.on_open()

    def deliver(self, payload: Dict[str, Any], event: str = "message"):
        from progress_sync.sse_transport import ServerSentEvent
        self.on_message(ServerSentEvent(data=json.dumps(payload), event=event))

    def deliver_raw(self, data: str):
        from progress_sync.sse_transport import ServerSentEvent
        self.on_message(ServerSentEvent(data=data))

    def fail(self, error: Exception, closed: bool = False):
        self.ready_state = ReadyState.CLOSED if closed else ReadyState.CONNECTING
        self.on_error(error)


class FakeSourceFactory:
    """Event source factory that records every source it builds."""

    def __init__(self):
        self.sources: List[FakeEventSource] = []

    def __call__(self, *args, **kwargs) -> FakeEventSource:
        source = FakeEventSource(*args, **kwargs)
        self.sources.append(source)
        return source

    @property
    def last(self) -> FakeEventSource:
        return self.sources[-1]


@pytest.fixture
def source_factory():
    """Fresh FakeSourceFactory."""
    return FakeSourceFactory()
