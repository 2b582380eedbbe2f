"""
Progress Sync Errors

Exception hierarchy for the progress synchronization client.
"""

from typing import Optional


class ProgressSyncError(Exception):
    """Base exception for progress sync errors"""
    pass


class StatusFetchError(ProgressSyncError):
    """Status read failed (network error, non-2xx status or undecodable body)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EventParseError(ProgressSyncError):
    """Push event envelope could not be parsed"""
    pass


class PushConnectionError(ProgressSyncError):
    """Push channel refused the connection (stale token, wrong content type)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PollingFailureCapExceeded(ProgressSyncError):
    """Polling gave up after too many consecutive failures"""

    def __init__(self, failures: int, last_error: Optional[str] = None):
        message = f"Status polling stopped after {failures} consecutive failures"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)
        self.failures = failures
        self.last_error = last_error


class TrackingStateError(ProgressSyncError):
    """Operation not valid in the current tracking state"""
    pass
