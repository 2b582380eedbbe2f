"""
Centralized constants for Progress Sync.
All magic numbers extracted from the client code.
"""

# ===========================================
# REST API
# ===========================================
API_BASE_URL = 'http://localhost:5000/api/v1'
API_TIMEOUT_SECONDS = 30              # request timeout
BATCH_STATUS_PATH = '/batches/{batch_id}'
BATCH_CANCEL_PATH = '/batches/{batch_id}/cancel'
JOB_STATUS_PATH = '/jobs/{job_id}'

# ===========================================
# POLLING
# ===========================================
POLL_INTERVAL_SECONDS = 2.5           # standard interval while push is down
COLD_START_POLL_INTERVAL_SECONDS = 5.0  # while the push channel is opening
POLL_MAX_FAILURES = 3                 # consecutive failures before giving up
JOB_POLL_INTERVAL_SECONDS = 2.0       # single-job polling

# ===========================================
# PUSH CHANNEL (SSE)
# ===========================================
BATCH_EVENTS_PATH = '/sse/batch/{batch_id}/progress'
SSE_RECONNECT_DELAY_SECONDS = 3.0     # overridden by server "retry:" field
SSE_CONTENT_TYPE = 'text/event-stream'

# ===========================================
# CLIENT-ONLY BATCHES
# ===========================================
# Ids with these prefixes never reach the server on cancel, so server-backed
# batch ids must not start with 'batch-' unless the list is overridden
PUSH_DISABLED_PREFIXES = ['demo-']
CLIENT_ONLY_PREFIXES = ['demo-', 'batch-']

# ===========================================
# EVENT TYPES
# ===========================================
EVENT_CONNECTED = 'connected'
EVENT_JOB_STARTED = 'job_started'
EVENT_JOB_COMPLETED = 'job_completed'
EVENT_JOB_FAILED = 'job_failed'
EVENT_BATCH_COMPLETED = 'batch_completed'

# ===========================================
# LOGGING
# ===========================================
LOG_ROOT_NAME = 'progress_sync'
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/progress_sync.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
