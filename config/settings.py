#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings

from .constants import (
    API_BASE_URL,
    API_TIMEOUT_SECONDS,
    BATCH_STATUS_PATH,
    BATCH_CANCEL_PATH,
    BATCH_EVENTS_PATH,
    JOB_STATUS_PATH,
    POLL_INTERVAL_SECONDS,
    COLD_START_POLL_INTERVAL_SECONDS,
    POLL_MAX_FAILURES,
    JOB_POLL_INTERVAL_SECONDS,
    SSE_RECONNECT_DELAY_SECONDS,
    PUSH_DISABLED_PREFIXES,
    CLIENT_ONLY_PREFIXES,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # ========== Server ==========
    api_base_url: str = API_BASE_URL
    auth_token: Optional[str] = None  # Bearer token (header for REST, query param for SSE)
    request_timeout_seconds: float = API_TIMEOUT_SECONDS

    # ========== Endpoints ==========
    batch_status_path: str = BATCH_STATUS_PATH
    batch_cancel_path: str = BATCH_CANCEL_PATH
    batch_events_path: str = BATCH_EVENTS_PATH
    job_status_path: str = JOB_STATUS_PATH

    # ========== Polling ==========
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    cold_start_poll_interval_seconds: float = COLD_START_POLL_INTERVAL_SECONDS
    max_poll_failures: int = POLL_MAX_FAILURES
    job_poll_interval_seconds: float = JOB_POLL_INTERVAL_SECONDS

    # ========== Push channel ==========
    sse_reconnect_delay_seconds: float = SSE_RECONNECT_DELAY_SECONDS

    # ========== Client-only batches ==========
    # Batches without a push channel (demo mode)
    push_disabled_prefixes: List[str] = list(PUSH_DISABLED_PREFIXES)
    # Batches without server backing: cancel is local only
    client_only_prefixes: List[str] = list(CLIENT_ONLY_PREFIXES)

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        env_prefix = "PROGRESS_SYNC_"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def auth_headers(self, token: Optional[str] = None) -> dict:
        """Build REST auth headers for the given (or configured) token"""
        token = token or self.auth_token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def is_push_disabled(self, batch_id: str) -> bool:
        """Check whether a batch has no push channel"""
        return any(batch_id.startswith(prefix) for prefix in self.push_disabled_prefixes)

    def is_client_only(self, batch_id: str) -> bool:
        """Check whether a batch exists only on the client"""
        return any(batch_id.startswith(prefix) for prefix in self.client_only_prefixes)

    def print_config(self):
        """Print configuration summary"""
        print("\n" + "="*70)
        print("⚙️  CONFIGURATION")
        print("="*70)
        print(f"API Base URL:    {self.api_base_url}")
        print(f"Auth Token:      {'set' if self.auth_token else 'not set'}")
        print(f"Poll Interval:   {self.poll_interval_seconds}s")
        print(f"Cold Start Poll: {self.cold_start_poll_interval_seconds}s")
        print(f"Max Failures:    {self.max_poll_failures}")
        print(f"SSE Reconnect:   {self.sse_reconnect_delay_seconds}s")
        print("="*70 + "\n")


# Global settings instance
settings = Settings()
