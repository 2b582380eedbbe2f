"""
Status Fetcher - single point-in-time REST reads.

One request, one response, no retries (retry policy belongs to the caller).
Responses may wrap their payload as {"data": {...}}; both shapes are accepted.
"""

from typing import Any, Dict, Optional

import httpx

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from .errors import StatusFetchError
from .models import BatchStatus

logger = get_logger(__name__)


def unwrap_payload(body: Any) -> Dict[str, Any]:
    """Return body["data"] when the server wraps its payload, else body"""
    if isinstance(body, dict):
        inner = body.get("data")
        if isinstance(inner, dict):
            return inner
        return body
    raise StatusFetchError(f"Expected a JSON object, got {type(body).__name__}")


class StatusFetcher:
    """
    REST client for batch status, job status and cancel requests.

    Usage:
        async with httpx.AsyncClient() as client:
            fetcher = StatusFetcher(client, auth_token="...")
            batch = await fetcher.fetch("b-42")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth_token: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            client: Shared httpx.AsyncClient
            auth_token: Bearer token (falls back to settings.auth_token)
            settings: Settings override (defaults to the global instance)
        """
        self.client = client
        self.settings = settings or default_settings
        self.auth_token = auth_token or self.settings.auth_token

    def _url(self, path_template: str, **params: str) -> str:
        base = self.settings.api_base_url.rstrip("/")
        return base + path_template.format(**params)

    def _headers(self) -> Dict[str, str]:
        return self.settings.auth_headers(self.auth_token)

    async def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            response = await self.client.get(
                url,
                headers=self._headers(),
                timeout=self.settings.request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StatusFetchError(
                f"HTTP {e.response.status_code} from {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StatusFetchError(f"Request to {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise StatusFetchError(f"Undecodable response from {url}", response.status_code) from e

        return unwrap_payload(body)

    async def fetch(self, batch_id: str) -> BatchStatus:
        """
        Read the current status of a batch.

        Args:
            batch_id: Batch identifier

        Returns:
            Parsed BatchStatus

        Raises:
            StatusFetchError: On network errors, non-2xx status or bad body
        """
        url = self._url(self.settings.batch_status_path, batch_id=batch_id)
        data = await self._get_json(url)
        try:
            status = BatchStatus.from_dict(data)
        except Exception as e:
            raise StatusFetchError(f"Unparseable batch payload from {url}: {e}") from e
        if not status.batch_id:
            status.batch_id = batch_id
        logger.debug(
            f"Fetched batch {batch_id}: {status.status.value} "
            f"({status.completed_jobs}/{status.total_jobs} completed)"
        )
        return status

    async def fetch_job(self, job_id: str) -> Dict[str, Any]:
        """
        Read the raw status payload of a single job.

        Raises:
            StatusFetchError: On network errors, non-2xx status or bad body
        """
        url = self._url(self.settings.job_status_path, job_id=job_id)
        return await self._get_json(url)

    async def cancel(self, batch_id: str):
        """
        Ask the server to cancel a batch. The response body is ignored.

        Raises:
            StatusFetchError: On network errors or non-2xx status
        """
        url = self._url(self.settings.batch_cancel_path, batch_id=batch_id)
        try:
            response = await self.client.post(
                url,
                headers=self._headers(),
                timeout=self.settings.request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StatusFetchError(
                f"Cancel rejected with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StatusFetchError(f"Cancel request failed: {e}") from e
