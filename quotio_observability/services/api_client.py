"""Management API client for the local (or remote) proxy.

Every method maps to one Management API endpoint. Transport failures are
retried with a short exponential backoff (the proxy may be restarting);
anything that still fails surfaces as APIError.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from ..models.auth import AuthFile, AuthFilesResponse
from ..models.logs import LogsResponse
from ..models.usage_history import RequestHistoryResponse, SSERequestEvent, UsageEventsResponse
from ..models.usage_stats import UsageStats
from ..utils.log import log_with_timestamp

LOCAL_MAX_RETRIES = 4
REMOTE_MAX_RETRIES = 5
LOCAL_REQUEST_TIMEOUT = 15.0
REMOTE_REQUEST_TIMEOUT = 30.0
MAX_RETRY_BACKOFF = 3.0


class APIError(Exception):
    """Management API failure (bad URL, HTTP status, connection, decode)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


def retry_backoff(retry_count: int) -> float:
    """Backoff before retry N: 0.5s, 1s, 2s, then capped at 3s."""
    return min((2 ** retry_count) * 0.5, MAX_RETRY_BACKOFF)


class ManagementAPIClient:
    """Async client for the proxy Management API."""

    def __init__(
        self,
        base_url: str,
        auth_key: str = "",
        is_remote: bool = False,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_key = auth_key or ""
        self.is_remote = is_remote
        self.max_retries = max_retries if max_retries is not None else (
            REMOTE_MAX_RETRIES if is_remote else LOCAL_MAX_RETRIES
        )
        self.timeout = timeout if timeout is not None else (
            REMOTE_REQUEST_TIMEOUT if is_remote else LOCAL_REQUEST_TIMEOUT
        )
        self.client_id = uuid.uuid4().hex[:6]
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Shared HTTP session, created on first use (must be inside a running loop)."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def auth_headers(self) -> Dict[str, str]:
        """Bearer header when a management key is configured, nothing otherwise."""
        if self.auth_key:
            return {"Authorization": f"Bearer {self.auth_key}"}
        return {}

    def _url(self, path: str, query: Optional[Dict[str, Any]] = None) -> str:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    def _log(self, message: str, level: int = logging.DEBUG):
        log_with_timestamp(f"[{self.client_id}] {message}", "[ManagementAPIClient]", level)

    async def _make_request(
        self,
        path: str,
        method: str = "GET",
        query: Optional[Dict[str, Any]] = None,
        body: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Send a request and return the raw body of a 2xx response.

        Timeouts and connection errors are retried up to ``max_retries`` times;
        HTTP errors are not.
        """
        url = self._url(path, query)
        if not url.startswith(("http://", "https://")):
            raise APIError(f"Invalid URL: {url}")

        headers = {"Content-Type": "application/json"}
        headers.update(self.auth_headers())
        request_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None

        retry_count = 0
        while True:
            self._log(f"START {method} {path} (retry={retry_count})")
            try:
                async with self.session.request(
                    method,
                    url,
                    headers=headers,
                    data=body,
                    timeout=request_timeout,
                ) as response:
                    data = await response.read()
                    if not 200 <= response.status < 300:
                        self._log(f"HTTP ERROR {response.status} {method} {path}", logging.WARNING)
                        raise APIError(
                            data.decode("utf-8", errors="replace") or response.reason or "HTTP error",
                            status_code=response.status,
                        )
                    return data
            except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
                if retry_count < self.max_retries:
                    backoff = retry_backoff(retry_count)
                    self._log(
                        f"RETRYING {method} {path} after {backoff:.1f}s "
                        f"(attempt {retry_count + 1}/{self.max_retries}): {e!r}",
                        logging.INFO,
                    )
                    await asyncio.sleep(backoff)
                    retry_count += 1
                    continue
                raise APIError(f"Connection error: {e!r}") from e
            except aiohttp.ClientError as e:
                raise APIError(f"Request failed: {e!r}") from e

    @staticmethod
    def _decode(model, data: bytes):
        try:
            return model.model_validate_json(data)
        except ValidationError as e:
            raise APIError(f"Invalid response: {e}") from e

    # Auth files

    async def fetch_auth_files(self) -> List[AuthFile]:
        data = await self._make_request("/auth-files")
        return self._decode(AuthFilesResponse, data).files

    # Usage statistics

    async def fetch_usage_stats(self, timeout: Optional[float] = None) -> UsageStats:
        data = await self._make_request("/usage", timeout=timeout)
        return self._decode(UsageStats, data)

    async def fetch_request_history(
        self,
        limit: int = 100,
        offset: int = 0,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        success: Optional[bool] = None,
        request_id: Optional[str] = None,
        account: Optional[str] = None,
        source: Optional[str] = None,
    ) -> RequestHistoryResponse:
        """Fetch a page of usage history ("evidence")."""
        query: Dict[str, Any] = {"limit": limit, "offset": offset}
        if model is not None:
            query["model"] = model
        if provider is not None:
            query["provider"] = provider
        if success is not None:
            query["success"] = "true" if success else "false"
        if request_id:
            query["request_id"] = request_id
        if account:
            query["auth_index"] = account
        if source:
            query["source"] = source
        data = await self._make_request("/usage/history", query=query)
        return self._decode(RequestHistoryResponse, data)

    def get_sse_stream_url(self, since_seq: Optional[int] = None) -> Optional[str]:
        """URL of the realtime stream; the server replays from ``since_seq`` when given."""
        if not self.base_url.startswith(("http://", "https://")):
            return None
        if since_seq is not None and since_seq > 0:
            return self._url("/usage/stream", {"since_seq": since_seq})
        return self._url("/usage/stream")

    async def fetch_usage_events(self, since_seq: int = 0, limit: int = 500) -> List[SSERequestEvent]:
        """Replay buffered realtime events with ``seq`` greater than ``since_seq``."""
        data = await self._make_request(
            "/usage/events",
            query={"since_seq": max(0, since_seq), "limit": max(1, limit)},
        )
        return self._decode(UsageEventsResponse, data).events

    async def export_usage_stats(self) -> bytes:
        """Opaque backup of the proxy's usage statistics."""
        return await self._make_request("/usage/export")

    async def import_usage_stats(self, data: bytes):
        await self._make_request("/usage/import", method="POST", body=data)

    # Proxy logs

    async def fetch_logs(self, after: Optional[int] = None) -> LogsResponse:
        query = {"after": after} if after is not None else None
        data = await self._make_request("/logs", query=query)
        return self._decode(LogsResponse, data)

    async def clear_logs(self):
        await self._make_request("/logs", method="DELETE")

    async def check_proxy_responding(self) -> bool:
        """Whether the proxy answers its debug endpoint."""
        try:
            await self._make_request("/debug")
            return True
        except APIError:
            return False


def parse_json_bytes(data: bytes) -> Any:
    """Decode an export payload; raises APIError when it is not JSON."""
    try:
        return json.loads(data)
    except ValueError as e:
        raise APIError(f"Invalid JSON payload: {e}") from e
